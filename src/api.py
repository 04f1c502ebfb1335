"""
HTTP API - health, challenge inspection and CTFd administration endpoints.

Everything except the health and version endpoints requires the shared
password as a bearer token.
"""

import hmac
import logging
import mimetypes
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from bindings import BindingStore, load_mapping_table
from bootstrap import SetupParams, SetupService
from errors import AuthError, ClusterAPIError, SetupConflictError, ValidationError
from extraction import (
    CHALLENGE_LABEL_VALUE,
    CONFIGMAP_LABEL,
    classify_object,
    extract_challenge_config,
)
from health import HealthState
from models import ChallengeConfig, ObjectKind
from sync import ChallengeSync

logger = logging.getLogger(__name__)

CHALLENGE_SELECTOR = f"{CONFIGMAP_LABEL}={CHALLENGE_LABEL_VALUE}"


def check_password(authorization: Optional[str], password: str) -> None:
    """
    Compare a bearer token against the shared password in constant time.

    Raises:
        AuthError: If the header is missing or the token does not match
    """
    if not authorization:
        raise AuthError("Missing Authorization header")

    token = authorization
    if token.startswith("Bearer "):
        token = token[len("Bearer "):]
    if not hmac.compare_digest(token.strip().encode(), password.strip().encode()):
        raise AuthError("Invalid token")


class HTTPServer:
    """FastAPI application serving the manager's HTTP API."""

    def __init__(
        self,
        cluster,
        namespace: str,
        github,
        ctfd,
        challenge_sync: ChallengeSync,
        challenge_bindings: BindingStore,
        setup_service: SetupService,
        health: HealthState,
        password: str,
        version: str = "0.0.0",
        host: str = "0.0.0.0",
        port: int = 8080,
    ):
        self.cluster = cluster
        self.namespace = namespace
        self.github = github
        self.ctfd = ctfd
        self.challenge_sync = challenge_sync
        self.challenge_bindings = challenge_bindings
        self.setup_service = setup_service
        self.health = health
        self.password = password
        self.version = version
        self.host = host
        self.port = port
        self.server: Optional[uvicorn.Server] = None

        self.app = FastAPI(title="CTFd Manager", version=version)
        self._setup_routes()

    async def _get_challenge_config(self, name: str) -> ChallengeConfig:
        """Load a challenge ConfigMap by name, or raise a 404."""
        try:
            obj = await self.cluster.get_config_map(self.namespace, name)
        except ClusterAPIError as e:
            if e.not_found:
                raise HTTPException(status_code=404, detail="Challenge not found")
            raise

        if classify_object(obj) is not ObjectKind.CHALLENGE:
            raise HTTPException(status_code=404, detail="Challenge not found")
        try:
            return extract_challenge_config(obj)
        except ValidationError as e:
            logger.warning(f"Challenge ConfigMap {name} is invalid: {e}")
            raise HTTPException(status_code=404, detail="Challenge not found")

    def _setup_routes(self):
        """Set up API routes."""

        async def require_auth(
            request: Request, authorization: Optional[str] = Header(None)
        ) -> None:
            check_password(authorization, self.password)
            logger.debug(f"Request authorized: {request.method} {request.url.path}")

        @self.app.exception_handler(AuthError)
        async def auth_error_handler(request: Request, exc: AuthError):
            logger.info(f"Unauthorized request to {request.url.path}: {exc}")
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

        # ==================== Health ====================

        @self.app.get("/")
        async def index():
            healthy = await self.health.check(self.cluster, self.namespace)
            return JSONResponse(
                status_code=200 if healthy else 500,
                content={"name": "CTFd manager", "status": "ok" if healthy else "error"},
            )

        @self.app.get("/status")
        @self.app.get("/api/status")
        async def status():
            healthy = await self.health.check(self.cluster, self.namespace)
            return JSONResponse(
                status_code=200 if healthy else 500,
                content={"status": "ok" if healthy else "error"},
            )

        @self.app.get("/api/version")
        async def version():
            return {"version": self.version}

        # ==================== Challenges ====================

        @self.app.get("/api/challenges", dependencies=[Depends(require_auth)])
        async def list_challenges():
            """List challenge ConfigMaps in the namespace."""
            try:
                objects = await self.cluster.list_config_maps(
                    self.namespace, label_selector=CHALLENGE_SELECTOR
                )
                return {"challenges": [{"name": obj.name} for obj in objects]}
            except Exception as e:
                logger.error(f"Error getting challenges: {e}")
                raise HTTPException(status_code=500, detail="Error getting challenges")

        @self.app.get("/api/challenges/{name}", dependencies=[Depends(require_auth)])
        async def get_challenge(name: str):
            """Get a decoded challenge with its display names resolved."""
            try:
                config = await self._get_challenge_config(name)
                mapping = await load_mapping_table(self.cluster, self.namespace)
                result: Dict[str, Any] = config.to_dict()
                result["category_name"] = mapping.category_name(
                    config.challenge.category, config.challenge.difficulty
                )
                result["difficulty_name"] = mapping.difficulty_name(
                    config.challenge.difficulty
                )
                return {"config": result}
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error getting challenge {name}: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get(
            "/api/challenges/{name}/files", dependencies=[Depends(require_auth)]
        )
        async def list_challenge_files(name: str):
            """List the attachments directory of a challenge."""
            try:
                config = await self._get_challenge_config(name)
                files = await self.github.get_dir_contents(config.files_dir_path)
                return {"files": files}
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error getting directory contents for {name}: {e}")
                raise HTTPException(
                    status_code=500, detail="Error getting directory contents"
                )

        @self.app.get(
            "/api/challenges/{name}/files/{file}",
            dependencies=[Depends(require_auth)],
        )
        async def get_challenge_file(name: str, file: str):
            """Download one attachment of a challenge."""
            try:
                config = await self._get_challenge_config(name)
                directory = config.files_dir_path
                entries = await self.github.get_dir_contents(directory)
                if not any(entry.get("name") == file for entry in entries):
                    raise HTTPException(status_code=404, detail="File not found")

                content = await self.github.get_file_bytes(f"{directory}/{file}")
                media_type = mimetypes.guess_type(file)[0] or "application/octet-stream"
                logger.info(f"File {file} of {name} sent")
                return Response(
                    content=content,
                    media_type=media_type,
                    headers={"Content-Disposition": f"attachment; filename={file}"},
                )
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error getting file {file} of {name}: {e}")
                raise HTTPException(
                    status_code=500, detail="Error getting file contents"
                )

        # ==================== CTFd ====================

        @self.app.post("/api/ctfd/setup", dependencies=[Depends(require_auth)])
        async def setup_ctfd(params: SetupParams):
            """Run the first-time setup wizard against CTFd."""
            try:
                await self.setup_service.run(params)
                return {"status": "success"}
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=e.message)
            except SetupConflictError as e:
                raise HTTPException(status_code=409, detail=str(e))
            except Exception as e:
                logger.error(f"Error setting up CTFd: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post(
            "/api/ctfd/challenges/init", dependencies=[Depends(require_auth)]
        )
        async def init_challenges():
            """Create or update every challenge ConfigMap in CTFd."""
            try:
                objects = await self.cluster.list_config_maps(
                    self.namespace, label_selector=CHALLENGE_SELECTOR
                )
                for obj in objects:
                    config = await self._get_challenge_config(obj.name)
                    remote_id = await self.challenge_sync.upsert(config)
                    logger.info(f"Uploaded challenge {obj.name} with ID {remote_id}")
                return {"status": "ok"}
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error uploading challenges: {e}")
                raise HTTPException(status_code=500, detail="Error uploading challenge")

        @self.app.get("/api/ctfd/challenges", dependencies=[Depends(require_auth)])
        async def list_ctfd_challenges():
            """List challenges as CTFd sees them."""
            try:
                await self.ctfd.refresh_session()
                return {"challenges": await self.ctfd.list_challenges()}
            except Exception as e:
                logger.error(f"Error getting CTFd challenges: {e}")
                raise HTTPException(status_code=500, detail="Error getting challenges")

        @self.app.get(
            "/api/ctfd/challenges/uploaded", dependencies=[Depends(require_auth)]
        )
        async def list_uploaded_challenges():
            """Slug to CTFd id bindings."""
            try:
                bindings = await self.challenge_bindings.list_bindings()
                return {
                    "uploaded_challenges": {
                        slug: str(remote_id) for slug, remote_id in bindings.items()
                    }
                }
            except Exception as e:
                logger.error(f"Error getting uploaded challenges: {e}")
                raise HTTPException(
                    status_code=500, detail="Error getting uploaded challenges"
                )

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting HTTP API on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping HTTP API")
        if self.server:
            self.server.should_exit = True

