"""
CTFd API client.

CTFd expects a session cookie and a CSRF nonce alongside the admin access
token. Both are scraped from the /setup page, which redirects to the index
once the instance is set up; either page embeds the nonce.
"""

import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from errors import CTFdAPIError

logger = logging.getLogger(__name__)

NONCE_PATTERN = re.compile(r"csrfNonce': \"([a-zA-Z0-9]{64})\"")

TokenLoader = Callable[[], Awaitable[str]]


class CTFdClient:
    """Thin wrapper over the CTFd REST API and its setup form."""

    def __init__(self, url: str, token_loader: Optional[TokenLoader] = None):
        self.url = url.rstrip("/")
        self.api_url = f"{self.url}/api/v1"
        self.token_loader = token_loader
        self.nonce: str = ""
        self.token: str = ""
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self):
        """Open the HTTP session. Cookies are kept across requests."""
        self.session = aiohttp.ClientSession(
            cookie_jar=aiohttp.CookieJar(unsafe=True)
        )
        logger.info(f"CTFd client configured for {self.url}")

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _session(self) -> aiohttp.ClientSession:
        if self.session is None:
            raise CTFdAPIError("CTFd client is not connected")
        return self.session

    async def setup_status(self) -> int:
        """Status of GET /setup without following redirects. 200 means not set up."""
        try:
            async with self._session().get(
                f"{self.url}/setup", allow_redirects=False
            ) as response:
                return response.status
        except aiohttp.ClientError as e:
            raise CTFdAPIError(f"Failed to connect to CTFd: {e}") from e

    async def _fetch_nonce(self, path: str) -> str:
        try:
            async with self._session().get(f"{self.url}{path}") as response:
                body = await response.text()
        except aiohttp.ClientError as e:
            raise CTFdAPIError(f"Failed to get nonce and session: {e}") from e

        match = NONCE_PATTERN.search(body)
        if not match:
            raise CTFdAPIError(f"No CSRF nonce found on {path}")
        return match.group(1)

    async def refresh_session(self) -> None:
        """Obtain a fresh nonce and session cookie, and reload the access token."""
        self.nonce = await self._fetch_nonce("/setup")
        if self.token_loader is not None:
            self.token = await self.token_loader()
        logger.debug("Refreshed CTFd nonce and session")

    def _headers(self) -> Dict[str, str]:
        headers = {"CSRF-Token": self.nonce}
        if self.token:
            headers["Authorization"] = f"Token {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[aiohttp.FormData] = None,
    ) -> Any:
        """Call the API and unwrap the {"success", "data"} envelope."""
        url = f"{self.api_url}{path}"
        try:
            async with self._session().request(
                method,
                url,
                headers=self._headers(),
                json=json,
                params=params,
                data=data,
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise CTFdAPIError(
                        f"{method} {path} failed: {response.status} - {text}",
                        status=response.status,
                    )
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    # Expired tokens get redirected to the HTML login page
                    raise CTFdAPIError(
                        f"{method} {path} returned invalid JSON: {e}",
                        status=response.status,
                    ) from e
        except aiohttp.ClientError as e:
            raise CTFdAPIError(f"{method} {path} failed: {e}") from e

        if not isinstance(body, dict) or not body.get("success", False):
            raise CTFdAPIError(f"{method} {path} was not successful: {body}")
        return body.get("data")

    # Challenges

    async def list_challenges(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/challenges", params={"view": "admin"}) or []

    async def create_challenge(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/challenges", json=params)

    async def patch_challenge(
        self, challenge_id: int, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._request("PATCH", f"/challenges/{challenge_id}", json=params)

    # Files

    async def list_challenge_files(self, challenge_id: int) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/challenges/{challenge_id}/files") or []

    async def upload_files(
        self, challenge_id: int, files: Sequence[Tuple[str, bytes]]
    ) -> List[Dict[str, Any]]:
        """Attach files to a challenge in a single multipart request."""
        form = aiohttp.FormData()
        for name, content in files:
            form.add_field("file", content, filename=name)
        form.add_field("challenge", str(challenge_id))
        form.add_field("type", "challenge")
        return await self._request("POST", "/files", data=form) or []

    async def delete_file(self, file_id: int) -> None:
        await self._request("DELETE", f"/files/{file_id}")

    # Flags

    async def list_challenge_flags(self, challenge_id: int) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/challenges/{challenge_id}/flags") or []

    async def create_flag(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/flags", json=params)

    async def delete_flag(self, flag_id: int) -> None:
        await self._request("DELETE", f"/flags/{flag_id}")

    # Tags

    async def list_tags(self, challenge_id: int) -> List[Dict[str, Any]]:
        return (
            await self._request("GET", "/tags", params={"challenge_id": challenge_id})
            or []
        )

    async def create_tag(self, challenge_id: int, value: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/tags", json={"challenge": challenge_id, "value": value}
        )

    async def delete_tag(self, tag_id: int) -> None:
        await self._request("DELETE", f"/tags/{tag_id}")

    # Pages

    async def list_pages(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/pages") or []

    async def create_page(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/pages", json=params)

    async def patch_page(self, page_id: int, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/pages/{page_id}", json=params)

    async def delete_page(self, page_id: int) -> None:
        await self._request("DELETE", f"/pages/{page_id}")

    # Administration

    async def create_bracket(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/brackets", json=params)

    async def patch_configs(self, params: Dict[str, Any]) -> None:
        await self._request("PATCH", "/configs", json=params)

    async def create_token(self, expiration: str, description: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/tokens",
            json={"expiration": expiration, "description": description},
        )

    async def submit_setup(
        self,
        fields: Dict[str, str],
        files: Optional[Dict[str, Tuple[str, bytes]]] = None,
    ) -> None:
        """
        Post the first-run setup form.

        CTFd logs the new admin in and rotates the session, so the nonce is
        fetched again afterwards.
        """
        form = aiohttp.FormData()
        for key, value in fields.items():
            form.add_field(key, value)
        for key, (name, content) in (files or {}).items():
            form.add_field(key, content, filename=name)
        form.add_field("nonce", self.nonce)
        form.add_field("_submit", "Submit")

        try:
            async with self._session().post(
                f"{self.url}/setup", data=form, allow_redirects=False
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise CTFdAPIError(
                        f"Setup failed: {response.status} - {text}",
                        status=response.status,
                    )
        except aiohttp.ClientError as e:
            raise CTFdAPIError(f"Setup failed: {e}") from e

        self.nonce = await self._fetch_nonce("/")
        logger.info("CTFd setup form submitted")
