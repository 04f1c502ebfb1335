"""
Setup wizard - first-run configuration of a fresh CTFd instance.

Submits the setup form, then creates brackets, mail and registration
settings, mints an admin access token for the manager and removes the
default pages CTFd ships with.
"""

import base64
import binascii
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from clients.ctfd import CTFdClient
from errors import ClusterAPIError, CTFdAPIError, SetupConflictError, ValidationError
from validation import validate_setup_params

logger = logging.getLogger(__name__)

ACCESS_TOKEN_CONFIGMAP = "ctfd-access-token"
ACCESS_TOKEN_KEY = "access_token"
TOKEN_EXPIRATION = "2222-02-02"
TOKEN_DESCRIPTION = "Auto generated access token for CTFd manager"


class SetupInputFile(BaseModel):
    """An uploaded theme image."""

    name: str = ""
    content: str = Field("", description="Base64 encoded file contents")


class SetupBracket(BaseModel):
    name: str = ""
    description: str = ""
    type: str = Field("", description='"", "users" or "teams"')


class SetupParams(BaseModel):
    """Request model for the CTFd setup wizard."""

    # CTF base info
    ctf_name: str = ""
    ctf_description: str = ""
    start: str = Field("", description="Unix timestamp")
    end: str = Field("", description="Unix timestamp")

    # CTF settings
    user_mode: str = ""
    challenge_visibility: str = ""
    account_visibility: str = ""
    score_visibility: str = ""
    registration_visibility: str = ""
    verify_emails: bool = False
    team_size: Optional[int] = None
    brackets: List[SetupBracket] = Field(default_factory=list)

    # Theme
    ctf_logo: Optional[SetupInputFile] = None
    ctf_banner: Optional[SetupInputFile] = None
    ctf_smallicon: Optional[SetupInputFile] = None
    ctf_theme: str = ""
    theme_color: str = ""

    # Admin user
    name: str = ""
    email: str = ""
    password: str = ""

    # Mail
    mail_server: str = ""
    mail_port: Optional[int] = None
    mail_username: str = ""
    mail_password: str = ""
    mail_ssl: bool = False
    mail_tls: bool = False
    mail_from: str = ""

    registration_code: str = ""


def decode_input_file(data: Optional[SetupInputFile]) -> Optional[Tuple[str, bytes]]:
    """Decode an uploaded image. Empty or undecodable input is dropped."""
    if data is None or not data.name or not data.content:
        return None
    try:
        content = base64.b64decode(data.content, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Error decoding base64 contents of {data.name}: {e}")
        return None
    if not content:
        logger.warning(f"Decoded contents of {data.name} are empty")
        return None
    return data.name, content


def setup_form(params: SetupParams) -> Dict[str, str]:
    fields = {
        "ctf_name": params.ctf_name,
        "ctf_description": params.ctf_description,
        "user_mode": params.user_mode,
        "challenge_visibility": params.challenge_visibility,
        "account_visibility": params.account_visibility,
        "score_visibility": params.score_visibility,
        "registration_visibility": params.registration_visibility,
        "verify_emails": "true" if params.verify_emails else "false",
        "ctf_theme": params.ctf_theme,
        "theme_color": params.theme_color,
        "name": params.name,
        "email": params.email,
        "password": params.password,
        "start": params.start,
        "end": params.end,
    }
    if params.team_size is not None:
        fields["team_size"] = str(params.team_size)
    return fields


def setup_files(params: SetupParams) -> Dict[str, Tuple[str, bytes]]:
    files = {}
    for field_name, data in (
        ("ctf_logo", params.ctf_logo),
        ("ctf_banner", params.ctf_banner),
        ("ctf_small_icon", params.ctf_smallicon),
    ):
        decoded = decode_input_file(data)
        if decoded is not None:
            files[field_name] = decoded
    return files


async def read_access_token(cluster, namespace: str) -> str:
    """The stored CTFd access token, or "" if it has not been created yet."""
    try:
        configmap = await cluster.get_config_map(namespace, ACCESS_TOKEN_CONFIGMAP)
    except ClusterAPIError as e:
        logger.warning(f"Error getting CTFd access token ConfigMap: {e}")
        return ""

    token = configmap.data.get(ACCESS_TOKEN_KEY, "")
    if not token:
        logger.warning("CTFd access token not found in ConfigMap")
    return token


class SetupService:
    """Runs the setup wizard against a fresh CTFd instance."""

    def __init__(self, ctfd_url: str, cluster, namespace: str):
        self.ctfd_url = ctfd_url
        self.cluster = cluster
        self.namespace = namespace

    async def run(self, params: SetupParams) -> None:
        """
        Set up CTFd.

        Raises:
            ValidationError: If the parameters are invalid
            SetupConflictError: If CTFd is not serving its setup page
            CTFdAPIError: If any CTFd call fails
            ClusterAPIError: If the access token cannot be stored
        """
        errors = validate_setup_params(params)
        if errors:
            raise ValidationError("; ".join(errors))

        client = CTFdClient(self.ctfd_url)
        await client.connect()
        try:
            status = await client.setup_status()
            if status != 200:
                raise SetupConflictError(f"CTFd is not ready for setup: {status}")
            logger.info(f"CTFd is ready for setup - got status code {status}")

            await client.refresh_session()
            await client.submit_setup(setup_form(params), setup_files(params))
            logger.info("CTFd setup completed successfully")

            await self._create_brackets(client, params)
            if params.mail_server:
                await self._configure_mail(client, params)
            if params.registration_code:
                await client.patch_configs(
                    {"registration_code": params.registration_code}
                )
                logger.info("CTFd registration code set")

            await self._create_access_token(client)
            await self._delete_pages(client)
        finally:
            await client.close()

    async def _create_brackets(self, client: CTFdClient, params: SetupParams) -> None:
        if not params.brackets:
            logger.info("No brackets to set up")
            return

        for bracket in params.brackets:
            created = await client.create_bracket(
                {
                    "name": bracket.name,
                    "description": bracket.description,
                    "type": bracket.type,
                }
            )
            logger.info(f"CTFd bracket '{bracket.name}' created with ID {created.get('id')}")

    async def _configure_mail(self, client: CTFdClient, params: SetupParams) -> None:
        await client.patch_configs(
            {
                "mail_server": params.mail_server,
                "mail_port": str(params.mail_port or ""),
                "mail_useauth": True,
                "mail_username": params.mail_username,
                "mail_password": params.mail_password,
                "mailfrom_addr": params.mail_from,
                "mail_ssl": params.mail_ssl,
                "mail_tls": params.mail_tls,
            }
        )
        logger.info("CTFd mail settings configured")

    async def _create_access_token(self, client: CTFdClient) -> None:
        token = await client.create_token(TOKEN_EXPIRATION, TOKEN_DESCRIPTION)
        value = (token or {}).get("value")
        if not value:
            raise CTFdAPIError("Error creating CTFd access token: no token returned")

        await self.cluster.update_config_map(
            self.namespace, ACCESS_TOKEN_CONFIGMAP, {ACCESS_TOKEN_KEY: value}
        )
        logger.info("CTFd access token stored in ConfigMap")

    async def _delete_pages(self, client: CTFdClient) -> None:
        for page in await client.list_pages():
            page_id = page.get("id")
            if not page_id:
                continue
            await client.delete_page(page_id)
            logger.info(f"CTFd page {page_id} deleted")
