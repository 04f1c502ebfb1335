"""
GitHub contents client - fetches challenge assets from a repository.
"""

import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from errors import GitHubAPIError

logger = logging.getLogger(__name__)

# Files above this size have no inline content and are downloaded instead
LARGE_FILE_SIZE = 1024 * 1024
_DOWNLOAD_CHUNK = 64 * 1024


def split_repo(repo: str) -> Tuple[str, str]:
    """Split 'owner/name' into its parts."""
    parts = repo.split("/")
    if len(parts) != 2 or not all(parts):
        raise GitHubAPIError(f"Invalid repository '{repo}', expected owner/name")
    return parts[0], parts[1]


class GitHubClient:
    """Reads directory listings and file contents through the contents API."""

    def __init__(
        self,
        repo: str,
        branch: str = "main",
        token: Optional[str] = None,
        user: Optional[str] = None,
        api_base_url: str = "https://api.github.com",
    ):
        self.repo = repo
        self.branch = branch
        self.token = token
        self.user = user
        self.api_base_url = api_base_url.rstrip("/")

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _contents_url(self, path: str) -> str:
        owner, name = split_repo(self.repo)
        return f"{self.api_base_url}/repos/{owner}/{name}/contents/{path.strip('/')}"

    async def check_access(self) -> bool:
        """Check the token works by looking up the configured user."""
        url = f"{self.api_base_url}/users/{self.user}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, headers=self._get_headers()) as response:
                    if response.status == 200:
                        return True
                    logger.warning(
                        f"Error checking access to GitHub API: {response.status}"
                    )
                    return False
        except aiohttp.ClientError as e:
            logger.warning(f"Error checking access to GitHub API: {e}")
            return False

    async def _get_contents(self, path: str) -> Any:
        url = self._contents_url(path)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url, headers=self._get_headers(), params={"ref": self.branch}
                ) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise GitHubAPIError(
                            f"Error getting contents of {path}: "
                            f"{response.status} - {text}",
                            status=response.status,
                        )
                    return await response.json()
        except aiohttp.ClientError as e:
            raise GitHubAPIError(f"Error getting contents of {path}: {e}") from e

    async def get_dir_contents(self, path: str) -> List[Dict[str, Any]]:
        """
        List a directory.

        Raises:
            GitHubAPIError: With status 404 if the directory does not exist
        """
        contents = await self._get_contents(path)
        if not isinstance(contents, list):
            raise GitHubAPIError(f"{path} is not a directory")
        return contents

    async def get_file_bytes(self, path: str) -> bytes:
        """Return a file's contents, streaming files above 1 MiB."""
        meta = await self._get_contents(path)
        if not isinstance(meta, dict) or meta.get("type") != "file":
            raise GitHubAPIError(f"{path} is not a file")

        if meta.get("size", 0) > LARGE_FILE_SIZE:
            return await self._download(path, meta.get("download_url"))

        try:
            return base64.b64decode(meta.get("content") or "")
        except ValueError as e:
            raise GitHubAPIError(f"Error decoding file content of {path}: {e}") from e

    async def _download(self, path: str, download_url: Optional[str]) -> bytes:
        if not download_url:
            raise GitHubAPIError(f"No download URL for {path}")

        logger.debug(f"Downloading large file {path}")
        chunks = []
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    download_url, headers=self._get_headers()
                ) as response:
                    if response.status != 200:
                        raise GitHubAPIError(
                            f"Error downloading {path}: {response.status}",
                            status=response.status,
                        )
                    async for chunk in response.content.iter_chunked(_DOWNLOAD_CHUNK):
                        chunks.append(chunk)
        except aiohttp.ClientError as e:
            raise GitHubAPIError(f"Error downloading {path}: {e}") from e
        return b"".join(chunks)
