"""
Kubernetes API client - ConfigMap reads, writes and watches over aiohttp.

Talks to the API server directly using the pod's service account, or an
explicit URL and token when running outside the cluster.
"""

import logging
import os
import ssl
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from errors import ClusterAPIError, WatchConnectionError
from events import WatchEvent
from models import ConfigObject

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"
SERVICE_ACCOUNT_TOKEN = f"{SERVICE_ACCOUNT_DIR}/token"
SERVICE_ACCOUNT_CA = f"{SERVICE_ACCOUNT_DIR}/ca.crt"

_READ_CHUNK = 64 * 1024


def in_cluster_api_url() -> Optional[str]:
    """API server URL from the in-cluster service environment, if present."""
    host = os.getenv("KUBERNETES_SERVICE_HOST")
    port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
    if not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    return f"https://{host}:{port}"


class WatchStream:
    """
    An open ConfigMap watch.

    Iterating yields WatchEvent objects until the server closes the stream.
    A broken connection mid-stream raises WatchConnectionError.
    """

    def __init__(self, response: aiohttp.ClientResponse):
        self._response = response
        self.closed = False

    def __aiter__(self) -> AsyncIterator[WatchEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[WatchEvent]:
        buffer = b""
        try:
            async for chunk in self._response.content.iter_chunked(_READ_CHUNK):
                buffer += chunk
                while b"\n" in buffer:
                    line, buffer = buffer.split(b"\n", 1)
                    event = WatchEvent.from_line(line)
                    if event is not None:
                        yield event
        except aiohttp.ClientError as e:
            raise WatchConnectionError(f"Watch stream broken: {e}") from e
        finally:
            self.close()

        # Trailing object without a newline
        event = WatchEvent.from_line(buffer)
        if event is not None:
            yield event

    def close(self) -> None:
        if not self.closed:
            self._response.release()
            self.closed = True


class KubernetesClient:
    """Minimal ConfigMap client for the Kubernetes API server."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        ca_file: Optional[str] = None,
        verify_ssl: bool = True,
    ):
        self.api_url = (api_url or in_cluster_api_url() or "").rstrip("/")
        self.token = token
        self.ca_file = ca_file
        self.verify_ssl = verify_ssl
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self):
        """Open the HTTP session, loading service account credentials."""
        if not self.api_url:
            raise ClusterAPIError(
                "No Kubernetes API URL configured and not running in a cluster"
            )

        if self.token is None and os.path.exists(SERVICE_ACCOUNT_TOKEN):
            with open(SERVICE_ACCOUNT_TOKEN) as f:
                self.token = f.read().strip()
        if self.ca_file is None and os.path.exists(SERVICE_ACCOUNT_CA):
            self.ca_file = SERVICE_ACCOUNT_CA

        if not self.verify_ssl:
            ssl_context: Any = False
        else:
            ssl_context = ssl.create_default_context(cafile=self.ca_file)

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self.session = aiohttp.ClientSession(
            headers=headers,
            connector=aiohttp.TCPConnector(ssl=ssl_context),
        )
        logger.info(f"Kubernetes client configured for {self.api_url}")

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("Kubernetes client closed")

    def _config_maps_url(self, namespace: str, name: Optional[str] = None) -> str:
        url = f"{self.api_url}/api/v1/namespaces/{namespace}/configmaps"
        if name:
            url = f"{url}/{name}"
        return url

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if self.session is None:
            raise ClusterAPIError("Kubernetes client is not connected")

        try:
            async with self.session.request(
                method, url, params=params, json=json
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise ClusterAPIError(
                        f"{method} {url} failed: {response.status} - {text}",
                        status=response.status,
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise ClusterAPIError(f"{method} {url} failed: {e}") from e

    async def server_version(self) -> Dict[str, Any]:
        """Return the API server's version info. Used as an access check."""
        return await self._request("GET", f"{self.api_url}/version")

    async def list_config_maps(
        self, namespace: str, label_selector: Optional[str] = None
    ) -> List[ConfigObject]:
        params = {"labelSelector": label_selector} if label_selector else None
        result = await self._request(
            "GET", self._config_maps_url(namespace), params=params
        )
        return [ConfigObject.from_k8s(item) for item in result.get("items") or []]

    async def get_config_map(self, namespace: str, name: str) -> ConfigObject:
        """
        Fetch one ConfigMap.

        Raises:
            ClusterAPIError: With status 404 if it does not exist
        """
        result = await self._request("GET", self._config_maps_url(namespace, name))
        return ConfigObject.from_k8s(result)

    async def update_config_map(
        self, namespace: str, name: str, data: Dict[str, str]
    ) -> ConfigObject:
        """Merge the given keys into a ConfigMap's data and write it back."""
        url = self._config_maps_url(namespace, name)
        current = await self._request("GET", url)
        current["data"] = {**(current.get("data") or {}), **data}
        result = await self._request("PUT", url, json=current)
        return ConfigObject.from_k8s(result)

    async def watch_config_maps(
        self,
        namespace: str,
        label_selector: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
    ) -> WatchStream:
        """
        Open a watch on ConfigMaps in a namespace.

        No resourceVersion is sent, so the server starts with ADDED events for
        every matching object.

        Raises:
            WatchConnectionError: If the watch cannot be opened
        """
        if self.session is None:
            raise WatchConnectionError("Kubernetes client is not connected")

        params = {"watch": "true"}
        if label_selector:
            params["labelSelector"] = label_selector
        if timeout_seconds:
            params["timeoutSeconds"] = str(timeout_seconds)

        try:
            response = await self.session.get(
                self._config_maps_url(namespace),
                params=params,
                timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
            )
        except aiohttp.ClientError as e:
            raise WatchConnectionError(f"Unable to open watch: {e}") from e

        if response.status != 200:
            text = await response.text()
            response.release()
            raise WatchConnectionError(
                f"Unable to open watch: {response.status} - {text}"
            )

        logger.info(f"Watching ConfigMaps in namespace {namespace}")
        return WatchStream(response)
