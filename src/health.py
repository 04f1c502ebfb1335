"""
Service health flag.

The flag is cleared when the ConfigMap watch drops and set again once it is
re-established. Health checks also probe the cluster directly.
"""

import logging

from errors import ClusterAPIError

logger = logging.getLogger(__name__)


class HealthState:
    """Process-wide healthy/unhealthy flag."""

    def __init__(self, healthy: bool = True):
        self._healthy = healthy

    def set_unhealthy(self) -> None:
        if self._healthy:
            logger.warning("Service marked as unhealthy")
        self._healthy = False

    def set_healthy(self) -> None:
        if not self._healthy:
            logger.info("Service marked as healthy")
        self._healthy = True

    def is_healthy(self) -> bool:
        return self._healthy

    async def check(self, cluster, namespace: str) -> bool:
        """Cluster access, ConfigMap listing and the flag must all be good."""
        try:
            await cluster.server_version()
            await cluster.list_config_maps(namespace)
        except ClusterAPIError as e:
            logger.warning(f"Health check failed: {e}")
            return False

        if not self._healthy:
            logger.info("Service deemed unhealthy, watch is not connected")
            return False
        return True
