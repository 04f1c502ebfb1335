"""Unit tests for health.py - service health flag and probes."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from errors import ClusterAPIError
from health import HealthState

from conftest import NAMESPACE


class TestHealthState:
    """Tests for the health flag."""

    def test_starts_healthy(self):
        assert HealthState().is_healthy() is True

    def test_toggle(self):
        health = HealthState()
        health.set_unhealthy()
        assert health.is_healthy() is False
        health.set_healthy()
        assert health.is_healthy() is True


@pytest.mark.asyncio
class TestHealthCheck:
    """Tests for HealthState.check."""

    async def test_healthy(self, cluster):
        assert await HealthState().check(cluster, NAMESPACE) is True

    async def test_flag_cleared(self, cluster):
        health = HealthState()
        health.set_unhealthy()
        assert await health.check(cluster, NAMESPACE) is False

    async def test_cluster_unreachable(self):
        cluster = MagicMock()
        cluster.server_version = AsyncMock(side_effect=ClusterAPIError("refused"))
        assert await HealthState().check(cluster, NAMESPACE) is False

    async def test_configmap_listing_fails(self):
        cluster = MagicMock()
        cluster.server_version = AsyncMock(return_value={})
        cluster.list_config_maps = AsyncMock(side_effect=ClusterAPIError("forbidden", 403))
        assert await HealthState().check(cluster, NAMESPACE) is False
