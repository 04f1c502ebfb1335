"""
Remote entity bindings and the display-name mapping table.

Bindings map a slug to the id CTFd assigned when the entity was created. They
live in ConfigMaps so they survive restarts.
"""

import json
import logging
from typing import Dict

from errors import ClusterAPIError
from models import MappingTable

logger = logging.getLogger(__name__)

CHALLENGE_BINDINGS_CONFIGMAP = "ctfd-challenges"
PAGE_BINDINGS_CONFIGMAP = "ctfd-pages"
MAPPING_CONFIGMAP = "mapping-map"

# Remote id meaning "not present in CTFd"
UNBOUND = 0


class BindingStore:
    """slug -> remote id, persisted in one ConfigMap as decimal strings."""

    def __init__(self, cluster, namespace: str, configmap_name: str):
        self.cluster = cluster
        self.namespace = namespace
        self.configmap_name = configmap_name

    async def list_bindings(self) -> Dict[str, int]:
        """All bindings, including unbound entries."""
        configmap = await self.cluster.get_config_map(
            self.namespace, self.configmap_name
        )
        return {slug: _parse_id(value) for slug, value in configmap.data.items()}

    async def get_binding(self, slug: str) -> int:
        """Remote id for a slug, or UNBOUND."""
        configmap = await self.cluster.get_config_map(
            self.namespace, self.configmap_name
        )
        return _parse_id(configmap.data.get(slug, ""))

    async def set_binding(self, slug: str, remote_id: int) -> None:
        await self.cluster.update_config_map(
            self.namespace, self.configmap_name, {slug: str(remote_id)}
        )
        logger.debug(f"Bound {slug} -> {remote_id} in {self.configmap_name}")

    async def clear_binding(self, slug: str) -> None:
        await self.set_binding(slug, UNBOUND)


def _parse_id(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return UNBOUND


def _json_map(data: Dict[str, str], key: str) -> Dict[str, str]:
    raw = data.get(key)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring malformed '{key}' in {MAPPING_CONFIGMAP}: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Ignoring non-object '{key}' in {MAPPING_CONFIGMAP}")
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


async def load_mapping_table(cluster, namespace: str) -> MappingTable:
    """
    Load the category/difficulty mapping table.

    A missing ConfigMap yields an empty table. Other read failures propagate.
    """
    try:
        configmap = await cluster.get_config_map(namespace, MAPPING_CONFIGMAP)
    except ClusterAPIError as e:
        if e.not_found:
            logger.debug(f"No {MAPPING_CONFIGMAP} ConfigMap, using raw names")
            return MappingTable()
        raise

    return MappingTable(
        categories=_json_map(configmap.data, "categories"),
        difficulties=_json_map(configmap.data, "difficulties"),
        difficulty_categories=_json_map(configmap.data, "difficulty-categories"),
    )
