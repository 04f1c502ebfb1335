"""
Fingerprint Store - content hashes of processed ConfigMaps.

Digests are persisted in a single hashset ConfigMap keyed by object name, so
a restarted service skips objects whose contents it has already synced.
"""

import hashlib
import json
import logging
from typing import Any, Dict

from errors import ClusterAPIError
from models import ConfigObject

logger = logging.getLogger(__name__)

HASHSET_CONFIGMAP = "challenge-configmap-hashset"


# Characters Go's json.Marshal escapes inside strings
_GO_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _marshal(payload: Dict[str, Any]) -> str:
    """Compact JSON with sorted keys, as Go's json.Marshal renders a map."""
    encoded = json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    for char, escape in _GO_ESCAPES.items():
        encoded = encoded.replace(char, escape)
    return encoded


def compute_fingerprint(payload: Dict[str, Any]) -> str:
    """SHA-256 hex digest of a payload, independent of key order."""
    return hashlib.sha256(_marshal(payload).encode()).hexdigest()


class FingerprintStore:
    """Reads and writes fingerprints in the hashset ConfigMap."""

    def __init__(self, cluster, configmap_name: str = HASHSET_CONFIGMAP):
        self.cluster = cluster
        self.configmap_name = configmap_name

    async def get_stored_fingerprint(self, namespace: str, name: str) -> str:
        """
        Return the stored digest for an object, or "" if never processed.

        Raises:
            ClusterAPIError: If the hashset cannot be read
        """
        hashset = await self.cluster.get_config_map(namespace, self.configmap_name)
        return hashset.data.get(name, "")

    async def set_stored_fingerprint(
        self, namespace: str, name: str, fingerprint: str
    ) -> None:
        await self.cluster.update_config_map(
            namespace, self.configmap_name, {name: fingerprint}
        )
        logger.debug(f"Stored fingerprint for {namespace}/{name}")

    async def clear_stored_fingerprint(self, namespace: str, name: str) -> None:
        await self.set_stored_fingerprint(namespace, name, "")

    async def has_been_deployed(self, obj: ConfigObject) -> bool:
        """
        True when the object's current contents match the stored digest.

        A failed read counts as changed, so the object gets processed.
        """
        try:
            stored = await self.get_stored_fingerprint(obj.namespace, obj.name)
        except ClusterAPIError as e:
            logger.warning(f"Unable to read fingerprint for {obj.name}: {e}")
            return False

        return bool(stored) and stored == compute_fingerprint(obj.data)
