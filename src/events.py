"""
Watch Events - ConfigMap lifecycle events from the Kubernetes watch API.

The API server streams one JSON object per line, each carrying an event type
and the affected object.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from models import ConfigObject

logger = logging.getLogger(__name__)


class WatchEventType(Enum):
    """Types of watch events sent by the API server."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


@dataclass
class WatchEvent:
    """A single decoded watch event."""

    event_type: WatchEventType
    obj: Optional[ConfigObject]
    raw: Dict[str, Any] = field(default_factory=dict)
    received_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def object_name(self) -> str:
        return self.obj.name if self.obj else ""

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "WatchEvent":
        """
        Create an event from a decoded watch line.

        ERROR events carry a Status object rather than a ConfigMap, so no
        ConfigObject is built for them.
        """
        try:
            event_type = WatchEventType(raw.get("type", ""))
        except ValueError:
            event_type = WatchEventType.UNKNOWN

        payload = raw.get("object") or {}
        obj = None
        if event_type is not WatchEventType.ERROR and payload.get("kind", "ConfigMap") == "ConfigMap":
            obj = ConfigObject.from_k8s(payload)

        return cls(event_type=event_type, obj=obj, raw=raw)

    @classmethod
    def from_line(cls, line: bytes) -> Optional["WatchEvent"]:
        """Decode one line of the watch stream. Blank lines yield None."""
        line = line.strip()
        if not line:
            return None
        try:
            raw = json.loads(line)
        except ValueError as e:
            logger.warning(f"Skipping undecodable watch line: {e}")
            return None
        return cls.from_raw(raw)
