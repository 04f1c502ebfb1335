"""
Domain records decoded from ConfigMaps.

ConfigMaps are classified and decoded into this closed set of typed records
before any sync logic runs.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

FILES_DIR = "k8s/files"


class ObjectKind(Enum):
    """What a watched ConfigMap represents."""

    CHALLENGE = "challenge"
    PAGE = "page"
    UNKNOWN = "unknown"


class ChallengeType(Enum):
    """Delivery mode of a challenge."""

    STANDARD = "standard"
    INSTANCED = "instanced"


@dataclass(frozen=True)
class ConfigObject:
    """A namespaced, labeled key/value record from the cluster."""

    name: str
    namespace: str = "default"
    labels: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None

    @classmethod
    def from_k8s(cls, raw: Dict[str, Any]) -> "ConfigObject":
        """Build from a Kubernetes ConfigMap JSON object."""
        metadata = raw.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "default"),
            labels=dict(metadata.get("labels") or {}),
            data=dict(raw.get("data") or {}),
            resource_version=metadata.get("resourceVersion"),
        )


@dataclass(frozen=True)
class FlagSpec:
    content: str
    case_sensitive: bool = False


@dataclass(frozen=True)
class ChallengeRecord:
    """A decoded challenge definition. The slug is its stable identity."""

    slug: str
    name: str
    category: str = ""
    difficulty: str = ""
    tags: Tuple[str, ...] = ()
    author: str = ""
    points: int = 0
    decay: int = 0
    min_points: int = 0
    enabled: bool = False
    type: ChallengeType = ChallengeType.STANDARD
    instanced_name: str = ""
    instanced_type: str = ""
    instanced_subdomains: Tuple[str, ...] = ()
    connection: str = ""
    flags: Tuple[FlagSpec, ...] = ()
    description_location: str = ""
    prerequisites: Tuple[str, ...] = ()

    @property
    def instanced(self) -> bool:
        return self.type is ChallengeType.INSTANCED


@dataclass(frozen=True)
class ChallengeConfig:
    """Challenge ConfigMap contents: source location plus the decoded record."""

    name: str
    path: str
    repository: str
    description: str
    challenge: ChallengeRecord
    generated_at: str = ""

    @property
    def files_dir_path(self) -> str:
        return f"{self.path}/{FILES_DIR}"

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["challenge"]["type"] = self.challenge.type.value
        return result


@dataclass(frozen=True)
class PageRecord:
    slug: str
    title: str = ""
    route: str = ""
    content: str = ""
    format: str = "markdown"
    auth_required: bool = False
    nonce: str = ""
    draft: bool = False
    enabled: bool = False


@dataclass(frozen=True)
class PageConfig:
    """Page ConfigMap contents."""

    slug: str
    name: str
    path: str
    repository: str
    page: PageRecord
    generated_at: str = ""


@dataclass(frozen=True)
class MappingTable:
    """
    Display-name lookup for category and difficulty tokens.

    Missing entries fall back to the raw token.
    """

    categories: Dict[str, str] = field(default_factory=dict)
    difficulties: Dict[str, str] = field(default_factory=dict)
    difficulty_categories: Dict[str, str] = field(default_factory=dict)

    def category_name(self, category: str, difficulty: str = "") -> str:
        if not category:
            return "Uncategorized"
        # A difficulty-specific category wins over the plain category mapping
        if difficulty in self.difficulty_categories:
            return self.difficulty_categories[difficulty]
        return self.categories.get(category, category)

    def difficulty_name(self, difficulty: str) -> str:
        if not difficulty:
            return "Unknown Difficulty"
        return self.difficulties.get(difficulty, difficulty)
