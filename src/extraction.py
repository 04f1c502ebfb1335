"""
ConfigMap classification and extraction.

Classifies watched ConfigMaps by label and decodes their payload into typed
challenge or page records. No network or store access happens here.
"""

import json
import logging
from typing import Any, Dict, List, Sequence

from jsonschema import Draft7Validator

from errors import DecodeError, MissingFieldError
from models import (
    ChallengeConfig,
    ChallengeRecord,
    ChallengeType,
    ConfigObject,
    FlagSpec,
    ObjectKind,
    PageConfig,
    PageRecord,
)

logger = logging.getLogger(__name__)

CONFIGMAP_LABEL = "challenges.kube-ctf.io/configmap"
CHALLENGE_LABEL_VALUE = "challenge-config"
PAGE_LABEL_VALUE = "page-config"

CHALLENGE_REQUIRED_KEYS = ["name", "path", "repository", "challenge", "description"]
PAGE_REQUIRED_KEYS = ["slug", "name", "path", "repository", "page"]

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

CHALLENGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["slug"],
    "properties": {
        "slug": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "author": {"type": "string"},
        "enabled": {"type": "boolean"},
        "category": {"type": "string"},
        "difficulty": {"type": "string"},
        "tags": {"type": ["array", "null"], "items": {"type": "string"}},
        "type": {"type": "string"},
        "instanced_type": {"type": "string"},
        "instanced_name": {"type": "string"},
        "instanced_subdomains": {
            "type": ["array", "null"],
            "items": {"type": "string"},
        },
        "connection": {"type": "string", "maxLength": 255},
        "flag": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "required": ["flag"],
                "properties": {
                    "flag": {"type": "string"},
                    "case_sensitive": {"type": "boolean"},
                },
            },
        },
        "points": {"type": "integer"},
        "decay": {"type": "integer"},
        "min_points": {"type": "integer"},
        "description_location": {"type": "string"},
        "prerequisites": {"type": ["array", "null"], "items": {"type": "string"}},
    },
}

PAGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "route": {"type": "string"},
        "auth_required": {"type": "boolean"},
        "nonce": {"type": "string"},
        "draft": {"type": "boolean"},
        "format": {"type": "string"},
        "enabled": {"type": "boolean"},
        "content": {"type": "string"},
    },
}


def classify_object(obj: ConfigObject) -> ObjectKind:
    """Classify a ConfigMap by its configmap label."""
    value = obj.labels.get(CONFIGMAP_LABEL)
    if value == CHALLENGE_LABEL_VALUE:
        return ObjectKind.CHALLENGE
    if value == PAGE_LABEL_VALUE:
        return ObjectKind.PAGE
    return ObjectKind.UNKNOWN


def _require_keys(data: Dict[str, str], keys: Sequence[str]) -> None:
    for key in keys:
        if key not in data:
            raise MissingFieldError(key)


def _decode_blob(data: Dict[str, str], key: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Parse a nested JSON blob and check it against its schema."""
    try:
        blob = json.loads(data[key])
    except (TypeError, ValueError) as e:
        raise DecodeError(key, str(e))

    if not isinstance(blob, dict):
        raise DecodeError(key, "expected a JSON object")

    errors: List[str] = []
    for error in Draft7Validator(schema).iter_errors(blob):
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        errors.append(f"{path}: {error.message}")
    if errors:
        raise DecodeError(key, "; ".join(errors))

    return blob


def _strings(values: Any) -> tuple:
    return tuple(values or ())


def extract_challenge_config(obj: ConfigObject) -> ChallengeConfig:
    """
    Decode a challenge ConfigMap.

    Raises:
        MissingFieldError: If a required key is absent
        DecodeError: If the challenge blob is not valid JSON or fails the schema
    """
    _require_keys(obj.data, CHALLENGE_REQUIRED_KEYS)
    blob = _decode_blob(obj.data, "challenge", CHALLENGE_SCHEMA)

    challenge = ChallengeRecord(
        slug=blob["slug"],
        name=blob.get("name", ""),
        category=blob.get("category", ""),
        difficulty=blob.get("difficulty", ""),
        tags=_strings(blob.get("tags")),
        author=blob.get("author", ""),
        points=blob.get("points", 0),
        decay=blob.get("decay", 0),
        min_points=blob.get("min_points", 0),
        enabled=blob.get("enabled", False),
        type=(
            ChallengeType.INSTANCED
            if blob.get("type") == ChallengeType.INSTANCED.value
            else ChallengeType.STANDARD
        ),
        instanced_name=blob.get("instanced_name", ""),
        instanced_type=blob.get("instanced_type", ""),
        instanced_subdomains=_strings(blob.get("instanced_subdomains")),
        connection=blob.get("connection", ""),
        flags=tuple(
            FlagSpec(content=f["flag"], case_sensitive=f.get("case_sensitive", False))
            for f in blob.get("flag") or ()
        ),
        description_location=blob.get("description_location", ""),
        prerequisites=_strings(blob.get("prerequisites")),
    )

    return ChallengeConfig(
        name=obj.data["name"],
        path=obj.data["path"],
        repository=obj.data["repository"],
        description=obj.data["description"],
        challenge=challenge,
        generated_at=obj.data.get("generated_at", ""),
    )


def extract_page_config(obj: ConfigObject) -> PageConfig:
    """
    Decode a page ConfigMap.

    The top-level slug is the page identity. Content is taken from the
    top-level 'content' key when present.
    """
    _require_keys(obj.data, PAGE_REQUIRED_KEYS)
    blob = _decode_blob(obj.data, "page", PAGE_SCHEMA)
    slug = obj.data["slug"]

    page = PageRecord(
        slug=slug,
        title=blob.get("title", ""),
        route=blob.get("route", ""),
        content=obj.data.get("content", blob.get("content", "")),
        format=blob.get("format", "markdown"),
        auth_required=blob.get("auth_required", False),
        nonce=blob.get("nonce", ""),
        draft=blob.get("draft", False),
        enabled=blob.get("enabled", False),
    )

    return PageConfig(
        slug=slug,
        name=obj.data["name"],
        path=obj.data["path"],
        repository=obj.data["repository"],
        page=page,
        generated_at=obj.data.get("generated_at", ""),
    )
