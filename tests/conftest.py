"""Pytest configuration and fixtures."""

import json
from typing import Dict, List, Optional

import pytest
from unittest.mock import AsyncMock, MagicMock

from bootstrap import SetupParams
from errors import ClusterAPIError
from extraction import CONFIGMAP_LABEL
from models import ConfigObject

NAMESPACE = "default"


def make_configmap(
    name: str,
    data: Dict[str, str],
    label: Optional[str] = None,
    namespace: str = NAMESPACE,
) -> ConfigObject:
    labels = {CONFIGMAP_LABEL: label} if label else {}
    return ConfigObject(name=name, namespace=namespace, labels=labels, data=data)


def challenge_data(slug: str = "chal-foo", **overrides) -> Dict[str, str]:
    """ConfigMap data for a challenge, with optional challenge blob overrides."""
    challenge = {
        "slug": slug,
        "name": "Foo",
        "author": "alice",
        "category": "web",
        "difficulty": "easy",
        "tags": ["intro"],
        "points": 100,
        "decay": 10,
        "min_points": 50,
        "enabled": True,
        "flag": [{"flag": "CTF{foo}", "case_sensitive": False}],
    }
    challenge.update(overrides)
    return {
        "name": challenge["name"],
        "path": f"challenges/{slug}",
        "repository": "org/challenges",
        "description": "# Foo\n\nBody",
        "challenge": json.dumps(challenge),
    }


def page_data(slug: str = "rules", **overrides) -> Dict[str, str]:
    page = {
        "title": "Rules",
        "route": "rules",
        "format": "markdown",
        "enabled": True,
    }
    page.update(overrides)
    return {
        "slug": slug,
        "name": "Rules",
        "path": f"pages/{slug}",
        "repository": "org/challenges",
        "page": json.dumps(page),
        "content": "Be nice.",
    }


class FakeStream:
    """Watch stream replaying a fixed list of events."""

    def __init__(self, events: List, error: Optional[Exception] = None):
        self.events = events
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class FakeCluster:
    """In-memory ConfigMap store standing in for the Kubernetes client."""

    def __init__(self, configmaps: Optional[List[ConfigObject]] = None):
        self.configmaps: Dict[tuple, ConfigObject] = {}
        for obj in configmaps or []:
            self.put(obj)
        self.streams: List = []
        self.watch_calls = 0

    def put(self, obj: ConfigObject) -> None:
        self.configmaps[(obj.namespace, obj.name)] = obj

    def data(self, name: str, namespace: str = NAMESPACE) -> Dict[str, str]:
        return self.configmaps[(namespace, name)].data

    async def server_version(self):
        return {"gitVersion": "v1.30.0"}

    async def get_config_map(self, namespace: str, name: str) -> ConfigObject:
        try:
            return self.configmaps[(namespace, name)]
        except KeyError:
            raise ClusterAPIError(f"configmaps {name} not found", status=404)

    async def update_config_map(self, namespace: str, name: str, data: Dict[str, str]):
        current = await self.get_config_map(namespace, name)
        updated = ConfigObject(
            name=name,
            namespace=namespace,
            labels=current.labels,
            data={**current.data, **data},
        )
        self.put(updated)
        return updated

    async def list_config_maps(self, namespace: str, label_selector: Optional[str] = None):
        result = []
        for (ns, _), obj in sorted(self.configmaps.items()):
            if ns != namespace:
                continue
            if label_selector:
                key, _, value = label_selector.partition("=")
                if key not in obj.labels or (value and obj.labels[key] != value):
                    continue
            result.append(obj)
        return result

    async def watch_config_maps(self, namespace, label_selector=None, timeout_seconds=None):
        self.watch_calls += 1
        stream = self.streams.pop(0)
        if isinstance(stream, Exception):
            raise stream
        return stream


@pytest.fixture
def cluster():
    """A cluster holding empty hashset and binding ConfigMaps."""
    return FakeCluster(
        [
            make_configmap("challenge-configmap-hashset", {}),
            make_configmap("ctfd-challenges", {}),
            make_configmap("ctfd-pages", {}),
        ]
    )


@pytest.fixture
def mock_ctfd():
    """Create a mock CTFd client."""
    ctfd = AsyncMock()
    ctfd.refresh_session = AsyncMock()
    ctfd.create_challenge = AsyncMock(return_value={"id": 7})
    ctfd.patch_challenge = AsyncMock(return_value={"id": 7})
    ctfd.list_challenges = AsyncMock(return_value=[])
    ctfd.list_challenge_files = AsyncMock(return_value=[])
    ctfd.list_challenge_flags = AsyncMock(return_value=[])
    ctfd.list_tags = AsyncMock(return_value=[])
    ctfd.create_page = AsyncMock(return_value={"id": 3})
    ctfd.patch_page = AsyncMock(return_value={"id": 3})
    ctfd.list_pages = AsyncMock(return_value=[])
    return ctfd


@pytest.fixture
def mock_github():
    """Create a mock GitHub client with an empty files directory."""
    github = MagicMock()
    github.get_dir_contents = AsyncMock(return_value=[])
    github.get_file_bytes = AsyncMock(return_value=b"")
    return github


def setup_params(**overrides) -> SetupParams:
    """A valid SetupParams model with optional field overrides."""
    fields = {
        "ctf_name": "Example CTF",
        "ctf_description": "A test event",
        "start": "1700000000",
        "end": "1700086400",
        "user_mode": "teams",
        "challenge_visibility": "private",
        "account_visibility": "public",
        "score_visibility": "public",
        "registration_visibility": "public",
        "team_size": 4,
        "ctf_theme": "core",
        "name": "admin",
        "email": "admin@example.com",
        "password": "hunter2",
    }
    fields.update(overrides)
    return SetupParams(**fields)
