"""
Shared fixtures for the graft test suite.
"""

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from graft.core.events import EventBus
from graft.platforms.base import PlatformInfo
from graft.platforms.registry import PlatformRegistry


class EventRecorder:
    """
    Collects every event emitted on a bus.

    Example:
        recorder = EventRecorder(bus)
        ...
        assert recorder.messages("warn")
    """

    def __init__(self, bus: EventBus):
        self.events: list[tuple[str, Any]] = []
        bus.on_re("*", self._record)

    def _record(self, src: str, payload: Any) -> None:
        self.events.append((src, payload))

    def messages(self, event_id: str) -> list[Any]:
        """Return payloads of one event type, in emission order."""
        return [payload for src, payload in self.events if src == event_id]


@pytest.fixture
def make_plugin():
    """Return a function writing a plugin directory with a plugin.json."""

    def _make(root: Path, plugin_id: str, version: str = "1.0.0", **fields) -> Path:
        plugin_dir = Path(root) / plugin_id
        plugin_dir.mkdir(parents=True, exist_ok=True)
        data = {"id": plugin_id, "version": version, **fields}
        (plugin_dir / "plugin.json").write_text(json.dumps(data), encoding="utf-8")
        return plugin_dir

    return _make


@pytest.fixture
def project(tmp_path) -> Path:
    """A project with an android platform and an empty plugins directory."""
    root = tmp_path / "app"
    (root / "platforms" / "android").mkdir(parents=True)
    (root / "plugins").mkdir()
    (root / "graft.toml").write_text('[project]\nname = "app"\nversion = "1.0.0"\n')
    return root


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events) -> EventRecorder:
    return EventRecorder(events)


@pytest.fixture
def adapter():
    """A mocked platform adapter shared by every get_adapter call."""
    mock = MagicMock()
    mock.add_plugin = AsyncMock(return_value=True)
    mock.remove_plugin = AsyncMock(return_value=True)
    mock.prepare = AsyncMock(return_value=None)
    mock.build = AsyncMock(return_value=None)
    mock.run = AsyncMock(return_value=None)
    mock.get_platform_info = MagicMock(
        return_value=PlatformInfo(name="android", root=Path("."), version=None)
    )
    return mock


@pytest.fixture
def platforms(adapter) -> PlatformRegistry:
    registry = PlatformRegistry()
    registry.register("android", lambda platform, root, events: adapter)
    return registry
