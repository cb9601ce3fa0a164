"""
Platform Registry.

Maps platform names to adapter factories.

Key features:
- Thread-safe registration
- Fallback to GenericPlatformAdapter for known platforms without an adapter
- Discovery of the platforms installed in a project
"""

import threading
from collections.abc import Callable
from pathlib import Path

from graft.core.errors import UnsupportedPlatformError
from graft.core.events import EventBus

KNOWN_PLATFORMS = ("android", "ios", "browser", "electron", "windows", "osx")

AdapterFactory = Callable[[str, Path, EventBus], "PlatformAdapter"]  # noqa: F821


class PlatformRegistry:
    """
    Registry of platform adapter factories.

    A factory takes (platform, project_root, events) and returns an adapter.
    """

    def __init__(self):
        self._factories: dict[str, AdapterFactory] = {}
        self._lock = threading.Lock()

    def register(self, platform: str, factory: AdapterFactory) -> None:
        """
        Register an adapter factory.

        Raises:
            UnsupportedPlatformError: If the platform already has a factory
        """
        with self._lock:
            if platform in self._factories:
                raise UnsupportedPlatformError(f"Platform adapter already registered: {platform}")
            self._factories[platform] = factory

    def unregister(self, platform: str) -> None:
        with self._lock:
            if platform not in self._factories:
                raise UnsupportedPlatformError(f"Platform adapter not registered: {platform}")
            del self._factories[platform]

    def is_registered(self, platform: str) -> bool:
        with self._lock:
            return platform in self._factories

    def is_supported(self, platform: str) -> bool:
        """Return True if the platform has an adapter or a generic fallback."""
        return platform in KNOWN_PLATFORMS or self.is_registered(platform)

    def list_platforms(self) -> list[str]:
        with self._lock:
            registered = set(self._factories)
        return sorted(registered | set(KNOWN_PLATFORMS))

    def get_adapter(
        self, platform: str, project_root: Path, events: EventBus | None = None
    ) -> "PlatformAdapter":  # noqa: F821
        """
        Create the adapter for a platform.

        Raises:
            UnsupportedPlatformError: If the platform is unknown
        """
        from graft.platforms.generic import GenericPlatformAdapter

        events = events or EventBus()
        with self._lock:
            factory = self._factories.get(platform)
        if factory is not None:
            return factory(platform, Path(project_root), events)
        if platform in KNOWN_PLATFORMS:
            return GenericPlatformAdapter(platform, Path(project_root), events)
        raise UnsupportedPlatformError(f"Platform {platform} is not supported.")


def list_installed_platforms(project_root: Path) -> list[str]:
    """Return the platforms installed in a project (subdirectories of platforms/)."""
    platforms_dir = Path(project_root) / "platforms"
    if not platforms_dir.is_dir():
        return []
    return sorted(
        p.name for p in platforms_dir.iterdir() if p.is_dir() and not p.name.startswith(".")
    )
