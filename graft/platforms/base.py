"""
Platform Adapter Interface.

Every target platform is driven through a PlatformAdapter. The install and
uninstall engines only call add_plugin/remove_plugin; the plugin manager
calls prepare once after a batch of changes.

A falsy result from add_plugin/remove_plugin means the caller must run
prepare; a truthy result means the adapter already did equivalent work.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from graft.core.events import EventBus
from graft.plugin.descriptor import PluginDescriptor


@dataclass
class PlatformInfo:
    """
    Information about an installed platform.

    Attributes:
        name: Platform name (e.g. "android")
        root: Platform directory inside the project
        version: Platform version, None if it cannot be determined
        metadata: Adapter-specific details
    """

    name: str
    root: Path
    version: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PluginOptions:
    """
    Options passed to add_plugin/remove_plugin.

    Attributes:
        variables: Resolved plugin variables
        plugins_dir: Project plugins directory
        is_top_level: Whether the plugin was explicitly requested
        link: Link plugin files instead of copying
        force: Operation was forced
    """

    variables: dict[str, Any] = field(default_factory=dict)
    plugins_dir: Path | None = None
    is_top_level: bool = True
    link: bool = False
    force: bool = False


class PlatformAdapter(ABC):
    """
    Base class for platform adapters.

    Args:
        platform: Platform name
        project_root: Project root directory
        events: Operation event bus
    """

    def __init__(self, platform: str, project_root: Path, events: EventBus | None = None):
        self.platform = platform
        self.project_root = Path(project_root)
        self.events = events or EventBus()

    @property
    def platform_root(self) -> Path:
        return self.project_root / "platforms" / self.platform

    @abstractmethod
    async def add_plugin(self, descriptor: PluginDescriptor, options: PluginOptions) -> Any:
        """Install a plugin into the native project."""

    @abstractmethod
    async def remove_plugin(self, descriptor: PluginDescriptor, options: PluginOptions) -> Any:
        """Remove a plugin from the native project."""

    @abstractmethod
    async def prepare(self, options: dict[str, Any] | None = None) -> None:
        """Bring the native project up to date with the project sources."""

    @abstractmethod
    async def build(self, options: dict[str, Any] | None = None) -> None:
        """Build the native project."""

    @abstractmethod
    async def run(self, options: dict[str, Any] | None = None) -> None:
        """Run the native project."""

    @abstractmethod
    def get_platform_info(self) -> PlatformInfo:
        """Describe the installed platform."""
