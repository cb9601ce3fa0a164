"""
Installed plugin records.

One JSON record per platform at plugins/<platform>.json:

    {
        "installed_plugins": {"<id>": {<variables>}},
        "dependent_plugins": {"<id>": {<variables>}}
    }

A plugin is either top-level (installed_plugins) or a dependency
(dependent_plugins), never both. Mutators only change memory; save() is the
single durable write.
"""

import json
from pathlib import Path
from typing import Any

from graft.core.errors import GraftError


class StoreError(GraftError):
    """Raised when a platform record cannot be read or written."""

    pass


class InstalledPluginStore:
    """
    Installed plugin record for one platform.

    Example:
        store = InstalledPluginStore.load(plugins_dir, "android")
        store.add_plugin("com.example.file", {}, is_top_level=False).save()
    """

    def __init__(
        self,
        path: Path,
        platform: str,
        installed_plugins: dict[str, dict[str, Any]] | None = None,
        dependent_plugins: dict[str, dict[str, Any]] | None = None,
        extra: dict[str, Any] | None = None,
    ):
        self.path = Path(path)
        self.platform = platform
        self.installed_plugins = installed_plugins or {}
        self.dependent_plugins = dependent_plugins or {}
        self._extra = extra or {}

    @classmethod
    def load(cls, plugins_dir: Path, platform: str) -> "InstalledPluginStore":
        """
        Load the record for a platform, or an empty one if none exists.

        Raises:
            StoreError: If the record exists but cannot be parsed
        """
        path = Path(plugins_dir) / f"{platform}.json"
        if not path.exists():
            return cls(path, platform)

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read plugin record {path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreError(f"Plugin record {path} must be a JSON object")

        installed = data.pop("installed_plugins", None) or {}
        dependent = data.pop("dependent_plugins", None) or {}
        return cls(path, platform, dict(installed), dict(dependent), data)

    def is_plugin_installed(self, plugin_id: str) -> bool:
        """Return True if the plugin is recorded, top-level or dependent."""
        return plugin_id in self.installed_plugins or plugin_id in self.dependent_plugins

    def is_plugin_top_level(self, plugin_id: str) -> bool:
        return plugin_id in self.installed_plugins

    def is_plugin_dependent(self, plugin_id: str) -> bool:
        return plugin_id in self.dependent_plugins

    def add_plugin(
        self, plugin_id: str, variables: dict[str, Any] | None, is_top_level: bool
    ) -> "InstalledPluginStore":
        """Record a plugin, moving it between maps if needed."""
        target, other = self._maps(is_top_level)
        other.pop(plugin_id, None)
        target[plugin_id] = dict(variables or {})
        return self

    def remove_plugin(self, plugin_id: str, is_top_level: bool) -> "InstalledPluginStore":
        """
        Drop a plugin from the record.

        If the plugin is not in the indicated map it is removed from the other
        one, so a removed plugin never lingers.
        """
        target, other = self._maps(is_top_level)
        if target.pop(plugin_id, None) is None:
            other.pop(plugin_id, None)
        return self

    def make_top_level(self, plugin_id: str) -> "InstalledPluginStore":
        """Promote a dependent plugin to top-level, keeping its variables."""
        if plugin_id in self.dependent_plugins:
            self.installed_plugins[plugin_id] = self.dependent_plugins.pop(plugin_id)
        return self

    def get_variables(self, plugin_id: str) -> dict[str, Any]:
        if plugin_id in self.installed_plugins:
            return dict(self.installed_plugins[plugin_id])
        return dict(self.dependent_plugins.get(plugin_id, {}))

    def top_level_ids(self) -> list[str]:
        return list(self.installed_plugins)

    def all_ids(self) -> list[str]:
        return list(self.installed_plugins) + list(self.dependent_plugins)

    def _maps(self, is_top_level: bool) -> tuple[dict[str, Any], dict[str, Any]]:
        if is_top_level:
            return self.installed_plugins, self.dependent_plugins
        return self.dependent_plugins, self.installed_plugins

    def to_dict(self) -> dict[str, Any]:
        data = dict(self._extra)
        data["installed_plugins"] = self.installed_plugins
        data["dependent_plugins"] = self.dependent_plugins
        return data

    def save(self) -> "InstalledPluginStore":
        """
        Write the record to disk.

        Raises:
            StoreError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=4)
        except OSError as e:
            raise StoreError(f"Failed to write plugin record {self.path}: {e}") from e
        return self


def platforms_recording(plugins_dir: Path, platforms: list[str], plugin_id: str) -> list[str]:
    """Return the platforms whose record lists a plugin."""
    return [
        platform
        for platform in platforms
        if InstalledPluginStore.load(plugins_dir, platform).is_plugin_installed(plugin_id)
    ]
