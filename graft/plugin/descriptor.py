"""
Plugin Descriptor System.

This module provides parsing and validation for plugin.json descriptors.

Key features:
- Structural validation of plugin.json
- Per-platform merging of preferences, dependencies and info messages
- Engine constraint declarations
- A per-operation cache of parsed descriptors (DescriptorProvider)
"""

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import nodesemver

from graft.core.errors import GraftError

DESCRIPTOR_FILE = "plugin.json"

_ID_RE = re.compile(r"^(@[a-z0-9][a-z0-9._-]*/)?[A-Za-z0-9][A-Za-z0-9._-]*$")


class DescriptorError(GraftError):
    """Raised when a descriptor cannot be read or parsed."""

    pass


class ValidationError(DescriptorError):
    """Raised when descriptor validation fails."""

    pass


@dataclass(frozen=True)
class PluginDependency:
    """
    A dependency declared by a plugin.

    Attributes:
        id: Dependency plugin id
        version: Version range, empty when unconstrained
        url: Source URL or path ("." means the parent's own repository)
        subdir: Subdirectory within the source holding the dependency
        commit: Git ref to check out
    """

    id: str
    version: str = ""
    url: str | None = None
    subdir: str | None = None
    commit: str | None = None


@dataclass(frozen=True)
class EngineConstraint:
    """
    A named version requirement.

    Attributes:
        name: Engine name (e.g. "graft", "graft-android", "android-sdk")
        version: Required version range
        platform: "|"-separated platform list or "*"
        script_src: Version probe script relative to the plugin directory
    """

    name: str
    version: str
    platform: str | None = None
    script_src: str | None = None


@dataclass(frozen=True)
class PluginDescriptor:
    """
    A parsed plugin.json.

    Attributes:
        id: Plugin id
        version: Plugin version
        dir: Directory the descriptor was loaded from
        name: Display name
        description: Plugin description
        preferences: Common preferences (name -> default value or None)
        dependencies: Common dependencies
        engines: Declared engine constraints
        info: Common post-install notices
        platforms: Raw per-platform sections
        raw: Raw descriptor data
    """

    id: str
    version: str
    dir: Path
    name: str = ""
    description: str = ""
    preferences: dict[str, Any] = field(default_factory=dict)
    dependencies: tuple[PluginDependency, ...] = ()
    engines: tuple[EngineConstraint, ...] = ()
    info: tuple[str, ...] = ()
    platforms: dict[str, dict[str, Any]] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    def get_preferences(self, platform: str | None = None) -> dict[str, Any]:
        """Return preferences, with the platform section overriding by name."""
        merged = dict(self.preferences)
        if platform and platform in self.platforms:
            merged.update(self.platforms[platform].get("preferences", {}))
        return merged

    def get_dependencies(self, platform: str | None = None) -> list[PluginDependency]:
        """Return common dependencies followed by the platform's own."""
        deps = list(self.dependencies)
        if platform and platform in self.platforms:
            deps.extend(
                _parse_dependency(d) for d in self.platforms[platform].get("dependencies", [])
            )
        return deps

    def get_info(self, platform: str | None = None) -> list[str]:
        """Return common info messages followed by the platform's own."""
        info = list(self.info)
        if platform and platform in self.platforms:
            info.extend(self.platforms[platform].get("info", []))
        return info

    def get_engines(self) -> list[EngineConstraint]:
        return list(self.engines)

    def all_dependencies(self) -> list[PluginDependency]:
        """Return dependencies declared in any section."""
        deps = list(self.dependencies)
        for section in self.platforms.values():
            deps.extend(_parse_dependency(d) for d in section.get("dependencies", []))
        return deps


def _parse_dependency(data: dict[str, Any]) -> PluginDependency:
    return PluginDependency(
        id=data["id"],
        version=data.get("version") or "",
        url=data.get("url"),
        subdir=data.get("subdir"),
        commit=data.get("commit"),
    )


def _parse_engine(data: dict[str, Any]) -> EngineConstraint:
    return EngineConstraint(
        name=data["name"],
        version=data.get("version") or "",
        platform=data.get("platform"),
        script_src=data.get("scriptSrc"),
    )


def _require_list_of_dicts(data: dict[str, Any], key: str, where: str) -> None:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ValidationError(f"'{key}' {where}must be a list of objects")


def _validate_section(data: dict[str, Any], where: str = "") -> None:
    preferences = data.get("preferences", {})
    if not isinstance(preferences, dict):
        raise ValidationError(f"'preferences' {where}must be an object")

    _require_list_of_dicts(data, "dependencies", where)
    for dep in data.get("dependencies", []):
        if not isinstance(dep.get("id"), str) or not dep["id"]:
            raise ValidationError(f"Dependency {where}is missing an 'id'")

    info = data.get("info", [])
    if not isinstance(info, list) or not all(isinstance(i, str) for i in info):
        raise ValidationError(f"'info' {where}must be a list of strings")


def validate_descriptor_structure(data: Any) -> None:
    """
    Validate descriptor structure and required fields.

    Args:
        data: Parsed descriptor data

    Raises:
        ValidationError: If the descriptor structure is invalid
    """
    if not isinstance(data, dict):
        raise ValidationError("Descriptor must be a JSON object")

    for required in ("id", "version"):
        if required not in data:
            raise ValidationError(f"Missing required field: {required}")

    plugin_id = data["id"]
    if not isinstance(plugin_id, str) or not _ID_RE.match(plugin_id):
        raise ValidationError(f"Invalid plugin id: {plugin_id}")

    version = data["version"]
    if not isinstance(version, str) or nodesemver.parse(version, loose=True) is None:
        raise ValidationError(
            f"Invalid version format: {version}. Expected semantic versioning (e.g., 1.0.0)"
        )

    _validate_section(data)

    _require_list_of_dicts(data, "engines", "")
    for engine in data.get("engines", []):
        if not isinstance(engine.get("name"), str) or not engine["name"]:
            raise ValidationError("Engine is missing a 'name'")

    platforms = data.get("platforms", {})
    if not isinstance(platforms, dict):
        raise ValidationError("'platforms' must be an object")
    for name, section in platforms.items():
        if not isinstance(section, dict):
            raise ValidationError(f"Platform section '{name}' must be an object")
        _validate_section(section, f"for platform '{name}' ")


def parse_descriptor(plugin_dir: Path) -> PluginDescriptor:
    """
    Parse the plugin.json in a plugin directory.

    Args:
        plugin_dir: Plugin directory

    Returns:
        PluginDescriptor object

    Raises:
        DescriptorError: If the file cannot be read or parsed
        ValidationError: If the descriptor is invalid
    """
    plugin_dir = Path(plugin_dir)
    path = plugin_dir / DESCRIPTOR_FILE
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise DescriptorError(f"Descriptor file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise DescriptorError(f"Failed to parse descriptor JSON in {path}: {e}") from e
    except OSError as e:
        raise DescriptorError(f"Failed to read descriptor file {path}: {e}") from e

    validate_descriptor_structure(data)

    return PluginDescriptor(
        id=data["id"],
        version=data["version"],
        dir=plugin_dir,
        name=data.get("name", ""),
        description=data.get("description", ""),
        preferences=dict(data.get("preferences", {})),
        dependencies=tuple(_parse_dependency(d) for d in data.get("dependencies", [])),
        engines=tuple(_parse_engine(e) for e in data.get("engines", [])),
        info=tuple(data.get("info", [])),
        platforms=dict(data.get("platforms", {})),
        raw=data,
    )


def has_descriptor(plugin_dir: Path) -> bool:
    return (Path(plugin_dir) / DESCRIPTOR_FILE).is_file()


class DescriptorProvider:
    """
    Cache of parsed descriptors keyed by resolved directory. A symlinked
    plugin directory is keyed by the link itself, apart from its target.

    One provider is owned by a project operation; nothing is shared between
    providers. Call invalidate() after changing a plugin directory on disk.
    """

    def __init__(self):
        self._cache: dict[Path, PluginDescriptor] = {}

    @staticmethod
    def _key(plugin_dir: Path) -> Path:
        plugin_dir = Path(plugin_dir)
        if plugin_dir.is_symlink():
            return plugin_dir.parent.resolve() / plugin_dir.name
        return plugin_dir.resolve()

    def get(self, plugin_dir: Path) -> PluginDescriptor:
        """Return the descriptor for a directory, parsing it on first use."""
        key = self._key(plugin_dir)
        if key not in self._cache:
            self._cache[key] = parse_descriptor(Path(plugin_dir))
        return self._cache[key]

    def put(self, plugin_dir: Path, descriptor: PluginDescriptor) -> None:
        """Record that a directory holds a copy of an already parsed plugin."""
        key = self._key(plugin_dir)
        self._cache[key] = replace(descriptor, dir=Path(plugin_dir))

    def invalidate(self, plugin_dir: Path | None = None) -> None:
        """Forget one directory, or everything when no directory is given."""
        if plugin_dir is None:
            self._cache.clear()
        else:
            self._cache.pop(self._key(plugin_dir), None)

    def get_all_within_search_path(self, search_path: Path) -> list[PluginDescriptor]:
        """
        Return every plugin in a search-path directory.

        The directory itself and its immediate subdirectories are inspected;
        entries without a valid descriptor are ignored.
        """
        search_path = Path(search_path)
        candidates = [search_path]
        if search_path.is_dir():
            candidates.extend(sorted(p for p in search_path.iterdir() if p.is_dir()))

        found = []
        for candidate in candidates:
            if not has_descriptor(candidate):
                continue
            try:
                found.append(self.get(candidate))
            except DescriptorError:
                continue
        return found
