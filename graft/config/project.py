"""
Project Manifest.

A graft project is marked by a graft.toml at its root:

    [project]
    name = "hello"
    version = "1.0.0"

    [settings]
    registry = "https://registry.npmjs.org"
    searchpath = []

    [plugins."com.example.camera"]
    spec = "~2.1.0"
    variables = { API_KEY = "abc" }

Key features:
- Settings validated against SETTINGS_SCHEMA
- Plugin entries saved and removed without losing comments or ordering
- Project root discovery from any subdirectory
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit import TOMLDocument

from graft.config.schema import (
    SETTINGS_SCHEMA,
    ConfigError,
    generate_default_settings,
    validate_settings,
)
from graft.config.toml_handler import read_document, schema_table, write_toml

MANIFEST_FILE = "graft.toml"


@dataclass
class PluginEntry:
    """
    A plugin saved in the manifest.

    Attributes:
        id: Plugin id
        spec: Version range, URL or directory the plugin was added from
        variables: Variables saved for the plugin
    """

    id: str
    spec: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from start (default: cwd) to the directory holding graft.toml."""
    current = Path(start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / MANIFEST_FILE).is_file():
            return candidate
    return None


class ProjectConfig:
    """
    Editable view of a project's graft.toml.

    Args:
        project_root: Project root directory
        document: Parsed manifest (default: empty)
    """

    def __init__(self, project_root: Path, document: TOMLDocument | None = None):
        self.project_root = Path(project_root)
        self.path = self.project_root / MANIFEST_FILE
        self.document = document if document is not None else tomlkit.document()

    @classmethod
    def load(cls, project_root: Path) -> "ProjectConfig":
        """Load graft.toml; a missing manifest gives an empty configuration."""
        path = Path(project_root) / MANIFEST_FILE
        if not path.exists():
            return cls(project_root)
        return cls(project_root, read_document(path))

    @classmethod
    def create(cls, project_root: Path, name: str, version: str = "1.0.0") -> "ProjectConfig":
        """
        Write a commented default graft.toml.

        Raises:
            ConfigError: If the project already has a manifest
        """
        project_root = Path(project_root)
        if (project_root / MANIFEST_FILE).exists():
            raise ConfigError(f"{MANIFEST_FILE} already exists in {project_root}")

        doc = tomlkit.document()
        doc.add(tomlkit.comment(f"Project configuration for {name}"))
        doc.add(tomlkit.nl())

        project = tomlkit.table()
        project.add("name", name)
        project.add("version", version)
        doc.add("project", project)

        doc.add("settings", schema_table(SETTINGS_SCHEMA, generate_default_settings()))
        doc.add("plugins", tomlkit.table(is_super_table=True))

        config = cls(project_root, doc)
        config.write()
        return config

    @property
    def name(self) -> str | None:
        return self.document.get("project", {}).get("name")

    @property
    def settings(self) -> dict[str, Any]:
        """
        Validated settings with defaults filled in.

        Raises:
            ValidationError: If a setting is unknown or invalid
        """
        raw = self.document.get("settings")
        return validate_settings(raw.unwrap() if raw is not None else {})

    def search_path(self) -> list[Path]:
        """The searchpath setting, relative entries resolved against the project."""
        return [
            p if p.is_absolute() else self.project_root / p
            for p in (Path(entry) for entry in self.settings["searchpath"])
        ]

    def plugin_ids(self) -> list[str]:
        return list(self.document.get("plugins", {}).keys())

    def get_plugin(self, plugin_id: str) -> PluginEntry | None:
        plugins = self.document.get("plugins")
        if plugins is None or plugin_id not in plugins:
            return None
        entry = plugins[plugin_id].unwrap()
        return PluginEntry(
            id=plugin_id,
            spec=entry.get("spec"),
            variables=dict(entry.get("variables", {})),
        )

    def add_plugin(
        self, plugin_id: str, spec: str | None, variables: dict[str, Any] | None = None
    ) -> "ProjectConfig":
        """Add or replace a plugin entry."""
        if "plugins" not in self.document:
            self.document.add("plugins", tomlkit.table(is_super_table=True))

        entry = tomlkit.table()
        if spec:
            entry.add("spec", spec)
        if variables:
            inline = tomlkit.inline_table()
            inline.update({k: str(v) for k, v in variables.items()})
            entry.add("variables", inline)

        plugins = self.document["plugins"]
        if plugin_id in plugins:
            plugins[plugin_id] = entry
        else:
            plugins.add(plugin_id, entry)
        return self

    def remove_plugin(self, plugin_id: str) -> bool:
        """Drop a plugin entry; returns False if there was none."""
        plugins = self.document.get("plugins")
        if plugins is None or plugin_id not in plugins:
            return False
        del plugins[plugin_id]
        return True

    def write(self) -> None:
        write_toml(self.path, self.document)
