"""
Fetch metadata.

Provenance records for fetched plugins, stored in plugins/fetch.json and
keyed by plugin id. A record is replaced wholesale on every fetch and
dropped when the plugin is removed.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from graft.plugin.installed import StoreError

FETCH_FILE = "fetch.json"

LOCAL = "local"
GIT = "git"
REGISTRY = "registry"


@dataclass
class FetchSource:
    """
    Where a plugin came from.

    Attributes:
        type: "local", "git" or "registry"
        path: Local directory (relative to the project root when possible)
        url: Git URL
        id: Registry target
        subdir: Subdirectory within the source
        ref: Git ref
    """

    type: str
    path: str | None = None
    url: str | None = None
    id: str | None = None
    subdir: str | None = None
    ref: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FetchSource":
        return cls(
            type=data.get("type", ""),
            path=data.get("path"),
            url=data.get("url"),
            id=data.get("id"),
            subdir=data.get("subdir"),
            ref=data.get("ref"),
        )


@dataclass
class FetchMetadata:
    source: FetchSource
    is_top_level: bool = False
    variables: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "is_top_level": self.is_top_level,
            "variables": self.variables,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FetchMetadata":
        return cls(
            source=FetchSource.from_dict(data.get("source") or {}),
            is_top_level=bool(data.get("is_top_level", False)),
            variables=dict(data.get("variables") or {}),
        )


class FetchMetadataStore:
    """
    Reader and writer for plugins/fetch.json.

    The file is loaded once per store and kept in memory; invalidate() forces
    the next access to reload it.
    """

    def __init__(self, plugins_dir: Path):
        self.plugins_dir = Path(plugins_dir)
        self.path = self.plugins_dir / FETCH_FILE
        self._cache: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._cache is None:
            if self.path.exists():
                try:
                    with open(self.path, encoding="utf-8") as f:
                        self._cache = json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    raise StoreError(f"Failed to read fetch metadata {self.path}: {e}") from e
            else:
                self._cache = {}
        return self._cache

    def _write(self) -> None:
        try:
            self.plugins_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._load(), f, indent=2)
        except OSError as e:
            raise StoreError(f"Failed to write fetch metadata {self.path}: {e}") from e

    def get(self, plugin_id: str) -> FetchMetadata | None:
        data = self._load().get(plugin_id)
        return FetchMetadata.from_dict(data) if data else None

    def save(self, plugin_id: str, metadata: FetchMetadata) -> None:
        self._load()[plugin_id] = metadata.to_dict()
        self._write()

    def remove(self, plugin_id: str) -> bool:
        """Drop a record; returns False if there was none."""
        records = self._load()
        if plugin_id not in records:
            return False
        del records[plugin_id]
        self._write()
        return True

    def invalidate(self) -> None:
        self._cache = None
