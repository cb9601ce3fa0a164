"""
Plugin Fetching.

This module resolves a plugin target to a directory under the project's
plugins/ directory and records where it came from.

Key features:
- Targets: local directories, search-path plugins, git URLs and registry ids
- "#ref[:subdir]" suffixes on URLs
- Copy or symlink placement, idempotent when the plugin is already present
- Identity checks against an expected "id" or "id@range"
- Provenance saved to plugins/fetch.json
"""

import asyncio
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import nodesemver

from graft.core.errors import FetchError, InvalidPluginError, PluginIdentityMismatchError
from graft.core.events import EventBus
from graft.plugin import git_ops, spec_parser, versions
from graft.plugin.descriptor import (
    DescriptorError,
    DescriptorProvider,
    PluginDescriptor,
    has_descriptor,
)
from graft.plugin.metadata import GIT, LOCAL, REGISTRY, FetchMetadata, FetchMetadataStore, FetchSource
from graft.plugin.registry import RegistryClient, RegistryError

_HASH_RE = re.compile(r"^([^:]*)(?::/?(.*?)/?)?$")


@dataclass
class FetchOptions:
    """
    Options for a single fetch.

    Attributes:
        expected_id: "id" or "id@range" the fetched plugin must match
        subdir: Subdirectory of the source holding the plugin
        git_ref: Git ref to check out
        link: Symlink local plugins instead of copying them
        is_top_level: Recorded in fetch metadata
        variables: Recorded in fetch metadata
        search_path: Local directories searched for plugins by id
        noregistry: Never fall back to the registry
    """

    expected_id: str | None = None
    subdir: str | None = None
    git_ref: str | None = None
    link: bool = False
    is_top_level: bool = True
    variables: dict[str, Any] = field(default_factory=dict)
    search_path: list[Path] = field(default_factory=list)
    noregistry: bool = False


def expand_home(target: str) -> Path:
    """Expand a leading "~/" only; "~1.2.0" is a version range, not a user's home."""
    if target == "~" or target.startswith("~/"):
        return Path(target).expanduser()
    return Path(target)


def resolve_local_dir(target: str, project_root: Path) -> Path | None:
    """
    Find the directory a local target names.

    Relative targets are looked up in the working directory, then in the
    project root.

    Returns:
        The directory, or None if target does not name one
    """
    path = expand_home(target)
    if path.is_absolute():
        return path if path.is_dir() else None
    for base in (Path.cwd(), Path(project_root)):
        if (base / path).is_dir():
            return base / path
    return None


def split_url_hash(target: str) -> tuple[str, str | None, str | None]:
    """
    Split "url#ref:subdir" into (url, ref, subdir).

    Targets without a "#" suffix come back unchanged.
    """
    if "://" not in target and not target.startswith("git@"):
        return target, None, None
    base, sep, fragment = target.partition("#")
    if not sep:
        return target, None, None
    match = _HASH_RE.match(fragment)
    if not match:
        return base, None, None
    ref, subdir = match.groups()
    return base, ref or None, subdir or None


def check_id(expected: str | None, descriptor: PluginDescriptor) -> None:
    """
    Check a fetched plugin against an expected "id" or "id@range".

    Raises:
        PluginIdentityMismatchError: If the id or version does not match
    """
    if not expected:
        return

    parsed = spec_parser.parse(expected)
    expected_id = parsed.package or expected
    if expected_id != descriptor.id:
        raise PluginIdentityMismatchError(
            f'Expected plugin to have ID "{expected_id}" but got "{descriptor.id}".'
        )
    if parsed.version and not versions.satisfies(descriptor.version, parsed.version):
        raise PluginIdentityMismatchError(
            f'Expected plugin {descriptor.id} to satisfy version "{parsed.version}" '
            f'but got "{descriptor.version}".'
        )


class FetchProvider:
    """
    Fetches plugins into a project's plugins directory.

    Caches (descriptors, search-path index, fetch metadata) belong to the
    provider instance and live as long as it does.

    Args:
        project_root: Project root directory
        plugins_dir: Plugins directory (default: <project_root>/plugins)
        descriptors: Descriptor cache shared with the caller
        metadata: Fetch metadata store shared with the caller
        registry: Registry client used for registry targets
        events: Operation event bus
    """

    def __init__(
        self,
        project_root: Path,
        plugins_dir: Path | None = None,
        descriptors: DescriptorProvider | None = None,
        metadata: FetchMetadataStore | None = None,
        registry: RegistryClient | None = None,
        events: EventBus | None = None,
    ):
        self.project_root = Path(project_root)
        self.plugins_dir = Path(plugins_dir) if plugins_dir else self.project_root / "plugins"
        self.descriptors = descriptors or DescriptorProvider()
        self.metadata = metadata or FetchMetadataStore(self.plugins_dir)
        self.registry = registry
        self.events = events or EventBus()
        self._local_plugins: dict[tuple[str, ...], dict[str, list[PluginDescriptor]]] = {}

    def invalidate(self) -> None:
        """Forget cached search-path contents."""
        self._local_plugins.clear()

    async def fetch(self, target: str, options: FetchOptions | None = None) -> Path:
        """
        Fetch a plugin into plugins/<id>.

        Args:
            target: Local path, git URL, "id" or "id@range"
            options: Fetch options

        Returns:
            The plugin's directory under the plugins directory

        Raises:
            InvalidPluginError: If a local directory has no descriptor
            FetchError: If the plugin cannot be found or downloaded
            PluginIdentityMismatchError: If the plugin is not the expected one
        """
        options = options or FetchOptions()
        self.plugins_dir.mkdir(parents=True, exist_ok=True)

        target, ref, subdir = split_url_hash(target)
        if ref:
            options.git_ref = ref
        if subdir:
            options.subdir = subdir

        local_dir = self._local_candidate(target, options.subdir)
        if local_dir is not None:
            descriptor, source, dest = self._from_local_dir(local_dir, options)
        elif git_ops.is_git_url(target):
            descriptor, source, dest = await self._from_git(target, options)
        else:
            descriptor, source, dest = await self._from_search_path_or_registry(target, options)

        check_id(options.expected_id, descriptor)
        self.metadata.save(
            descriptor.id,
            FetchMetadata(
                source=source,
                is_top_level=options.is_top_level,
                variables=dict(options.variables),
            ),
        )
        return dest

    def _local_candidate(self, target: str, subdir: str | None) -> Path | None:
        if "://" in target or target.startswith("git@"):
            return None
        if subdir:
            target = str(Path(target) / subdir)
        return resolve_local_dir(target, self.project_root)

    def _from_local_dir(
        self, plugin_dir: Path, options: FetchOptions
    ) -> tuple[PluginDescriptor, FetchSource, Path]:
        if not has_descriptor(plugin_dir):
            raise InvalidPluginError(f"Invalid Plugin! {plugin_dir} needs a valid plugin.json")

        descriptor = self._read(plugin_dir)
        dest = self.place(descriptor, options.link)
        source = FetchSource(
            type=LOCAL, path=os.path.relpath(plugin_dir.resolve(), self.project_root.resolve())
        )
        return descriptor, source, dest

    async def _from_git(
        self, url: str, options: FetchOptions
    ) -> tuple[PluginDescriptor, FetchSource, Path]:
        with tempfile.TemporaryDirectory(prefix="graft-git-") as tmp:
            clone_dir = Path(tmp) / "repo"
            try:
                await asyncio.to_thread(git_ops.clone_plugin, url, clone_dir, options.git_ref)
            except git_ops.GitError as e:
                raise FetchError(f"Failed to fetch plugin {url} via git.\n{e}") from e

            plugin_dir = clone_dir / options.subdir if options.subdir else clone_dir
            if not has_descriptor(plugin_dir):
                raise InvalidPluginError(f"Invalid Plugin! {url} needs a valid plugin.json")

            descriptor = self._read(plugin_dir)
            dest = self.place(descriptor, link=False)

        source = FetchSource(type=GIT, url=url, ref=options.git_ref, subdir=options.subdir)
        return self.descriptors.get(dest), source, dest

    async def _from_search_path_or_registry(
        self, target: str, options: FetchOptions
    ) -> tuple[PluginDescriptor, FetchSource, Path]:
        found = self.find_local_plugin(target, options.search_path)
        if found is not None:
            self.events.verbose(f"Found {target} at {found.dir}")
            dest = self.place(found, options.link)
            return found, FetchSource(type=LOCAL, path=str(found.dir)), dest

        if options.noregistry:
            raise FetchError(
                f"Plugin {target} not found locally. "
                "Note, plugin registry was disabled by --noregistry flag."
            )

        parsed = spec_parser.parse(target)
        if parsed.id is None:
            raise FetchError(f"Invalid plugin target: {target}")

        dest = self.plugins_dir / parsed.package
        if dest.exists():
            descriptor = self._read(dest)
        else:
            descriptor = await self._download(target, parsed)
            dest = Path(descriptor.dir)
        return descriptor, FetchSource(type=REGISTRY, id=target), dest

    async def _download(self, target: str, parsed: spec_parser.PluginSpec) -> PluginDescriptor:
        if self.registry is None:
            self.registry = RegistryClient()

        with tempfile.TemporaryDirectory(prefix="graft-registry-") as tmp:
            try:
                package_dir = await self.registry.download(
                    parsed.package, parsed.version, Path(tmp) / "package"
                )
                descriptor = self._read(package_dir)
            except (RegistryError, InvalidPluginError) as e:
                raise FetchError(
                    f"Failed to fetch plugin {target} via registry.\n"
                    "Probably this is either a connection problem, or plugin spec is incorrect.\n"
                    "Check your connection and plugin name/version/URL.\n"
                    f"{e}"
                ) from e
            dest = self.place(descriptor, link=False)
        return self.descriptors.get(dest)

    def _read(self, plugin_dir: Path) -> PluginDescriptor:
        try:
            return self.descriptors.get(plugin_dir)
        except DescriptorError as e:
            raise InvalidPluginError(f"Invalid Plugin! {plugin_dir}: {e}") from e

    def place(self, descriptor: PluginDescriptor, link: bool) -> Path:
        """Copy or link a plugin into plugins/<id>, unless it is already there."""
        source = Path(descriptor.dir).resolve()
        dest = self.plugins_dir / descriptor.id

        if dest.exists() or dest.is_symlink():
            if dest.resolve() == source:
                return dest
            if has_descriptor(dest):
                existing = self.descriptors.get(dest)
                if existing.id == descriptor.id:
                    self.events.verbose(f'Plugin "{descriptor.id}" already fetched to {dest}')
                    return dest
            _remove_path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        if not link and dest.resolve().is_relative_to(source):
            self.events.verbose("Copy plugin destination is child of src. Forcing --link mode.")
            link = True

        if link:
            self.events.verbose(f'Linking "{dest}" => "{source}"')
            os.symlink(source, dest, target_is_directory=True)
        else:
            self.events.verbose(f'Copying plugin "{source}" => "{dest}"')
            shutil.copytree(source, dest, symlinks=False)

        self.descriptors.put(dest, descriptor)
        return dest

    def _load_local_plugins(self, search_path: list[Path]) -> dict[str, list[PluginDescriptor]]:
        key = tuple(str(p) for p in search_path)
        if key not in self._local_plugins:
            plugins: dict[str, list[PluginDescriptor]] = {}
            for directory in search_path:
                for descriptor in self.descriptors.get_all_within_search_path(Path(directory)):
                    plugins.setdefault(descriptor.id, []).append(descriptor)
            self._local_plugins[key] = plugins
        return self._local_plugins[key]

    def find_local_plugin(self, target: str, search_path: list[Path]) -> PluginDescriptor | None:
        """
        Find a plugin by id in the search path.

        Returns the highest version satisfying the requested range, or None.
        """
        if not search_path:
            return None

        parsed = spec_parser.parse(target)
        if parsed.package is None:
            return None
        wanted = parsed.version or "*"

        latest: PluginDescriptor | None = None
        for descriptor in self._load_local_plugins(search_path).get(parsed.package, []):
            version = re.sub(r"-dev$", "", descriptor.version)
            if not versions.satisfies(version, wanted):
                continue
            if latest is None or nodesemver.gt(descriptor.version, latest.version, loose=True):
                latest = descriptor
        return latest

    async def close(self) -> None:
        if self.registry is not None:
            await self.registry.close()


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
