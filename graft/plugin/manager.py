"""
Plugin Manager.

Project-level plugin operations: add, remove and list. The manager resolves
targets against the project manifest and the registry, then drives the
install and uninstall engines over every installed platform.

Key features:
- Sequential, per-target add that records a FAILED outcome and continues
- Fail-fast remove, with every target validated before any work
- Registry-aware version selection from graftDependencies
- Manifest (graft.toml) updates on --save
- A single prepare per platform after the batch, only when an adapter asks
"""

import asyncio
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import graft
from graft.config.project import ProjectConfig
from graft.core.errors import (
    GraftError,
    InputError,
    MissingVariablesError,
    PluginNotInstalledError,
)
from graft.core.events import EventBus
from graft.platforms.registry import PlatformRegistry, list_installed_platforms
from graft.plugin import git_ops, spec_parser, versions
from graft.plugin.descriptor import DescriptorProvider, PluginDescriptor, has_descriptor
from graft.plugin.fetch import FetchOptions, FetchProvider, resolve_local_dir
from graft.plugin.hooks import HooksRunner, HookType
from graft.plugin.install import InstallContext, InstallEngine, InstallOptions
from graft.plugin.installed import platforms_recording
from graft.plugin.metadata import FetchMetadataStore
from graft.plugin.outcome import InstallOutcome
from graft.plugin.registry import PackageInfo, RegistryClient
from graft.plugin.selection import ENGINE_TABLE_KEY, determine_plugin_version_to_fetch
from graft.plugin.uninstall import UninstallEngine, UninstallOptions
from graft.plugin.variables import merge_project_variables

PLUGIN_ID_PREFIX = "graft-plugin-"


@dataclass
class AddOptions:
    """
    Options for adding plugins to a project.

    Attributes:
        cli_variables: Variables given with --variable
        save: Record the plugins in graft.toml
        force: Accept installed dependencies whose version does not match
        link: Symlink local plugins (None: use the project setting)
        searchpath: Extra local directories searched for plugins by id
        noregistry: Never fall back to the registry
        nohooks: Do not fire hooks
        subdir: Subdirectory of each target holding the plugin
    """

    cli_variables: dict[str, Any] = field(default_factory=dict)
    save: bool = False
    force: bool = False
    link: bool | None = None
    searchpath: list[Path] = field(default_factory=list)
    noregistry: bool = False
    nohooks: bool = False
    subdir: str | None = None


@dataclass
class RemoveOptions:
    """
    Options for removing plugins from a project.

    Attributes:
        cli_variables: Variables passed to the platform adapters
        save: Remove the plugins from graft.toml
        force: Remove plugins even if other top-level plugins need them
        nohooks: Do not fire hooks
    """

    cli_variables: dict[str, Any] = field(default_factory=dict)
    save: bool = False
    force: bool = False
    nohooks: bool = False


def find_plugins(plugins_dir: Path) -> list[str]:
    """Return the ids of the plugin directories under plugins/, scoped ids included."""
    plugins_dir = Path(plugins_dir)
    if not plugins_dir.is_dir():
        return []

    ids = []
    for entry in sorted(plugins_dir.iterdir()):
        if not entry.is_dir() or entry.name.startswith("."):
            continue
        if entry.name.startswith("@"):
            ids.extend(
                f"{entry.name}/{child.name}"
                for child in sorted(entry.iterdir())
                if child.is_dir() and has_descriptor(child)
            )
        elif has_descriptor(entry):
            ids.append(entry.name)
    return ids


def validate_plugin_id(plugin_id: str, installed: list[str]) -> str | None:
    """Match a removal target against installed ids, trying the graft-plugin- prefix."""
    if plugin_id in installed:
        return plugin_id
    if not plugin_id.startswith(PLUGIN_ID_PREFIX):
        return validate_plugin_id(PLUGIN_ID_PREFIX + plugin_id, installed)
    return None


def dependency_warnings(descriptors: list[PluginDescriptor]) -> list[str]:
    """Report dependencies that are missing or installed at an unwanted version."""
    installed = {d.id: d for d in descriptors}
    warnings = []
    for descriptor in descriptors:
        for dep in descriptor.dependencies:
            found = installed.get(dep.id)
            if found is None:
                warnings.append(
                    f"WARNING, missing dependency: plugin {descriptor.id} depends on "
                    f"{dep.id} but it is not installed"
                )
            elif dep.version and not versions.satisfies(found.version, dep.version):
                warnings.append(
                    f"WARNING, broken dependency: plugin {descriptor.id} depends on "
                    f"{dep.id} {dep.version} but installed version is {found.version}"
                )
    return warnings


def is_url(target: str) -> bool:
    return "://" in target or git_ops.is_git_url(target)


class PluginManager:
    """
    Adds, removes and lists the plugins of one project.

    Args:
        project_root: Project root directory (holding graft.toml)
        platforms: Platform adapter registry
        events: Event bus the operations report on
        config: Project manifest (default: loaded from project_root)
        registry: Registry client (default: built from the settings)
        hooks: Hooks runner (default: one for project_root)
    """

    def __init__(
        self,
        project_root: Path,
        platforms: PlatformRegistry | None = None,
        events: EventBus | None = None,
        config: ProjectConfig | None = None,
        registry: RegistryClient | None = None,
        hooks: HooksRunner | None = None,
    ):
        self.project_root = Path(project_root)
        self.plugins_dir = self.project_root / "plugins"
        self.platforms = platforms or PlatformRegistry()
        self.events = events or EventBus()
        self.config = config or ProjectConfig.load(self.project_root)

        settings = self.config.settings
        self.registry = registry or RegistryClient(
            settings["registry"], timeout=settings["fetch_timeout"]
        )
        self.hooks = hooks or HooksRunner(
            self.project_root, self.events, timeout=settings["hook_timeout"]
        )
        self.descriptors = DescriptorProvider()
        self.metadata = FetchMetadataStore(self.plugins_dir)
        self.fetcher = FetchProvider(
            self.project_root,
            self.plugins_dir,
            descriptors=self.descriptors,
            metadata=self.metadata,
            registry=self.registry,
            events=self.events,
        )

    async def close(self) -> None:
        await self.fetcher.close()

    async def __aenter__(self) -> "PluginManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _hooks(self, nohooks: bool) -> HooksRunner:
        if nohooks:
            return HooksRunner(self.project_root, self.events, enabled=False)
        return self.hooks

    def installed_platforms(self) -> list[str]:
        """Return the installed platforms that have an adapter."""
        platforms = []
        for platform in list_installed_platforms(self.project_root):
            if self.platforms.is_supported(platform):
                platforms.append(platform)
            else:
                self.events.verbose(f"Ignoring unsupported platform directory {platform}")
        return platforms

    def _hook_context(self, plugins: list[str]) -> dict[str, Any]:
        return {
            "graft": {
                "platforms": list_installed_platforms(self.project_root),
                "plugins": find_plugins(self.plugins_dir),
            },
            "plugins": plugins,
        }

    async def add(
        self, targets: list[str], options: AddOptions | None = None
    ) -> list[InstallOutcome]:
        """
        Add plugins to the project and install them on every platform.

        Args:
            targets: Plugin ids, id@version specs, URLs or directories
            options: Add options

        Returns:
            One outcome per target and platform; a target that failed before
            reaching a platform has a single FAILED outcome

        Raises:
            InputError: If no target is given
            HookError: If a before/after hook fails
        """
        options = options or AddOptions()
        if not targets:
            raise InputError("No plugin specified. Please specify a plugin to add.")

        hooks = self._hooks(options.nohooks)
        installer = InstallEngine(self.project_root, self.fetcher, self.platforms, hooks, self.events)
        platforms = self.installed_platforms()
        search_path = list(options.searchpath) + self.config.search_path()
        link = self.config.settings["link"] if options.link is None else options.link

        await hooks.fire(HookType.BEFORE_PLUGIN_ADD, self._hook_context(list(targets)))

        outcomes: list[InstallOutcome] = []
        for target in targets:
            target = target.rstrip("/\\") or target
            try:
                outcomes.extend(
                    await self._add_one(target, options, installer, platforms, search_path, link)
                )
            except GraftError as e:
                self.events.warn(f"Failed to add plugin {target}: {e}")
                outcomes.append(InstallOutcome.failed(target, e))

        if any(outcome.needs_prepare for outcome in outcomes):
            await self.prepare(platforms)

        await hooks.fire(HookType.AFTER_PLUGIN_ADD, self._hook_context(list(targets)))
        return outcomes

    async def _add_one(
        self,
        target: str,
        options: AddOptions,
        installer: InstallEngine,
        platforms: list[str],
        search_path: list[Path],
        link: bool,
    ) -> list[InstallOutcome]:
        resolved = await self.determine_plugin_target(target, search_path, options.noregistry)
        self.events.verbose(f'Calling fetch on plugin "{resolved}"')

        existing = set(find_plugins(self.plugins_dir))
        plugin_dir = await self.fetcher.fetch(
            resolved,
            FetchOptions(
                subdir=options.subdir,
                link=link,
                is_top_level=True,
                variables=dict(options.cli_variables),
                search_path=search_path,
                noregistry=options.noregistry,
            ),
        )
        descriptor = self.descriptors.get(plugin_dir)
        newly_fetched = descriptor.id not in existing

        entry = self.config.get_plugin(descriptor.id)
        try:
            variables = merge_project_variables(
                descriptor, dict(options.cli_variables), entry.variables if entry else None
            )
        except MissingVariablesError:
            if newly_fetched:
                self._discard(plugin_dir, descriptor.id, platforms)
            raise

        outcomes = []
        for platform in platforms:
            self.events.verbose(
                f'Calling install on plugin "{plugin_dir}" for platform "{platform}"'
            )
            outcome = await installer.run_install(
                platform,
                plugin_dir,
                InstallOptions(
                    is_top_level=True,
                    cli_variables=dict(variables),
                    force=options.force,
                    link=link,
                    search_path=search_path,
                    noregistry=options.noregistry,
                ),
                InstallContext(fetched=[plugin_dir] if newly_fetched else []),
            )
            outcomes.append(outcome)

        if options.save:
            spec = self.parse_source(resolved, options.subdir) or f"~{descriptor.version}"
            self.events.log(f"Adding {descriptor.id} to graft.toml")
            self.config.add_plugin(descriptor.id, spec, variables).write()
        return outcomes

    def _discard(self, plugin_dir: Path, plugin_id: str, platforms: list[str]) -> None:
        if platforms_recording(self.plugins_dir, platforms, plugin_id):
            return
        self.events.verbose(f"Removing {plugin_dir}")
        self.descriptors.invalidate(plugin_dir)
        if plugin_dir.is_symlink():
            plugin_dir.unlink()
        else:
            shutil.rmtree(plugin_dir, ignore_errors=True)
        self.metadata.remove(plugin_id)

    def _is_directory(self, target: str) -> bool:
        return resolve_local_dir(target, self.project_root) is not None

    def parse_source(self, target: str, subdir: str | None = None) -> str | None:
        """Return target if it is a URL or an existing directory, else None."""
        if is_url(target) and not target.startswith("file:"):
            return target
        local = str(Path(target) / subdir) if subdir else target
        if resolve_local_dir(local, self.project_root) is not None:
            return target
        return None

    async def determine_plugin_target(
        self, target: str, search_path: list[Path] | None = None, noregistry: bool = False
    ) -> str:
        """
        Decide what to fetch for a target.

        Explicit versions, URLs and directories are used as they are. Otherwise
        the manifest's spec for the plugin is used; failing that, the registry
        is asked for the newest release the project supports (unless a search
        path or noregistry is in effect).
        """
        parsed = spec_parser.parse(target)
        plugin_id = parsed.package or target
        if parsed.version or is_url(plugin_id) or self._is_directory(plugin_id):
            return target

        entry = self.config.get_plugin(parsed.package) if parsed.package else None
        version = entry.spec if entry else None
        if version:
            self.events.verbose(
                f"No version specified for {plugin_id}, retrieving version from graft.toml"
            )
            if is_url(version) or self._is_directory(version):
                return version
            return f"{plugin_id}@{version}"

        self.events.verbose(f"No version for {plugin_id} saved in graft.toml")
        if search_path or noregistry:
            self.events.verbose(
                f"Not checking registry info for {plugin_id} because searchpath "
                "or noregistry flag was given"
            )
            return target

        self.events.verbose(
            f"Attempting to use registry info for {plugin_id} to choose a compatible release"
        )
        info = await self.registry.info(plugin_id)
        fetch_version = await self.get_fetch_version(info)
        return f"{plugin_id}@{fetch_version}" if fetch_version else target

    async def get_fetch_version(self, info: PackageInfo) -> str | None:
        """
        Pick the plugin version to fetch from the registry metadata.

        Returns:
            "~<version>" for the newest compatible release, or None to fetch
            the latest release
        """
        engine = (info.latest.get("engines") or {}).get(ENGINE_TABLE_KEY)
        if not engine:
            self.events.verbose(
                f"Registry info for {info.name} did not contain any engine info. "
                "Fetching latest release"
            )
            return None

        plugin_map = {d.id: d.version for d in self.list()}
        platform_map = await self.platform_versions()
        version = determine_plugin_version_to_fetch(
            info.name,
            info.versions,
            engine,
            plugin_map,
            platform_map,
            graft.__version__,
            self.events,
        )
        return f"~{version}" if version else None

    async def platform_versions(self) -> dict[str, str]:
        """Return installed platform -> version, for platforms reporting one."""
        found = {}
        for platform in self.installed_platforms():
            adapter = self.platforms.get_adapter(platform, self.project_root, self.events)
            info = await asyncio.to_thread(adapter.get_platform_info)
            if info.version:
                found[platform] = info.version
        return found

    async def prepare(self, platforms: list[str]) -> None:
        """Prepare each platform once."""
        for platform in platforms:
            self.events.verbose(f"Preparing {platform}")
            adapter = self.platforms.get_adapter(platform, self.project_root, self.events)
            await adapter.prepare()

    async def remove(self, targets: list[str], options: RemoveOptions | None = None) -> list[str]:
        """
        Remove plugins from every platform and from the project.

        Every target is validated before anything is removed; the first
        failure stops the operation.

        Returns:
            The removed plugin ids

        Raises:
            InputError: If no target is given
            PluginNotInstalledError: If a target is not in the project
            RequiredDependencyError: If a target is needed by another
                top-level plugin and force is not set
        """
        options = options or RemoveOptions()
        if not targets:
            raise InputError(
                "No plugin specified. Please specify a plugin to remove. See: pm -Q."
            )

        installed = find_plugins(self.plugins_dir)
        plugin_ids = []
        for target in targets:
            plugin_id = validate_plugin_id(target, installed)
            if not plugin_id:
                raise PluginNotInstalledError(
                    f'Plugin "{target}" is not present in the project. See `pm -Q`.'
                )
            plugin_ids.append(plugin_id)

        hooks = self._hooks(options.nohooks)
        uninstaller = UninstallEngine(
            self.project_root,
            self.plugins_dir,
            self.platforms,
            hooks,
            self.events,
            self.descriptors,
            self.metadata,
        )
        platforms = self.installed_platforms()
        should_prepare = False

        await hooks.fire(HookType.BEFORE_PLUGIN_RM, self._hook_context(plugin_ids))

        for plugin_id in plugin_ids:
            entry = self.config.get_plugin(plugin_id)
            variables = {**(entry.variables if entry else {}), **options.cli_variables}

            for platform in platforms:
                self.events.verbose(
                    f'Calling uninstall on plugin "{plugin_id}" for platform "{platform}"'
                )
                result = await uninstaller.uninstall_platform(
                    platform,
                    plugin_id,
                    UninstallOptions(force=options.force, cli_variables=variables),
                )
                if not result:
                    should_prepare = True

            await uninstaller.uninstall_plugin(plugin_id, UninstallOptions(force=options.force))

            if options.save and self.config.remove_plugin(plugin_id):
                self.events.log(f"Removing plugin {plugin_id} from graft.toml file...")
                self.config.write()

            self.events.verbose(f"Removing plugin {plugin_id} from fetch.json")
            self.metadata.remove(plugin_id)

        if should_prepare:
            await self.prepare(platforms)

        await hooks.fire(HookType.AFTER_PLUGIN_RM, self._hook_context(plugin_ids))
        return plugin_ids

    # Defined last: the name shadows the builtin in the class body
    def list(self) -> "list[PluginDescriptor]":
        """Return the descriptors of the installed plugins, sorted by id."""
        descriptors = [
            self.descriptors.get(self.plugins_dir / plugin_id)
            for plugin_id in find_plugins(self.plugins_dir)
        ]
        return sorted(descriptors, key=lambda d: d.id)
