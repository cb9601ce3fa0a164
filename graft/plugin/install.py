"""
Plugin Installation.

This module installs a plugin, and recursively its dependencies, on one
platform.

Per plugin and platform the install moves through: fetched, engines
checked, variables merged, dependencies installed, copied into plugins/,
installed by the platform adapter, recorded in plugins/<platform>.json.

Key features:
- Idempotent: an installed plugin is not installed again; a dependent
  plugin requested as top-level is promoted without touching the platform
- Eager cycle detection while dependencies are resolved
- Engine failures skip the plugin instead of failing the operation
- Relative dependency sources resolved through the parent's fetch metadata
"""

import asyncio
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from graft.core.errors import (
    CyclicDependencyError,
    GraftError,
    MissingVariablesError,
    PlatformError,
    VersionConflictError,
)
from graft.core.events import EventBus
from graft.platforms.base import PluginOptions
from graft.platforms.registry import PlatformRegistry, list_installed_platforms
from graft.plugin import engines, git_ops, spec_parser, versions
from graft.plugin.descriptor import PluginDependency, PluginDescriptor
from graft.plugin.fetch import FetchOptions, FetchProvider
from graft.plugin.graph import DependencyGraph
from graft.plugin.hooks import HooksRunner, HookType
from graft.plugin.installed import InstalledPluginStore, platforms_recording
from graft.plugin.metadata import GIT, LOCAL
from graft.plugin.outcome import InstallOutcome
from graft.plugin.variables import merge_variables


@dataclass
class InstallOptions:
    """
    Options for installing a plugin on a platform.

    Attributes:
        is_top_level: The plugin was explicitly requested
        cli_variables: Variables supplied by the operator
        force: Accept installed dependencies whose version does not match
        link: Symlink local plugins instead of copying them
        search_path: Local directories searched for plugins by id
        noregistry: Never fall back to the registry
        subdir: Subdirectory of the source holding the plugin
        git_ref: Git ref to check out
        expected_id: "id" or "id@range" the fetched plugin must match
    """

    is_top_level: bool = True
    cli_variables: dict[str, Any] = field(default_factory=dict)
    force: bool = False
    link: bool = False
    search_path: list[Path] = field(default_factory=list)
    noregistry: bool = False
    subdir: str | None = None
    git_ref: str | None = None
    expected_id: str | None = None

    def for_dependency(self, variables: dict[str, Any], **overrides: Any) -> "InstallOptions":
        return InstallOptions(
            is_top_level=False,
            cli_variables=dict(variables),
            force=self.force,
            link=self.link,
            search_path=list(self.search_path),
            noregistry=self.noregistry,
            **overrides,
        )


@dataclass
class InstallContext:
    """
    State shared by every step of one top-level install.

    Attributes:
        graph: Dependency edges seen so far
        fetched: Plugin directories created during this install
        root_id: Id of the plugin the install started with
    """

    graph: DependencyGraph = field(default_factory=DependencyGraph)
    fetched: list[Path] = field(default_factory=list)
    root_id: str | None = None


def interpolate_variables(variables: dict[str, Any], text: str) -> str:
    """Replace $NAME in text with the value of each variable."""
    for key, value in variables.items():
        text = re.sub(r"\$" + re.escape(key), lambda _m, v=value: str(v), text)
    return text


class InstallEngine:
    """
    Installs plugins on platforms of one project.

    Args:
        project_root: Project root directory
        fetcher: Fetch provider for the project's plugins directory
        platforms: Platform adapter registry
        hooks: Hooks runner for the project
        events: Operation event bus
    """

    def __init__(
        self,
        project_root: Path,
        fetcher: FetchProvider,
        platforms: PlatformRegistry | None = None,
        hooks: HooksRunner | None = None,
        events: EventBus | None = None,
    ):
        self.project_root = Path(project_root)
        self.fetcher = fetcher
        self.plugins_dir = fetcher.plugins_dir
        self.descriptors = fetcher.descriptors
        self.metadata = fetcher.metadata
        self.platforms = platforms or PlatformRegistry()
        self.events = events or fetcher.events
        self.hooks = hooks or HooksRunner(self.project_root, self.events)

    async def install(
        self, platform: str, target: str, options: InstallOptions | None = None
    ) -> InstallOutcome:
        """
        Fetch a plugin if needed and install it on a platform.

        Args:
            platform: Target platform
            target: Plugin id, id@version, URL or path
            options: Install options

        Returns:
            INSTALLED or SKIPPED outcome

        Raises:
            GraftError: On any fatal failure
        """
        options = options or InstallOptions()
        context = InstallContext()
        plugin_dir = await self._possibly_fetch(target, options, context)
        return await self.run_install(platform, plugin_dir, options, context)

    async def _possibly_fetch(
        self, target: str, options: InstallOptions, context: InstallContext
    ) -> Path:
        parsed = spec_parser.parse(target)
        if Path(target).is_absolute():
            existing = Path(target)
        elif parsed.package is not None:
            existing = self.plugins_dir / parsed.package
        else:
            existing = None

        if existing is not None and existing.exists():
            return existing

        plugin_dir = await self.fetcher.fetch(
            target,
            FetchOptions(
                expected_id=options.expected_id,
                subdir=options.subdir,
                git_ref=options.git_ref,
                link=options.link,
                is_top_level=options.is_top_level,
                variables=dict(options.cli_variables),
                search_path=list(options.search_path),
                noregistry=options.noregistry,
            ),
        )
        context.fetched.append(plugin_dir)
        return plugin_dir

    async def run_install(
        self,
        platform: str,
        plugin_dir: Path,
        options: InstallOptions | None = None,
        context: InstallContext | None = None,
    ) -> InstallOutcome:
        """
        Install an already fetched plugin on a platform.

        Returns:
            INSTALLED (result carries the adapter's return value, True when
            the plugin was already installed) or SKIPPED

        Raises:
            CyclicDependencyError: If the dependencies form a cycle
            MissingVariablesError: If required variables have no value
            VersionConflictError: If an installed dependency has the wrong version
            GraftError: On any other fatal failure
        """
        options = options or InstallOptions()
        context = context or InstallContext()
        plugin_dir = Path(plugin_dir)
        descriptor = self.descriptors.get(plugin_dir)
        if context.root_id is None:
            context.root_id = descriptor.id

        store = InstalledPluginStore.load(self.plugins_dir, platform)
        if store.is_plugin_installed(descriptor.id):
            if options.is_top_level:
                message = f'Plugin "{descriptor.id}" already installed on {platform}.'
                if store.is_plugin_dependent(descriptor.id):
                    message += " Making it top-level."
                    store.make_top_level(descriptor.id).save()
                self.events.log(message)
            else:
                self.events.log(
                    f'Dependent plugin "{descriptor.id}" already installed on {platform}.'
                )
            return InstallOutcome.installed(descriptor.id, platform, True, already_installed=True)

        self.events.log(f'Installing "{descriptor.id}" for {platform}')

        try:
            platform_root = self.project_root / "platforms" / platform
            checks = engines.get_engines(descriptor, platform, platform_root)
            checks = await engines.call_engine_scripts(checks, self.events)
            failed = engines.check_engines(checks, self.events)
            if failed is not None:
                self.events.warn(f"Skipping '{descriptor.id}' for {platform}")
                return InstallOutcome.skipped(
                    descriptor.id,
                    platform,
                    f"{failed.name} {failed.current_version} does not satisfy {failed.min_version}",
                )

            variables = merge_variables(descriptor, platform, options.cli_variables)

            dependencies = descriptor.get_dependencies(platform)
            if dependencies:
                await self._install_dependencies(
                    descriptor, platform, dependencies, variables, options, context
                )

            install_dir = self.plugins_dir / descriptor.id
            if not install_dir.exists():
                self.fetcher.place(descriptor, options.link)
                context.fetched.append(install_dir)
            installed = self.descriptors.get(install_dir)

            hook_context = {
                "graft": {"platforms": [platform]},
                "plugin": {
                    "id": descriptor.id,
                    "version": descriptor.version,
                    "plugin_info": descriptor.raw,
                    "platform": platform,
                    "dir": str(plugin_dir),
                },
            }
            await self.hooks.fire(HookType.BEFORE_PLUGIN_INSTALL, hook_context)
            result = await self._handle_install(installed, platform, variables, options)
            await self.hooks.fire(HookType.AFTER_PLUGIN_INSTALL, hook_context)
            return InstallOutcome.installed(descriptor.id, platform, result)

        except GraftError as e:
            self.events.warn(f"Failed to install '{descriptor.id}': {e}")
            own_dir = self.plugins_dir / descriptor.id
            if isinstance(e, MissingVariablesError) and own_dir in context.fetched:
                self._discard(own_dir, context, platform)
            elif isinstance(e, CyclicDependencyError) and context.root_id == descriptor.id:
                for fetched in list(reversed(context.fetched)):
                    self._discard(fetched, context, platform)
            raise

    async def _install_dependencies(
        self,
        parent: PluginDescriptor,
        platform: str,
        dependencies: list[PluginDependency],
        variables: dict[str, Any],
        options: InstallOptions,
        context: InstallContext,
    ) -> None:
        self.events.verbose("Dependencies detected, iterating through them...")

        for dep in dependencies:
            # Record the edge first so a cycle fails before anything is fetched
            context.graph.add(parent.id, dep.id)

            url, subdir = await self._try_fetch_dependency(dep, parent, options)
            await self._install_dependency(
                dep, url, subdir, parent, platform, variables, options, context
            )

    async def _try_fetch_dependency(
        self, dep: PluginDependency, parent: PluginDescriptor, options: InstallOptions
    ) -> tuple[str | None, str | None]:
        """
        Resolve where a dependency should be fetched from.

        Returns:
            (source, subdir); source None means fetch by id
        """
        subdir = str(Path(dep.subdir)) if dep.subdir else None

        if dep.url == ".":
            fetch_data = self.metadata.get(parent.id)
            if fetch_data is None or not fetch_data.source.type:
                relative = subdir or dep.id
                search = ",".join(str(p) for p in options.search_path)
                self.events.warn(
                    f"No fetch metadata found for plugin {parent.id}. "
                    f"checking for {relative} in {search}"
                )
                return relative, None

            if fetch_data.source.type == LOCAL and fetch_data.source.path:
                path = Path(fetch_data.source.path)
                if not path.is_absolute():
                    path = self.project_root / path
                try:
                    toplevel = await asyncio.to_thread(git_ops.rev_parse_toplevel, path)
                except git_ops.GitError:
                    return str(path), subdir
                # The subdir is now part of the url
                return str(toplevel / subdir if subdir else toplevel), None

            if fetch_data.source.type == GIT and fetch_data.source.url:
                return fetch_data.source.url, subdir

            return None, subdir

        url = dep.url
        if url and "://" not in url and not url.startswith("git@") and not Path(url).is_absolute():
            relative = (Path(parent.dir).parent / url).resolve()
            if relative.exists():
                url = str(relative)
        return url, subdir

    async def _install_dependency(
        self,
        dep: PluginDependency,
        url: str | None,
        subdir: str | None,
        parent: PluginDescriptor,
        platform: str,
        variables: dict[str, Any],
        options: InstallOptions,
        context: InstallContext,
    ) -> InstallOutcome:
        dep_dir = self.plugins_dir / dep.id
        requested = f"{dep.id}@{dep.version}" if dep.version else dep.id
        self.events.verbose(f'Requesting plugin "{requested}".')

        if dep_dir.exists():
            installed_version = self.descriptors.get(dep_dir).version
            required = versions.dependency_range(dep.version)

            release = None
            if "-dev" in installed_version:
                release = versions.release(installed_version)

            if (
                options.force
                or not required
                or versions.satisfies(installed_version, required)
                or versions.satisfies(release, required)
            ):
                self.events.log(
                    f'Plugin dependency "{dep.id}@{installed_version}" already fetched, '
                    "using that version."
                )
            else:
                self._discard(self.plugins_dir / parent.id, context, platform)
                raise VersionConflictError(
                    f'Version of installed plugin: "{dep.id}@{installed_version}" does not '
                    f'satisfy dependency plugin requirement "{dep.id}@{required}". '
                    "Try --force to use installed plugin as dependency."
                )

            return await self.run_install(
                platform, dep_dir, options.for_dependency(variables), context
            )

        self.events.verbose(f'Plugin dependency "{dep.id}" not fetched, retrieving then installing.')
        dep_options = options.for_dependency(
            variables, subdir=subdir, git_ref=dep.commit, expected_id=dep.id
        )
        plugin_dir = await self.fetcher.fetch(
            url or requested,
            FetchOptions(
                expected_id=dep.id,
                subdir=subdir,
                git_ref=dep.commit,
                link=options.link,
                is_top_level=False,
                variables=dict(variables),
                search_path=list(options.search_path),
                noregistry=options.noregistry,
            ),
        )
        context.fetched.append(plugin_dir)
        return await self.run_install(platform, plugin_dir, dep_options, context)

    async def _handle_install(
        self,
        descriptor: PluginDescriptor,
        platform: str,
        variables: dict[str, Any],
        options: InstallOptions,
    ) -> Any:
        self.events.verbose(f'Install start for "{descriptor.id}" on {platform}.')

        adapter = self.platforms.get_adapter(platform, self.project_root, self.events)
        try:
            result = await adapter.add_plugin(
                descriptor,
                PluginOptions(
                    variables=variables,
                    plugins_dir=self.plugins_dir,
                    is_top_level=options.is_top_level,
                    link=options.link,
                    force=options.force,
                ),
            )
        except GraftError:
            raise
        except Exception as e:
            raise PlatformError(
                f"{platform} failed to install plugin {descriptor.id}: {e}"
            ) from e

        self.events.verbose(f"Install complete for {descriptor.id} on {platform}.")
        InstalledPluginStore.load(self.plugins_dir, platform).add_plugin(
            descriptor.id, variables, options.is_top_level
        ).save()

        for info in descriptor.get_info(platform):
            self.events.results(interpolate_variables(variables, info))
        return result

    def _discard(self, plugin_dir: Path, context: InstallContext, platform: str) -> None:
        """Remove a plugin directory unless some platform still records it."""
        if not (plugin_dir.exists() or plugin_dir.is_symlink()):
            return
        plugin_id = plugin_dir.relative_to(self.plugins_dir).as_posix()
        platforms = sorted(set(list_installed_platforms(self.project_root)) | {platform})
        if platforms_recording(self.plugins_dir, platforms, plugin_id):
            return

        self.events.verbose(f"Removing {plugin_dir}")
        self.descriptors.invalidate(plugin_dir)
        if plugin_dir.is_symlink():
            plugin_dir.unlink()
        else:
            shutil.rmtree(plugin_dir)
        self.metadata.remove(plugin_id)
        if plugin_dir in context.fetched:
            context.fetched.remove(plugin_dir)
