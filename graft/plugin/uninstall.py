"""
Plugin Uninstallation.

Removal happens in two passes:

1. Platform pass (uninstall_platform): the plugin and the dependencies that
   nothing else needs ("danglers") are removed from one platform, leaves
   first, through the platform adapter, and dropped from the platform record.
2. Filesystem pass (uninstall_plugin): the plugin and its dependency closure
   are deleted from plugins/, except plugins that are top-level elsewhere or
   still recorded on some platform.

A plugin that other top-level plugins depend on is only removed with force.
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from graft.core.errors import (
    GraftError,
    PlatformError,
    PluginNotInstalledError,
    RequiredDependencyError,
    UnsupportedPlatformError,
)
from graft.core.events import EventBus
from graft.platforms.base import PluginOptions
from graft.platforms.registry import PlatformRegistry
from graft.plugin.descriptor import DescriptorProvider, PluginDescriptor
from graft.plugin.graph import DependencyInfo, danglers, dependents, generate_dependency_info
from graft.plugin.hooks import HooksRunner, HookType
from graft.plugin.installed import InstalledPluginStore, platforms_recording
from graft.plugin.metadata import FETCH_FILE, FetchMetadataStore


@dataclass
class UninstallOptions:
    """
    Options for removing a plugin.

    Attributes:
        force: Remove plugins even if other top-level plugins need them
        is_top_level: The plugin was explicitly requested for removal
        cli_variables: Variables passed to the platform adapter
    """

    force: bool = False
    is_top_level: bool = True
    cli_variables: dict[str, Any] = field(default_factory=dict)


def recorded_platforms(plugins_dir: Path) -> list[str]:
    """Return the platforms that have a plugin record in plugins/."""
    plugins_dir = Path(plugins_dir)
    if not plugins_dir.is_dir():
        return []
    return sorted(p.stem for p in plugins_dir.glob("*.json") if p.name != FETCH_FILE)


class UninstallEngine:
    """
    Removes plugins from the platforms and plugins directory of one project.

    Args:
        project_root: Project root directory
        plugins_dir: Plugins directory (default: <project_root>/plugins)
        platforms: Platform adapter registry
        hooks: Hooks runner for the project
        events: Operation event bus
        descriptors: Descriptor cache shared with the caller
        metadata: Fetch metadata store shared with the caller
    """

    def __init__(
        self,
        project_root: Path,
        plugins_dir: Path | None = None,
        platforms: PlatformRegistry | None = None,
        hooks: HooksRunner | None = None,
        events: EventBus | None = None,
        descriptors: DescriptorProvider | None = None,
        metadata: FetchMetadataStore | None = None,
    ):
        self.project_root = Path(project_root)
        self.plugins_dir = Path(plugins_dir) if plugins_dir else self.project_root / "plugins"
        self.platforms = platforms or PlatformRegistry()
        self.events = events or EventBus()
        self.hooks = hooks or HooksRunner(self.project_root, self.events)
        self.descriptors = descriptors or DescriptorProvider()
        self.metadata = metadata or FetchMetadataStore(self.plugins_dir)

    async def uninstall(
        self, platform: str, plugin_id: str, options: UninstallOptions | None = None
    ) -> Any:
        """Remove a plugin from one platform, then from the plugins directory."""
        options = options or UninstallOptions()
        result = await self.uninstall_platform(platform, plugin_id, options)
        await self.uninstall_plugin(plugin_id, options)
        return result

    async def uninstall_platform(
        self, platform: str, plugin_id: str, options: UninstallOptions | None = None
    ) -> Any:
        """
        Remove a plugin and its danglers from one platform.

        Returns:
            The platform adapter's result; falsy means prepare is needed

        Raises:
            UnsupportedPlatformError: If the platform is unknown
            PluginNotInstalledError: If the plugin directory does not exist
            RequiredDependencyError: If top-level plugins depend on the plugin
                and force is not set
        """
        options = options or UninstallOptions()
        if not self.platforms.is_supported(platform):
            raise UnsupportedPlatformError(f'Platform "{platform}" not supported.')

        plugin_dir = self.plugins_dir / plugin_id
        if not plugin_dir.exists():
            raise PluginNotInstalledError(f'Plugin "{plugin_id}" not found. Already uninstalled?')

        return await self._run_uninstall_platform(
            platform,
            plugin_dir,
            UninstallOptions(
                force=options.force,
                is_top_level=True,
                cli_variables=dict(options.cli_variables),
            ),
        )

    async def _run_uninstall_platform(
        self,
        platform: str,
        plugin_dir: Path,
        options: UninstallOptions,
        info: DependencyInfo | None = None,
    ) -> Any:
        if not plugin_dir.exists():
            return True

        descriptor = self.descriptors.get(plugin_dir)
        store = InstalledPluginStore.load(self.plugins_dir, platform)
        if not store.is_plugin_installed(descriptor.id):
            self.events.verbose(f'Plugin "{descriptor.id}" is not installed on {platform}.')
            return True

        if info is None:
            info = generate_dependency_info(
                store, self.plugins_dir, platform, self.descriptors, self.events
            )

        blocking = dependents(descriptor.id, info)
        if options.is_top_level and blocking:
            message = f"The plugin '{descriptor.id}' is required by ({', '.join(blocking)})"
            if options.force:
                self.events.warn(message + " but forcing removal")
            else:
                raise RequiredDependencyError(
                    message + ", skipping uninstallation. (try --force if trying to update)",
                    blocking,
                )

        unused = danglers(descriptor.id, info)
        if unused:
            self.events.log(f"Uninstalling {len(unused)} dependent plugins.")
            for dangler in unused:
                await self._run_uninstall_platform(
                    platform,
                    self.plugins_dir / dangler,
                    UninstallOptions(
                        force=options.force,
                        is_top_level=dangler in info.top_level_plugins,
                        cli_variables=options.cli_variables,
                    ),
                    info,
                )

        variables = {**store.get_variables(descriptor.id), **options.cli_variables}
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
        await self.hooks.fire(HookType.BEFORE_PLUGIN_UNINSTALL, hook_context)
        result = await self._handle_uninstall(platform, descriptor, variables, options)
        await self.hooks.fire(HookType.AFTER_PLUGIN_UNINSTALL, hook_context)
        return result

    async def _handle_uninstall(
        self,
        platform: str,
        descriptor: PluginDescriptor,
        variables: dict[str, Any],
        options: UninstallOptions,
    ) -> Any:
        self.events.log(f"Uninstalling {descriptor.id} from {platform}")

        adapter = self.platforms.get_adapter(platform, self.project_root, self.events)
        try:
            result = await adapter.remove_plugin(
                descriptor,
                PluginOptions(
                    variables=variables,
                    plugins_dir=self.plugins_dir,
                    is_top_level=options.is_top_level,
                    force=options.force,
                ),
            )
        except GraftError:
            raise
        except Exception as e:
            raise PlatformError(
                f"{platform} failed to remove plugin {descriptor.id}: {e}"
            ) from e

        InstalledPluginStore.load(self.plugins_dir, platform).remove_plugin(
            descriptor.id, options.is_top_level
        ).save()
        return result

    async def uninstall_plugin(
        self, plugin_id: str, options: UninstallOptions | None = None
    ) -> list[str]:
        """
        Delete a plugin and its unneeded dependencies from plugins/.

        Returns:
            Ids of the deleted plugins, leaves first

        Raises:
            RequiredDependencyError: If top-level plugins depend on the plugin
                and force is not set
        """
        options = options or UninstallOptions()
        plugin_dir = self.plugins_dir / plugin_id

        self.events.log(f'Removing "{plugin_id}"')
        if not plugin_dir.exists():
            self.events.verbose(f'Plugin "{plugin_id}" already removed ({plugin_dir})')
            return []

        to_delete = self._dependency_closure(plugin_id)
        to_delete.append(plugin_id)

        platforms = recorded_platforms(self.plugins_dir)
        depend_list: dict[str, list[str]] = {}
        for platform in platforms:
            store = InstalledPluginStore.load(self.plugins_dir, platform)
            info = generate_dependency_info(
                store, self.plugins_dir, platform, self.descriptors, self.events
            )

            # Plugins that are top-level on their own are never collateral
            to_delete = [
                p for p in to_delete if p == plugin_id or p not in info.top_level_plugins
            ]

            for candidate in to_delete:
                for dependent in dependents(candidate, info, exclude=[plugin_id]):
                    names = depend_list.setdefault(candidate, [])
                    if dependent not in names:
                        names.append(dependent)

        def required_by(candidate: str) -> str:
            return f'Plugin "{candidate}" is required by ({", ".join(depend_list[candidate])})'

        blocked = [p for p in to_delete if p in depend_list]
        if not options.force and plugin_id in blocked:
            raise RequiredDependencyError(
                required_by(plugin_id) + " and cannot be removed (hint: use -f or --force)",
                depend_list[plugin_id],
            )

        for candidate in blocked:
            if options.force:
                self.events.log(required_by(candidate) + " but forcing removal.")
            else:
                self.events.warn(
                    required_by(candidate) + " and cannot be removed (hint: use -f or --force)"
                )

        if not options.force:
            to_delete = [p for p in to_delete if p not in depend_list]

        deleted = []
        for candidate in to_delete:
            if self._do_delete(candidate, platforms):
                deleted.append(candidate)
        return deleted

    def _dependency_closure(self, plugin_id: str) -> list[str]:
        """Return every transitive dependency of a plugin, leaves first."""
        closure: list[str] = []
        seen: set[str] = {plugin_id}

        def visit(current: str) -> None:
            current_dir = self.plugins_dir / current
            if not current_dir.exists():
                self.events.verbose(f'Plugin "{current}" does not exist ({current_dir})')
                return
            for dep in self.descriptors.get(current_dir).all_dependencies():
                if dep.id in seen:
                    continue
                seen.add(dep.id)
                visit(dep.id)
                closure.append(dep.id)

        visit(plugin_id)
        return closure

    def _do_delete(self, plugin_id: str, platforms: list[str]) -> bool:
        plugin_dir = self.plugins_dir / plugin_id
        if not (plugin_dir.exists() or plugin_dir.is_symlink()):
            self.events.verbose(f'Plugin "{plugin_id}" already removed ({plugin_dir})')
            return False

        still_recorded = platforms_recording(self.plugins_dir, platforms, plugin_id)
        if still_recorded:
            self.events.verbose(
                f'Keeping plugin "{plugin_id}", still installed on {", ".join(still_recorded)}'
            )
            return False

        self.descriptors.invalidate(plugin_dir)
        if plugin_dir.is_symlink():
            plugin_dir.unlink()
        else:
            shutil.rmtree(plugin_dir)
        self.metadata.remove(plugin_id)
        self.events.verbose(f'Deleted plugin "{plugin_id}"')
        return True
