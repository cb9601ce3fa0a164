"""
Generic Platform Adapter.

Used for platforms that have no dedicated adapter. It only manages the web
layer of a plugin:

- add_plugin copies the plugin's www/ tree to
  <platform_root>/platform_www/plugins/<id>/ and lists it in
  platform_www/plugins.json
- prepare merges the project's www/ and platform_www/ into
  <platform_root>/www/
- build and run delegate to <platform_root>/graft/build and graft/run

add_plugin and remove_plugin return None, so callers always prepare.
"""

import asyncio
import json
import shutil
import subprocess
from pathlib import Path
from typing import Any

from graft.core.errors import PlatformError
from graft.platforms.base import PlatformAdapter, PlatformInfo, PluginOptions
from graft.plugin.descriptor import PluginDescriptor


class GenericPlatformAdapter(PlatformAdapter):
    """Web-layer-only adapter for any platform."""

    @property
    def platform_www(self) -> Path:
        return self.platform_root / "platform_www"

    @property
    def plugins_listing(self) -> Path:
        return self.platform_www / "plugins.json"

    def _read_listing(self) -> dict[str, str]:
        if not self.plugins_listing.exists():
            return {}
        try:
            with open(self.plugins_listing, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PlatformError(f"Failed to read {self.plugins_listing}: {e}") from e

    def _write_listing(self, listing: dict[str, str]) -> None:
        self.platform_www.mkdir(parents=True, exist_ok=True)
        with open(self.plugins_listing, "w", encoding="utf-8") as f:
            json.dump(dict(sorted(listing.items())), f, indent=4)

    async def add_plugin(self, descriptor: PluginDescriptor, options: PluginOptions) -> Any:
        source = Path(descriptor.dir) / "www"
        target = self.platform_www / "plugins" / descriptor.id
        if source.is_dir():
            if target.exists():
                shutil.rmtree(target)
            await asyncio.to_thread(shutil.copytree, source, target)

        listing = self._read_listing()
        listing[descriptor.id] = descriptor.version
        self._write_listing(listing)
        self.events.verbose(f'Added "{descriptor.id}" to {self.platform} platform_www')
        return None

    async def remove_plugin(self, descriptor: PluginDescriptor, options: PluginOptions) -> Any:
        target = self.platform_www / "plugins" / descriptor.id
        if target.exists():
            await asyncio.to_thread(shutil.rmtree, target)

        listing = self._read_listing()
        if listing.pop(descriptor.id, None) is not None:
            self._write_listing(listing)
        self.events.verbose(f'Removed "{descriptor.id}" from {self.platform} platform_www')
        return None

    async def prepare(self, options: dict[str, Any] | None = None) -> None:
        www = self.platform_root / "www"
        for source in (self.project_root / "www", self.platform_www):
            if source.is_dir():
                await asyncio.to_thread(shutil.copytree, source, www, dirs_exist_ok=True)
        self.events.verbose(f"Prepared {self.platform}")

    async def _run_script(self, name: str) -> None:
        script = self.platform_root / "graft" / name
        if not script.exists():
            raise PlatformError(f"{self.platform} has no {name} script ({script})")

        process = await asyncio.create_subprocess_exec(
            str(script),
            cwd=self.platform_root,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise PlatformError(
                f"{self.platform} {name} failed with exit code {process.returncode}:\n"
                f"stdout: {stdout.decode(errors='replace')}\n"
                f"stderr: {stderr.decode(errors='replace')}"
            )

    async def build(self, options: dict[str, Any] | None = None) -> None:
        await self._run_script("build")

    async def run(self, options: dict[str, Any] | None = None) -> None:
        await self._run_script("run")

    def get_platform_info(self) -> PlatformInfo:
        version = None
        script = self.platform_root / "graft" / "version"
        if script.exists():
            try:
                result = subprocess.run(
                    [str(script)], capture_output=True, text=True, timeout=30, check=False
                )
                if result.returncode == 0:
                    version = result.stdout.strip() or None
            except (OSError, subprocess.TimeoutExpired):
                version = None
        return PlatformInfo(
            name=self.platform,
            root=self.platform_root,
            version=version,
            metadata={"adapter": "generic"},
        )
