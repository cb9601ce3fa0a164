"""
Engine Constraint Checking.

This module decides whether a plugin can be installed given the versions of
the tool, the target platform and any SDKs the plugin declares it needs.

Key features:
- Built-in engines (graft, graft-<platform>, apple-*, android-sdk)
- Custom engines probed by scripts shipped inside the plugin
- Concurrent version probes
- Permissive default: an engine whose version cannot be determined passes
"""

import asyncio
import os
import re
from dataclasses import dataclass
from pathlib import Path

import graft
from graft.core.errors import GraftError, SecurityError
from graft.core.events import EventBus
from graft.platforms.registry import KNOWN_PLATFORMS
from graft.plugin import versions
from graft.plugin.descriptor import PluginDescriptor

TOOL_ENGINE = "graft"

_IS_WINDOWS = os.name == "nt"


@dataclass
class EngineCheck:
    """
    An engine requirement paired with the version found in the project.

    Attributes:
        name: Engine name
        min_version: Required version range
        platform: Platforms the engine applies to ("|"-separated or "*")
        script_src: Absolute path of the version probe, if any
        current_version: Detected version, None when unknown
    """

    name: str
    min_version: str
    platform: str
    script_src: Path | None = None
    current_version: str | None = None


def _applies_to(platform_spec: str, platform: str) -> bool:
    return platform_spec == "*" or platform in platform_spec.split("|")


def default_engines(platform_root: Path) -> dict[str, EngineCheck]:
    """
    Return the built-in engines for a platform directory.

    Probe scripts live in <platform_root>/graft/.
    """
    scripts = Path(platform_root) / "graft"
    defaults = {
        TOOL_ENGINE: EngineCheck(TOOL_ENGINE, "", "*", current_version=graft.__version__),
        "apple-xcode": EngineCheck("apple-xcode", "", "ios", scripts / "apple_xcode_version"),
        "apple-ios": EngineCheck("apple-ios", "", "ios", scripts / "apple_ios_version"),
        "apple-osx": EngineCheck("apple-osx", "", "ios", scripts / "apple_osx_version"),
        "android-sdk": EngineCheck("android-sdk", "", "android", scripts / "android_sdk_version"),
    }
    for name in KNOWN_PLATFORMS:
        engine = f"{TOOL_ENGINE}-{name}"
        defaults[engine] = EngineCheck(engine, "", name, scripts / "version")
    return defaults


def get_engines(
    descriptor: PluginDescriptor, platform: str, platform_root: Path
) -> list[EngineCheck]:
    """
    Resolve a plugin's engine declarations for one platform.

    Args:
        descriptor: Plugin being installed
        platform: Target platform
        platform_root: Platform directory inside the project

    Returns:
        Engines that apply to the platform, in declaration order

    Raises:
        GraftError: If a custom engine lacks platform or scriptSrc
        SecurityError: If a probe script lies outside the plugin directory
    """
    defaults = default_engines(platform_root)
    plugin_dir = Path(descriptor.dir).resolve()
    unchecked: list[EngineCheck] = []

    for engine in descriptor.get_engines():
        known = defaults.get(engine.name)
        if known is not None:
            if _applies_to(known.platform, platform):
                known.min_version = known.min_version or engine.version
                unchecked.append(known)
            continue

        if engine.platform is None or engine.script_src is None:
            raise GraftError(
                f'engine.platform or engine.scriptSrc is not defined in custom engine '
                f'"{engine.name}" from plugin "{descriptor.id}" for {platform}'
            )

        script = (plugin_dir / engine.script_src).resolve()
        if not script.is_relative_to(plugin_dir):
            raise SecurityError(
                f"Security violation: scriptSrc {script} is out of plugin dir {plugin_dir}"
            )
        if _applies_to(engine.platform, platform):
            unchecked.append(EngineCheck(engine.name, engine.version, engine.platform, script))

    return unchecked


def clean_version_output(version: str, name: str, events: EventBus | None = None) -> str | None:
    """
    Normalize version probe output.

    "3.0.0rc1" becomes "3.0.0-rc1", "18" becomes "18.0.0", "3.1" becomes
    "3.1.0" and a bare "dev" becomes None.
    """
    out = version.strip()

    rc_index = out.find("rc")
    if rc_index > 0 and out[rc_index - 1] != "-":
        out = out[:rc_index] + "-" + out[rc_index:]

    if "dev" in out:
        if out == "dev":
            out = None
        if events:
            events.verbose(
                f"{name} has been detected as using a development branch. "
                "Attempting to install anyways."
            )
    if out is None:
        return None

    if not re.search(r"\d+\.\d+\.\d+", out):
        out = versions.coerce(out)
    return out


async def _probe(engine: EngineCheck, events: EventBus) -> EngineCheck:
    script = engine.script_src
    if script is not None and (_IS_WINDOWS or script.exists()):
        if not _IS_WINDOWS:
            script.chmod(0o755)
        try:
            process = await asyncio.create_subprocess_exec(
                str(script),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await process.communicate()
            if process.returncode != 0:
                raise OSError(f"exit code {process.returncode}")
        except OSError:
            events.warn(f"{engine.name} version check failed ({script}), continuing anyways.")
            engine.current_version = None
            return engine

        engine.current_version = clean_version_output(
            stdout.decode(errors="replace"), engine.name, events
        )
        if engine.current_version == "":
            events.warn(
                f"{engine.name} version check returned nothing ({script}), continuing anyways."
            )
            engine.current_version = None
        return engine

    if engine.current_version:
        engine.current_version = clean_version_output(engine.current_version, engine.name, events)
    else:
        events.warn(f"{engine.name} version not detected (lacks script {script} ), continuing.")
    return engine


async def call_engine_scripts(engines: list[EngineCheck], events: EventBus) -> list[EngineCheck]:
    """Probe every engine's current version concurrently."""
    return list(await asyncio.gather(*(_probe(engine, events) for engine in engines)))


def check_engines(engines: list[EngineCheck], events: EventBus) -> EngineCheck | None:
    """
    Check probed engines against their requirements.

    Engines with an unknown version pass. "-dev" and "-nightly" suffixes are
    dropped before matching.

    Returns:
        The first failing engine, or None if every engine is satisfied
    """
    for engine in engines:
        if engine.current_version:
            engine.current_version = re.sub(r"-dev|-nightly.*$", "", engine.current_version)
        if engine.current_version is None or versions.satisfies(
            engine.current_version, engine.min_version
        ):
            continue

        events.warn(
            f"Plugin doesn't support this project's {engine.name} version. "
            f"{engine.name}: {engine.current_version}, "
            f"failed version requirement: {engine.min_version}"
        )
        return engine
    return None
