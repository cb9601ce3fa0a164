"""
Plugin version selection.

Plugins published to the registry can declare, in their package manifest,
which project versions each plugin release needs:

    "engines": {
        "graftDependencies": {
            "0.0.0": {},
            "<2.0.0": {"graft": ">=5.0.0"},
            "3.0.0": {"graft-ios": ">5.0.0", "com.example.file": "^2.0.0"}
        }
    }

A key is either a single plugin version (its requirements apply from that
version up to the next key) or an upper bound "<X.Y.Z" (its requirements
apply to every version below X.Y.Z). Requirements name the tool ("graft"),
a platform ("graft-<platform>") or another plugin id.
"""

import re
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any

import nodesemver

from graft.core.events import EventBus
from graft.plugin.versions import release, satisfies

ENGINE_TABLE_KEY = "graftDependencies"
TOOL_NAME = "graft"

UPPER_BOUND_RE = re.compile(r"^<\d+\.\d+\.\d+$")


@dataclass
class FailedRequirement:
    """
    A requirement the project does not meet.

    Attributes:
        dependency: Tool, platform or plugin name
        installed: Version found in the project
        required: Required range
    """

    dependency: str
    installed: str
    required: str


def get_failed_requirements(
    requirements: dict[str, Any],
    plugin_map: dict[str, str],
    platform_map: dict[str, str],
    tool_version: str,
    events: EventBus | None = None,
) -> list[FailedRequirement]:
    """
    Return the requirements that the project fails.

    Args:
        requirements: Mapping of name -> required range
        plugin_map: Installed plugin id -> version
        platform_map: Installed platform -> version
        tool_version: Version of graft in use

    Returns:
        Failed requirements; platforms that are not installed never fail
    """
    failed = []
    version = release(tool_version)

    for name, wanted in requirements.items():
        if (
            not isinstance(name, str)
            or not isinstance(wanted, str)
            or nodesemver.valid_range(wanted, loose=False) is None
        ):
            if events:
                events.verbose(f"Ignoring invalid plugin dependency constraint {name}:{wanted}")
            continue

        installed = None
        name = name.strip()
        if name in plugin_map and not satisfies(plugin_map[name], wanted):
            installed = plugin_map[name]
        elif name == TOOL_NAME and not satisfies(version, wanted):
            installed = tool_version
        elif name.startswith(TOOL_NAME + "-"):
            platform = name[len(TOOL_NAME) + 1:]
            if platform_map.get(platform) and not satisfies(platform_map[platform], wanted):
                installed = platform_map[platform]

        if installed:
            failed.append(FailedRequirement(name, installed.strip(), wanted.strip()))
    return failed


def find_version(versions: list[str], version: str) -> str | None:
    """Return the entry of versions equal to version once cleaned."""
    cleaned = nodesemver.clean(version, loose=True)
    for candidate in versions:
        if nodesemver.clean(candidate, loose=True) == cleaned:
            return candidate
    return None


def list_unmet_requirements(
    name: str, failed: list[FailedRequirement], events: EventBus
) -> None:
    events.warn(f"Unmet project requirements for latest version of {name}:")
    for requirement in failed:
        events.warn(
            f"    {requirement.dependency} ({requirement.installed} in project, "
            f"{requirement.required} required)"
        )


def determine_plugin_version_to_fetch(
    name: str,
    all_versions: list[str],
    engine: dict[str, dict[str, str]],
    plugin_map: dict[str, str],
    platform_map: dict[str, str],
    tool_version: str,
    events: EventBus,
) -> str | None:
    """
    Pick the highest plugin version whose requirements the project meets.

    Args:
        name: Plugin name, used in messages
        all_versions: Published plugin versions
        engine: The graftDependencies table
        plugin_map: Installed plugin id -> version
        platform_map: Installed platform -> version
        tool_version: Version of graft in use

    Returns:
        The version to fetch, or None to fetch the latest release (either
        because the table is unusable or because no version is compatible,
        in which case the unmet requirements are reported)
    """
    latest = nodesemver.max_satisfying(all_versions, ">=0.0.0", loose=True)
    if latest is None:
        return None

    engine = dict(engine)

    def failures(version_key: str) -> list[FailedRequirement]:
        return get_failed_requirements(
            engine.get(version_key, {}), plugin_map, platform_map, tool_version, events
        )

    versions: list[str] = []
    upper_bound: str | None = None
    upper_bound_range: str | None = None
    upper_bound_exists = False

    for version in engine:
        if nodesemver.clean(version, loose=True) and nodesemver.lte(version, latest, loose=True):
            versions.append(version)
            continue

        cleaned_range = nodesemver.valid_range(version, loose=False)
        if cleaned_range and UPPER_BOUND_RE.match(cleaned_range):
            upper_bound_exists = True
            if failures(version):
                bound = cleaned_range[1:]
                if not upper_bound or nodesemver.gt(bound, upper_bound, loose=True):
                    upper_bound = bound
                    upper_bound_range = version
        else:
            events.verbose(
                f"Ignoring invalid version in {name} {ENGINE_TABLE_KEY}: {version} "
                "(must be a single version <= latest or an upper bound)"
            )

    if not upper_bound_exists and not versions:
        events.verbose(
            f"Ignoring {name} {ENGINE_TABLE_KEY} entry because it did not contain "
            "any valid plugin version entries"
        )
        return None

    if not find_version(versions, "0.0.0"):
        versions.append("0.0.0")
        engine["0.0.0"] = {}

    if (
        upper_bound
        and not find_version(versions, upper_bound)
        and not nodesemver.gt(upper_bound, latest, loose=True)
    ):
        versions.append(upper_bound)
        below = nodesemver.max_satisfying(versions, upper_bound_range, loose=True)
        below = find_version(versions, below) if below else None
        engine[upper_bound] = engine[below] if below else {}

    versions = sorted(versions, key=cmp_to_key(lambda a, b: nodesemver.rcompare(a, b, loose=True)))

    for i, version in enumerate(versions):
        if upper_bound and nodesemver.lt(version, upper_bound, loose=True):
            break

        version_range = f">={version} <{versions[i - 1]}" if i else f">={version}"
        max_matching = nodesemver.max_satisfying(all_versions, version_range, loose=True)

        if max_matching and not failures(version):
            if max_matching != latest:
                list_unmet_requirements(name, failures(versions[0]), events)
                events.warn(
                    f"Fetching highest version of {name} that this project supports: "
                    f"{max_matching} (latest is {latest})"
                )
            return max_matching

    latest_failed = failures(versions[0]) if versions else []

    if upper_bound and satisfies(latest, upper_bound_range):
        for requirement in failures(upper_bound_range):
            for existing in latest_failed:
                if existing.dependency == requirement.dependency:
                    existing.required += " AND " + requirement.required
                    break
            else:
                latest_failed.append(requirement)

    list_unmet_requirements(name, latest_failed, events)
    events.warn(
        f"Current project does not satisfy the engine requirements specified by any "
        f"version of {name}. Fetching latest version of plugin anyway (may be incompatible)"
    )
    return None
