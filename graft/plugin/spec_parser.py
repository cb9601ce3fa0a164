"""
Plugin spec parsing.

Splits a plugin target such as "@scope/name@^1.0.0" into its parts.
"""

import re
from dataclasses import dataclass

_SPEC_RE = re.compile(r"^(@[^/]+/)?([^@/]+)(?:@(.+))?$")


@dataclass(frozen=True)
class PluginSpec:
    """
    A parsed plugin target.

    Attributes:
        raw: The original target text
        scope: npm scope including the trailing slash (e.g. "@acme/"), or None
        id: Plugin id without scope, or None when the target is not an id
        version: Requested version or range, or None
        package: Scope plus id (the registry package name)
    """

    raw: str
    scope: str | None
    id: str | None
    version: str | None
    package: str | None


def parse(raw: str) -> PluginSpec:
    """
    Parse a plugin target.

    URLs and paths do not match the id grammar and come back with every part
    set to None except raw.
    """
    match = _SPEC_RE.match(raw)
    if not match:
        return PluginSpec(raw=raw, scope=None, id=None, version=None, package=None)

    scope, plugin_id, version = match.groups()
    return PluginSpec(
        raw=raw,
        scope=scope,
        id=plugin_id,
        version=version,
        package=(scope or "") + plugin_id,
    )
