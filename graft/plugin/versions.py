"""
Version helpers.

Ranges and comparisons are npm's, through nodesemver. This module only adds
what graft needs on top of it.

Key features:
- Coercion of partial versions reported by engine scripts ("18" -> "18.0.0")
- Range checks that treat text which is not a version as unsatisfied
- Dependency requirements: a bare number such as "1.2" means "^1.2"
"""

import re

import nodesemver

_NUMERIC_RE = re.compile(r"\d+(\.\d+){0,2}")


def coerce(version: str | None) -> str | None:
    """
    Coerce partial version text into major.minor.patch form.

    "18" becomes "18.0.0" and "3.1" becomes "3.1.0"; text already holding a
    full version is returned unchanged.
    """
    if not version:
        return version
    if re.search(r"\d+\.\d+\.\d+", version):
        return version
    match = re.search(r"\d+\.\d+", version)
    if match:
        return match.group(0) + ".0"
    match = re.search(r"\d+", version)
    if match:
        return match.group(0) + ".0.0"
    return version


def release(version: str) -> str:
    """Return major.minor.patch of a version, dropping prerelease and build."""
    parsed = nodesemver.parse(version, loose=True)
    if parsed is None:
        return version
    return f"{parsed.major}.{parsed.minor}.{parsed.patch}"


def satisfies(version: str | None, wanted: str) -> bool:
    """Loose nodesemver.satisfies; False if either side does not parse."""
    if not isinstance(version, str) or nodesemver.parse(version, loose=True) is None:
        return False
    if nodesemver.valid_range(wanted, loose=True) is None:
        return False
    return nodesemver.satisfies(version, wanted, loose=True)


def dependency_range(required: str | None) -> str | None:
    """
    Range a declared dependency version stands for.

    A purely numeric version is a caret range ("1.2" -> "^1.2"), unless every
    part is zero; anything else is already a range.
    """
    if required and _NUMERIC_RE.fullmatch(required) and required.strip("0."):
        return "^" + required
    return required
