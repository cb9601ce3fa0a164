"""
Plugin variable merging.

Plugins declare preferences; a preference with no truthy default must be
given a value by the operator (--variable NAME=value) or the project
manifest.
"""

from typing import Any

from graft.core.errors import MissingVariablesError
from graft.plugin.descriptor import PluginDescriptor


def merge_variables(
    descriptor: PluginDescriptor, platform: str, cli_variables: dict[str, Any]
) -> dict[str, Any]:
    """
    Resolve a plugin's variables for one platform.

    Each preference takes the CLI value, else its default if truthy. Defaults
    that are used are written back into cli_variables so dependencies
    installed later see them.

    Returns:
        Variables for every preference of the plugin

    Raises:
        MissingVariablesError: If a preference has neither value nor default
    """
    preferences = descriptor.get_preferences(platform)
    merged: dict[str, Any] = {}
    for key, default in preferences.items():
        if key in cli_variables:
            merged[key] = cli_variables[key]
        elif default:
            merged[key] = cli_variables[key] = default

    missing = [key for key in preferences if key not in merged]
    if missing:
        raise MissingVariablesError(f"Variable(s) missing: {', '.join(missing)}", missing)
    return merged


def merge_project_variables(
    descriptor: PluginDescriptor,
    cli_variables: dict[str, Any],
    manifest_variables: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Merge CLI and manifest variables for a top-level add.

    CLI values win; manifest values fill the gaps. The merged mapping is
    written back into cli_variables.

    Raises:
        MissingVariablesError: If a preference without a truthy default has
            no value from either source
    """
    for name, value in (manifest_variables or {}).items():
        cli_variables[name] = cli_variables.get(name) or value

    preferences = descriptor.get_preferences()
    missing = [name for name, default in preferences.items() if not (default or cli_variables.get(name))]
    if missing:
        hint = "=value --variable ".join(missing)
        raise MissingVariablesError(f"Variable(s) missing (use: --variable {hint}=value).", missing)
    return cli_variables
