"""
Shared helpers for pm commands.
"""

import sys
from pathlib import Path
from typing import Any

from graft.config import find_project_root
from graft.core.events import LOG, RESULTS, VERBOSE, WARN, EventBus
from graft.plugin.manager import PluginManager


def parse_variables(pairs: list[str]) -> dict[str, str]:
    """
    Parse --variable NAME=VALUE pairs.

    Raises:
        PMError: If a pair has no "=" or an empty name
    """
    from pm.cli import PMError

    variables = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise PMError(f"Invalid variable {pair!r}, expected NAME=VALUE")
        variables[name.strip()] = value
    return variables


def console_events(verbose: bool) -> EventBus:
    """Create an event bus that prints to the terminal."""
    events = EventBus()
    events.on(LOG, print)
    events.on(RESULTS, print)
    events.on(WARN, lambda message: print(f"Warning: {message}", file=sys.stderr))
    if verbose:
        events.on(VERBOSE, print)
    return events


def open_manager(args: Any, events: EventBus) -> PluginManager:
    """
    Create a PluginManager for the project named by --project or found upwards.

    Raises:
        PMError: If no graft.toml is found
    """
    from pm.cli import PMError

    if args.project:
        project_root = Path(args.project)
    else:
        project_root = find_project_root()
        if project_root is None:
            raise PMError("Not a graft project (no graft.toml found)")
    return PluginManager(project_root, events=events)
