"""
pm query command (-Q).

List the plugins installed in a project.
"""

import asyncio
from typing import Any

from graft.plugin.manager import dependency_warnings
from pm.commands.common import console_events, open_manager


def query_command(args: Any) -> int:
    """
    Execute query command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    return asyncio.run(query_async(args))


async def query_async(args: Any) -> int:
    events = console_events(args.verbose)
    async with open_manager(args, events) as manager:
        plugins = manager.list()

    if not plugins:
        events.results("No plugins added. Use `pm -S <plugin>`.")
        return 0

    lines = [f'{p.id} {p.version} "{p.name or p.description}"' for p in plugins]
    lines.extend(dependency_warnings(plugins))
    events.results("\n".join(lines))
    return 0
