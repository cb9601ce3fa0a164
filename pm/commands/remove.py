"""
pm remove command (-R).

Remove plugins, and the dependencies nothing else needs, from a project.
"""

import asyncio
import sys
from typing import Any

from graft.plugin.manager import RemoveOptions
from pm.commands.common import console_events, open_manager, parse_variables


def remove_command(args: Any) -> int:
    """
    Execute remove command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if not args.targets:
        print("Error: No targets specified", file=sys.stderr)
        print("Usage: pm -R <plugin>", file=sys.stderr)
        return 1

    return asyncio.run(remove_async(args))


async def remove_async(args: Any) -> int:
    events = console_events(args.verbose)
    options = RemoveOptions(
        cli_variables=parse_variables(args.variable),
        save=args.save,
        force=args.force,
        nohooks=args.nohooks,
    )

    async with open_manager(args, events) as manager:
        removed = await manager.remove(args.targets, options)

    if args.verbose:
        print(f"\nRemoved: {', '.join(removed)}")
    return 0
