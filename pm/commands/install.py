"""
pm install command (-S).

Add plugins from a local directory, git repository or the registry.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

from graft.plugin.manager import AddOptions
from graft.plugin.outcome import OutcomeStatus
from pm.commands.common import console_events, open_manager, parse_variables


def install_command(args: Any) -> int:
    """
    Execute install command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if not args.targets:
        print("Error: No targets specified", file=sys.stderr)
        print("Usage: pm -S <plugin>[@version]", file=sys.stderr)
        return 1

    # Run async install
    return asyncio.run(install_async(args))


async def install_async(args: Any) -> int:
    """Async install implementation."""
    events = console_events(args.verbose)
    options = AddOptions(
        cli_variables=parse_variables(args.variable),
        save=args.save,
        force=args.force,
        link=True if args.link else None,
        searchpath=[Path(p) for p in args.searchpath],
        noregistry=args.noregistry,
        nohooks=args.nohooks,
    )

    async with open_manager(args, events) as manager:
        outcomes = await manager.add(args.targets, options)

    failed = [o for o in outcomes if o.status is OutcomeStatus.FAILED]
    skipped = [o for o in outcomes if o.status is OutcomeStatus.SKIPPED]

    # Summary
    if args.verbose:
        installed = len(outcomes) - len(failed) - len(skipped)
        print(f"\nInstalled: {installed}, Skipped: {len(skipped)}, Failed: {len(failed)}")

    if failed:
        names = ", ".join(o.plugin_id for o in failed)
        print(f"Error: Failed to install {names}", file=sys.stderr)
        return 1
    return 0
