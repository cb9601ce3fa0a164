"""
pm CLI - Graft Plugin Manager.

Pacman-style interface for managing the plugins of a graft project.

Usage:
    pm -S <plugin>[@version]...  Add plugin(s) to the project
    pm -R <plugin>...            Remove plugin(s) from the project
    pm -Q                        List installed plugins
"""

import argparse
import sys

from graft.core.errors import GraftError


class PMError(Exception):
    """Base exception for pm errors."""

    pass


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with pacman-style flags."""
    parser = argparse.ArgumentParser(
        prog="pm",
        description="Graft Plugin Manager - Pacman-style plugin manager",
        add_help=False,
    )

    # Operation flags (mutually exclusive)
    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("-S", "--sync", action="store_true", help="Add plugin")
    ops.add_argument("-R", "--remove", action="store_true", help="Remove plugin")
    ops.add_argument("-Q", "--query", action="store_true", help="Query installed")
    ops.add_argument("-h", "--help", action="store_true", help="Show help")

    # Add/remove options
    parser.add_argument(
        "--variable",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Plugin variable (repeatable)",
    )
    parser.add_argument("--save", action="store_true", help="Record the change in graft.toml")
    parser.add_argument("-f", "--force", action="store_true", help="Force the operation")
    parser.add_argument("--nohooks", action="store_true", help="Do not run hooks")
    parser.add_argument("--link", action="store_true", help="Symlink local plugins")
    parser.add_argument(
        "--searchpath",
        action="append",
        default=[],
        metavar="DIR",
        help="Local directory to search for plugins (repeatable)",
    )
    parser.add_argument(
        "--noregistry", action="store_true", help="Never fetch from the registry"
    )

    # Common options
    parser.add_argument("--project", metavar="DIR", help="Project root (default: search upwards)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # Positional arguments
    parser.add_argument("targets", nargs="*", help="Plugin ids, specs, URLs or directories")

    return parser


def print_help():
    """Print help message."""
    help_text = """
pm - Graft Plugin Manager

Usage:
    pm -S <plugin>[@version]...  Add plugin(s) to the project
    pm -R <plugin>...            Remove plugin(s) from the project
    pm -Q                        List installed plugins

Options:
    --variable NAME=VALUE        Plugin variable (repeatable)
    --save                       Record the change in graft.toml
    -f, --force                  Force the operation
    --nohooks                    Do not run hooks
    --link                       Symlink local plugins instead of copying
    --searchpath DIR             Local directory to search for plugins
    --noregistry                 Never fetch from the registry
    --project DIR                Project root (default: search upwards)
    -v, --verbose                Verbose output
    -h, --help                   Show this help
"""
    print(help_text.strip())


def main(argv: list[str] | None = None) -> int:
    """Main entry point for pm CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        # Show help
        if args.help or (not args.sync and not args.remove and not args.query):
            print_help()
            return 0

        # Route to appropriate command
        if args.sync:
            # -S: Add
            from pm.commands.install import install_command

            return install_command(args)

        elif args.remove:
            # -R: Remove
            from pm.commands.remove import remove_command

            return remove_command(args)

        elif args.query:
            # -Q: Query
            from pm.commands.query import query_command

            return query_command(args)

    except (PMError, GraftError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
