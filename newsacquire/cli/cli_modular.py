"""Command-line entry point with commands loaded on demand."""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
from collections.abc import Callable

logger = logging.getLogger(__name__)

CommandHandler = Callable[[argparse.Namespace], int]

COMMAND_MODULES: dict[str, str] = {
    "probe": "probe",
    "extract-url": "extract_url",
    "discover": "discover",
}

COMMAND_HELP: dict[str, str] = {
    "probe": "Diagnose whether a URL can be fetched",
    "extract-url": "Fetch one article page and print its extracted content",
    "discover": "Run the discovery strategy chain for one source",
}


def create_parser() -> argparse.ArgumentParser:
    """Minimal parser; command arguments are added once the command is known."""
    parser = argparse.ArgumentParser(
        prog="news-acquire",
        description="newsacquire - resilient news discovery and extraction",
        add_help=False,
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. INFO, DEBUG)",
    )
    parser.add_argument(
        "command",
        nargs="?",
        help="Command to run (use 'COMMAND --help' for command-specific help)",
    )
    return parser


def _load_command_parser(command: str) -> tuple[Callable, CommandHandler] | None:
    """Import the module for ``command`` and return ``(add_parser, handler)``."""
    module_name = COMMAND_MODULES.get(command)
    if not module_name:
        return None

    try:
        module = importlib.import_module(f"newsacquire.cli.commands.{module_name}")
    except ImportError as e:
        logger.warning(f"Failed to load command '{command}': {e}")
        return None

    slug = command.replace("-", "_")
    parser_func = getattr(module, f"add_{slug}_parser", None)
    handler_func = getattr(module, f"handle_{slug}_command", None)
    if parser_func and handler_func:
        return parser_func, handler_func
    return None


def _print_usage() -> None:
    print("Available commands:", file=sys.stderr)
    for name, help_text in COMMAND_HELP.items():
        print(f"  {name:<12} - {help_text}", file=sys.stderr)
    print("Use: news-acquire COMMAND --help for more info", file=sys.stderr)


def main(
    argv: list[str] | None = None,
    *,
    setup_logging_func: Callable[[str], None] | None = None,
    handler_overrides: dict[str, CommandHandler] | None = None,
) -> int:
    parser = create_parser()
    args, remaining = parser.parse_known_args(argv)

    if setup_logging_func is None:
        from .context import setup_logging as default_setup_logging

        setup_logging_func = default_setup_logging

    if args.log_level is None:
        from newsacquire.config import get_settings

        args.log_level = get_settings().log_level
    setup_logging_func(args.log_level)

    command = args.command
    if not command:
        _print_usage()
        return 1

    result = _load_command_parser(command)
    if result is None:
        print(f"Unknown command: {command}", file=sys.stderr)
        return 1
    add_parser_func, handle_func = result

    full_parser = argparse.ArgumentParser(
        prog=f"news-acquire {command}",
        description=COMMAND_HELP.get(command),
    )
    full_parser.add_argument("--log-level", default=args.log_level)
    subparsers = full_parser.add_subparsers(dest="command")
    add_parser_func(subparsers)
    full_args = full_parser.parse_args([command] + remaining)

    if handler_overrides and command in handler_overrides:
        handle_func = handler_overrides[command]
    return handle_func(full_args)


if __name__ == "__main__":
    sys.exit(main())
