"""``probe`` command: report how (and whether) a URL can be fetched."""

from __future__ import annotations

import argparse
import json
import logging

from newsacquire.crawler import ValidationError

logger = logging.getLogger(__name__)


def add_probe_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser("probe", help="Diagnose accessibility of a URL")
    parser.add_argument("url", type=str, help="URL to probe")
    parser.add_argument(
        "--bypass-head",
        dest="bypass_head",
        action="store_true",
        default=False,
        help="Skip HEAD and start with a small ranged GET",
    )
    parser.add_argument(
        "--domain-hint",
        dest="domain_hint",
        default=None,
        help="Domain whose warm-up hint should be read and updated",
    )
    parser.set_defaults(func=handle_probe_command)
    return parser


def handle_probe_command(args: argparse.Namespace) -> int:
    from newsacquire.cli.context import build_runtime

    runtime = build_runtime()
    try:
        result = runtime.prober.probe(
            args.url, bypass_head=args.bypass_head, domain_hint=args.domain_hint
        )
    except ValidationError as exc:
        logger.error(f"Invalid URL: {exc}")
        return 1
    finally:
        runtime.close()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.accessible else 1
