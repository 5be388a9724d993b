"""``extract-url`` command: fetch one article page and print its content."""

from __future__ import annotations

import argparse
import json
import logging

from newsacquire.crawler import AcquisitionError

logger = logging.getLogger(__name__)


def add_extract_url_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "extract-url", help="Extract content for a single URL and print it as JSON"
    )
    parser.add_argument("url", type=str, help="URL to extract")
    parser.add_argument(
        "--no-body",
        dest="include_body",
        action="store_false",
        default=True,
        help="Omit the article body from the output",
    )
    parser.set_defaults(func=handle_extract_url_command)
    return parser


def handle_extract_url_command(args: argparse.Namespace) -> int:
    from newsacquire.cli.context import build_runtime
    from newsacquire.crawler.strategy import ArticlePageLoader

    runtime = build_runtime()
    loader = ArticlePageLoader(runtime.engine, runtime.extractor)
    try:
        article = loader.load(args.url, discovery_method="direct")
    except AcquisitionError as exc:
        logger.error(f"❌ Extraction failed for {args.url}: {exc}")
        print(json.dumps({"url": args.url, "error": str(exc)}, indent=2))
        return 1
    finally:
        runtime.close()

    data = article.to_dict()
    if not args.include_body:
        data.pop("body", None)
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return 0
