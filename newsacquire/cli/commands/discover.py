"""``discover`` command: run the discovery chain for a single source."""

from __future__ import annotations

import argparse
import json
import logging

from newsacquire.crawler import ValidationError
from newsacquire.crawler.utils import validate_public_url

logger = logging.getLogger(__name__)


def _csv(value: str | None) -> tuple[str, ...]:
    return tuple(item.strip() for item in (value or "").split(",") if item.strip())


def add_discover_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "discover", help="Discover and qualify articles for one source"
    )
    parser.add_argument("url", type=str, help="Source homepage URL")
    parser.add_argument("--feed-url", dest="feed_url", default=None, help="Known RSS/Atom feed")
    parser.add_argument("--region", default=None, help="Region the topic covers")
    parser.add_argument(
        "--keywords",
        default=None,
        help="Comma-separated keywords; without --region this makes a keyword topic",
    )
    parser.add_argument(
        "--max-age-days", dest="max_age_days", type=int, default=None, help="Recency window"
    )
    parser.add_argument(
        "--no-qualify",
        dest="qualify",
        action="store_false",
        default=True,
        help="Skip the qualification gate and print everything extracted",
    )
    parser.add_argument(
        "--show-articles",
        dest="show_articles",
        action="store_true",
        default=False,
        help="Include full article records in the output",
    )
    parser.set_defaults(func=handle_discover_command)
    return parser


def handle_discover_command(args: argparse.Namespace) -> int:
    from newsacquire.cli.context import build_runtime
    from newsacquire.models.articles import SourceRecord, TopicConfig

    try:
        for url in filter(None, (args.url, args.feed_url)):
            validate_public_url(url)
    except ValidationError as exc:
        logger.error(f"Invalid source URL: {exc}")
        return 1
    source = SourceRecord(
        id="cli",
        feed_url=args.feed_url or args.url,
        homepage_url=args.url,
        region=args.region,
    )

    keywords = _csv(args.keywords)
    topic = None
    if args.qualify and (args.region or keywords):
        topic = TopicConfig(
            id="cli",
            name=args.region or "keywords",
            topic_type="regional" if args.region else "keyword",
            region=args.region,
            keywords=keywords,
        )

    runtime = build_runtime()
    try:
        result = runtime.orchestrator.discover(
            source, topic, max_age_days=args.max_age_days
        )
    finally:
        runtime.close()

    data = result.to_dict()
    if not args.show_articles:
        data["articles"] = [
            {
                "title": article.title,
                "source_url": article.source_url,
                "published_at": article.published_at,
                "word_count": article.word_count,
                "regional_relevance_score": article.regional_relevance_score,
                "content_quality_score": article.content_quality_score,
            }
            for article in result.articles
        ]
    data["telemetry"] = runtime.recorder.summary()
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))
    return 0 if result.success else 1
