"""Discovery orchestrator: runs the strategy chain for one source.

Strategies run in a fixed order (platform API, structured data, feed,
sitemap, heuristic HTML) and the first one yielding at least one qualified
article wins. Strategy errors are only reported when every strategy failed.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from . import AcquisitionError
from .arc_client import PlatformApiStrategy
from .extractor import ContentExtractor
from .feeds import FeedStrategy
from .heuristics import HeuristicStrategy
from .profiles import STRATEGY_NAMES, DomainProfile, DomainProfileResolver
from .sitemaps import SitemapStrategy
from .strategy import ArticlePageLoader, StrategyResult
from .utils import normalize_url, same_site, to_iso
from ..metadata.structured_data import scan_article_candidates
from ..models.articles import ScrapingResult
from ..pipeline.qualification import is_snippet
from ..utils.telemetry import EVENT_STRATEGY

logger = logging.getLogger(__name__)

NO_ARTICLES_ERROR = "No articles found via available strategies"
MAX_STRUCTURED_ARTICLES = 20
QUALITY_TREND_ALPHA = 0.3


def update_quality_trend(previous: Optional[dict], articles) -> dict:
    """Fold a run's articles into the source's rolling quality metrics.

    The first tracked run seeds ``avg_word_count`` and ``snippet_rate``;
    later runs blend in with an exponential moving average
    (``QUALITY_TREND_ALPHA``). An empty batch leaves the metrics unchanged.
    """
    previous = previous if isinstance(previous, dict) else {}
    articles = list(articles)
    if not articles:
        return dict(previous) or {"avg_word_count": 0, "snippet_rate": 0.0, "total_scrapes_tracked": 0}

    batch_words = sum(article.word_count for article in articles) / len(articles)
    batch_snippets = sum(1 for article in articles if is_snippet(article.body)) / len(articles)
    tracked = int(previous.get("total_scrapes_tracked") or 0)
    if tracked:
        alpha = QUALITY_TREND_ALPHA
        batch_words = alpha * batch_words + (1 - alpha) * float(previous.get("avg_word_count") or 0)
        batch_snippets = alpha * batch_snippets + (1 - alpha) * float(previous.get("snippet_rate") or 0)
    return {
        "avg_word_count": round(batch_words),
        "snippet_rate": round(batch_snippets, 2),
        "total_scrapes_tracked": tracked + 1,
    }


def _unseen(articles, seen: set[str]) -> list:
    """Drop articles whose normalized URL an earlier strategy already produced."""
    fresh = []
    for article in articles:
        key = normalize_url(article.source_url)
        if key in seen:
            continue
        seen.add(key)
        fresh.append(article)
    return fresh


class _PageCache:
    """Fetches a source's index page at most once per discovery run."""

    def __init__(self, engine, url: str, profile: DomainProfile):
        self.engine = engine
        self.url = url
        self.profile = profile
        self._html: Optional[str] = None
        self._error: Optional[AcquisitionError] = None

    @property
    def cached(self) -> Optional[str]:
        return self._html

    def get(self) -> str:
        if self._html is None and self._error is None:
            try:
                self._html = self.engine.fetch_resilient(self.url, profile=self.profile)
            except AcquisitionError as exc:
                self._error = exc
        if self._error is not None:
            raise self._error
        return self._html


class StructuredDataStrategy:
    name = "structured_data"

    def __init__(self, loader: ArticlePageLoader):
        self.loader = loader

    def run(self, source, page_html: str) -> StrategyResult:
        result = StrategyResult(self.name)
        base_url = source.base_url
        scan = scan_article_candidates(page_html, base_url)
        candidates = [c for c in scan.candidates if same_site(c.url, base_url)]
        result.articles_found = len(candidates)
        result.source_updates["structured_candidates"] = [c.to_dict() for c in scan.candidates]
        if not candidates:
            result.errors.append("No structured data article candidates")
            return result

        hints = {candidate.url: candidate for candidate in candidates}
        articles, errors = self.loader.load_many(
            list(hints), MAX_STRUCTURED_ARTICLES, discovery_method="structured_data"
        )
        for article in articles:
            hint = hints.get(article.source_url)
            if hint is None:
                continue
            article.published_at = article.published_at or to_iso(hint.date_published)
            article.image_url = article.image_url or hint.image
            if hint.keywords:
                article.import_metadata["keywords"] = list(hint.keywords)
        result.articles = articles
        result.errors.extend(errors)
        return result


class DiscoveryOrchestrator:
    """Runs discovery strategies for a source and qualifies what they find."""

    def __init__(
        self,
        engine,
        fetch_client=None,
        resolver: Optional[DomainProfileResolver] = None,
        gate=None,
        extractor: Optional[ContentExtractor] = None,
        breaker=None,
        recorder=None,
    ):
        self.engine = engine
        self.fetch_client = fetch_client or engine.fetch_client
        self.resolver = resolver or DomainProfileResolver()
        self.gate = gate
        self.extractor = extractor or ContentExtractor()
        self.breaker = breaker
        self.recorder = recorder

    @staticmethod
    def strategy_order(profile: DomainProfile, last_successful: Optional[str] = None) -> list[str]:
        """Default order, profile preference first, then the source's last
        winning strategy fast-tracked ahead of everything. Skipped strategies
        never run.
        """
        options = profile.scraping_strategy
        order = [name for name in STRATEGY_NAMES if name not in options.skip]
        for name in (options.preferred, last_successful):
            if name in order:
                order.remove(name)
                order.insert(0, name)
        return order

    def discover(
        self,
        source,
        topic=None,
        tenant_id: Optional[str] = None,
        max_age_days: Optional[int] = None,
    ) -> ScrapingResult:
        """Discover and qualify articles for one source.

        Never raises for acquisition failures; they are returned as the
        result's error list.
        """
        breaker_key = source.feed_url
        if self.breaker is not None and not self.breaker.can_execute(breaker_key):
            wait = self.breaker.seconds_until_retry(breaker_key)
            logger.info(f"⏸️ Circuit open for {breaker_key}, skipping ({wait:.0f}s until retry)")
            return ScrapingResult.failure(
                [f"Circuit breaker open for {breaker_key}; retry in {wait:.0f}s"],
                method="circuit_breaker",
            )

        profile = self.resolver.resolve(
            source.base_url,
            topic_id=getattr(topic, "id", None),
            tenant_id=tenant_id,
            source_metadata=source.metadata,
        )
        loader = ArticlePageLoader(self.engine, self.extractor, profile)
        page = _PageCache(self.engine, source.base_url, profile)
        runners: dict[str, Callable[[], Optional[StrategyResult]]] = {
            "platform_api": lambda: self._platform_api(source, profile),
            "structured_data": lambda: StructuredDataStrategy(loader).run(source, page.get()),
            "feed": lambda: FeedStrategy(self.engine, loader, profile).run(source, page.cached),
            "sitemap": lambda: SitemapStrategy(self.engine, loader, profile).run(source),
            "heuristic": lambda: HeuristicStrategy(self.engine, loader, profile).run(
                source, page.get()
            ),
        }

        errors: list[str] = []
        source_updates: dict = {}
        articles_found = 0
        extracted_any = False
        seen: set[str] = set()
        metadata = source.metadata or {}

        for name in self.strategy_order(profile, metadata.get("last_successful_method")):
            try:
                outcome = runners[name]()
            except AcquisitionError as exc:
                outcome = StrategyResult(name, errors=[str(exc)])
            except Exception as exc:
                logger.exception(f"Strategy {name} crashed for {source.feed_url}")
                outcome = StrategyResult(name, errors=[f"Unexpected error: {exc}"])
            if outcome is None:
                continue

            source_updates.update(outcome.source_updates)
            articles_found = max(articles_found, outcome.articles_found)
            extracted_any = extracted_any or bool(outcome.articles)
            outcome.articles = _unseen(outcome.articles, seen)
            qualified = self._qualify(outcome.articles, topic, source, max_age_days)
            self._record(name, source, bool(qualified), outcome, len(qualified))

            if qualified:
                logger.info(
                    f"✅ {name} produced {len(qualified)}/{len(outcome.articles)} "
                    f"qualified articles for {source.feed_url}"
                )
                if self.breaker is not None:
                    self.breaker.record_success(breaker_key)
                source_updates["last_successful_method"] = name
                source_updates["quality_trend"] = update_quality_trend(
                    metadata.get("quality_trend"), qualified
                )
                return ScrapingResult(
                    success=True,
                    articles=tuple(qualified),
                    articles_found=outcome.articles_found or len(outcome.articles),
                    articles_scraped=len(outcome.articles),
                    method=name,
                    source_updates=source_updates,
                )

            errors.extend(f"{name}: {error}" for error in outcome.errors)
            if outcome.articles:
                errors.append(f"{name}: {len(outcome.articles)} articles extracted, none qualified")

        if self.breaker is not None:
            # Healthy sources with nothing on-topic must not trip the breaker
            if extracted_any:
                self.breaker.record_success(breaker_key)
            else:
                self.breaker.record_failure(breaker_key)
        if extracted_any:
            logger.info(f"📭 No qualified articles for {source.feed_url}")
        else:
            logger.warning(f"❌ All discovery strategies failed for {source.feed_url}")
        return ScrapingResult.failure(
            errors or [NO_ARTICLES_ERROR],
            articles_found=articles_found,
            source_updates=source_updates,
        )

    def _platform_api(self, source, profile: DomainProfile) -> Optional[StrategyResult]:
        strategy = PlatformApiStrategy(self.fetch_client, profile)
        if not strategy.applies():
            return None
        return strategy.run(source)

    def _qualify(self, articles, topic, source, max_age_days):
        if topic is None or self.gate is None:
            return list(articles)
        return [
            article
            for article in articles
            if self.gate.qualify(article, topic, source, max_age_days=max_age_days).accepted
        ]

    def _record(self, name: str, source, success: bool, outcome: StrategyResult, qualified: int) -> None:
        if self.recorder is None:
            return
        self.recorder.record(
            EVENT_STRATEGY,
            name,
            success,
            url=source.feed_url,
            articles_found=outcome.articles_found,
            articles_extracted=len(outcome.articles),
            articles_qualified=qualified,
            errors=len(outcome.errors),
        )
