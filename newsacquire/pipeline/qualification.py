"""Accept/reject gate applied to every discovered article.

Checks run in a fixed order and the first failing check decides the
reason. Scores and ``processing_status`` are written back onto the
article. Re-running the gate with the same inputs gives the same result.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from newsacquire.config import get_settings
from newsacquire.crawler.utils import count_words, normalize_domain, parse_date
from newsacquire.utils.content_scoring import calculate_quality_score
from newsacquire.utils.relevance import calculate_relevance, find_negative_keywords
from newsacquire.utils.telemetry import EVENT_QUALIFICATION

logger = logging.getLogger(__name__)

EARLIEST_VALID_DATE = datetime(2020, 1, 1, tzinfo=timezone.utc)
FUTURE_DATE_TOLERANCE = timedelta(hours=24)
DEFAULT_MAX_AGE_DAYS = 7

MIN_WORD_COUNT = 100
ALLOWLIST_MIN_WORD_COUNT = 50
SNIPPET_MAX_WORDS = 25
TRUNCATED_SNIPPET_MAX_WORDS = 75
MAX_DERIVED_TITLE_CHARS = 120

RELEVANCE_THRESHOLDS = {"keyword": 2, "regional": 3}
DEFAULT_RELEVANCE_THRESHOLD = 5
QUALITY_THRESHOLD = 30
HIGH_CREDIBILITY_QUALITY_THRESHOLD = 15
HIGH_CREDIBILITY_SCORE = 90

SNIPPET_PHRASES = (
    "read more",
    "continue reading",
    "full story",
    "view more",
    "the post",
    "appeared first",
    "original article",
    "source:",
    "click here",
    "see more",
    "read the full",
    "subscribe",
    "follow us",
    "newsletter",
)

DEFAULT_SNIPPET_ALLOWLIST = (
    "theargus.co.uk",
    "sussexexpress.co.uk",
    "brightonandhovenews.org",
    "sussexlive.co.uk",
    "eastsussexnews.co.uk",
    "brightonjournal.co.uk",
)

REASON_ACCEPTED = "accepted"
REASON_MISSING_CONTENT = "missing_content"
REASON_MISSING_DATE = "missing_date"
REASON_INVALID_DATE = "invalid_date"
REASON_FUTURE_DATE = "future_date"
REASON_TOO_OLD = "too_old"
REASON_TOO_SHORT = "too_short"
REASON_SNIPPET = "snippet"
REASON_NEGATIVE_KEYWORD = "negative_keyword"
REASON_COMPETING_REGION = "competing_region"
REASON_LOW_RELEVANCE = "low_relevance"
REASON_LOW_QUALITY = "low_quality"

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s")


@dataclass(frozen=True)
class QualificationDecision:
    accepted: bool
    reason: str
    relevance_score: int = 0
    quality_score: int = 0


def derive_title(body: str) -> str:
    """First sentence of ``body``, cut at a word boundary."""
    text = " ".join((body or "").split())
    first = _SENTENCE_END_RE.split(text, maxsplit=1)[0]
    if len(first) <= MAX_DERIVED_TITLE_CHARS:
        return first
    cut = first[:MAX_DERIVED_TITLE_CHARS].rsplit(" ", 1)[0]
    return cut or first[:MAX_DERIVED_TITLE_CHARS]


def is_snippet(body: str) -> bool:
    """Whether ``body`` looks like a feed teaser rather than a full article."""
    if not body:
        return True
    word_count = count_words(body)
    if word_count < SNIPPET_MAX_WORDS:
        return True

    lowered = body.lower()
    if any(phrase in lowered for phrase in SNIPPET_PHRASES):
        return True

    stripped = body.strip()
    truncated = stripped.endswith(("...", "…")) or stripped.count(".") < 2
    return truncated and word_count < TRUNCATED_SNIPPET_MAX_WORDS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QualificationGate:
    def __init__(
        self,
        allowlist: Optional[Iterable[str]] = None,
        recorder=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if allowlist is None:
            allowlist = DEFAULT_SNIPPET_ALLOWLIST + tuple(get_settings().snippet_allowlist)
        self.allowlist = tuple(normalize_domain(domain) for domain in allowlist if domain)
        self.recorder = recorder
        self.clock = clock

    def is_allowlisted(self, article, topic, source=None) -> bool:
        """Sources whose missing dates and short teasers are tolerated."""
        if topic.is_keyword_topic:
            return True

        topic_region = topic.region_name.lower()
        source_region = (getattr(source, "region", None) or "").lower()
        if source_region and source_region in topic_region:
            return True

        domains = {normalize_domain(article.source_url)}
        if source is not None:
            domains.add(normalize_domain(source.feed_url))
        allowed = self.allowlist + tuple(normalize_domain(d) for d in topic.snippet_allowlist)
        return any(
            domain == entry or domain.endswith("." + entry)
            for domain in domains
            if domain
            for entry in allowed
            if entry
        )

    def _hyper_local_floor(self, article, topic, source) -> bool:
        if topic.is_keyword_topic or not topic.region:
            return False
        region = topic.region.lower()
        source_region = (getattr(source, "region", None) or "").lower()
        if source_region and region in source_region:
            return True
        slug = re.sub(r"[^a-z0-9]", "", region)
        urls = [article.source_url] + ([source.feed_url] if source is not None else [])
        return bool(slug) and any(slug in normalize_domain(url).replace("-", "") for url in urls)

    def qualify(
        self,
        article,
        topic,
        source=None,
        now: Optional[datetime] = None,
        max_age_days: Optional[int] = None,
    ) -> QualificationDecision:
        """Decide whether ``article`` is kept for ``topic``.

        Args:
            article: ``ArticleData``; title/body/published_at may be
                filled in, scores and status are always written.
            topic: ``TopicConfig`` supplying keywords, regions and max age.
            source: Optional ``SourceRecord`` (region, credibility, type).
            now: Reference time; defaults to the gate's clock.
            max_age_days: Job-level override of the topic's window.
        """
        now = now or self.clock()
        allowlisted = self.is_allowlisted(article, topic, source)

        # (a) content
        if not article.title and not article.body:
            return self._reject(article, REASON_MISSING_CONTENT)
        if not article.title:
            article.title = derive_title(article.body)
        elif not article.body:
            article.body = article.title
        article.word_count = count_words(article.body)

        # (b) date
        published = parse_date(article.published_at)
        if published is None:
            if not allowlisted:
                return self._reject(article, REASON_MISSING_DATE)
            published = now
            article.published_at = now.isoformat()
            article.import_metadata["published_at_substituted"] = True
        if published > now + FUTURE_DATE_TOLERANCE:
            return self._reject(article, REASON_FUTURE_DATE)
        if published < EARLIEST_VALID_DATE:
            return self._reject(article, REASON_INVALID_DATE)

        # (c) recency
        window = max_age_days or topic.max_age_days or DEFAULT_MAX_AGE_DAYS
        if now - published > timedelta(days=window):
            return self._reject(article, REASON_TOO_OLD)

        # (d) length
        min_words = ALLOWLIST_MIN_WORD_COUNT if allowlisted else MIN_WORD_COUNT
        if article.word_count < min_words:
            return self._reject(article, REASON_TOO_SHORT)

        # (e) snippets
        if is_snippet(article.body) and not (
            allowlisted and article.word_count >= TRUNCATED_SNIPPET_MAX_WORDS
        ):
            return self._reject(article, REASON_SNIPPET)

        # (f) negative keywords
        text = f"{article.title} {article.body}"
        if find_negative_keywords(text, topic.negative_keywords):
            return self._reject(article, REASON_NEGATIVE_KEYWORD)

        # (g) relevance
        threshold = RELEVANCE_THRESHOLDS.get(topic.topic_type, DEFAULT_RELEVANCE_THRESHOLD)
        relevance = calculate_relevance(
            article.title,
            article.body,
            topic,
            source_type=getattr(source, "source_type", "regional"),
            source_url=article.source_url,
        )
        if relevance.competing_region_in_url:
            return self._reject(article, REASON_COMPETING_REGION)
        relevance_score = relevance.score
        if relevance_score < threshold and self._hyper_local_floor(article, topic, source):
            relevance_score = threshold
        article.regional_relevance_score = relevance_score

        # (h) quality
        quality = calculate_quality_score(
            article.body, article.title, article.author, article.published_at
        )
        article.content_quality_score = quality

        if relevance_score < threshold:
            return self._reject(article, REASON_LOW_RELEVANCE, relevance_score, quality)

        credibility = getattr(source, "credibility_score", 0) or 0
        quality_threshold = (
            HIGH_CREDIBILITY_QUALITY_THRESHOLD
            if credibility >= HIGH_CREDIBILITY_SCORE
            else QUALITY_THRESHOLD
        )
        if quality < quality_threshold:
            return self._reject(article, REASON_LOW_QUALITY, relevance_score, quality)

        article.processing_status = "qualified"
        return QualificationDecision(True, REASON_ACCEPTED, relevance_score, quality)

    def _reject(
        self, article, reason: str, relevance: Optional[int] = None, quality: Optional[int] = None
    ) -> QualificationDecision:
        if relevance is None:
            relevance = 0
            article.regional_relevance_score = 0
        if quality is None:
            quality = calculate_quality_score(
                article.body, article.title, article.author, article.published_at
            )
            article.content_quality_score = quality
        article.processing_status = "rejected"

        logger.debug(f"Rejected {article.source_url}: {reason}")
        if self.recorder is not None:
            self.recorder.record(
                EVENT_QUALIFICATION,
                reason,
                False,
                url=article.source_url,
                relevance=relevance,
                quality=quality,
            )
        return QualificationDecision(False, reason, relevance, quality)
