"""Plain data records passed through the acquisition core.

These are not persisted by the core; ``ArticleData`` leaves through the
``ArticleStore`` collaborator and ``SourceRecord``/``TopicConfig`` arrive as
read-only inputs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from newsacquire.crawler.utils import count_words, origin_of, validate_public_url

MAX_CANDIDATE_KEYWORDS = 20
MAX_KEYWORD_LENGTH = 100
MAX_CANDIDATE_BYTES = 5120

_SCORE_FIELDS = frozenset({"content_quality_score", "regional_relevance_score"})


def clamp_score(value: Any) -> int:
    """Round to an int in [0, 100]; unusable input scores 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    return int(max(0, min(100, round(number))))


@dataclass
class ArticleCandidate:
    url: str
    headline: Optional[str] = None
    date_published: Optional[str] = None
    image: Optional[str] = None
    keywords: list[str] = field(default_factory=list)

    def __post_init__(self):
        validate_public_url(self.url)
        self.keywords = [
            str(keyword).strip()[:MAX_KEYWORD_LENGTH]
            for keyword in (self.keywords or [])
            if keyword and str(keyword).strip()
        ][:MAX_CANDIDATE_KEYWORDS]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url}
        if self.headline:
            data["headline"] = self.headline
        if self.date_published:
            data["datePublished"] = self.date_published
        if self.image:
            data["image"] = self.image
        if self.keywords:
            data["keywords"] = list(self.keywords)
        return data

    def serialized_size(self) -> int:
        return len(json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8"))

    def capped(self, max_bytes: int = MAX_CANDIDATE_BYTES) -> "ArticleCandidate":
        """Copy that fits ``max_bytes`` once serialized.

        Drops keywords, then headline, then image. The URL is always kept,
        even if it alone exceeds the budget.
        """
        candidate = self
        for drop in ("keywords", "headline", "image"):
            if candidate.serialized_size() <= max_bytes:
                break
            candidate = replace(candidate, **{drop: [] if drop == "keywords" else None})
        return candidate


@dataclass
class ArticleData:
    title: str
    body: str
    source_url: str
    author: Optional[str] = None
    published_at: Optional[str] = None
    canonical_url: Optional[str] = None
    word_count: int = 0
    content_quality_score: int = 0
    regional_relevance_score: int = 0
    processing_status: str = "new"
    import_metadata: dict[str, Any] = field(default_factory=dict)
    image_url: Optional[str] = None

    def __post_init__(self):
        validate_public_url(self.source_url)
        if self.canonical_url:
            validate_public_url(self.canonical_url)
        self.title = (self.title or "").strip()
        self.body = (self.body or "").strip()
        if not self.word_count:
            self.word_count = count_words(self.body)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _SCORE_FIELDS:
            value = clamp_score(value)
        super().__setattr__(name, value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "author": self.author,
            "published_at": self.published_at,
            "source_url": self.source_url,
            "canonical_url": self.canonical_url,
            "image_url": self.image_url,
            "word_count": self.word_count,
            "content_quality_score": self.content_quality_score,
            "regional_relevance_score": self.regional_relevance_score,
            "processing_status": self.processing_status,
            "import_metadata": dict(self.import_metadata),
        }


@dataclass(frozen=True)
class ScrapingResult:
    success: bool
    articles: tuple[ArticleData, ...] = ()
    articles_found: int = 0
    articles_scraped: int = 0
    errors: tuple[str, ...] = ()
    method: Optional[str] = None
    source_updates: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, errors, method: Optional[str] = None, **kwargs) -> "ScrapingResult":
        return cls(success=False, errors=tuple(errors), method=method, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "method": self.method,
            "articles_found": self.articles_found,
            "articles_scraped": self.articles_scraped,
            "errors": list(self.errors),
            "articles": [article.to_dict() for article in self.articles],
            "source_updates": dict(self.source_updates),
        }


@dataclass(frozen=True)
class SourceRecord:
    """A content source as handed to the core. Never mutated here."""

    id: str
    feed_url: str
    name: str = ""
    homepage_url: Optional[str] = None
    source_type: str = "regional"
    region: Optional[str] = None
    credibility_score: int = 50
    scraping_config: dict[str, Any] = field(default_factory=dict)
    last_scraped_at: Optional[datetime] = None
    scrape_frequency_hours: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def base_url(self) -> str:
        return self.homepage_url or origin_of(self.feed_url)


@dataclass(frozen=True)
class TopicConfig:
    id: str
    name: str
    topic_type: str = "regional"
    region: Optional[str] = None
    keywords: tuple[str, ...] = ()
    negative_keywords: tuple[str, ...] = ()
    landmarks: tuple[str, ...] = ()
    postcodes: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    competing_regions: tuple["TopicConfig", ...] = ()
    max_age_days: int = 7
    snippet_allowlist: tuple[str, ...] = ()

    @property
    def is_keyword_topic(self) -> bool:
        return self.topic_type == "keyword"

    @property
    def region_name(self) -> str:
        return self.region or self.name


@dataclass(frozen=True)
class JobInput:
    topic_id: str
    source_ids: Optional[tuple[str, ...]] = None
    force_rescrape: bool = False
    max_sources: Optional[int] = None
    max_age_days: Optional[int] = None
    batch_size: Optional[int] = None
    fast_mode: bool = False
