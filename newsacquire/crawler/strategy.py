"""Shared plumbing for discovery strategies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from . import AcquisitionError, InvalidContentError
from .extractor import ContentExtractor, ExtractedContent
from ..models.articles import ArticleData

logger = logging.getLogger(__name__)


@dataclass
class StrategyResult:
    """What one strategy produced for one source.

    ``articles`` are unqualified; the orchestrator runs the gate.
    """

    name: str
    articles: list[ArticleData] = field(default_factory=list)
    articles_found: int = 0
    errors: list[str] = field(default_factory=list)
    source_updates: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return bool(self.articles)


class ArticlePageLoader:
    """Fetches article pages through the retry engine and extracts them."""

    def __init__(self, engine, extractor: Optional[ContentExtractor] = None, profile=None, policy=None):
        self.engine = engine
        self.extractor = extractor or ContentExtractor()
        self.profile = profile
        self.policy = policy

    def extract(self, url: str) -> ExtractedContent:
        html = self.engine.fetch_resilient(url, policy=self.policy, profile=self.profile)
        extracted = self.extractor.extract(html, url)
        if not extracted.has_body:
            raise InvalidContentError(f"No article text extracted from {url}")
        return extracted

    def load(self, url: str, **import_metadata: Any) -> ArticleData:
        return self.extract(url).to_article(url, **import_metadata)

    def load_many(
        self, urls: Iterable[str], limit: int, **import_metadata: Any
    ) -> tuple[list[ArticleData], list[str]]:
        """Extract up to ``limit`` URLs; per-URL failures become error strings."""
        articles: list[ArticleData] = []
        errors: list[str] = []
        for url in list(urls)[:limit]:
            try:
                articles.append(self.load(url, **import_metadata))
            except AcquisitionError as exc:
                logger.debug(f"Article extraction failed for {url}: {exc}")
                errors.append(f"Article extraction error ({url}): {exc}")
        return articles, errors
