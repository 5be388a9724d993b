"""Client for the Arc XP content API used by Newsquest titles.

Articles come straight from the section feed endpoint as JSON, so no HTML
is fetched or parsed on this path.
"""

from __future__ import annotations

import html
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional
from urllib.parse import urlencode, urljoin, urlparse

from . import AcquisitionError, ArcApiError
from .identity import IDENTITY_POOL
from .patterns import fragment_text
from .strategy import StrategyResult
from .utils import is_public_url
from ..models.articles import ArticleData
from ..utils.content_scoring import calculate_quality_score

logger = logging.getLogger(__name__)

ARC_ENDPOINT = "/pf/api/v3/content/fetch/story-by-section"
ARC_TIMEOUT_MS = 15000
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50

PROMO_IMAGE_KEYS = ("lead_art", "basic", "featured", "thumbnail")
QUOTE_TYPES = ("quote", "pullquote", "blockquote")
EMBED_TYPES = ("oembed", "embed")


def included_fields(arc_site: str) -> list[str]:
    return [
        "content_elements",
        "headlines.basic",
        "description.basic",
        "publish_date",
        "display_date",
        "created_date",
        "canonical_url",
        f"websites.{arc_site}.website_url",
        "promo_items",
        "credits.by",
        "taxonomy.primary_section",
        "taxonomy.sections",
        "access",
    ]


@dataclass
class ArcArticle:
    id: str
    arc_site: str
    section: str
    title: str
    url: str
    body_html: str
    body_text: str
    author: Optional[str] = None
    published_at: Optional[str] = None
    image_url: Optional[str] = None
    summary: Optional[str] = None


def _text(value: Any) -> str:
    return str(value or "").strip()


class ArcClient:
    """Fetches stories for one section of one Arc site."""

    def __init__(self, fetch_client, hostname: str, arc_site: str, timeout_ms: int = ARC_TIMEOUT_MS):
        self.fetch_client = fetch_client
        self.hostname = hostname.lower()
        self.arc_site = arc_site
        self.timeout_ms = timeout_ms

    @property
    def base_url(self) -> str:
        return f"https://{self.hostname}/"

    def section_url(self, section: str, size: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> str:
        params = [
            ("section", section),
            ("_website", self.arc_site),
            ("size", str(min(max(size, 1), MAX_PAGE_SIZE))),
            ("from", str(max(offset, 0))),
            ("sort", "display_date:desc"),
            ("published", "true"),
            ("content_alias", "story"),
        ]
        params.extend(("included_fields", field) for field in included_fields(self.arc_site))
        return f"https://{self.hostname}{ARC_ENDPOINT}?{urlencode(params)}"

    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": IDENTITY_POOL[0].user_agent,
            "Accept": "application/json, text/plain, */*",
            "Referer": self.base_url,
            "Origin": f"https://{self.hostname}",
            "x-arc-site": self.arc_site,
        }

    def fetch_section(self, section: str, size: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> list[ArcArticle]:
        """Stories for exactly ``section``.

        Raises:
            ArcApiError: non-2xx status or an unreadable JSON body.
            AcquisitionError: the request itself failed.
        """
        url = self.section_url(section, size, offset)
        logger.info(f"🌐 Arc API request for {self.hostname} section {section} ({self.arc_site})")
        response = self.fetch_client.fetch(url, headers=self.headers(), timeout_ms=self.timeout_ms)
        try:
            body = response.text()
        finally:
            response.close()

        if not response.ok:
            raise ArcApiError(
                response.status, f"Arc API HTTP {response.status}: {body[:200]}"
            )
        try:
            data = json.loads(body)
        except ValueError as exc:
            raise ArcApiError(response.status, f"Arc API returned invalid JSON: {exc}") from exc

        stories = data.get("content_elements") if isinstance(data, dict) else None
        if not isinstance(stories, list):
            return []
        articles = [self.transform_story(story, section) for story in stories]
        return [article for article in articles if article is not None and article.body_text]

    def fetch_with_fallbacks(
        self, section: str, fallbacks: Iterable[str] = (), size: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[ArcArticle], str]:
        """Try ``section``, then on 404 its slash-less form, each fallback and ``/``.

        Returns the stories and the section path that answered.
        """
        primary = section if section.startswith("/") else f"/{section}"
        candidates = [primary]
        if primary != "/":
            candidates.append(primary.lstrip("/"))
        for fallback in fallbacks:
            candidates.append(fallback if fallback.startswith("/") else f"/{fallback}")
        candidates.append("/")

        tried: list[str] = []
        first_error: Optional[ArcApiError] = None
        for candidate in candidates:
            if candidate in tried:
                continue
            tried.append(candidate)
            try:
                return self.fetch_section(candidate, size=size), candidate
            except ArcApiError as exc:
                first_error = first_error or exc
                if exc.status != 404:
                    raise
                logger.info(f"🔄 Arc section {candidate} not found on {self.hostname}, trying next")

        raise first_error or ArcApiError(None, f"No Arc section resolved for {self.hostname}")

    def transform_story(self, story: Any, section: str) -> Optional[ArcArticle]:
        if not isinstance(story, dict):
            return None

        access = story.get("access") or {}
        if access.get("premium") or access.get("type") == "subscription":
            return None

        title = _text((story.get("headlines") or {}).get("basic"))
        url = self._story_url(story)
        if not title or not url:
            return None

        body_html, body_text = self.render_content(story.get("content_elements") or [])
        summary = _text((story.get("description") or {}).get("basic")) or None
        if not body_html and not body_text and not summary:
            return None

        primary_section = ((story.get("taxonomy") or {}).get("primary_section") or {}).get("_id")
        return ArcArticle(
            id=_text(story.get("_id")) or url,
            arc_site=self.arc_site,
            section=primary_section or section,
            title=title,
            url=url,
            body_html=body_html or (f"<p>{html.escape(summary)}</p>" if summary else ""),
            body_text=body_text or summary or "",
            author=self._author(story),
            published_at=story.get("publish_date")
            or story.get("display_date")
            or story.get("created_date"),
            image_url=self._lead_image(story),
            summary=summary,
        )

    def _absolute(self, url: str) -> str:
        return urljoin(self.base_url, url)

    def _story_url(self, story: dict) -> Optional[str]:
        website = ((story.get("websites") or {}).get(self.arc_site) or {}).get("website_url")
        candidate = website or story.get("canonical_url")
        if not candidate:
            return None
        url = self._absolute(str(candidate))
        return url if is_public_url(url) else None

    @staticmethod
    def _author(story: dict) -> Optional[str]:
        names: list[str] = []
        for credit in (story.get("credits") or {}).get("by") or []:
            name = _text(credit.get("name")) if isinstance(credit, dict) else ""
            if name and name not in names:
                names.append(name)
        return ", ".join(names) or None

    def _lead_image(self, story: dict) -> Optional[str]:
        promo = story.get("promo_items") or {}
        for key in PROMO_IMAGE_KEYS:
            candidate = promo.get(key)
            if isinstance(candidate, dict):
                candidate = candidate.get("url")
            if isinstance(candidate, str) and candidate:
                return self._absolute(candidate)
        return None

    def render_content(self, elements: list) -> tuple[str, str]:
        """Render ``content_elements`` to ``(html, text)``."""
        html_parts: list[str] = []
        text_parts: list[str] = []

        def append(fragment: str, text: str) -> None:
            if fragment.strip():
                html_parts.append(fragment.strip())
            if text.strip():
                text_parts.append(text.strip())

        for element in elements:
            if isinstance(element, str):
                append(f"<p>{html.escape(element)}</p>", element)
                continue
            if not isinstance(element, dict):
                continue

            kind = element.get("type") or "text"
            content = _text(element.get("content") or element.get("text"))
            data = element.get("data") or {}

            if kind == "text":
                if content:
                    append(f"<p>{content}</p>", fragment_text(content))
            elif kind == "header":
                level = element.get("level")
                level = level if isinstance(level, int) and 1 <= level <= 6 else 2
                if content:
                    append(f"<h{level}>{content}</h{level}>", fragment_text(content))
            elif kind == "list":
                append(*self._render_list(element))
            elif kind in QUOTE_TYPES:
                if content:
                    append(f"<blockquote>{content}</blockquote>", fragment_text(content))
            elif kind == "raw_html":
                if content:
                    append(content, fragment_text(content))
            elif kind in EMBED_TYPES:
                embed = element.get("embed_html") or content or data.get("html")
                if embed:
                    append(embed, "")
            elif kind == "image":
                src = element.get("url") or data.get("url")
                if src:
                    caption = _text(element.get("caption") or data.get("caption"))
                    alt = html.escape(fragment_text(caption))
                    figcaption = f"<figcaption>{caption}</figcaption>" if caption else ""
                    append(
                        f'<figure><img src="{self._absolute(src)}" alt="{alt}">{figcaption}</figure>',
                        fragment_text(caption),
                    )
            elif isinstance(element.get("content_elements"), list):
                append(*self.render_content(element["content_elements"]))

        return "\n".join(html_parts), "\n\n".join(text_parts)

    def _render_list(self, element: dict) -> tuple[str, str]:
        tag = "ol" if element.get("subtype") == "ordered" else "ul"
        items_html: list[str] = []
        items_text: list[str] = []
        for item in element.get("items") or []:
            if isinstance(item, str):
                items_html.append(f"<li>{html.escape(item)}</li>")
                items_text.append(item)
            elif isinstance(item, dict):
                content = _text(item.get("content") or item.get("text"))
                if content:
                    items_html.append(f"<li>{content}</li>")
                    items_text.append(fragment_text(content))
                elif isinstance(item.get("content_elements"), list):
                    nested_html, nested_text = self.render_content(item["content_elements"])
                    if nested_html:
                        items_html.append(f"<li>{nested_html}</li>")
                    if nested_text:
                        items_text.append(nested_text)
        if not items_html:
            return "", ""
        return f"<{tag}>{''.join(items_html)}</{tag}>", "\n".join(items_text)


def arc_article_to_data(article: ArcArticle) -> ArticleData:
    return ArticleData(
        title=article.title,
        body=article.body_text,
        source_url=article.url,
        author=article.author,
        published_at=article.published_at,
        image_url=article.image_url,
        content_quality_score=calculate_quality_score(
            article.body_text, article.title, article.author, article.published_at
        ),
        import_metadata={
            "extraction_method": "newsquest_arc",
            "arc_site": article.arc_site,
            "arc_section": article.section,
            "arc_story_id": article.id,
        },
    )


class PlatformApiStrategy:
    name = "platform_api"

    def __init__(self, fetch_client, profile):
        self.fetch_client = fetch_client
        self.profile = profile

    def applies(self) -> bool:
        return self.profile is not None and self.profile.family == "newsquest" and bool(self.profile.arc_site)

    def run(self, source) -> StrategyResult:
        result = StrategyResult(self.name)
        section = (source.scraping_config or {}).get("section") or source.metadata.get("section")
        if not section:
            section = next(iter(self.profile.section_fallbacks), "/")

        client = ArcClient(
            self.fetch_client, urlparse(source.base_url).hostname or "", self.profile.arc_site
        )
        try:
            stories, resolved = client.fetch_with_fallbacks(
                section, fallbacks=self.profile.section_fallbacks
            )
        except ArcApiError as exc:
            result.errors.append(f"Arc API error (status {exc.status}): {exc}")
            result.source_updates["arc_status"] = exc.status
            return result
        except AcquisitionError as exc:
            result.errors.append(f"Arc API request failed: {exc}")
            return result

        result.articles_found = len(stories)
        result.source_updates["resolved_section"] = resolved
        for story in stories:
            try:
                result.articles.append(arc_article_to_data(story))
            except AcquisitionError as exc:
                result.errors.append(f"Arc story skipped ({story.url}): {exc}")
        logger.info(f"📰 Arc API returned {len(result.articles)} stories for {client.hostname}{resolved}")
        return result
