"""Alternate URL rewrites (AMP, mobile, RSS) tried when the canonical URL
is blocked, and the runner that tries them through the retry engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from . import AcquisitionError
from .utils import is_public_url, normalize_url
from ..utils.bot_protection import CONTENT_PAGE
from ..utils.telemetry import EVENT_STRATEGY

logger = logging.getLogger(__name__)

AMP_SUBDOMAIN = "amp-subdomain"
AMP_QUERY = "amp-query"
AMP_PATH = "amp-path"
MOBILE_SUBDOMAIN = "mobile-subdomain"
RSS_SUFFIX = "rss-suffix"
SECTION_RSS = "section-rss"
CUSTOM = "custom"

ROUTE_STRATEGY_ORDER = (
    AMP_SUBDOMAIN,
    AMP_QUERY,
    AMP_PATH,
    MOBILE_SUBDOMAIN,
    RSS_SUFFIX,
    SECTION_RSS,
    CUSTOM,
)

# Section feed layouts per content platform family.
SECTION_RSS_TEMPLATES = {
    "newsquest": "/{section}/rss/",
    "reach": "/{section}/?service=rss",
    "jpi": "/rss/{section}",
}


@dataclass(frozen=True)
class AlternateRoute:
    strategy: str
    url: str


def _bare_host(parsed) -> str:
    host = (parsed.hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def _with_host(parsed, host: str) -> str:
    netloc = host if parsed.port is None else f"{host}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def _with_path(parsed, path: str, query: Optional[str] = None) -> str:
    return urlunparse(
        parsed._replace(path=path, query=parsed.query if query is None else query, fragment="")
    )


def _section_from_path(path: str) -> Optional[str]:
    segments = [segment for segment in path.split("/") if segment]
    return segments[0] if segments else None


def _conditions_met(
    conditions: Mapping[str, Any], parsed, family: Optional[str]
) -> bool:
    for key, expected in (conditions or {}).items():
        if key == "family":
            if family != expected:
                return False
        elif key == "path_prefix":
            if not (parsed.path or "/").startswith(str(expected)):
                return False
        elif key == "host_suffix":
            if not _bare_host(parsed).endswith(str(expected).lower()):
                return False
        else:
            logger.debug(f"Unknown alternate route condition {key!r}; skipping route")
            return False
    return True


def _render_custom_route(route: str, parsed, section: Optional[str]) -> Optional[str]:
    rendered = route.format(
        host=_bare_host(parsed),
        path=(parsed.path or "/").lstrip("/"),
        section=section or "",
    )
    if rendered.startswith(("http://", "https://")):
        return rendered
    if not rendered.startswith("/"):
        rendered = "/" + rendered
    return _with_path(parsed, rendered, query="")


def generate_alternate_routes(
    url: str,
    family: Optional[str] = None,
    section: Optional[str] = None,
    extra_routes: Iterable = (),
) -> list[AlternateRoute]:
    """Candidate rewrites of ``url`` in fixed strategy order.

    ``extra_routes`` are profile ``AlternateRouteSpec`` entries (or plain
    strings); their ``route`` may be an absolute URL or a path template
    using ``{host}``, ``{path}`` and ``{section}``. The original URL and
    duplicates are removed, as are rewrites that fail host validation.
    """
    parsed = urlparse(url)
    host = _bare_host(parsed)
    if not host:
        return []

    path = parsed.path or "/"
    section = (section or _section_from_path(path) or "").strip("/")
    candidates: list[tuple[str, str]] = []

    if not host.startswith("amp."):
        candidates.append((AMP_SUBDOMAIN, _with_host(parsed, f"amp.{host}")))

    query = parse_qsl(parsed.query, keep_blank_values=True)
    if not any(key == "output" for key, _ in query):
        candidates.append((AMP_QUERY, _with_path(parsed, path, urlencode(query + [("output", "amp")]))))

    if not path.startswith("/amp/"):
        candidates.append((AMP_PATH, _with_path(parsed, "/amp" + path)))

    if not host.startswith("m."):
        candidates.append((MOBILE_SUBDOMAIN, _with_host(parsed, f"m.{host}")))

    candidates.append((RSS_SUFFIX, _with_path(parsed, path.rstrip("/") + "/rss", query="")))

    template = SECTION_RSS_TEMPLATES.get(family or "")
    if template and section:
        path_part, _, query_part = template.format(section=section).partition("?")
        candidates.append((SECTION_RSS, _with_path(parsed, path_part, query=query_part)))

    for spec in extra_routes or ():
        route = spec if isinstance(spec, str) else getattr(spec, "route", None)
        conditions = {} if isinstance(spec, str) else getattr(spec, "conditions", {}) or {}
        if not route or not _conditions_met(conditions, parsed, family):
            continue
        try:
            rendered_url = _render_custom_route(route, parsed, section)
        except (KeyError, IndexError, ValueError) as exc:
            logger.warning(f"Invalid custom alternate route {route!r}: {exc}")
            continue
        if rendered_url:
            candidates.append((CUSTOM, rendered_url))

    original = normalize_url(url)
    seen = {original}
    routes = []
    for strategy, candidate in candidates:
        key = normalize_url(candidate)
        if key in seen or not is_public_url(candidate):
            continue
        seen.add(key)
        routes.append(AlternateRoute(strategy, candidate))
    return routes


def prioritise_remembered(
    routes: list[AlternateRoute], remembered_strategy: Optional[str]
) -> list[AlternateRoute]:
    """Move routes of the remembered strategy to the front, stable otherwise."""
    if not remembered_strategy:
        return routes
    preferred = [route for route in routes if route.strategy == remembered_strategy]
    others = [route for route in routes if route.strategy != remembered_strategy]
    return preferred + others


class AlternateRouteRunner:
    """Tries alternate routes through a retry engine with a restricted policy."""

    def __init__(self, warmup_store, recorder=None):
        self.warmup_store = warmup_store
        self.recorder = recorder

    def routes_for(self, url: str, profile=None) -> list[AlternateRoute]:
        family = profile.family if profile is not None else None
        extra = profile.alternate_routes if profile is not None else ()
        section = None
        if profile is not None and profile.section_fallbacks and not _section_from_path(urlparse(url).path):
            section = profile.section_fallbacks[0]

        routes = generate_alternate_routes(url, family=family, section=section, extra_routes=extra)
        hint = self.warmup_store.get(url)
        if hint and hint.alternate_route:
            routes = prioritise_remembered(routes, hint.alternate_route.strategy)
        return routes

    def remembered_route(self, url: str, profile=None) -> Optional[AlternateRoute]:
        """The domain's remembered route strategy applied to ``url``, if any."""
        hint = self.warmup_store.get(url)
        if not hint or not hint.alternate_route:
            return None
        for route in self.routes_for(url, profile):
            if route.strategy == hint.alternate_route.strategy:
                return route
        return None

    def try_routes(
        self,
        engine,
        url: str,
        policy,
        profile=None,
        cookie_header: Optional[str] = None,
        content_kind: str = CONTENT_PAGE,
        routes: Optional[list[AlternateRoute]] = None,
        exclude: Iterable[str] = (),
    ) -> Optional[str]:
        """Return the first alternate route's body, or ``None`` if all fail.

        Each route is fetched with alternate routes disabled and
        ``alternates_attempted`` set, so the recursion ends here. ``routes``
        defaults to every generated route; URLs in ``exclude`` are skipped.
        """
        if routes is None:
            routes = self.routes_for(url, profile)
        skipped = set(exclude)
        routes = [route for route in routes if route.url not in skipped]

        restricted = policy.restricted()
        for route in routes:
            try:
                body = engine.fetch_resilient(
                    route.url,
                    policy=restricted,
                    allow_alternate_routes=False,
                    cookie_header=cookie_header,
                    alternates_attempted=True,
                    profile=profile,
                    content_kind=content_kind,
                )
            except AcquisitionError as exc:
                logger.debug(f"Alternate route {route.strategy} failed for {url}: {exc}")
                self._record(route, url, success=False, error=str(exc))
                continue

            self.warmup_store.record_alternate_route(url, route.strategy, route.url)
            self._record(route, url, success=True)
            logger.info(f"🔀 Alternate route {route.strategy} worked for {url} -> {route.url}")
            return body

        logger.info(f"No alternate route worked for {url} ({len(routes)} tried)")
        return None

    def _record(self, route: AlternateRoute, url: str, success: bool, **detail) -> None:
        if self.recorder is not None:
            self.recorder.record(
                EVENT_STRATEGY,
                f"alternate:{route.strategy}",
                success,
                url=url,
                route=route.url,
                **detail,
            )
