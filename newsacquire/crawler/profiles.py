"""Layered per-domain configuration.

Profiles describe how a publisher's site should be approached: which
content platform it runs on, which strategies to prefer or skip, whether
HEAD requests are refused, extra alternate routes and so on.

Resolution order (first match wins)::

    (topic, domain) -> (tenant, domain) -> global domain
        -> source-metadata hints -> hostname suffix inference -> empty

Every lookup also tries parent domains, so ``news.example.co.uk`` picks up
a profile registered for ``example.co.uk``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Iterable, Mapping, Optional

import yaml

from . import ValidationError
from .utils import normalize_domain

logger = logging.getLogger(__name__)

FAMILIES = ("newsquest", "reach", "jpi", "regional_slug", "custom")

STRATEGY_NAMES = ("platform_api", "structured_data", "feed", "sitemap", "heuristic")

# Hostname suffixes for publishers whose platform is known.
FAMILY_DOMAIN_SUFFIXES: dict[str, tuple[str, ...]] = {
    "newsquest": (
        "theargus.co.uk",
        "thenorthernecho.co.uk",
        "oxfordmail.co.uk",
        "dailyecho.co.uk",
        "bournemouthecho.co.uk",
        "swindonadvertiser.co.uk",
        "yorkpress.co.uk",
        "lancashiretelegraph.co.uk",
        "heraldscotland.com",
        "thenational.scot",
        "southwalesargus.co.uk",
        "eveningtimes.co.uk",
        "echo-news.co.uk",
        "basingstokegazette.co.uk",
    ),
    "reach": (
        "mirror.co.uk",
        "express.co.uk",
        "manchestereveningnews.co.uk",
        "liverpoolecho.co.uk",
        "birminghammail.co.uk",
        "chroniclelive.co.uk",
        "walesonline.co.uk",
        "sussexlive.co.uk",
        "kentlive.news",
        "plymouthherald.co.uk",
        "bristolpost.co.uk",
        "nottinghampost.com",
    ),
    "jpi": (
        "sussexexpress.co.uk",
        "yorkshirepost.co.uk",
        "scotsman.com",
        "lep.co.uk",
        "portsmouth.co.uk",
        "shieldsgazette.com",
        "sunderlandecho.com",
        "thestar.co.uk",
        "nationalworld.com",
    ),
}

METADATA_FAMILY_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("newsquest", re.compile(r"\bnewsquest\b", re.I)),
    ("newsquest", re.compile(r"\barc(?:\s*xp|\s*publishing)?\b", re.I)),
    ("reach", re.compile(r"\breach(?:\s*plc)?\b", re.I)),
    ("jpi", re.compile(r"\b(?:jpi(?:media)?|johnston\s+press|national\s*world)\b", re.I)),
)

METADATA_HINT_KEYS = ("platform", "cms", "family", "publisher", "owner", "network", "name")


@dataclass(frozen=True)
class AccessibilityOptions:
    bypass_head: Optional[bool] = None
    timeout: Optional[int] = None  # ms


@dataclass(frozen=True)
class WarmupOptions:
    enabled: Optional[bool] = None
    delay: Optional[int] = None  # ms


@dataclass(frozen=True)
class ScrapingStrategyOptions:
    preferred: Optional[str] = None
    skip: tuple[str, ...] = ()
    timeout: Optional[int] = None  # ms

    @property
    def is_empty(self) -> bool:
        return self.preferred is None and not self.skip and self.timeout is None


@dataclass(frozen=True)
class AlternateRouteSpec:
    route: str
    conditions: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DomainProfile:
    family: Optional[str] = None
    arc_site: Optional[str] = None
    section_fallbacks: tuple[str, ...] = ()
    alternate_routes: tuple[AlternateRouteSpec, ...] = ()
    accessibility: AccessibilityOptions = field(default_factory=AccessibilityOptions)
    warmup: WarmupOptions = field(default_factory=WarmupOptions)
    scraping_strategy: ScrapingStrategyOptions = field(default_factory=ScrapingStrategyOptions)
    category_patterns: tuple[str, ...] = ()
    article_patterns: tuple[str, ...] = ()
    origin: str = "empty"

    @property
    def is_empty(self) -> bool:
        return self == DomainProfile(origin=self.origin)

    @classmethod
    def from_dict(cls, data: Any, origin: str = "config") -> "DomainProfile":
        """Build a profile from loosely-typed config, validating its shape.

        Keys may be snake_case or camelCase (``sectionFallbacks``).

        Raises:
            ValidationError: unknown family, wrong container types, or an
                unknown strategy name.
        """
        if data is None:
            return cls(origin=origin)
        if not isinstance(data, Mapping):
            raise ValidationError(f"Domain profile must be a mapping, got {type(data).__name__}")

        family = _get(data, "family")
        if family is not None:
            family = str(family).lower()
            if family not in FAMILIES:
                raise ValidationError(f"Unknown platform family: {family!r}")

        accessibility = _mapping(data, "accessibility")
        warmup = _mapping(data, "warmup")
        strategy = _mapping(data, "scraping_strategy")

        preferred = _get(strategy, "preferred")
        skip = _string_list(strategy, "skip")
        for name in ([preferred] if preferred else []) + list(skip):
            if name not in STRATEGY_NAMES:
                raise ValidationError(f"Unknown scraping strategy: {name!r}")

        arc_site = _get(data, "arc_site")
        return cls(
            family=family,
            arc_site=str(arc_site) if arc_site else None,
            section_fallbacks=_string_list(data, "section_fallbacks"),
            alternate_routes=_route_specs(data),
            accessibility=AccessibilityOptions(
                bypass_head=_optional_bool(accessibility, "bypass_head"),
                timeout=_optional_int(accessibility, "timeout"),
            ),
            warmup=WarmupOptions(
                enabled=_optional_bool(warmup, "enabled"),
                delay=_optional_int(warmup, "delay"),
            ),
            scraping_strategy=ScrapingStrategyOptions(
                preferred=preferred,
                skip=skip,
                timeout=_optional_int(strategy, "timeout"),
            ),
            category_patterns=_string_list(data, "category_patterns"),
            article_patterns=_string_list(data, "article_patterns"),
            origin=origin,
        )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _get(data: Mapping[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    return data.get(_camel(key))


def _mapping(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = _get(data, key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"Profile field {key!r} must be a mapping")
    return value


def _string_list(data: Mapping[str, Any], key: str) -> tuple[str, ...]:
    value = _get(data, key)
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"Profile field {key!r} must be a list")
    return tuple(str(item) for item in value if item not in (None, ""))


def _optional_int(data: Mapping[str, Any], key: str) -> Optional[int]:
    value = _get(data, key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Profile field {key!r} must be an integer") from exc


def _optional_bool(data: Mapping[str, Any], key: str) -> Optional[bool]:
    value = _get(data, key)
    return None if value is None else bool(value)


def _route_specs(data: Mapping[str, Any]) -> tuple[AlternateRouteSpec, ...]:
    value = _get(data, "alternate_routes")
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValidationError("Profile field 'alternate_routes' must be a list")

    specs = []
    for entry in value:
        if isinstance(entry, str):
            specs.append(AlternateRouteSpec(route=entry))
        elif isinstance(entry, Mapping) and entry.get("route"):
            conditions = entry.get("conditions") or {}
            if not isinstance(conditions, Mapping):
                raise ValidationError("Alternate route conditions must be a mapping")
            specs.append(AlternateRouteSpec(route=str(entry["route"]), conditions=dict(conditions)))
        else:
            raise ValidationError(f"Invalid alternate route entry: {entry!r}")
    return tuple(specs)


def _overlay(base, override):
    """Field-by-field merge of two option dataclasses; ``None`` leaves base."""
    updates = {
        f.name: getattr(override, f.name)
        for f in fields(override)
        if getattr(override, f.name) is not None
    }
    return replace(base, **updates)


def merge_profiles(*profiles: Optional[DomainProfile]) -> DomainProfile:
    """Merge profiles given in ascending priority (last wins).

    Scalars and ``scraping_strategy`` are shallow overrides, ``accessibility``
    and ``warmup`` merge field by field, and list fields take the
    highest-priority non-empty list wholesale.
    """
    merged = DomainProfile()
    for profile in profiles:
        if profile is None:
            continue
        merged = DomainProfile(
            family=profile.family or merged.family,
            arc_site=profile.arc_site or merged.arc_site,
            section_fallbacks=profile.section_fallbacks or merged.section_fallbacks,
            alternate_routes=profile.alternate_routes or merged.alternate_routes,
            accessibility=_overlay(merged.accessibility, profile.accessibility),
            warmup=_overlay(merged.warmup, profile.warmup),
            scraping_strategy=(
                merged.scraping_strategy
                if profile.scraping_strategy.is_empty
                else profile.scraping_strategy
            ),
            category_patterns=profile.category_patterns or merged.category_patterns,
            article_patterns=profile.article_patterns or merged.article_patterns,
            origin=merged.origin if profile.is_empty else profile.origin,
        )
    return merged


def derive_arc_site(url_or_domain: str) -> str:
    """Arc site slug: first label of the host, alphanumerics only."""
    domain = normalize_domain(url_or_domain)
    first_label = domain.split(".")[0] if domain else ""
    slug = re.sub(r"[^a-z0-9]", "", first_label.lower())
    return slug or "newsquest"


def parent_domains(domain: str) -> Iterable[str]:
    """``a.b.example.co.uk`` -> itself, ``b.example.co.uk``, ``example.co.uk``, ..."""
    labels = domain.split(".")
    for index in range(len(labels) - 1):
        yield ".".join(labels[index:])


def infer_family_from_metadata(metadata: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not metadata:
        return None
    hints = " ".join(
        str(metadata[key]) for key in METADATA_HINT_KEYS if metadata.get(key)
    )
    if not hints:
        return None
    for family, pattern in METADATA_FAMILY_PATTERNS:
        if pattern.search(hints):
            return family
    return None


def infer_family_from_domain(domain: str) -> Optional[str]:
    for family, suffixes in FAMILY_DOMAIN_SUFFIXES.items():
        for suffix in suffixes:
            if domain == suffix or domain.endswith("." + suffix):
                return family
    return None


ProfileMap = Mapping[str, DomainProfile]


class DomainProfileResolver:
    """Resolves the effective ``DomainProfile`` for a URL."""

    def __init__(
        self,
        global_profiles: Optional[ProfileMap] = None,
        tenant_profiles: Optional[Mapping[str, ProfileMap]] = None,
        topic_profiles: Optional[Mapping[str, ProfileMap]] = None,
    ):
        self.global_profiles = _normalize_keys(global_profiles or {})
        self.tenant_profiles = {
            str(key): _normalize_keys(value) for key, value in (tenant_profiles or {}).items()
        }
        self.topic_profiles = {
            str(key): _normalize_keys(value) for key, value in (topic_profiles or {}).items()
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "DomainProfileResolver":
        """Build from ``{"global": {...}, "tenants": {...}, "topics": {...}}``."""
        data = data or {}
        if not isinstance(data, Mapping):
            raise ValidationError("Profile configuration must be a mapping")

        def _profiles(raw, origin):
            if not raw:
                return {}
            if not isinstance(raw, Mapping):
                raise ValidationError(f"{origin} profiles must be a mapping of domain to profile")
            return {
                domain: DomainProfile.from_dict(value, origin=origin)
                for domain, value in raw.items()
            }

        return cls(
            global_profiles=_profiles(data.get("global"), "global"),
            tenant_profiles={
                str(tenant): _profiles(raw, "tenant")
                for tenant, raw in (data.get("tenants") or {}).items()
            },
            topic_profiles={
                str(topic): _profiles(raw, "topic")
                for topic, raw in (data.get("topics") or {}).items()
            },
        )

    @classmethod
    def from_yaml(cls, path: str) -> "DomainProfileResolver":
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        resolver = cls.from_dict(data)
        logger.info(
            f"Loaded domain profiles from {path}: {len(resolver.global_profiles)} global, "
            f"{len(resolver.tenant_profiles)} tenant maps, {len(resolver.topic_profiles)} topic maps"
        )
        return resolver

    @staticmethod
    def merge(*profiles: Optional[DomainProfile]) -> DomainProfile:
        return merge_profiles(*profiles)

    def resolve(
        self,
        url: str,
        topic_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        source_metadata: Optional[Mapping[str, Any]] = None,
    ) -> DomainProfile:
        domain = normalize_domain(url)
        if not domain:
            return DomainProfile()

        layers = []
        if topic_id is not None:
            layers.append(self.topic_profiles.get(str(topic_id), {}))
        if tenant_id is not None:
            layers.append(self.tenant_profiles.get(str(tenant_id), {}))
        layers.append(self.global_profiles)

        for profiles in layers:
            profile = _lookup(profiles, domain)
            if profile is not None:
                return _with_arc_site(profile, domain)

        family = infer_family_from_metadata(source_metadata)
        if family:
            logger.debug(f"Profile for {domain} inferred from source metadata: {family}")
            return _with_arc_site(DomainProfile(family=family, origin="metadata"), domain)

        family = infer_family_from_domain(domain)
        if family:
            return _with_arc_site(DomainProfile(family=family, origin="inferred"), domain)

        return DomainProfile()


def _normalize_keys(profiles: ProfileMap) -> dict[str, DomainProfile]:
    return {normalize_domain(domain): profile for domain, profile in profiles.items()}


def _lookup(profiles: ProfileMap, domain: str) -> Optional[DomainProfile]:
    for candidate in parent_domains(domain):
        profile = profiles.get(candidate)
        if profile is not None:
            return profile
    return None


def _with_arc_site(profile: DomainProfile, domain: str) -> DomainProfile:
    if profile.family == "newsquest" and not profile.arc_site:
        return replace(profile, arc_site=derive_arc_site(domain))
    return profile
