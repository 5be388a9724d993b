"""Topic relevance scoring.

Weighted hit counts over title + body: the topic's region name, keywords,
landmarks, postcodes and organisations add; mentions of competing regions
and their terms subtract. The result is clamped to [0, 100].
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

REGION_WEIGHT = 30
KEYWORD_WEIGHT = 10
LANDMARK_WEIGHT = 15
POSTCODE_WEIGHT = 20
ORGANIZATION_WEIGHT = 12
COMPETING_REGION_PENALTY = 50
COMPETING_TERM_PENALTY = 20
NATIONAL_COUNTRY_BOOST = 15

COUNTRY_KEYWORDS = ("uk", "britain", "british", "england", "scotland", "wales")
MIN_COMPETING_TERM_LENGTH = 3


@dataclass(frozen=True)
class RelevanceScore:
    score: int
    raw_score: int
    competing_region_in_url: bool = False


def _word_pattern(term: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(term.lower()) + r"\b")


def _hits(text: str, terms: Iterable[str]) -> int:
    return sum(1 for term in terms if term and term.lower() in text)


def _linked(text: str, term: str, region: str) -> bool:
    # "Brighton and Hove" names both places without competing with either
    return any(
        phrase in text
        for phrase in (
            f"{term} to {region}",
            f"{region} to {term}",
            f"{term} and {region}",
            f"{region} and {term}",
        )
    )


def find_negative_keywords(text: str, negative_keywords: Iterable[str]) -> list[str]:
    lowered = (text or "").lower()
    return [keyword for keyword in negative_keywords if keyword and keyword.lower() in lowered]


def competing_region_in_url(url: Optional[str], topic) -> bool:
    if not url:
        return False
    lowered = url.lower()
    own = topic.region_name.lower()
    for other in topic.competing_regions:
        name = other.region_name.lower()
        if name and name != own and name.replace(" ", "") in lowered.replace("-", "").replace("_", ""):
            return True
    return False


def calculate_relevance(
    title: str,
    body: str,
    topic,
    source_type: str = "regional",
    source_url: Optional[str] = None,
) -> RelevanceScore:
    """Score how relevant an article is to ``topic``.

    A source URL naming a competing region scores 0 outright.
    """
    if competing_region_in_url(source_url, topic):
        return RelevanceScore(score=0, raw_score=-100, competing_region_in_url=True)

    text = f"{title or ''} {body or ''}".lower()
    region = (topic.region or "").lower() if not topic.is_keyword_topic else ""
    score = 0

    if region:
        score += len(_word_pattern(region).findall(text)) * REGION_WEIGHT
    score += _hits(text, topic.keywords) * KEYWORD_WEIGHT
    score += _hits(text, topic.landmarks) * LANDMARK_WEIGHT
    score += _hits(text, topic.postcodes) * POSTCODE_WEIGHT
    score += _hits(text, topic.organizations) * ORGANIZATION_WEIGHT

    own = topic.region_name.lower()
    for other in topic.competing_regions:
        name = other.region_name.lower()
        if not name or name == own:
            continue
        if _word_pattern(name).search(text) and not _linked(text, name, own):
            score -= COMPETING_REGION_PENALTY
        for term in (*other.keywords, *other.landmarks, *other.postcodes):
            term = (term or "").lower()
            if len(term) >= MIN_COMPETING_TERM_LENGTH and term in text and not _linked(text, term, own):
                score -= COMPETING_TERM_PENALTY

    if source_type == "national" and any(_word_pattern(k).search(text) for k in COUNTRY_KEYWORDS):
        score += NATIONAL_COUNTRY_BOOST

    return RelevanceScore(score=max(0, min(100, score)), raw_score=score)
