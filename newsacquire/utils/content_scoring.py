"""Scoring of extracted article text.

``score_content`` ranks competing extraction outputs for one page.
``calculate_quality_score`` is the single quality score stored on articles
and used by the qualification gate.
"""

from __future__ import annotations

from typing import Optional

from newsacquire.crawler.utils import count_words

SELECTOR_ACCEPT_SCORE = 50


def score_content(content: Optional[str]) -> int:
    """Rank an extraction candidate; higher is more article-like."""
    if not content:
        return 0

    word_count = count_words(content)
    char_count = len(content)
    score = 0

    if word_count > 300:
        score += 40
    elif word_count > 150:
        score += 30
    elif word_count > 80:
        score += 20
    elif word_count > 40:
        score += 10

    if char_count > 1500:
        score += 20
    elif char_count > 800:
        score += 15
    elif char_count > 400:
        score += 10

    if "\n\n" in content:
        score += 10

    if word_count < 20:
        score -= 30
    if char_count < 100:
        score -= 20

    return max(0, score)


def calculate_quality_score(
    body: Optional[str],
    title: Optional[str] = None,
    author: Optional[str] = None,
    published_at: Optional[str] = None,
) -> int:
    """Quality score in [0, 100] from length tiers and metadata completeness."""
    body = body or ""
    word_count = count_words(body)
    char_count = len(body)
    score = 0

    if word_count > 500:
        score += 40
    elif word_count > 300:
        score += 30
    elif word_count > 150:
        score += 20
    elif word_count > 50:
        score += 10

    if "\n\n" in body:
        score += 10
    if title and len(title.strip()) > 10:
        score += 10

    if char_count > 1000:
        score += 20
    elif char_count > 500:
        score += 15
    elif char_count > 200:
        score += 10

    if author:
        score += 5
    if published_at:
        score += 5

    if word_count < 50:
        score -= 20
    if char_count < 200:
        score -= 15

    return max(0, min(100, score))
