from datetime import timedelta

import pytest

from newsacquire.models.articles import ArticleData, SourceRecord, TopicConfig
from newsacquire.pipeline.qualification import (
    REASON_ACCEPTED,
    REASON_COMPETING_REGION,
    REASON_FUTURE_DATE,
    REASON_INVALID_DATE,
    REASON_LOW_QUALITY,
    REASON_LOW_RELEVANCE,
    REASON_MISSING_CONTENT,
    REASON_MISSING_DATE,
    REASON_NEGATIVE_KEYWORD,
    REASON_SNIPPET,
    REASON_TOO_OLD,
    REASON_TOO_SHORT,
    QualificationGate,
    derive_title,
    is_snippet,
)
from newsacquire.utils.telemetry import EVENT_QUALIFICATION
from tests.helpers.fakes import DEFAULT_PARAGRAPH, FIXED_NOW

BODY = "\n\n".join(DEFAULT_PARAGRAPH.format(index=n) for n in range(1, 8))
URL = "https://www.example.com/news/seafront-cycle-lane"

BRIGHTON = TopicConfig(
    id="brighton",
    name="Brighton",
    region="Brighton",
    competing_regions=(TopicConfig(id="worthing", name="Worthing", region="Worthing"),),
)
HASTINGS = TopicConfig(id="hastings", name="Hastings", region="Hastings")


def _article(body=BODY, title="Council approves seafront cycle lane", age=timedelta(days=1), **kwargs):
    published = (FIXED_NOW - age).isoformat() if age is not None else None
    kwargs.setdefault("source_url", URL)
    return ArticleData(title=title, body=body, published_at=published, **kwargs)


@pytest.fixture
def gate(recorder):
    return QualificationGate(allowlist=("allowed.example.net",), recorder=recorder, clock=lambda: FIXED_NOW)


def test_relevant_recent_article_is_accepted(gate):
    article = _article()

    decision = gate.qualify(article, BRIGHTON)

    assert decision.accepted
    assert decision.reason == REASON_ACCEPTED
    assert article.processing_status == "qualified"
    assert article.regional_relevance_score == 100
    assert article.content_quality_score == decision.quality_score == 65


def test_ten_day_old_article_is_too_old(gate, recorder):
    article = _article(age=timedelta(days=10))

    decision = gate.qualify(article, BRIGHTON)

    assert decision.reason == REASON_TOO_OLD
    assert article.processing_status == "rejected"
    assert [event.name for event in recorder.of_kind(EVENT_QUALIFICATION)] == [REASON_TOO_OLD]


def test_job_max_age_overrides_topic_window(gate):
    article = _article(age=timedelta(days=10))
    assert gate.qualify(article, BRIGHTON, max_age_days=14).accepted


def test_qualification_is_idempotent(gate):
    article = _article()
    first = gate.qualify(article, BRIGHTON)
    snapshot = article.to_dict()

    second = gate.qualify(article, BRIGHTON)

    assert first == second
    assert article.to_dict() == snapshot


def test_missing_date_rejected_unless_allowlisted(gate):
    assert gate.qualify(_article(age=None), BRIGHTON).reason == REASON_MISSING_DATE

    article = _article(age=None, source_url="https://news.allowed.example.net/story")
    decision = gate.qualify(article, BRIGHTON)

    assert decision.accepted
    assert article.published_at == FIXED_NOW.isoformat()
    assert article.import_metadata["published_at_substituted"] is True


def test_source_in_topic_region_is_allowlisted(gate):
    source = SourceRecord(id="s", feed_url="https://www.example.com/feed", region="Brighton")
    assert gate.qualify(_article(age=None), BRIGHTON, source).accepted


def test_keyword_topics_tolerate_missing_dates(gate):
    topic = TopicConfig(id="k", name="Cycling", topic_type="keyword", keywords=("cycle lane",))
    assert gate.qualify(_article(age=None), topic).accepted


@pytest.mark.parametrize(
    "age,reason",
    [
        (timedelta(days=-2), REASON_FUTURE_DATE),
        (timedelta(hours=-12), REASON_ACCEPTED),
        (timedelta(days=365 * 7), REASON_INVALID_DATE),
    ],
)
def test_date_bounds(gate, age, reason):
    assert gate.qualify(_article(age=age), BRIGHTON, max_age_days=365 * 10).reason == reason


def test_missing_content(gate):
    assert gate.qualify(_article(body="", title=""), BRIGHTON).reason == REASON_MISSING_CONTENT


def test_title_is_derived_from_body(gate):
    article = _article(title="")
    gate.qualify(article, BRIGHTON)
    assert article.title.startswith("Paragraph 1 of the report explains")


def test_short_article_is_rejected(gate):
    body = "Brighton council met on Tuesday. " * 10
    assert gate.qualify(_article(body=body), BRIGHTON).reason == REASON_TOO_SHORT


def test_teaser_with_read_more_is_a_snippet(gate):
    body = BODY + "\n\nRead more on our website."
    assert gate.qualify(_article(body=body), BRIGHTON).reason == REASON_SNIPPET


def test_negative_keyword(gate):
    topic = TopicConfig(id="b", name="Brighton", region="Brighton", negative_keywords=("Parking",))
    assert gate.qualify(_article(), topic).reason == REASON_NEGATIVE_KEYWORD


def test_competing_region_in_url(gate):
    article = _article(source_url="https://www.example.com/worthing/news/cycle-lane")
    decision = gate.qualify(article, BRIGHTON)
    assert decision.reason == REASON_COMPETING_REGION
    assert article.regional_relevance_score == 0


def test_low_relevance_and_hyper_local_floor(gate):
    assert gate.qualify(_article(), HASTINGS).reason == REASON_LOW_RELEVANCE

    local = SourceRecord(id="h", feed_url="https://www.example.com/feed", region="Hastings")
    decision = gate.qualify(_article(), HASTINGS, local)
    assert decision.accepted
    assert decision.relevance_score == 3


def test_quality_threshold_relaxed_for_credible_sources(gate):
    body = "Brighton " + " ".join(["ok."] * 100)
    article = _article(body=body, title="Pier")

    assert gate.qualify(article, BRIGHTON).reason == REASON_LOW_QUALITY
    assert article.content_quality_score == 25

    credible = SourceRecord(id="c", feed_url="https://www.example.com/feed", credibility_score=95)
    assert gate.qualify(article, BRIGHTON, credible).accepted


@pytest.mark.parametrize(
    "body,expected",
    [
        ("", True),
        ("Only a few words here.", True),
        (BODY, False),
        (BODY + " The post appeared first on Example.", True),
        (" ".join(["word"] * 40) + "...", True),
        (" ".join(["word"] * 80) + "...", False),
    ],
)
def test_is_snippet(body, expected):
    assert is_snippet(body) is expected


def test_derive_title_cuts_long_sentences():
    title = derive_title("word " * 60)
    assert len(title) <= 120
    assert not title.endswith(" ")
