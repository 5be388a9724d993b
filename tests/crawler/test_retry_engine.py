import random

import pytest

from newsacquire.crawler import BlockedError, HttpError, InvalidContentError, NetworkError
from newsacquire.crawler.retry import RetryEngine, RetryPolicy
from newsacquire.crawler.warmup import AccessibilityDiagnosis
from newsacquire.utils.telemetry import EVENT_DIAGNOSIS
from tests.helpers.fakes import FakeFetchClient, article_html, build_response

STORY = "https://example.com/news/council-story"
PAGE = article_html()


def _engine(client, warmup_store, settings, no_sleep, recorder=None):
    return RetryEngine(
        client,
        warmup_store,
        settings=settings,
        recorder=recorder,
        sleep=no_sleep,
        rng=random.Random(7),
    )


def test_first_attempt_success_records_ok(warmup_store, settings, no_sleep, recorder, sleeps):
    client = FakeFetchClient({STORY: build_response(200, PAGE, url=STORY)})
    engine = _engine(client, warmup_store, settings, no_sleep, recorder)

    assert engine.fetch_resilient(STORY) == PAGE
    assert client.urls() == [STORY]
    assert sleeps == []
    hint = warmup_store.get(STORY)
    assert hint.last_status == 200
    assert [e.name for e in recorder.of_kind(EVENT_DIAGNOSIS)] == ["ok"]


def test_403_then_cookie_warmup_then_200_persists_cookie(warmup_store, settings, no_sleep):
    client = FakeFetchClient(
        {
            STORY: [build_response(403, "denied", url=STORY), build_response(200, PAGE, url=STORY)],
            "https://example.com/": build_response(
                200, "<html>home</html>", cookies={"session": "abc123"}
            ),
        }
    )
    engine = _engine(client, warmup_store, settings, no_sleep)

    assert engine.fetch_resilient(STORY) == PAGE

    hint = warmup_store.get(STORY)
    assert hint.cookie_header == "session=abc123"
    assert hint.diagnosis == AccessibilityDiagnosis.COOKIE_REQUIRED
    assert client.calls[-1].headers["Cookie"] == "session=abc123"


def test_stored_cookie_is_sent_on_later_fetches(warmup_store, settings, no_sleep):
    warmup_store.record_cookie(STORY, "consent=yes")
    client = FakeFetchClient({STORY: build_response(200, PAGE, url=STORY)})

    _engine(client, warmup_store, settings, no_sleep).fetch_resilient(STORY)

    assert client.calls[0].headers["Cookie"] == "consent=yes"


def test_explicit_cookie_header_wins_over_stored(warmup_store, settings, no_sleep):
    warmup_store.record_cookie(STORY, "consent=yes")
    client = FakeFetchClient({STORY: build_response(200, PAGE, url=STORY)})

    _engine(client, warmup_store, settings, no_sleep).fetch_resilient(STORY, cookie_header="a=b")

    assert client.calls[0].headers["Cookie"] == "a=b"


def test_fatal_network_error_is_not_retried(warmup_store, settings, no_sleep, sleeps):
    client = FakeFetchClient({STORY: NetworkError("Name or service not known", fatal=True)})
    engine = _engine(client, warmup_store, settings, no_sleep)

    with pytest.raises(NetworkError):
        engine.fetch_resilient(STORY)

    assert len(client.calls) == 1
    assert sleeps == []
    assert warmup_store.get(STORY).diagnosis == AccessibilityDiagnosis.NETWORK_BLOCK


def test_transient_network_error_is_retried(warmup_store, settings, no_sleep, sleeps):
    client = FakeFetchClient(
        {STORY: [NetworkError("Connection reset by peer"), build_response(200, PAGE, url=STORY)]}
    )
    engine = _engine(client, warmup_store, settings, no_sleep)

    assert engine.fetch_resilient(STORY) == PAGE
    assert len(sleeps) == 1


def test_repeated_503_fails_fast(warmup_store, settings, no_sleep):
    client = FakeFetchClient({STORY: build_response(503, "unavailable", url=STORY)})
    engine = _engine(client, warmup_store, settings, no_sleep)

    with pytest.raises(HttpError) as excinfo:
        engine.fetch_resilient(STORY, allow_alternate_routes=False)

    assert excinfo.value.status == 503
    assert len(client.calls) == 2


def test_blocked_page_falls_back_to_ranged_get(warmup_store, settings, no_sleep):
    def respond(url, method, headers, byte_range):
        if byte_range:
            return build_response(206, PAGE[:8192], url=url)
        return build_response(403, "denied", url=url, headers={"Server": "cloudflare"})

    client = FakeFetchClient({STORY: respond})
    engine = _engine(client, warmup_store, settings, no_sleep)

    body = engine.fetch_resilient(STORY)

    assert body == PAGE[:8192]
    assert warmup_store.get(STORY).diagnosis == AccessibilityDiagnosis.PARTIAL_GET_BLOCKED
    assert client.calls[-1].byte_range == 8192


def test_challenge_page_counts_as_invalid_content(warmup_store, settings, no_sleep):
    challenge = "<html><head><title>Just a moment... Security check</title></head>" + "x" * 600
    client = FakeFetchClient({STORY: build_response(200, challenge, url=STORY)})
    engine = _engine(client, warmup_store, settings, no_sleep)

    with pytest.raises(InvalidContentError):
        engine.fetch_resilient(STORY, allow_alternate_routes=False)


def test_alternate_route_used_and_remembered_after_later_failure(warmup_store, settings, no_sleep):
    amp = "https://amp.example.com/news/council-story"
    client = FakeFetchClient(
        {
            STORY: build_response(500, "boom", url=STORY),
            amp: [build_response(200, PAGE, url=amp), build_response(500, "boom", url=amp)],
        }
    )
    engine = _engine(client, warmup_store, settings, no_sleep)

    assert engine.fetch_resilient(STORY) == PAGE
    route = warmup_store.get(STORY).alternate_route
    assert route.strategy == "amp-subdomain"
    assert route.url == amp

    with pytest.raises(HttpError):
        engine.fetch_resilient(STORY)
    assert warmup_store.get(STORY).alternate_route == route


def test_remembered_route_is_fetched_before_the_canonical_url(warmup_store, settings, no_sleep):
    amp = "https://amp.example.com/news/council-story"
    client = FakeFetchClient(
        {
            STORY: build_response(500, "boom", url=STORY),
            amp: build_response(200, PAGE, url=amp),
        }
    )
    engine = _engine(client, warmup_store, settings, no_sleep)
    assert engine.fetch_resilient(STORY) == PAGE
    assert warmup_store.get(STORY).alternate_route.strategy == "amp-subdomain"

    client.calls.clear()
    assert engine.fetch_resilient(STORY) == PAGE

    assert client.urls() == [amp]


def test_remembered_route_applies_to_other_pages_on_the_domain(warmup_store, settings, no_sleep):
    other = "https://example.com/news/harbour-plans"
    other_amp = "https://amp.example.com/news/harbour-plans"
    client = FakeFetchClient(
        {
            STORY: build_response(500, "boom", url=STORY),
            "https://amp.example.com/news/council-story": build_response(200, PAGE, url=STORY),
            other_amp: build_response(200, PAGE, url=other_amp),
        }
    )
    engine = _engine(client, warmup_store, settings, no_sleep)
    engine.fetch_resilient(STORY)

    client.calls.clear()
    assert engine.fetch_resilient(other) == PAGE

    assert client.urls()[0] == other_amp
    assert other not in client.urls()


def test_alternate_routes_never_recurse(warmup_store, settings, no_sleep):
    client = FakeFetchClient()
    engine = _engine(client, warmup_store, settings, no_sleep)

    with pytest.raises(HttpError):
        engine.fetch_resilient(STORY)

    # Each rewritten URL is tried with the restricted policy only
    rewrites = [url for url in client.urls() if url != STORY]
    assert rewrites
    assert all(client.urls().count(url) <= 2 for url in rewrites)


def test_blocked_error_raised_for_persistent_403(warmup_store, settings, no_sleep):
    client = FakeFetchClient({STORY: build_response(403, "denied", url=STORY)})
    engine = _engine(client, warmup_store, settings, no_sleep)

    with pytest.raises(BlockedError):
        engine.fetch_resilient(STORY, allow_alternate_routes=False)


def test_uk_hosts_get_forwarded_ip_on_retry(warmup_store, settings, no_sleep):
    url = "https://www.example.co.uk/news/story"
    client = FakeFetchClient(
        {url: [build_response(500, "boom", url=url), build_response(200, PAGE, url=url)]}
    )
    _engine(client, warmup_store, settings, no_sleep).fetch_resilient(url)

    assert "X-Forwarded-For" not in client.calls[0].headers
    assert client.calls[1].headers["X-Forwarded-For"]
    assert warmup_store.get(url).residential_ip_hint.last_success is not None


def test_policy_delay_is_bounded_and_doubled_for_government():
    policy = RetryPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=4000)
    rng = random.Random(1)

    assert 1000 <= policy.calculate_delay(0, rng=rng) <= 2000
    assert 4000 <= policy.calculate_delay(5, rng=rng) <= 5000
    assert policy.calculate_delay(0, "https://www.gov.uk/news", rng=rng) >= 3000


def test_restricted_policy_caps_retries():
    assert RetryPolicy(max_retries=5).restricted().max_retries == 1
    assert RetryPolicy(max_retries=0).restricted().max_retries == 0
