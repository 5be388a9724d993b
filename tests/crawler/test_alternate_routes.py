from newsacquire.crawler import HttpError
from newsacquire.crawler.alternate_routes import (
    AMP_PATH,
    AMP_QUERY,
    AMP_SUBDOMAIN,
    CUSTOM,
    MOBILE_SUBDOMAIN,
    RSS_SUFFIX,
    SECTION_RSS,
    AlternateRoute,
    AlternateRouteRunner,
    generate_alternate_routes,
    prioritise_remembered,
)
from newsacquire.crawler.profiles import DomainProfile
from newsacquire.crawler.retry import RetryPolicy

STORY = "https://www.example.com/news/council-story"


def test_routes_follow_fixed_strategy_order():
    routes = generate_alternate_routes(STORY, family="newsquest")

    assert [route.strategy for route in routes] == [
        AMP_SUBDOMAIN,
        AMP_QUERY,
        AMP_PATH,
        MOBILE_SUBDOMAIN,
        RSS_SUFFIX,
        SECTION_RSS,
    ]
    urls = {route.strategy: route.url for route in routes}
    assert urls[AMP_SUBDOMAIN] == "https://amp.example.com/news/council-story"
    assert urls[AMP_QUERY] == "https://www.example.com/news/council-story?output=amp"
    assert urls[AMP_PATH] == "https://www.example.com/amp/news/council-story"
    assert urls[MOBILE_SUBDOMAIN] == "https://m.example.com/news/council-story"
    assert urls[SECTION_RSS] == "https://www.example.com/news/rss/"


def test_already_amp_urls_skip_redundant_rewrites():
    routes = generate_alternate_routes("https://amp.example.com/amp/story?output=amp")
    strategies = [route.strategy for route in routes]
    assert AMP_SUBDOMAIN not in strategies
    assert AMP_QUERY not in strategies
    assert AMP_PATH not in strategies


def test_private_hosts_produce_no_routes():
    assert generate_alternate_routes("http://localhost/news/story") == []


def test_custom_routes_honour_conditions():
    profile = DomainProfile.from_dict(
        {
            "alternate_routes": [
                {"route": "/{section}/latest.xml", "conditions": {"path_prefix": "/news"}},
                {"route": "/sport/feed", "conditions": {"path_prefix": "/sport"}},
                {"route": "/x", "conditions": {"weather": "sunny"}},
            ]
        }
    )

    routes = generate_alternate_routes(STORY, extra_routes=profile.alternate_routes)
    custom = [route.url for route in routes if route.strategy == CUSTOM]

    assert custom == ["https://www.example.com/news/latest.xml"]


def test_remembered_strategy_moves_first():
    routes = [
        AlternateRoute(AMP_SUBDOMAIN, "a"),
        AlternateRoute(MOBILE_SUBDOMAIN, "b"),
        AlternateRoute(RSS_SUFFIX, "c"),
    ]
    reordered = prioritise_remembered(routes, MOBILE_SUBDOMAIN)
    assert [route.url for route in reordered] == ["b", "a", "c"]
    assert prioritise_remembered(routes, None) == routes


class _RouteEngine:
    def __init__(self, working_url=None):
        self.working_url = working_url
        self.calls = []

    def fetch_resilient(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if url == self.working_url:
            return "<html>amp</html>"
        raise HttpError(404, url)


def test_runner_fetches_routes_without_recursion(warmup_store):
    engine = _RouteEngine(working_url="https://m.example.com/news/council-story")
    runner = AlternateRouteRunner(warmup_store)

    body = runner.try_routes(engine, STORY, RetryPolicy(max_retries=4))

    assert body == "<html>amp</html>"
    for _, kwargs in engine.calls:
        assert kwargs["allow_alternate_routes"] is False
        assert kwargs["alternates_attempted"] is True
        assert kwargs["policy"].max_retries == 1
    assert warmup_store.get(STORY).alternate_route.strategy == MOBILE_SUBDOMAIN


def test_runner_tries_remembered_route_first(warmup_store):
    warmup_store.record_alternate_route(STORY, RSS_SUFFIX)
    engine = _RouteEngine(working_url="https://www.example.com/news/council-story/rss")

    AlternateRouteRunner(warmup_store).try_routes(engine, STORY, RetryPolicy())

    assert len(engine.calls) == 1


def test_runner_returns_none_when_all_fail(warmup_store, recorder):
    engine = _RouteEngine()

    assert AlternateRouteRunner(warmup_store, recorder).try_routes(engine, STORY, RetryPolicy()) is None
    assert warmup_store.get(STORY) is None
    assert all(not event.success for event in recorder.events)
