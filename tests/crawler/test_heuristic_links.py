from newsacquire.crawler.heuristics import HeuristicLinkFinder, HeuristicStrategy
from newsacquire.crawler.strategy import ArticlePageLoader
from newsacquire.models.articles import SourceRecord
from tests.helpers.fakes import StubEngine, article_html

HOME = "https://www.example.com/"

HOMEPAGE = """
<html><body>
<nav><a href="/news/">News</a><a href="/about/">About</a></nav>
<article class="teaser"><a href="/news/pier-reopens">Pier reopens</a></article>
<div class="story-card"><a href="/news/bus-lanes?utm_source=home">Bus lanes</a></div>
<div class="sidebar"><a href="/weather">Weather</a></div>
<h2><a href="https://www.example.com/sport/albion-win-again-at-home-today/">Albion win</a></h2>
<a class="headline-link" href="/news/pier-reopens#comments">Pier again</a>
<a class="headline" href="https://elsewhere.example.org/news/x">Off site</a>
<a class="headline" href="http://127.0.0.1/news/x">Private</a>
<section id="latest-news"><a href="/tag/transport/">Transport</a>
  <a href="/community/fete">Fete</a></section>
<script>var x = '<a class="story" href="/news/from-script">';</script>
</body></html>
"""


def test_finder_unions_sources_and_filters(sniffer_verdicts):
    sniffer_verdicts["https://www.example.com/community/fete"] = True

    urls = HeuristicLinkFinder().find(HOMEPAGE, HOME)

    assert urls == [
        "https://www.example.com/news/pier-reopens",
        "https://www.example.com/news/bus-lanes?utm_source=home",
        "https://www.example.com/community/fete",
        "https://www.example.com/sport/albion-win-again-at-home-today/",
    ]


def test_finder_respects_limit_and_profile_patterns(sniffer_verdicts):
    finder = HeuristicLinkFinder(limit=1, category_patterns=[r"/news/pier"])
    assert finder.find(HOMEPAGE, HOME) == ["https://www.example.com/news/bus-lanes?utm_source=home"]


def test_strategy_loads_candidates(sniffer_verdicts):
    story = "https://www.example.com/news/pier-reopens"
    engine = StubEngine({HOME: HOMEPAGE, story: article_html()})
    strategy = HeuristicStrategy(engine, ArticlePageLoader(engine))

    result = strategy.run(SourceRecord(id="s1", feed_url=HOME + "feed", homepage_url=HOME))

    assert result.articles_found == 3
    assert [a.source_url for a in result.articles] == [story]
    assert result.articles[0].import_metadata["discovery_method"] == "heuristic"
    assert len(result.errors) == 2


def test_strategy_reports_missing_candidates(sniffer_verdicts):
    engine = StubEngine()
    strategy = HeuristicStrategy(engine, ArticlePageLoader(engine))

    result = strategy.run(SourceRecord(id="s1", feed_url=HOME), page_html="<html><body></body></html>")

    assert result.errors == ["No candidate links discovered via heuristics"]
    assert engine.fetched() == []
