"""Tests for topic relevance scoring."""

from newsacquire.models.articles import TopicConfig
from newsacquire.utils.relevance import (
    COMPETING_REGION_PENALTY,
    KEYWORD_WEIGHT,
    LANDMARK_WEIGHT,
    NATIONAL_COUNTRY_BOOST,
    POSTCODE_WEIGHT,
    REGION_WEIGHT,
    calculate_relevance,
    competing_region_in_url,
    find_negative_keywords,
)

HOVE = TopicConfig(id="hove", name="Hove", region="Hove", landmarks=("Hove Lawns",))
BRIGHTON = TopicConfig(
    id="brighton",
    name="Brighton",
    region="Brighton",
    keywords=("seafront",),
    landmarks=("West Pier",),
    postcodes=("BN1",),
    organizations=("Brighton & Hove Albion",),
    competing_regions=(HOVE,),
)


class TestCalculateRelevance:
    def test_weights_add_up(self):
        score = calculate_relevance("Seafront plans", "Work near the West Pier in BN1 starts.", BRIGHTON)
        assert score.raw_score == KEYWORD_WEIGHT + LANDMARK_WEIGHT + POSTCODE_WEIGHT
        assert score.score == score.raw_score

    def test_region_matches_whole_words_only(self):
        assert calculate_relevance("Brightonian life", "", BRIGHTON).score == 0
        assert calculate_relevance("Brighton life", "", BRIGHTON).score == REGION_WEIGHT

    def test_competing_region_is_penalised(self):
        score = calculate_relevance("Hove news", "A story about Hove Lawns.", BRIGHTON)
        assert score.raw_score == -COMPETING_REGION_PENALTY - 20
        assert score.score == 0

    def test_linked_regions_are_not_penalised(self):
        score = calculate_relevance("Brighton and Hove council", "", BRIGHTON)
        assert score.raw_score == REGION_WEIGHT

    def test_score_is_clamped_to_100(self):
        text = "Brighton " * 10
        assert calculate_relevance(text, "", BRIGHTON).score == 100

    def test_competing_region_in_url_zeroes_score(self):
        score = calculate_relevance("Brighton", "", BRIGHTON, source_url="https://example.com/hove/news/x")
        assert score.competing_region_in_url
        assert score.score == 0

    def test_national_sources_get_country_boost(self):
        regional = calculate_relevance("Brighton in the UK", "", BRIGHTON)
        national = calculate_relevance("Brighton in the UK", "", BRIGHTON, source_type="national")
        assert national.raw_score - regional.raw_score == NATIONAL_COUNTRY_BOOST

    def test_keyword_topics_ignore_region(self):
        topic = TopicConfig(id="k", name="Ferries", topic_type="keyword", region="Newhaven", keywords=("ferry",))
        assert calculate_relevance("Newhaven ferry", "", topic).raw_score == KEYWORD_WEIGHT


def test_competing_region_in_url_ignores_own_region():
    topic = TopicConfig(id="b", name="Brighton", region="Brighton", competing_regions=(BRIGHTON,))
    assert not competing_region_in_url("https://example.com/brighton/x", topic)
    assert not competing_region_in_url(None, BRIGHTON)


def test_find_negative_keywords_is_case_insensitive():
    assert find_negative_keywords("Obituary: John", ["obituary", "", "horoscope"]) == ["obituary"]
