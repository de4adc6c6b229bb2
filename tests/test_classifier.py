from datetime import datetime, timezone

import pytest

from cohortkit.adapters.yaml_catalog import YamlTaxonomySource
from cohortkit.classifier import DomainClassifier, normalize_domain
from cohortkit.errors import InvalidTopicReference
from cohortkit.models import KeywordRule
from cohortkit.taxonomy import TaxonomyLoader

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _taxonomy():
    return TaxonomyLoader(YamlTaxonomySource()).load()


def _bare_classifier(rules=()):
    return DomainClassifier(_taxonomy(), keyword_rules=rules, clock=lambda: FIXED_NOW)


def test_normalize_domain_strips_scheme_www_port_and_path():
    assert normalize_domain("HTTPS://WWW.Example.com:8080/a?x=1") == "example.com"
    assert normalize_domain("  news.Example.com#frag ") == "news.example.com"
    assert normalize_domain("www.www.example.com") == "example.com"


def test_normalize_domain_is_idempotent():
    samples = ["HTTPS://WWW.Example.com:8080/a?x=1", "www.www.shop.io", "ftp://Files.Example.org/x", "", "a.b"]
    for sample in samples:
        once = normalize_domain(sample)
        assert normalize_domain(once) == once


def test_preset_table_classifies_netflix_as_movies_and_tv():
    classifier = DomainClassifier.with_presets(_taxonomy(), clock=lambda: FIXED_NOW)

    result = classifier.classify("https://www.netflix.com/browse")

    assert result.domain == "netflix.com"
    assert 2 in result.topic_ids and 10 in result.topic_ids
    assert result.confidence > 0.9
    assert result.source == "manual"


def test_parent_domain_match_decays_confidence():
    classifier = _bare_classifier()
    classifier.add_mapping("example.com", [2, 10], 0.9)

    result = classifier.classify("news.example.com")

    assert result.topic_ids == (2, 10)
    assert result.confidence == pytest.approx(0.9 * 0.8)
    assert result.source == "manual"


def test_exact_match_beats_parent_match():
    classifier = _bare_classifier()
    classifier.add_mapping("example.com", [2], 0.9)
    classifier.add_mapping("sports.example.com", [29], 0.6)

    result = classifier.classify("sports.example.com")

    assert result.topic_ids == (29,)
    assert result.confidence == pytest.approx(0.6)


def test_keyword_fallback_caps_topics_and_confidence():
    classifier = DomainClassifier.with_presets(_taxonomy(), clock=lambda: FIXED_NOW)

    result = classifier.classify("footballgamingsportsmoviemusic.net")

    assert result.source == "keyword"
    assert 0 < len(result.topic_ids) <= 3
    assert 0 < result.confidence <= 0.7
    assert "football" in result.matched_keywords


def test_keyword_confidence_is_half_the_best_score():
    rules = [KeywordRule(keywords=("travel", "trip", "hotel", "flight"), topic_ids=(46,))]
    classifier = _bare_classifier(rules)

    result = classifier.classify("cheaptravelhotel.com")

    assert result.topic_ids == (46,)
    assert result.confidence == pytest.approx(0.25)
    assert result.matched_keywords == ("travel", "hotel")


def test_unknown_domain_yields_empty_result():
    classifier = _bare_classifier()

    result = classifier.classify("qwzx.example")

    assert result.topic_ids == ()
    assert result.confidence == 0.0
    assert result.source == "keyword"


def test_classify_batch_degrades_bad_items():
    classifier = _bare_classifier()
    classifier.add_mapping("imdb.com", [2], 0.95)

    results = classifier.classify_batch(["imdb.com", None, "unknown.example"])

    assert [result.topic_ids for result in results] == [(2,), (), ()]
    assert results[1].confidence == 0.0


def test_add_mapping_validates_and_normalizes():
    classifier = _bare_classifier()

    mapping = classifier.add_mapping("WWW.Shop.Example.com", [28, 28, 16], 1.4)

    assert mapping.domain == "shop.example.com"
    assert mapping.topic_ids == (28, 16)
    assert mapping.confidence == 1.0
    assert mapping.last_updated == FIXED_NOW
    with pytest.raises(InvalidTopicReference) as excinfo:
        classifier.add_mapping("bad.example", [9999])
    assert excinfo.value.topic_id == 9999
    assert classifier.get_mapping("bad.example") is None


def test_mapping_management():
    classifier = _bare_classifier()
    classifier.add_mapping("nfl.com", [30, 31])
    classifier.add_mapping("espn.com", [29, 30])

    assert sorted(classifier.get_domains_for_topic(30)) == ["espn.com", "nfl.com"]
    assert classifier.remove_mapping("https://nfl.com") is True
    assert classifier.remove_mapping("nfl.com") is False

    snapshot = classifier.get_all_mappings()
    snapshot.clear()
    assert classifier.get_mapping("espn.com") is not None

    classifier.clear_mappings()
    assert classifier.get_all_mappings() == {}


def test_keyword_rule_with_unknown_topic_is_rejected():
    with pytest.raises(InvalidTopicReference):
        _bare_classifier([KeywordRule(keywords=("x",), topic_ids=(12345,))])


class FlakyClassifier(DomainClassifier):
    def classify(self, domain):
        if domain == "broken.example":
            raise RuntimeError("lookup backend unavailable")
        return super().classify(domain)


def test_classify_batch_degrades_on_any_error():
    classifier = FlakyClassifier(_taxonomy(), clock=lambda: FIXED_NOW)
    classifier.add_mapping("imdb.com", [2], 0.95)

    results = classifier.classify_batch(["broken.example", "imdb.com"])

    assert results[0].domain == "broken.example"
    assert results[0].topic_ids == ()
    assert results[0].confidence == 0.0
    assert results[1].topic_ids == (2,)
