"""
Tests for the rule-based classifiers

Tests cover:
- Concept inference from keywords, source and tags
- Entity extraction (handles, wallets, tickers, proper nouns)
- Link classification rules and their order
- Rule-based importance scoring
"""

from datetime import datetime, timedelta

from cortex.heuristics import (
    CONCEPTS,
    ExtractedEntity,
    HeuristicLinkClassifier,
    KeywordConceptClassifier,
    RuleBasedEntityExtractor,
)
from cortex.llm import rule_based_importance
from cortex.storage.models import Memory

NOW = datetime(2026, 3, 1, 12, 0, 0)


def _memory(memory_id, **kwargs):
    summary = kwargs.pop("summary", "memory")
    kwargs.setdefault("created_at", NOW)
    return Memory(id=memory_id, hash_id=f"clude-{memory_id:08x}",
                  memory_type=kwargs.pop("memory_type", "episodic"),
                  content=summary, summary=summary, **kwargs)


class TestConceptClassifier:
    def test_price_and_whales(self):
        concepts = KeywordConceptClassifier().infer("A whale dumped and the price fell 12%")
        assert concepts[0] in ("price_action", "whale_activity")
        assert set(concepts) >= {"price_action", "whale_activity"}

    def test_source_and_tags_contribute(self):
        concepts = KeywordConceptClassifier().infer("hello there", source="mention",
                                                    tags=["market_event"])
        assert "social_interaction" in concepts
        assert "market_event" in concepts

    def test_only_vocabulary_and_bounded(self):
        text = ("whale price holders community mood supply likes identity "
                "reply realize again market")
        concepts = KeywordConceptClassifier().infer(text)
        assert len(concepts) <= 4
        assert all(c in CONCEPTS for c in concepts)

    def test_nothing_matches(self):
        assert KeywordConceptClassifier().infer("zzz") == []


class TestEntityExtractor:
    def test_extracts_each_kind(self):
        text = ("@alice moved $SOL to 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU "
                "after talking to Vitalik Buterin")
        entities = RuleBasedEntityExtractor().extract(text)

        assert ExtractedEntity("alice", "person") in entities
        assert ExtractedEntity("SOL", "token") in entities
        assert ExtractedEntity("7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU", "wallet") in entities
        assert ExtractedEntity("Vitalik Buterin", "concept") in entities

    def test_no_duplicates(self):
        entities = RuleBasedEntityExtractor().extract("@alice and @Alice and @alice")
        assert entities == [ExtractedEntity("alice", "person")]


class TestLinkClassifier:
    """Rules apply in order: follows, contradicts, elaborates, relates"""

    def test_follows_same_user_within_window(self):
        new = _memory(2, related_user="alice", concepts=["price_action"])
        old = _memory(1, related_user="alice", created_at=NOW - timedelta(minutes=20))
        assert HeuristicLinkClassifier().classify(new, old) == ("follows", 0.6)

    def test_same_user_outside_window_is_not_follows(self):
        new = _memory(2, related_user="alice")
        old = _memory(1, related_user="alice", created_at=NOW - timedelta(hours=3))
        assert HeuristicLinkClassifier().classify(new, old) is None

    def test_contradicts_on_divergent_valence(self):
        new = _memory(2, concepts=["sentiment_shift"], emotional_valence=0.8)
        old = _memory(1, concepts=["sentiment_shift"], emotional_valence=-0.6)
        assert HeuristicLinkClassifier().classify(new, old) == ("contradicts", 0.7)

    def test_semantic_elaborates_episodic(self):
        new = _memory(2, memory_type="semantic")
        old = _memory(1)
        assert HeuristicLinkClassifier().classify(new, old) == ("elaborates", 0.6)

    def test_relates_on_overlap_or_similarity(self):
        classifier = HeuristicLinkClassifier()
        new = _memory(2, concepts=["price_action", "market_event"])
        old = _memory(1, concepts=["price_action", "market_event"])
        link_type, strength = classifier.classify(new, old)
        assert link_type == "relates"
        assert abs(strength - 0.5) < 1e-9

        assert classifier.classify(_memory(3), _memory(4), similarity=0.95) == ("relates", 0.9)
        assert classifier.classify(_memory(3), _memory(4)) is None

    def test_never_links_to_itself(self):
        memory = _memory(1, concepts=["price_action"])
        assert HeuristicLinkClassifier().classify(memory, memory) is None


class TestRuleBasedImportance:
    def test_baseline(self):
        assert rule_based_importance("gm") == 0.4

    def test_keyword_groups_stack(self):
        assert abs(rule_based_importance("a whale sold") - 0.9) < 1e-9
        assert abs(rule_based_importance("new ATH?") - (0.4 + 0.15 + 0.1 + 0.15)) < 1e-9

    def test_capped(self):
        assert rule_based_importance("first whale sold at the ath crash?") == 1.0
