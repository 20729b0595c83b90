"""
Tests for storage.entities module (EntityOperations)

Tests cover:
- Entity creation and type validation
- Lookup by normalized name and alias
- Mention upserts, context truncation, salience clamping
- Relation strengthening with evidence
- Co-occurrence counting
- Vector and lexical entity search
"""

import pytest


class TestEntityOperations:
    """Test suite for entity persistence"""

    def test_insert_and_find(self, palace):
        entity_id = palace.insert_entity("token", "SOL", "sol", aliases=["solana"])

        by_name = palace.find_entity("sol")
        by_alias = palace.find_entity("solana")

        assert by_name.id == entity_id
        assert by_alias.id == entity_id
        assert by_name.mention_count == 1
        assert palace.find_entity("eth") is None

    def test_invalid_entity_type(self, palace):
        with pytest.raises(ValueError, match="Invalid entity_type"):
            palace.insert_entity("planet", "Mars", "mars")

    def test_touch_entity_merges_aliases(self, palace):
        entity_id = palace.insert_entity("person", "Alice", "alice", aliases=["ally"])

        palace.touch_entity(entity_id, ["ally", "al"])

        entity = palace.find_entity("alice")
        assert entity.mention_count == 2
        assert entity.aliases == ["ally", "al"]

    def test_upsert_mention(self, palace, add_memory):
        memory_id = add_memory("alice bought SOL")
        entity_id = palace.insert_entity("person", "alice", "alice")

        palace.upsert_mention(entity_id, memory_id, "x" * 800, 1.5)
        palace.upsert_mention(entity_id, memory_id, "short", 0.4)

        mentions = palace.get_mentions_for_entities([entity_id], min_salience=0.0)
        assert len(mentions) == 1
        assert mentions[0].context == "short"
        assert mentions[0].salience == 0.4

        palace.upsert_mention(entity_id, memory_id, "y" * 800, 1.5)
        mention = palace.get_mentions_for_entities([entity_id], min_salience=0.0)[0]
        assert len(mention.context) == 500
        assert mention.salience == 1.0

    def test_memories_and_entities_by_mention(self, palace, add_memory):
        first = add_memory("alice bought SOL")
        second = add_memory("alice sold SOL")
        alice = palace.insert_entity("person", "alice", "alice")
        sol = palace.insert_entity("token", "SOL", "sol")
        palace.upsert_mention(alice, first, None, 0.9)
        palace.upsert_mention(alice, second, None, 0.5)
        palace.upsert_mention(sol, first, None, 0.6)

        assert [m.id for m in palace.get_memories_by_entity(alice)] == [first, second]
        assert [e.id for e in palace.get_entities_in_memory(first)] == [alice, sol]

    def test_relation_strengthens_with_evidence(self, palace):
        a = palace.insert_entity("person", "alice", "alice")
        b = palace.insert_entity("token", "SOL", "sol")

        assert palace.upsert_entity_relation(a, b, "co_occurs", 0.5, evidence_memory_id=1)
        assert palace.upsert_entity_relation(a, b, "co_occurs", 0.5, evidence_memory_id=2)
        assert palace.upsert_entity_relation(a, b, "co_occurs", 0.5, evidence_memory_id=2)
        assert palace.upsert_entity_relation(a, a, "co_occurs") is False

        relations = palace.get_entity_relations([a, b])
        assert len(relations) == 1
        assert abs(relations[0].strength - 0.7) < 1e-9
        assert relations[0].evidence_memory_ids == [1, 2]

    def test_cooccurrence_requires_shared_memories(self, palace, add_memory):
        """Entities count as co-occurring only across min_cooccurrence shared memories"""
        m1, m2, m3 = add_memory("one"), add_memory("two"), add_memory("three")
        alice = palace.insert_entity("person", "alice", "alice")
        sol = palace.insert_entity("token", "SOL", "sol")
        eth = palace.insert_entity("token", "ETH", "eth")
        for memory_id in (m1, m2):
            palace.upsert_mention(alice, memory_id, None, 0.8)
            palace.upsert_mention(sol, memory_id, None, 0.6)
        palace.upsert_mention(alice, m3, None, 0.8)
        palace.upsert_mention(eth, m3, None, 0.8)

        found = palace.get_entity_cooccurrence(alice, min_cooccurrence=2)

        assert len(found) == 1
        assert found[0].entity_id == sol
        assert found[0].cooccurrence_count == 2
        assert abs(found[0].avg_salience - 0.6) < 1e-9

    def test_cooccurrence_ignores_low_salience(self, palace, add_memory):
        m1, m2 = add_memory("one"), add_memory("two")
        alice = palace.insert_entity("person", "alice", "alice")
        sol = palace.insert_entity("token", "SOL", "sol")
        for memory_id in (m1, m2):
            palace.upsert_mention(alice, memory_id, None, 0.8)
            palace.upsert_mention(sol, memory_id, None, 0.1)

        assert palace.get_entity_cooccurrence(alice, min_cooccurrence=2, min_salience=0.3) == []

    def test_match_entities(self, palace):
        sol = palace.insert_entity("token", "SOL", "sol")
        eth = palace.insert_entity("token", "ETH", "eth")
        alice = palace.insert_entity("person", "alice", "alice")
        palace.update_entity_embedding(sol, [1.0, 0.0])
        palace.update_entity_embedding(eth, [0.0, 1.0])
        palace.update_entity_embedding(alice, [0.9, 0.1])

        found = palace.match_entities([1.0, 0.0], threshold=0.5)
        assert [e.id for e in found] == [sol, alice]
        assert abs(found[0].similarity - 1.0) < 1e-6

        tokens_only = palace.match_entities([1.0, 0.0], threshold=0.5, entity_types=["token"])
        assert [e.id for e in tokens_only] == [sol]

    def test_search_entities_by_name(self, palace):
        sol = palace.insert_entity("token", "SOL", "sol", aliases=["solana"])
        palace.insert_entity("token", "ETH", "eth")

        assert [e.id for e in palace.search_entities_by_name(["Solana"])] == [sol]
        assert [e.id for e in palace.search_entities_by_name(["sol", "price"])] == [sol]
        assert palace.search_entities_by_name([]) == []

    def test_list_entities(self, palace):
        sol = palace.insert_entity("token", "SOL", "sol")
        alice = palace.insert_entity("person", "alice", "alice")
        palace.touch_entity(sol)

        assert [e.id for e in palace.list_entities()] == [sol, alice]
        assert [e.id for e in palace.list_entities(min_mentions=2)] == [sol]
        assert [e.id for e in palace.list_entities(entity_types=["person"])] == [alice]
