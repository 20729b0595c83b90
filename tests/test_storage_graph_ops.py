"""
Tests for storage.graph_ops and storage.traversal modules

Tests cover:
- Link type validation
- Upsert semantics: one edge per (source, target, type)
- Self-loops rejected
- Strength clamping and Hebbian boosting
- One-hop and two-hop traversal in both directions
"""

import pytest

from cortex.storage.graph_ops import LinkOperations
from cortex.storage.models import LINK_TYPES


class TestLinkOperations:
    """Test suite for LinkOperations"""

    def test_init_with_memory_db(self):
        """Test initialization with in-memory database"""
        ops = LinkOperations(':memory:')
        assert ops.db_path == ':memory:'
        assert ops._owns_connection is True
        ops.close()

    def test_invalid_link_type(self, palace, add_memory):
        a, b = add_memory("a"), add_memory("b")
        with pytest.raises(ValueError, match="Invalid link_type"):
            palace.upsert_link(a, b, "likes", 0.5)

    @pytest.mark.parametrize("link_type", LINK_TYPES)
    def test_every_link_type_accepted(self, palace, add_memory, link_type):
        a, b = add_memory("a"), add_memory("b")
        assert palace.upsert_link(a, b, link_type, 0.5) is True

    def test_self_loop_rejected(self, palace, add_memory):
        a = add_memory("a")
        assert palace.upsert_link(a, a, "relates", 0.5) is False
        assert palace.get_links(a) == []

    def test_upsert_is_idempotent(self, palace, add_memory):
        """Re-linking the same triple overwrites strength instead of duplicating"""
        a, b = add_memory("a"), add_memory("b")

        palace.upsert_link(a, b, "relates", 0.4)
        palace.upsert_link(a, b, "relates", 0.7)

        links = palace.get_links(a)
        assert len(links) == 1
        assert links[0].strength == 0.7

    def test_distinct_types_are_distinct_edges(self, palace, add_memory):
        a, b = add_memory("a"), add_memory("b")
        palace.upsert_link(a, b, "relates", 0.4)
        palace.upsert_link(a, b, "supports", 0.9)

        links = palace.get_links(b)
        assert [l.link_type for l in links] == ["supports", "relates"]

    def test_strength_clamped(self, palace, add_memory):
        a, b, c = add_memory("a"), add_memory("b"), add_memory("c")
        palace.upsert_link(a, b, "relates", 1.7)
        palace.upsert_link(a, c, "relates", -0.2)

        strengths = {l.target_id: l.strength for l in palace.get_links(a)}
        assert strengths == {b: 1.0, c: 0.0}

    def test_boost_link_strength(self, palace, add_memory):
        """Only links with both endpoints in the set are boosted, capped at 1"""
        a, b, c = add_memory("a"), add_memory("b"), add_memory("c")
        palace.upsert_link(a, b, "relates", 0.5)
        palace.upsert_link(b, c, "relates", 0.98)
        palace.upsert_link(a, c, "relates", 0.5)

        boosted = palace.boost_link_strength([a, b, c, b], 0.05)
        assert boosted == 3
        assert palace.boost_link_strength([a], 0.05) == 0

        palace.boost_link_strength([a, b], 0.05)
        strengths = {(l.source_id, l.target_id): l.strength for l in palace.get_links(b)}
        assert abs(strengths[(a, b)] - 0.6) < 1e-9
        assert strengths[(b, c)] == 1.0


class TestGraphTraversal:
    """Link traversal from a seed set"""

    def test_linked_memories_both_directions(self, palace, add_memory):
        a, b, c = add_memory("a"), add_memory("b"), add_memory("c")
        palace.upsert_link(a, b, "causes", 0.8)
        palace.upsert_link(c, a, "follows", 0.4)

        neighbours = palace.get_linked_memories([a])

        assert [(n.memory_id, n.link_type) for n in neighbours] == [(b, "causes"), (c, "follows")]
        assert all(n.hop == 1 for n in neighbours)

    def test_min_strength_and_seed_exclusion(self, palace, add_memory):
        a, b, c = add_memory("a"), add_memory("b"), add_memory("c")
        palace.upsert_link(a, b, "relates", 0.9)
        palace.upsert_link(a, c, "relates", 0.05)

        neighbours = palace.get_linked_memories([a, b], min_strength=0.1)
        assert neighbours == []

    def test_strongest_link_wins(self, palace, add_memory):
        a, b = add_memory("a"), add_memory("b")
        palace.upsert_link(a, b, "relates", 0.3)
        palace.upsert_link(b, a, "supports", 0.9)

        neighbours = palace.get_linked_memories([a])
        assert len(neighbours) == 1
        assert neighbours[0].link_type == "supports"

    def test_memory_graph_two_hops(self, palace, add_memory):
        """Second hop is attenuated and never repeats a first-hop node"""
        a, b, c, d = add_memory("a"), add_memory("b"), add_memory("c"), add_memory("d")
        palace.upsert_link(a, b, "relates", 0.8)
        palace.upsert_link(b, c, "relates", 0.6)
        palace.upsert_link(c, d, "relates", 0.9)

        graph = palace.get_memory_graph([a])

        assert [(n.memory_id, n.hop) for n in graph] == [(b, 1), (c, 2)]
        assert abs(graph[1].strength - 0.3) < 1e-9
