"""
Tests for the memory write path (MemoryStore)

Tests cover:
- Hash id format and collision fallback
- Clamping, truncation and type fallback on store
- Concept inference
- Store-time side effects: embedding fragments, ledger, events
- Failure isolation: a failing side effect never fails store()
- Hydrate ordering
"""

import re
import sqlite3
from unittest.mock import MagicMock

from cortex.capabilities import content_hash
from cortex.event_bus import EventBus
from cortex.memory_store import MemoryStore, chunk_content, fragment_texts
from cortex.options import StoreMemoryOptions
from cortex.storage.models import Memory
from cortex.tasks import BackgroundTaskQueue

HASH_ID = re.compile(r"^clude-[0-9a-f]{8}$")


def _fragments(palace, memory_id):
    return palace._fetchall(
        "SELECT fragment_type, content FROM memory_fragments WHERE memory_id = ? ORDER BY id",
        (memory_id,),
    )


class TestChunking:
    def test_short_content_single_chunk(self):
        assert chunk_content("One. Two.") == ["One. Two."]

    def test_splits_on_sentences(self):
        sentence = "word " * 60  # 300 chars
        text = f"{sentence.strip()}. {sentence.strip()}."
        chunks = chunk_content(text)
        assert len(chunks) == 2
        assert all(len(c) <= 500 for c in chunks)

    def test_hard_splits_long_sentence_and_caps_count(self):
        chunks = chunk_content("x" * 4000)
        assert len(chunks) == 5
        assert all(len(c) == 500 for c in chunks)

    def test_fragment_texts(self):
        memory = Memory(id=1, hash_id="clude-00000001", memory_type="episodic",
                        content="Full story. With detail.", summary="Short",
                        tags=["price"], concepts=["price_action"])
        assert fragment_texts(memory) == [
            ("summary", "Short"),
            ("content_chunk", "Full story. With detail."),
            ("tag_context", "tags: price; concepts: price_action"),
        ]

    def test_fragment_texts_skips_duplicate_content(self):
        memory = Memory(id=1, hash_id="clude-00000001", memory_type="episodic",
                        content="Same", summary="Same")
        assert fragment_texts(memory) == [("summary", "Same")]


class TestStore:
    """Test suite for Cortex.store"""

    def test_store_returns_id_and_hash(self, cortex):
        memory_id = cortex.store(StoreMemoryOptions(summary="SOL pumped 12% this morning"))

        memory = cortex.hydrate([memory_id])[0]
        assert HASH_ID.match(memory.hash_id)
        assert memory.content == "SOL pumped 12% this morning"
        assert memory.memory_type == "episodic"
        assert memory.decay_factor == 1.0
        assert memory.access_count == 0

    def test_hash_ids_are_unique(self, cortex):
        ids = [cortex.store(StoreMemoryOptions(summary="same text")) for _ in range(20)]
        hashes = {m.hash_id for m in cortex.hydrate(ids)}
        assert len(hashes) == 20

    def test_clamps_and_truncates(self, cortex):
        memory_id = cortex.store(StoreMemoryOptions(
            summary="s" * 600,
            content="c" * 6000,
            importance=1.7,
            emotional_valence=-3.0,
        ))

        memory = cortex.hydrate([memory_id])[0]
        assert len(memory.summary) == 500
        assert len(memory.content) == 5000
        assert memory.importance == 1.0
        assert memory.emotional_valence == -1.0

    def test_negative_importance_clamped(self, cortex):
        memory_id = cortex.store(StoreMemoryOptions(summary="meh", importance=-0.5))
        assert cortex.hydrate([memory_id])[0].importance == 0.0

    def test_unknown_type_stored_as_episodic(self, cortex):
        memory_id = cortex.store(StoreMemoryOptions(summary="x", memory_type="dream"))
        assert cortex.hydrate([memory_id])[0].memory_type == "episodic"

    def test_concepts_inferred_when_omitted(self, cortex):
        inferred = cortex.store(StoreMemoryOptions(summary="A whale dumped and the price fell"))
        explicit = cortex.store(StoreMemoryOptions(summary="A whale dumped", concepts=[]))

        by_id = {m.id: m for m in cortex.hydrate([inferred, explicit])}
        assert "whale_activity" in by_id[inferred].concepts
        assert by_id[explicit].concepts == []

    def test_publishes_stored_event(self, cortex):
        events = []
        cortex.subscribe("memory.stored", events.append)

        memory_id = cortex.store(StoreMemoryOptions(summary="gm", importance=0.3,
                                                    related_user="alice"))

        assert len(events) == 1
        assert events[0].memory_id == memory_id
        assert events[0].importance == 0.3
        assert events[0].related_user == "alice"

    def test_evidence_links(self, cortex):
        first = cortex.store(StoreMemoryOptions(summary="alice sold early"))
        second = cortex.store(StoreMemoryOptions(summary="bob sold early"))
        insight = cortex.store(StoreMemoryOptions(summary="Holders sell early",
                                                  memory_type="semantic",
                                                  evidence_ids=[first, second]))

        supports = [l for l in cortex.backend.get_links(insight) if l.link_type == "supports"]
        assert {l.source_id for l in supports} == {first, second}
        assert all(l.target_id == insight and l.strength == 0.9 for l in supports)


class TestStoreSideEffects:
    """Background side effects"""

    def test_embeds_memory_and_fragments(self, embedded_cortex, palace):
        memory_id = embedded_cortex.store(StoreMemoryOptions(
            summary="SOL pumped",
            content="SOL pumped 12% this morning. Volume doubled.",
            tags=["price"],
        ))

        memory = palace._fetchone("SELECT embedding FROM memories WHERE id = ?", (memory_id,))
        assert memory[0] is not None
        types = [row[0] for row in _fragments(palace, memory_id)]
        assert types == ["summary", "content_chunk", "tag_context"]

    def test_embedding_failure_leaves_memory_lexical(self, embedded_cortex, palace, fake_embedder):
        fake_embedder.fail = True
        memory_id = embedded_cortex.store(StoreMemoryOptions(summary="SOL pumped"))

        assert memory_id is not None
        assert palace._fetchone("SELECT embedding FROM memories WHERE id = ?", (memory_id,))[0] is None
        assert _fragments(palace, memory_id) == []

    def test_ledger_signature_written(self, config, palace):
        from cortex import Cortex

        ledger = MagicMock()
        ledger.commit.return_value = "5igNaTuRe"
        with Cortex(config, backend=palace, ledger=ledger) as cortex:
            memory_id = cortex.store(StoreMemoryOptions(summary="gm", content="gm frens"))
            memory = cortex.hydrate([memory_id])[0]

        ledger.commit.assert_called_once_with(memory.hash_id, content_hash("gm frens"))
        assert memory.ledger_signature == "5igNaTuRe"

    def test_failing_side_effect_is_captured(self, config, palace):
        """A raising ledger is logged and published, store still succeeds"""
        from cortex import Cortex

        ledger = MagicMock()
        ledger.commit.side_effect = RuntimeError("rpc down")
        failures = []
        with Cortex(config, backend=palace, ledger=ledger) as cortex:
            cortex.subscribe("task.failed", failures.append)
            memory_id = cortex.store(StoreMemoryOptions(summary="gm"))

            assert memory_id is not None
            assert cortex.hydrate([memory_id])[0].ledger_signature is None
            assert [f.task_name for f in cortex.tasks.failures] == ["ledger"]
        assert failures[0].error == "rpc down"


class TestMemoryStoreUnit:
    """MemoryStore against a mocked backend"""

    def _store(self, backend, config):
        return MemoryStore(backend, config, EventBus(), BackgroundTaskQueue(synchronous=True),
                           association=MagicMock(), entity_graph=MagicMock())

    def test_persistence_failure_returns_none(self, config):
        backend = MagicMock()
        backend.hash_id_exists.return_value = False
        backend.insert_memory.side_effect = sqlite3.OperationalError("disk I/O error")

        assert self._store(backend, config).store(StoreMemoryOptions(summary="gm")) is None

    def test_crowded_namespace_falls_back_to_wider_id(self, config):
        backend = MagicMock()
        backend.hash_id_exists.return_value = True

        hash_id = self._store(backend, config).generate_hash_id("gm")
        assert re.match(r"^clude-[0-9a-f]{16}$", hash_id)

    def test_custom_prefix(self, config):
        config.hash_prefix = "mem"
        backend = MagicMock()
        backend.hash_id_exists.return_value = False

        assert re.match(r"^mem-[0-9a-f]{8}$", self._store(backend, config).generate_hash_id("gm"))


class TestReads:
    def test_hydrate_keeps_requested_order(self, cortex):
        a = cortex.store(StoreMemoryOptions(summary="a"))
        b = cortex.store(StoreMemoryOptions(summary="b"))
        c = cortex.store(StoreMemoryOptions(summary="c"))

        assert [m.id for m in cortex.hydrate([c, a, 999, b, a])] == [c, a, b]
        assert cortex.hydrate([]) == []

    def test_hydrate_does_not_track_access(self, cortex):
        memory_id = cortex.store(StoreMemoryOptions(summary="a"))
        cortex.hydrate([memory_id])
        assert cortex.hydrate([memory_id])[0].access_count == 0

    def test_create_link_rejects_bad_type(self, cortex):
        a = cortex.store(StoreMemoryOptions(summary="a"))
        b = cortex.store(StoreMemoryOptions(summary="b"))

        assert cortex.create_link(a, b, "causes", 0.8) is True
        assert cortex.create_link(a, b, "likes") is False
        assert cortex.create_link(a, a, "causes") is False

    def test_get_recent_and_self_model(self, cortex):
        episode = cortex.store(StoreMemoryOptions(summary="alice said gm"))
        insight = cortex.store(StoreMemoryOptions(summary="I reply fast", memory_type="self_model"))

        assert [m.id for m in cortex.get_recent(1, ["episodic"])] == [episode]
        assert [m.id for m in cortex.get_self_model()] == [insight]
