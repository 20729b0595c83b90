"""
Tests for storage.crud module (MemoryCRUD)

Tests cover:
- Initialization (file, in-memory, shared connection)
- Insert and fetch round trip, JSON columns
- Embedding and fragment writes
- Access reinforcement and importance rehearsal
- Per-type decay with a floor
- Compaction candidates and marking
"""

import sqlite3
from datetime import datetime, timedelta

import pytest

from cortex.storage.crud import MemoryCRUD
from cortex.storage.embeddings import blob_to_embed, embed_to_blob
from cortex.storage.models import Memory, MemoryFragment
from cortex.storage.schema import init_database


def _memory(summary="SOL pumped 12% this morning", **kwargs):
    return Memory(
        id=0,
        hash_id=kwargs.pop("hash_id", "clude-0a1b2c3d"),
        memory_type=kwargs.pop("memory_type", "episodic"),
        content=kwargs.pop("content", summary),
        summary=summary,
        **kwargs,
    )


class TestMemoryCRUD:
    """Test suite for MemoryCRUD class"""

    def test_init_with_file_path(self, tmp_path):
        """Test initialization with file-based database"""
        db_path = tmp_path / "nested" / "palace.sqlite"
        crud = MemoryCRUD(str(db_path))

        assert crud.db_path == db_path
        assert db_path.exists()
        assert crud._owns_connection is True

        crud.close()

    def test_init_with_shared_connection(self, tmp_path):
        """Shared connections are left open on close"""
        conn = sqlite3.connect(str(tmp_path / "shared.db"), isolation_level=None)
        init_database(conn, enable_wal=True)

        crud = MemoryCRUD(str(tmp_path / "shared.db"), conn=conn)
        assert crud._owns_connection is False
        crud.close()

        assert conn.execute("SELECT 1").fetchone()[0] == 1
        conn.close()

    def test_insert_and_get_round_trip(self):
        """Test that every column survives a round trip"""
        crud = MemoryCRUD(':memory:')
        memory = _memory(
            content="SOL pumped 12% this morning after the listing news.",
            tags=["price", "sol"],
            concepts=["price_action"],
            emotional_valence=0.4,
            importance=0.8,
            source="market",
            related_user="alice",
            related_wallet="7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
            metadata={"channel": "x"},
            evidence_ids=[1, 2],
        )

        memory_id = crud.insert_memory(memory)
        fetched = crud.get_memories([memory_id])[0]

        assert fetched.id == memory_id
        assert fetched.hash_id == "clude-0a1b2c3d"
        assert fetched.tags == ["price", "sol"]
        assert fetched.concepts == ["price_action"]
        assert fetched.emotional_valence == 0.4
        assert fetched.importance == 0.8
        assert fetched.related_user == "alice"
        assert fetched.metadata == {"channel": "x"}
        assert fetched.evidence_ids == [1, 2]
        assert fetched.access_count == 0
        assert fetched.decay_factor == 1.0
        assert fetched.compacted is False
        assert fetched.last_accessed == fetched.created_at

        crud.close()

    def test_insert_indexes_full_text(self):
        """Inserted memories are searchable through FTS5"""
        crud = MemoryCRUD(':memory:')
        memory_id = crud.insert_memory(_memory())

        rows = crud._fetchall(
            "SELECT memory_id FROM memories_fts WHERE memories_fts MATCH ?", ('"pumped"',)
        )
        assert [r[0] for r in rows] == [memory_id]

        crud.close()

    def test_duplicate_hash_id_rejected(self):
        """hash_id is unique"""
        crud = MemoryCRUD(':memory:')
        crud.insert_memory(_memory())

        with pytest.raises(sqlite3.IntegrityError):
            crud.insert_memory(_memory(summary="another"))

        assert crud.hash_id_exists("clude-0a1b2c3d")
        assert not crud.hash_id_exists("clude-ffffffff")
        crud.close()

    def test_get_memories_skips_unknown_ids(self):
        """Unknown ids are skipped and empty input returns nothing"""
        crud = MemoryCRUD(':memory:')
        memory_id = crud.insert_memory(_memory())

        assert [m.id for m in crud.get_memories([memory_id, 999])] == [memory_id]
        assert crud.get_memories([]) == []

        crud.close()

    def test_update_embedding(self):
        """Test embedding blob write"""
        crud = MemoryCRUD(':memory:')
        memory_id = crud.insert_memory(_memory())

        assert crud.update_embedding(memory_id, [0.5, 0.25, 0.0]) is True
        blob = crud._fetchone("SELECT embedding FROM memories WHERE id = ?", (memory_id,))[0]
        assert blob_to_embed(blob) == [0.5, 0.25, 0.0]
        assert crud.update_embedding(999, [0.1]) is False

        crud.close()

    def test_insert_fragments(self):
        """Fragments are written with their vectors"""
        crud = MemoryCRUD(':memory:')
        memory_id = crud.insert_memory(_memory())

        written = crud.insert_fragments([
            MemoryFragment(memory_id, "summary", "SOL pumped", [1.0, 0.0]),
            MemoryFragment(memory_id, "tag_context", "tags: price", [0.0, 1.0]),
        ])

        assert written == 2
        count = crud._fetchone("SELECT COUNT(*) FROM memory_fragments WHERE memory_id = ?",
                               (memory_id,))[0]
        assert count == 2
        assert crud.insert_fragments([]) == 0

        crud.close()

    def test_batch_boost_access(self):
        """Access increments count, refreshes last_accessed and caps decay at 1"""
        crud = MemoryCRUD(':memory:')
        old = datetime.now() - timedelta(days=3)
        first = crud.insert_memory(_memory(hash_id="clude-00000001", created_at=old,
                                           decay_factor=0.5))
        second = crud.insert_memory(_memory(hash_id="clude-00000002", created_at=old,
                                            decay_factor=0.95))

        updated = crud.batch_boost_access([first, second, first], 0.1)

        assert updated == 2
        by_id = {m.id: m for m in crud.get_memories([first, second])}
        assert by_id[first].access_count == 1
        assert abs(by_id[first].decay_factor - 0.6) < 1e-9
        assert by_id[second].decay_factor == 1.0
        assert by_id[first].last_accessed > old

        crud.close()

    def test_boost_importance_capped(self):
        """Importance rehearsal never exceeds the cap"""
        crud = MemoryCRUD(':memory:')
        memory_id = crud.insert_memory(_memory(importance=0.99))

        crud.boost_importance([memory_id], 0.02)

        assert crud.get_memories([memory_id])[0].importance == 1.0
        crud.close()

    def test_batch_decay_respects_type_cutoff_and_floor(self):
        """Only stale memories of the given type decay, never below the floor"""
        crud = MemoryCRUD(':memory:')
        old = datetime.now() - timedelta(days=2)
        stale = crud.insert_memory(_memory(hash_id="clude-00000001", created_at=old))
        fresh = crud.insert_memory(_memory(hash_id="clude-00000002"))
        semantic = crud.insert_memory(_memory(hash_id="clude-00000003", created_at=old,
                                              memory_type="semantic"))
        floored = crud.insert_memory(_memory(hash_id="clude-00000004", created_at=old,
                                             decay_factor=0.06))

        cutoff = datetime.now() - timedelta(hours=24)
        decayed = crud.batch_decay("episodic", 0.93, 0.05, cutoff)

        by_id = {m.id: m for m in crud.get_memories([stale, fresh, semantic, floored])}
        assert decayed == 2
        assert abs(by_id[stale].decay_factor - 0.93) < 1e-9
        assert by_id[fresh].decay_factor == 1.0
        assert by_id[semantic].decay_factor == 1.0
        assert by_id[floored].decay_factor == 0.05

        # Already at the floor: untouched
        assert crud.batch_decay("episodic", 0.93, 0.05, cutoff) == 1

        crud.close()

    def test_compaction_candidates_and_mark(self):
        """Old, faded, unimportant episodic memories are candidates until compacted"""
        crud = MemoryCRUD(':memory:')
        old = datetime.now() - timedelta(days=10)
        candidate = crud.insert_memory(_memory(hash_id="clude-00000001", created_at=old,
                                               decay_factor=0.2, importance=0.3))
        crud.insert_memory(_memory(hash_id="clude-00000002", created_at=old,
                                   decay_factor=0.2, importance=0.9))
        crud.insert_memory(_memory(hash_id="clude-00000003", decay_factor=0.2, importance=0.3))

        older_than = datetime.now() - timedelta(days=7)
        found = crud.get_compaction_candidates(older_than, 0.3, 0.5)
        assert [m.id for m in found] == [candidate]

        assert crud.mark_compacted([candidate], "clude-feedbeef") == 1
        compacted = crud.get_memories([candidate])[0]
        assert compacted.compacted is True
        assert compacted.compacted_into == "clude-feedbeef"
        assert crud.get_compaction_candidates(older_than, 0.3, 0.5) == []

        crud.close()


class TestEmbeddingBlobs:
    """Binary float32 serialization"""

    def test_blob_round_trip(self):
        """Test that float32 packing preserves representable values"""
        assert blob_to_embed(embed_to_blob([0.5, -1.0, 2.0])) == [0.5, -1.0, 2.0]

    def test_empty_blob(self):
        assert blob_to_embed(b"") == []
