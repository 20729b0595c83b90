"""
CRUD Operations for memory records

This module handles create, read and batch-update operations for memories:
- insert_memory: Persist a record and index it for full-text search
- get_memories: Fetch records by id
- update_embedding / insert_fragments: Vector writes from background tasks
- batch_boost_access / boost_importance: Access reinforcement
- batch_decay: Per-type multiplicative decay with a floor
- get_compaction_candidates / mark_compacted: Forgetting by summarization
"""

import json
import sqlite3
from datetime import datetime
from typing import List, Sequence

from .connection import SQLiteOperations, placeholders
from .embeddings import embed_to_blob
from .models import Memory, MemoryFragment, parse_json, parse_timestamp


MEMORY_COLUMNS = """
    id, hash_id, memory_type, content, summary, tags, concepts,
    emotional_valence, importance, access_count, source, source_id,
    related_user, related_wallet, metadata, created_at, last_accessed,
    decay_factor, evidence_ids, compacted, compacted_into, ledger_signature
"""


def memory_columns(alias: str = "") -> str:
    """Column list for SELECTs, optionally qualified with a table alias."""
    names = [name.strip() for name in MEMORY_COLUMNS.split(",")]
    if alias:
        names = [f"{alias}.{name}" for name in names]
    return ", ".join(names)


def row_to_memory(row: sqlite3.Row) -> Memory:
    """Build a Memory from a row selected with memory_columns()."""
    return Memory(
        id=row[0],
        hash_id=row[1],
        memory_type=row[2],
        content=row[3],
        summary=row[4],
        tags=parse_json(row[5], []),
        concepts=parse_json(row[6], []),
        emotional_valence=row[7] or 0.0,
        importance=row[8] if row[8] is not None else 0.5,
        access_count=row[9] or 0,
        source=row[10],
        source_id=row[11],
        related_user=row[12],
        related_wallet=row[13],
        metadata=parse_json(row[14], {}),
        created_at=parse_timestamp(row[15]),
        last_accessed=parse_timestamp(row[16]),
        decay_factor=row[17] if row[17] is not None else 1.0,
        evidence_ids=parse_json(row[18], []),
        compacted=bool(row[19]),
        compacted_into=row[20],
        ledger_signature=row[21],
    )


class MemoryCRUD(SQLiteOperations):
    """
    Memory CRUD operations.

    Handles record persistence with support for:
    - Full-text search index synchronization
    - Vector embeddings (binary blob storage) and fragments
    - Bulk access reinforcement and decay
    - Thread-safe database operations
    """

    def insert_memory(self, memory: Memory) -> int:
        """
        Store a memory record.

        Args:
            memory: Memory to persist; its id is ignored and assigned here

        Returns:
            Numeric id of the new row
        """
        now = datetime.now()
        created_at = (memory.created_at or now).isoformat()
        last_accessed = (memory.last_accessed or memory.created_at or now).isoformat()
        embedding_blob = embed_to_blob(memory.embedding) if memory.embedding else None

        with self._db_lock:
            self._conn.execute("BEGIN")
            try:
                cursor = self._conn.execute("""
                    INSERT INTO memories
                    (hash_id, memory_type, content, summary, tags, concepts,
                     emotional_valence, importance, access_count, source, source_id,
                     related_user, related_wallet, metadata, created_at, last_accessed,
                     decay_factor, evidence_ids, compacted, compacted_into, ledger_signature,
                     embedding)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    memory.hash_id,
                    memory.memory_type,
                    memory.content,
                    memory.summary,
                    json.dumps(list(memory.tags)),
                    json.dumps(list(memory.concepts)),
                    memory.emotional_valence,
                    memory.importance,
                    memory.access_count,
                    memory.source,
                    memory.source_id,
                    memory.related_user,
                    memory.related_wallet,
                    json.dumps(memory.metadata or {}),
                    created_at,
                    last_accessed,
                    memory.decay_factor,
                    json.dumps(list(memory.evidence_ids)),
                    1 if memory.compacted else 0,
                    memory.compacted_into,
                    memory.ledger_signature,
                    embedding_blob,
                ))
                memory_id = cursor.lastrowid
                self._conn.execute("""
                    INSERT INTO memories_fts(memory_id, summary, content) VALUES (?, ?, ?)
                """, (memory_id, memory.summary, memory.content))
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise

        return memory_id

    def hash_id_exists(self, hash_id: str) -> bool:
        row = self._fetchone("SELECT 1 FROM memories WHERE hash_id = ?", (hash_id,))
        return row is not None

    def get_memories(self, memory_ids: Sequence[int]) -> List[Memory]:
        """
        Retrieve memories by id. Does not touch access stats.

        Args:
            memory_ids: Ids to fetch

        Returns:
            Memory objects for the ids that exist
        """
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return []
        rows = self._fetchall(f"""
            SELECT {memory_columns()} FROM memories WHERE id IN ({placeholders(ids)})
        """, tuple(ids))
        return [row_to_memory(row) for row in rows]

    def update_embedding(self, memory_id: int, embedding: List[float]) -> bool:
        """
        Update the embedding vector for a memory.

        Args:
            memory_id: Memory ID
            embedding: New embedding vector

        Returns:
            True if successful
        """
        embedding_blob = embed_to_blob(embedding) if embedding else None
        return self._execute(
            "UPDATE memories SET embedding = ? WHERE id = ?",
            (embedding_blob, memory_id)
        ) > 0

    def insert_fragments(self, fragments: List[MemoryFragment]) -> int:
        if not fragments:
            return 0
        now = datetime.now().isoformat()
        with self._db_lock:
            self._conn.executemany("""
                INSERT INTO memory_fragments (memory_id, fragment_type, content, embedding, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (f.memory_id, f.fragment_type, f.content,
                 embed_to_blob(f.embedding) if f.embedding else None, now)
                for f in fragments
            ])
        return len(fragments)

    def set_ledger_signature(self, memory_id: int, signature: str) -> bool:
        return self._execute(
            "UPDATE memories SET ledger_signature = ? WHERE id = ?",
            (signature, memory_id)
        ) > 0

    def batch_boost_access(self, memory_ids: Sequence[int], decay_boost: float) -> int:
        """
        Record an access for each memory.

        access_count + 1, last_accessed = now, decay_factor nudged up by
        decay_boost and capped at 1.0.
        """
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return 0
        return self._execute(f"""
            UPDATE memories
            SET access_count = access_count + 1,
                last_accessed = ?,
                decay_factor = MIN(1.0, decay_factor + ?)
            WHERE id IN ({placeholders(ids)})
        """, (datetime.now().isoformat(), decay_boost, *ids))

    def boost_importance(self, memory_ids: Sequence[int], amount: float,
                         cap: float = 1.0) -> int:
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return 0
        return self._execute(f"""
            UPDATE memories SET importance = MIN(?, importance + ?)
            WHERE id IN ({placeholders(ids)})
        """, (cap, amount, *ids))

    def batch_decay(self, memory_type: str, rate: float, min_decay: float,
                    cutoff: datetime) -> int:
        """
        Apply multiplicative decay to one memory type.

        Only rows not accessed since cutoff and still above the floor are
        touched, and no row is driven below min_decay.

        Returns:
            Number of rows decayed
        """
        return self._execute("""
            UPDATE memories
            SET decay_factor = MAX(?, decay_factor * ?)
            WHERE memory_type = ?
              AND last_accessed < ?
              AND decay_factor > ?
        """, (min_decay, rate, memory_type, cutoff.isoformat(), min_decay))

    def get_compaction_candidates(self, older_than: datetime, max_decay: float,
                                  max_importance: float, limit: int = 200) -> List[Memory]:
        """Faded, low-importance episodic memories eligible for summarization."""
        rows = self._fetchall(f"""
            SELECT {memory_columns()} FROM memories
            WHERE memory_type = 'episodic'
              AND compacted = 0
              AND created_at < ?
              AND decay_factor < ?
              AND importance < ?
            ORDER BY created_at ASC
            LIMIT ?
        """, (older_than.isoformat(), max_decay, max_importance, limit))
        return [row_to_memory(row) for row in rows]

    def mark_compacted(self, memory_ids: Sequence[int], into_hash_id: str) -> int:
        ids = list(dict.fromkeys(memory_ids))
        if not ids:
            return 0
        return self._execute(f"""
            UPDATE memories SET compacted = 1, compacted_into = ?
            WHERE id IN ({placeholders(ids)})
        """, (into_hash_id, *ids))

