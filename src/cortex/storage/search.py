"""
Search Operations for memory records

This module handles candidate selection for retrieval:
- query_memories: Metadata filtering (type, user, wallet, importance, decay, tags)
- search_text: FTS5 lexical candidates
- match_memories / match_fragments: Vectorised cosine similarity search
- get_recent / get_self_model / find_by_concepts: Dream-cycle and auto-link reads
"""

import logging
import re
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from .connection import SQLiteOperations, placeholders
from .crud import memory_columns, row_to_memory
from .embeddings import cosine_similarities
from .models import Memory, MemoryFilter

logger = logging.getLogger(__name__)

_FTS_TERM = re.compile(r"[A-Za-z0-9_]{2,}")


def build_filter(flt: MemoryFilter, alias: str = "m") -> Tuple[str, list]:
    """
    Translate a MemoryFilter into a WHERE fragment.

    Returns:
        (sql, params); sql is always a valid boolean expression
    """
    clauses = [f"{alias}.decay_factor >= ?"]
    params: list = [flt.min_decay]

    if not flt.include_compacted:
        clauses.append(f"{alias}.compacted = 0")
    if flt.memory_types:
        clauses.append(f"{alias}.memory_type IN ({placeholders(flt.memory_types)})")
        params.extend(flt.memory_types)
    if flt.related_user:
        clauses.append(f"{alias}.related_user = ?")
        params.append(flt.related_user)
    if flt.related_wallet:
        clauses.append(f"{alias}.related_wallet = ?")
        params.append(flt.related_wallet)
    if flt.min_importance is not None:
        clauses.append(f"{alias}.importance >= ?")
        params.append(flt.min_importance)
    if flt.tags:
        clauses.append(
            f"EXISTS (SELECT 1 FROM json_each({alias}.tags) "
            f"WHERE json_each.value IN ({placeholders(flt.tags)}))"
        )
        params.extend(flt.tags)

    return " AND ".join(clauses), params


def fts_query(text: str) -> str:
    """Build an OR query of quoted terms, safe against FTS5 syntax errors."""
    terms = dict.fromkeys(t.lower() for t in _FTS_TERM.findall(text or ""))
    return " OR ".join(f'"{term}"' for term in terms)


class MemorySearch(SQLiteOperations):
    """
    Memory search operations.

    Handles candidate selection with:
    - Metadata filtering over indexed columns
    - Vector similarity search (cosine similarity, numpy vectorised)
    - Full-text search via FTS5
    - Thread-safe database operations
    """

    def query_memories(self, flt: MemoryFilter) -> List[Memory]:
        where, params = build_filter(flt)
        rows = self._fetchall(f"""
            SELECT {memory_columns('m')} FROM memories m
            WHERE {where}
            ORDER BY m.importance DESC, m.created_at DESC, m.id ASC
            LIMIT ?
        """, (*params, flt.limit))
        return [row_to_memory(row) for row in rows]

    def search_text(self, query: str, flt: MemoryFilter) -> List[Memory]:
        """
        Full-text search using FTS5.

        Args:
            query: Free text; reduced to an OR of quoted terms
            flt: Metadata filter applied to matches

        Returns:
            Matching memories ordered by FTS rank
        """
        match = fts_query(query)
        if not match:
            return []

        where, params = build_filter(flt)
        try:
            rows = self._fetchall(f"""
                SELECT {memory_columns('m')}
                FROM memories_fts fts
                JOIN memories m ON m.id = fts.memory_id
                WHERE memories_fts MATCH ? AND {where}
                ORDER BY rank
                LIMIT ?
            """, (match, *params, flt.limit))
        except sqlite3.OperationalError as e:
            logger.debug(f"FTS search unavailable for {match!r}: {e}")
            return []
        return [row_to_memory(row) for row in rows]

    def get_recent(self, hours: float, memory_types: Optional[List[str]] = None,
                   limit: int = 50) -> List[Memory]:
        """
        Memories created within the last `hours`, newest first.

        Args:
            hours: Look-back window
            memory_types: Optional type filter
            limit: Max results (default: 50)
        """
        since = (datetime.now() - timedelta(hours=hours)).isoformat()
        sql = f"""
            SELECT {memory_columns()} FROM memories
            WHERE created_at >= ? AND compacted = 0
        """
        params: list = [since]
        if memory_types:
            sql += f" AND memory_type IN ({placeholders(memory_types)})"
            params.extend(memory_types)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)

        return [row_to_memory(row) for row in self._fetchall(sql, tuple(params))]

    def get_self_model(self, limit: int = 5, min_decay: float = 0.2) -> List[Memory]:
        rows = self._fetchall(f"""
            SELECT {memory_columns()} FROM memories
            WHERE memory_type = 'self_model' AND decay_factor > ? AND compacted = 0
            ORDER BY importance DESC, created_at DESC
            LIMIT ?
        """, (min_decay, limit))
        return [row_to_memory(row) for row in rows]

    def find_by_concepts(self, concepts: Sequence[str], exclude_id: Optional[int] = None,
                         limit: int = 10) -> List[Memory]:
        if not concepts:
            return []
        rows = self._fetchall(f"""
            SELECT {memory_columns('m')} FROM memories m
            WHERE m.id != ? AND m.compacted = 0
              AND EXISTS (SELECT 1 FROM json_each(m.concepts)
                          WHERE json_each.value IN ({placeholders(concepts)}))
            ORDER BY m.created_at DESC
            LIMIT ?
        """, (exclude_id if exclude_id is not None else -1, *concepts, limit))
        return [row_to_memory(row) for row in rows]

    def match_memories(self, query_embedding: List[float], threshold: float = 0.3,
                       limit: int = 10,
                       flt: Optional[MemoryFilter] = None) -> List[Tuple[int, float]]:
        """
        Semantic search over memory-level vectors.

        Algorithm:
        1. Load candidate vectors passing the metadata filter
        2. Vectorised cosine similarity against the query
        3. Keep those at or above threshold, best first

        Returns:
            List of (memory_id, similarity) tuples
        """
        if not query_embedding:
            return []

        where, params = build_filter(flt or MemoryFilter())
        rows = self._fetchall(f"""
            SELECT m.id, m.embedding FROM memories m
            WHERE m.embedding IS NOT NULL AND {where}
        """, tuple(params))

        scored = [
            (memory_id, sim)
            for memory_id, sim in cosine_similarities(query_embedding, rows)
            if sim >= threshold
        ]
        scored.sort(key=lambda x: (-x[1], x[0]))
        return scored[:limit]

    def match_fragments(self, query_embedding: List[float], threshold: float = 0.3,
                        limit: int = 10) -> List[Tuple[int, float]]:
        """Fragment-level search, collapsed to the best fragment per memory."""
        if not query_embedding:
            return []

        rows = self._fetchall("""
            SELECT f.memory_id, f.embedding
            FROM memory_fragments f
            JOIN memories m ON m.id = f.memory_id
            WHERE f.embedding IS NOT NULL AND m.compacted = 0
        """)

        best = {}
        for memory_id, sim in cosine_similarities(query_embedding, rows):
            if sim >= threshold and sim > best.get(memory_id, -1.0):
                best[memory_id] = sim

        scored = sorted(best.items(), key=lambda x: (-x[1], x[0]))
        return scored[:limit]
