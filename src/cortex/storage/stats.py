"""
Database Statistics and Housekeeping

This module handles aggregate reads and bookkeeping tables:
- get_stats: Memory counts, type distribution, averages, top tags/concepts
- get_graph_counts: Link, entity, mention and relation counts
- insert_dream_log: Dream-cycle session records
- check_rate_limit: Windowed counters for externally visible actions
"""

import json
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict

from .connection import SQLiteOperations
from .models import DreamLog, MemoryStats, parse_json, parse_timestamp

TOP_N = 10
MAX_DREAM_OUTPUT_CHARS = 5000


class DatabaseStats(SQLiteOperations):
    """
    Statistics and housekeeping operations.

    Provides tools for:
    - Aggregate memory statistics over live (non-faded, non-compacted) rows
    - Graph size reporting
    - Dream session logging
    - Rate limiting
    """

    def get_stats(self, min_decay: float = 0.05) -> MemoryStats:
        """
        Get memory statistics.

        Memories at or below min_decay, and compacted memories, are not counted.

        Returns:
            MemoryStats
        """
        rows = self._fetchall("""
            SELECT memory_type, importance, decay_factor, created_at,
                   related_user, tags, concepts, embedding IS NOT NULL
            FROM memories
            WHERE decay_factor > ? AND compacted = 0
        """, (min_decay,))

        stats = MemoryStats(total=len(rows))
        stats.total_dream_sessions = self._fetchone("SELECT COUNT(*) FROM dream_logs")[0]
        if not rows:
            return stats

        by_type: Dict[str, int] = {}
        tags: Counter = Counter()
        concepts: Counter = Counter()
        users = set()
        created = []

        for memory_type, importance, decay, created_at, user, tag_json, concept_json, embedded in rows:
            by_type[memory_type] = by_type.get(memory_type, 0) + 1
            tags.update(parse_json(tag_json, []))
            concepts.update(parse_json(concept_json, []))
            if user:
                users.add(user)
            created.append(created_at)
            if embedded:
                stats.embedded_count += 1

        stats.by_type = by_type
        stats.avg_importance = sum(r[1] for r in rows) / len(rows)
        stats.avg_decay = sum(r[2] for r in rows) / len(rows)
        stats.oldest_memory = parse_timestamp(min(created))
        stats.newest_memory = parse_timestamp(max(created))
        stats.unique_users = len(users)
        stats.top_tags = [{"tag": t, "count": c} for t, c in tags.most_common(TOP_N)]
        stats.top_concepts = [{"concept": t, "count": c} for t, c in concepts.most_common(TOP_N)]
        return stats

    def get_graph_counts(self) -> Dict[str, int]:
        counts = {}
        for key, table in (("links", "memory_links"),
                           ("entities", "entities"),
                           ("mentions", "entity_mentions"),
                           ("relations", "entity_relations")):
            counts[key] = self._fetchone(f"SELECT COUNT(*) FROM {table}")[0]
        return counts

    def insert_dream_log(self, log: DreamLog) -> int:
        with self._db_lock:
            cursor = self._conn.execute("""
                INSERT INTO dream_logs
                (session_type, input_memory_ids, output, new_memories_created, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                log.session_type,
                json.dumps(log.input_memory_ids),
                log.output[:MAX_DREAM_OUTPUT_CHARS],
                json.dumps(log.new_memories_created),
                log.created_at.isoformat(),
            ))
            return cursor.lastrowid

    def check_rate_limit(self, key: str, max_count: int, window_minutes: int) -> bool:
        """
        Consume one slot of a windowed counter.

        A window older than window_minutes is restarted with count 1.

        Returns:
            True if the action is allowed
        """
        now = datetime.now()
        cutoff = now - timedelta(minutes=window_minutes)

        with self._db_lock:
            row = self._conn.execute(
                "SELECT count, window_start FROM rate_limits WHERE key = ?", (key,)
            ).fetchone()

            if row is None or parse_timestamp(row[1]) < cutoff:
                self._conn.execute("""
                    INSERT INTO rate_limits (key, count, window_start) VALUES (?, 1, ?)
                    ON CONFLICT(key) DO UPDATE SET count = 1, window_start = excluded.window_start
                """, (key, now.isoformat()))
                return True

            if row[0] >= max_count:
                return False

            self._conn.execute("UPDATE rate_limits SET count = count + 1 WHERE key = ?", (key,))
            return True
