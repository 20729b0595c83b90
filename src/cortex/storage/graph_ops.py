"""
Link Operations for the association graph

This module handles edges between memories:
- upsert_link: Create or overwrite a typed, weighted edge
- get_links: Query edges touching a memory
- boost_link_strength: Hebbian reinforcement among co-retrieved memories
"""

from datetime import datetime
from typing import List, Sequence

from .connection import SQLiteOperations, placeholders
from .models import LINK_TYPES, MemoryLink, parse_timestamp


class LinkOperations(SQLiteOperations):
    """
    Association link operations.

    Edges are keyed by (source, target, link_type), so repeated or
    concurrent creation converges on one row instead of duplicating.
    """

    def _validate_link_type(self, link_type: str) -> None:
        """Validate link type."""
        if link_type not in LINK_TYPES:
            raise ValueError(f"Invalid link_type: {link_type}. Must be one of: {LINK_TYPES}")

    def upsert_link(self, source_id: int, target_id: int, link_type: str,
                    strength: float) -> bool:
        """
        Create a relationship edge between memories.

        Args:
            source_id: Source memory ID
            target_id: Target memory ID
            link_type: One of LINK_TYPES
            strength: Relationship strength, clamped to 0.0-1.0

        Returns:
            True if the edge exists after the call, False for self-loops
        """
        self._validate_link_type(link_type)
        if source_id == target_id:
            return False

        strength = max(0.0, min(1.0, float(strength)))
        self._execute("""
            INSERT INTO memory_links (source_id, target_id, link_type, strength, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(source_id, target_id, link_type)
            DO UPDATE SET strength = excluded.strength
        """, (source_id, target_id, link_type, strength, datetime.now().isoformat()))
        return True

    def get_links(self, memory_id: int) -> List[MemoryLink]:
        """
        Get all links touching a memory, in either direction.

        Args:
            memory_id: The memory ID

        Returns:
            List of MemoryLink objects, strongest first
        """
        rows = self._fetchall("""
            SELECT id, source_id, target_id, link_type, strength, created_at
            FROM memory_links
            WHERE source_id = ? OR target_id = ?
            ORDER BY strength DESC, id ASC
        """, (memory_id, memory_id))

        return [
            MemoryLink(
                id=row[0],
                source_id=row[1],
                target_id=row[2],
                link_type=row[3],
                strength=row[4],
                created_at=parse_timestamp(row[5]),
            )
            for row in rows
        ]

    def boost_link_strength(self, memory_ids: Sequence[int], amount: float) -> int:
        """Strengthen every link with both endpoints in memory_ids, capped at 1.0."""
        ids = list(dict.fromkeys(memory_ids))
        if len(ids) < 2:
            return 0
        marks = placeholders(ids)
        return self._execute(f"""
            UPDATE memory_links
            SET strength = MIN(1.0, strength + ?)
            WHERE source_id IN ({marks}) AND target_id IN ({marks})
        """, (amount, *ids, *ids))

