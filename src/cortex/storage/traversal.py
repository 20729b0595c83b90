"""
Graph Traversal Operations for the association graph

This module handles link traversal from a seed set of memories:
- get_linked_memories: One-hop neighbours above a minimum strength
- get_memory_graph: Two-hop neighbourhood with attenuated second hop
"""

from typing import Dict, List, Sequence

from .connection import SQLiteOperations, placeholders
from .models import LinkedMemory


class GraphTraversal(SQLiteOperations):
    """
    Graph traversal operations.

    Links are walked in both directions; a neighbour reached through
    several links keeps only its strongest one.
    """

    # Second-hop neighbours are weighted at half strength
    HOP_ATTENUATION = 0.5

    def _neighbours(self, seed_ids: Sequence[int], min_strength: float) -> List[LinkedMemory]:
        ids = list(dict.fromkeys(seed_ids))
        if not ids:
            return []
        marks = placeholders(ids)
        rows = self._fetchall(f"""
            SELECT target_id AS neighbour, link_type, strength
            FROM memory_links
            WHERE source_id IN ({marks}) AND strength >= ?
            UNION ALL
            SELECT source_id AS neighbour, link_type, strength
            FROM memory_links
            WHERE target_id IN ({marks}) AND strength >= ?
        """, (*ids, min_strength, *ids, min_strength))

        seeds = set(ids)
        best: Dict[int, LinkedMemory] = {}
        for neighbour, link_type, strength in rows:
            if neighbour in seeds:
                continue
            current = best.get(neighbour)
            if current is None or strength > current.strength:
                best[neighbour] = LinkedMemory(neighbour, link_type, strength, hop=1)

        return sorted(best.values(), key=lambda n: (-n.strength, n.memory_id))

    def get_linked_memories(self, seed_ids: Sequence[int], min_strength: float = 0.1,
                            limit: int = 20) -> List[LinkedMemory]:
        """
        One-hop neighbours of the seed set.

        Args:
            seed_ids: Memory ids to expand from (excluded from results)
            min_strength: Ignore weaker links
            limit: Max neighbours

        Returns:
            LinkedMemory list ordered by strength descending
        """
        return self._neighbours(seed_ids, min_strength)[:limit]

    def get_memory_graph(self, seed_ids: Sequence[int], min_strength: float = 0.1,
                         max_results: int = 50) -> List[LinkedMemory]:
        """
        BFS to two hops around the seed set.

        Used for: graph views and deeper context loading

        Returns:
            Hop-1 neighbours, then hop-2 neighbours at attenuated strength
        """
        first = self._neighbours(seed_ids, min_strength)
        visited = set(seed_ids) | {n.memory_id for n in first}

        second: Dict[int, LinkedMemory] = {}
        for neighbour in self._neighbours([n.memory_id for n in first], min_strength):
            if neighbour.memory_id in visited:
                continue
            neighbour.hop = 2
            neighbour.strength = neighbour.strength * self.HOP_ATTENUATION
            second[neighbour.memory_id] = neighbour

        combined = first + sorted(second.values(), key=lambda n: (-n.strength, n.memory_id))
        return combined[:max_results]
