"""
Persistence capability contract.

Every capability the memory engine consumes from its store is listed here.
Any backend implementing this contract (the bundled SQLite palace, or a
remote store reached through stored procedures) can be plugged into
Cortex. Backend methods raise on failure; the engine decides whether a
failure degrades gracefully or is logged and swallowed at the public API.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .models import (
    DreamLog,
    Entity,
    EntityCooccurrence,
    EntityRelation,
    EntityMention,
    LinkedMemory,
    Memory,
    MemoryFilter,
    MemoryFragment,
    MemoryLink,
    MemoryStats,
)


class MemoryBackend(ABC):
    """Abstract store for memories, links, entities and housekeeping."""

    # Memories

    @abstractmethod
    def insert_memory(self, memory: Memory) -> int:
        """Persist a memory record and return its numeric id."""

    @abstractmethod
    def hash_id_exists(self, hash_id: str) -> bool:
        pass

    @abstractmethod
    def get_memories(self, memory_ids: Sequence[int]) -> List[Memory]:
        """Fetch memories by id. Order is unspecified; unknown ids are skipped."""

    @abstractmethod
    def query_memories(self, flt: MemoryFilter) -> List[Memory]:
        """Metadata candidate query, ordered by importance then recency."""

    @abstractmethod
    def search_text(self, query: str, flt: MemoryFilter) -> List[Memory]:
        """Lexical candidate search over summary and content."""

    @abstractmethod
    def get_recent(self, hours: float, memory_types: Optional[List[str]] = None,
                   limit: int = 50) -> List[Memory]:
        pass

    @abstractmethod
    def get_self_model(self, limit: int = 5, min_decay: float = 0.2) -> List[Memory]:
        pass

    @abstractmethod
    def find_by_concepts(self, concepts: Sequence[str], exclude_id: Optional[int] = None,
                         limit: int = 10) -> List[Memory]:
        """Memories sharing at least one concept, most recent first."""

    @abstractmethod
    def update_embedding(self, memory_id: int, embedding: List[float]) -> bool:
        pass

    @abstractmethod
    def insert_fragments(self, fragments: List[MemoryFragment]) -> int:
        pass

    @abstractmethod
    def set_ledger_signature(self, memory_id: int, signature: str) -> bool:
        pass

    @abstractmethod
    def match_memories(self, query_embedding: List[float], threshold: float = 0.3,
                       limit: int = 10,
                       flt: Optional[MemoryFilter] = None) -> List[Tuple[int, float]]:
        """Similarity search over memory-level vectors: (memory_id, similarity)."""

    @abstractmethod
    def match_fragments(self, query_embedding: List[float], threshold: float = 0.3,
                        limit: int = 10) -> List[Tuple[int, float]]:
        """Similarity search over fragments, max similarity per parent memory."""

    @abstractmethod
    def batch_boost_access(self, memory_ids: Sequence[int], decay_boost: float) -> int:
        """Increment access_count, refresh last_accessed, bump decay (capped at 1)."""

    @abstractmethod
    def boost_importance(self, memory_ids: Sequence[int], amount: float,
                         cap: float = 1.0) -> int:
        pass

    @abstractmethod
    def batch_decay(self, memory_type: str, rate: float, min_decay: float,
                    cutoff: datetime) -> int:
        """decay = max(decay * rate, min_decay) for rows last accessed before cutoff."""

    @abstractmethod
    def get_compaction_candidates(self, older_than: datetime, max_decay: float,
                                  max_importance: float, limit: int = 200) -> List[Memory]:
        pass

    @abstractmethod
    def mark_compacted(self, memory_ids: Sequence[int], into_hash_id: str) -> int:
        pass

    # Links

    @abstractmethod
    def upsert_link(self, source_id: int, target_id: int, link_type: str,
                    strength: float) -> bool:
        """Create or overwrite the (source, target, type) edge. Self-loops return False."""

    @abstractmethod
    def get_links(self, memory_id: int) -> List[MemoryLink]:
        pass

    @abstractmethod
    def get_linked_memories(self, seed_ids: Sequence[int], min_strength: float = 0.1,
                            limit: int = 20) -> List[LinkedMemory]:
        """One-hop neighbours of a seed set in both directions, seeds excluded."""

    @abstractmethod
    def get_memory_graph(self, seed_ids: Sequence[int], min_strength: float = 0.1,
                         max_results: int = 50) -> List[LinkedMemory]:
        """Two-hop neighbourhood; second-hop strength is halved."""

    @abstractmethod
    def boost_link_strength(self, memory_ids: Sequence[int], amount: float) -> int:
        """Strengthen links whose endpoints are both in the set, capped at 1."""

    # Entities

    @abstractmethod
    def find_entity(self, normalized_name: str) -> Optional[Entity]:
        """Look up an entity by normalized name or alias."""

    @abstractmethod
    def insert_entity(self, entity_type: str, name: str, normalized_name: str,
                      aliases: Optional[List[str]] = None,
                      description: Optional[str] = None,
                      metadata: Optional[Dict] = None) -> int:
        pass

    @abstractmethod
    def find_or_insert_entity(self, entity_type: str, name: str, normalized_name: str,
                              aliases: Optional[List[str]] = None,
                              description: Optional[str] = None,
                              metadata: Optional[Dict] = None) -> Tuple[Entity, bool]:
        """Touch the matching entity or insert a new one atomically; returns (entity, created)."""

    @abstractmethod
    def touch_entity(self, entity_id: int, new_aliases: Optional[List[str]] = None) -> None:
        """Bump mention_count and last_seen, merging any new aliases."""

    @abstractmethod
    def update_entity_embedding(self, entity_id: int, embedding: List[float]) -> bool:
        pass

    @abstractmethod
    def upsert_mention(self, entity_id: int, memory_id: int, context: Optional[str],
                       salience: float) -> bool:
        pass

    @abstractmethod
    def upsert_entity_relation(self, source_entity_id: int, target_entity_id: int,
                               relation_type: str, strength: float = 0.5,
                               evidence_memory_id: Optional[int] = None) -> bool:
        """Create a relation or strengthen an existing one. Self-relations return False."""

    @abstractmethod
    def get_memories_by_entity(self, entity_id: int, limit: int = 20) -> List[Memory]:
        pass

    @abstractmethod
    def get_entities_in_memory(self, memory_id: int) -> List[Entity]:
        pass

    @abstractmethod
    def get_entity_cooccurrence(self, entity_id: int, min_cooccurrence: int = 2,
                                min_salience: float = 0.3,
                                limit: int = 10) -> List[EntityCooccurrence]:
        pass

    @abstractmethod
    def match_entities(self, query_embedding: List[float], threshold: float = 0.3,
                       limit: int = 10,
                       entity_types: Optional[List[str]] = None) -> List[Entity]:
        pass

    @abstractmethod
    def search_entities_by_name(self, terms: Sequence[str], limit: int = 10) -> List[Entity]:
        pass

    @abstractmethod
    def list_entities(self, entity_types: Optional[List[str]] = None, min_mentions: int = 1,
                      limit: int = 100) -> List[Entity]:
        pass

    @abstractmethod
    def get_entity_relations(self, entity_ids: Sequence[int]) -> List[EntityRelation]:
        """Relations whose endpoints both lie within the given ids."""

    @abstractmethod
    def get_mentions_for_entities(self, entity_ids: Sequence[int], min_salience: float = 0.3,
                                  limit: int = 200) -> List[EntityMention]:
        pass

    # Stats and housekeeping

    @abstractmethod
    def get_stats(self, min_decay: float = 0.05) -> MemoryStats:
        pass

    @abstractmethod
    def get_graph_counts(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def insert_dream_log(self, log: DreamLog) -> int:
        pass

    @abstractmethod
    def check_rate_limit(self, key: str, max_count: int, window_minutes: int) -> bool:
        """Consume one slot of a windowed rate limit; False when exhausted."""

    @abstractmethod
    def close(self) -> None:
        pass
