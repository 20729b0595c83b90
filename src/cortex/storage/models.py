"""
Data models for memory palace storage.

This module contains the core dataclasses representing memories, their
fragments, the association links between them, and the entity graph.
"""

import json
from datetime import datetime
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field


MEMORY_TYPES = ("episodic", "semantic", "procedural", "self_model")
FRAGMENT_TYPES = ("summary", "content_chunk", "tag_context")
LINK_TYPES = ("follows", "relates", "elaborates", "contradicts", "supports", "causes")
ENTITY_TYPES = ("person", "project", "concept", "token", "wallet", "location", "event")
SESSION_TYPES = ("consolidation", "reflection", "emergence", "compaction")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp column, tolerating NULL."""
    return datetime.fromisoformat(value) if value else None


def parse_json(value: Optional[str], default):
    """Decode a JSON text column, falling back to default on NULL or bad data."""
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Memory:
    """A memory record."""
    id: int
    hash_id: str
    memory_type: str
    content: str
    summary: str
    tags: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)
    emotional_valence: float = 0.0
    importance: float = 0.5
    access_count: int = 0
    source: Optional[str] = None
    source_id: Optional[str] = None
    related_user: Optional[str] = None
    related_wallet: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = None
    last_accessed: Optional[datetime] = None
    decay_factor: float = 1.0
    evidence_ids: List[int] = field(default_factory=list)
    compacted: bool = False
    compacted_into: Optional[str] = None
    ledger_signature: Optional[str] = None
    embedding: Optional[List[float]] = None
    # Retrieval score, set by the retriever; never persisted
    score: Optional[float] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now()
        if self.last_accessed is None:
            self.last_accessed = self.created_at

    def to_summary(self) -> "MemorySummary":
        return MemorySummary(
            id=self.id,
            hash_id=self.hash_id,
            memory_type=self.memory_type,
            summary=self.summary,
            tags=list(self.tags),
            concepts=list(self.concepts),
            importance=self.importance,
            decay_factor=self.decay_factor,
            created_at=self.created_at,
            score=self.score,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "hash_id": self.hash_id,
            "memory_type": self.memory_type,
            "content": self.content,
            "summary": self.summary,
            "tags": self.tags,
            "concepts": self.concepts,
            "emotional_valence": self.emotional_valence,
            "importance": self.importance,
            "access_count": self.access_count,
            "source": self.source,
            "source_id": self.source_id,
            "related_user": self.related_user,
            "related_wallet": self.related_wallet,
            "metadata": self.metadata,
            "created_at": _iso(self.created_at),
            "last_accessed": _iso(self.last_accessed),
            "decay_factor": self.decay_factor,
            "evidence_ids": self.evidence_ids,
            "compacted": self.compacted,
            "compacted_into": self.compacted_into,
            "ledger_signature": self.ledger_signature,
            "score": self.score,
        }


@dataclass
class MemorySummary:
    """Lightweight projection of a memory for progressive disclosure."""
    id: int
    hash_id: str
    memory_type: str
    summary: str
    tags: List[str]
    concepts: List[str]
    importance: float
    decay_factor: float
    created_at: datetime
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hash_id": self.hash_id,
            "memory_type": self.memory_type,
            "summary": self.summary,
            "tags": self.tags,
            "concepts": self.concepts,
            "importance": self.importance,
            "decay_factor": self.decay_factor,
            "created_at": _iso(self.created_at),
            "score": self.score,
        }


@dataclass
class MemoryFragment:
    """A granular piece of a memory with its own embedding."""
    memory_id: int
    fragment_type: str  # summary | content_chunk | tag_context
    content: str
    embedding: Optional[List[float]] = None
    id: Optional[int] = None


@dataclass
class MemoryLink:
    """A directed, typed association between two memories."""
    source_id: int
    target_id: int
    link_type: str
    strength: float = 0.5
    id: Optional[int] = None
    created_at: datetime = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "link_type": self.link_type,
            "strength": self.strength,
            "created_at": _iso(self.created_at),
        }


@dataclass
class LinkedMemory:
    """A neighbour reached by link traversal from a seed set."""
    memory_id: int
    link_type: str
    strength: float
    hop: int = 1


@dataclass
class Entity:
    """A named thing extracted from memory text."""
    id: int
    entity_type: str
    name: str
    normalized_name: str
    aliases: List[str] = field(default_factory=list)
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    mention_count: int = 1
    first_seen: datetime = None
    last_seen: Optional[datetime] = None
    embedding: Optional[List[float]] = None
    # Similarity to the query, set by entity search
    similarity: Optional[float] = None

    def __post_init__(self):
        if self.first_seen is None:
            self.first_seen = datetime.now()
        if self.last_seen is None:
            self.last_seen = self.first_seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "name": self.name,
            "normalized_name": self.normalized_name,
            "aliases": self.aliases,
            "description": self.description,
            "mention_count": self.mention_count,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
        }


@dataclass
class EntityMention:
    entity_id: int
    memory_id: int
    context: Optional[str] = None
    salience: float = 0.5


@dataclass
class EntityRelation:
    source_entity_id: int
    target_entity_id: int
    relation_type: str
    strength: float = 0.5
    evidence_memory_ids: List[int] = field(default_factory=list)


@dataclass
class EntityCooccurrence:
    """An entity seen alongside another across shared memories."""
    entity_id: int
    cooccurrence_count: int
    avg_salience: float


@dataclass
class DreamLog:
    """Record of one dream-cycle phase."""
    session_type: str
    input_memory_ids: List[int]
    output: str
    new_memories_created: List[int] = field(default_factory=list)
    id: Optional[int] = None
    created_at: datetime = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now()


@dataclass
class MemoryFilter:
    """Metadata filter for candidate queries."""
    memory_types: Optional[List[str]] = None
    related_user: Optional[str] = None
    related_wallet: Optional[str] = None
    min_importance: Optional[float] = None
    min_decay: float = 0.1
    tags: Optional[List[str]] = None
    include_compacted: bool = False
    limit: int = 15


@dataclass
class MemoryStats:
    """Aggregate statistics over live memories."""
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    avg_importance: float = 0.0
    avg_decay: float = 0.0
    oldest_memory: Optional[datetime] = None
    newest_memory: Optional[datetime] = None
    total_dream_sessions: int = 0
    unique_users: int = 0
    top_tags: List[Dict[str, Any]] = field(default_factory=list)
    top_concepts: List[Dict[str, Any]] = field(default_factory=list)
    embedded_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_type": self.by_type,
            "avg_importance": self.avg_importance,
            "avg_decay": self.avg_decay,
            "oldest_memory": _iso(self.oldest_memory),
            "newest_memory": _iso(self.newest_memory),
            "total_dream_sessions": self.total_dream_sessions,
            "unique_users": self.unique_users,
            "top_tags": self.top_tags,
            "top_concepts": self.top_concepts,
            "embedded_count": self.embedded_count,
        }
