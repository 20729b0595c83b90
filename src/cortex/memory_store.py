"""
Memory store: the write path and direct reads.

store() persists the core record synchronously, then hands the slow or
optional work to the background task queue:
- embed:    memory-level vector plus summary/content/tag fragments
- ledger:   content hash commit, signature written back to the row
- auto_link: association edges to evidence and similar memories
- entities: entity extraction and mention/co-occurrence writes
"""

import logging
import re
import secrets
import hashlib
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .capabilities import Ledger, content_hash
from .config import CortexConfig, MAX_CONTENT_LENGTH, MAX_SUMMARY_LENGTH
from .embeddings import Embedder
from .event_bus import EventBus
from .events import MemoryStoredEvent
from .graph.association import AssociationGraph
from .graph.entity_graph import EntityGraph
from .heuristics import ConceptClassifier, KeywordConceptClassifier
from .options import StoreMemoryOptions
from .storage.backend import MemoryBackend
from .storage.models import MEMORY_TYPES, Memory, MemoryFragment, MemoryStats
from .tasks import BackgroundTaskQueue

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 500
MAX_CHUNKS = 5
HASH_ATTEMPTS = 5

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def chunk_content(content: str, max_chars: int = MAX_CHUNK_CHARS,
                  max_chunks: int = MAX_CHUNKS) -> List[str]:
    """Split text on sentence boundaries into chunks of at most max_chars."""
    chunks: List[str] = []
    current = ""
    for sentence in _SENTENCE_END.split(content.strip()):
        while len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_chars])
            sentence = sentence[max_chars:]
        if current and len(current) + 1 + len(sentence) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence
    if current:
        chunks.append(current)
    return [c for c in chunks if c.strip()][:max_chunks]


def fragment_texts(memory: Memory) -> List[Tuple[str, str]]:
    """(fragment_type, text) pairs embedded alongside a memory."""
    texts = [("summary", memory.summary)]
    if memory.content and memory.content != memory.summary:
        texts.extend(("content_chunk", chunk) for chunk in chunk_content(memory.content))
    if memory.tags or memory.concepts:
        texts.append((
            "tag_context",
            f"tags: {', '.join(memory.tags)}; concepts: {', '.join(memory.concepts)}"
        ))
    return texts


class MemoryStore:
    """
    Persists memories and dispatches their store-time side effects.

    Reads here are plain lookups; ranked retrieval lives in
    HybridRetriever.
    """

    def __init__(self,
                 backend: MemoryBackend,
                 config: CortexConfig,
                 event_bus: EventBus,
                 tasks: BackgroundTaskQueue,
                 association: AssociationGraph,
                 entity_graph: EntityGraph,
                 embedder: Optional[Embedder] = None,
                 ledger: Optional[Ledger] = None,
                 concept_classifier: Optional[ConceptClassifier] = None):
        self.backend = backend
        self.config = config
        self.event_bus = event_bus
        self.tasks = tasks
        self.association = association
        self.entity_graph = entity_graph
        self.embedder = embedder
        self.ledger = ledger
        self.concept_classifier = concept_classifier or KeywordConceptClassifier()

    def generate_hash_id(self, content: str) -> str:
        """Opaque id: <prefix>-<8 hex chars>, regenerated on collision."""
        for _ in range(HASH_ATTEMPTS):
            seed = f"{secrets.token_hex(8)}:{content}:{datetime.now().isoformat()}"
            hash_id = f"{self.config.hash_prefix}-{hashlib.sha256(seed.encode()).hexdigest()[:8]}"
            if not self.backend.hash_id_exists(hash_id):
                return hash_id
        # Crowded namespace: fall back to a wider suffix
        return f"{self.config.hash_prefix}-{secrets.token_hex(8)}"

    def build_memory(self, opts: StoreMemoryOptions) -> Memory:
        """Validate by clamping and truncating; never rejects."""
        memory_type = opts.memory_type
        if memory_type not in MEMORY_TYPES:
            logger.warning(f"Unknown memory type {memory_type!r}, storing as episodic")
            memory_type = "episodic"

        summary = (opts.summary or "").strip()[:MAX_SUMMARY_LENGTH]
        content = (opts.content if opts.content is not None else summary)[:MAX_CONTENT_LENGTH]
        tags = [str(t) for t in (opts.tags or []) if str(t).strip()]

        concepts = opts.concepts
        if concepts is None:
            concepts = self.concept_classifier.infer(summary, opts.source, tags)

        return Memory(
            id=0,
            hash_id=self.generate_hash_id(content),
            memory_type=memory_type,
            content=content,
            summary=summary,
            tags=tags,
            concepts=list(concepts),
            emotional_valence=clamp(float(opts.emotional_valence or 0.0), -1.0, 1.0),
            importance=clamp(float(opts.importance if opts.importance is not None else 0.5), 0.0, 1.0),
            source=opts.source,
            source_id=opts.source_id,
            related_user=opts.related_user,
            related_wallet=opts.related_wallet,
            metadata=dict(opts.metadata or {}),
            evidence_ids=[int(i) for i in (opts.evidence_ids or [])],
        )

    def store(self, opts: StoreMemoryOptions) -> Optional[int]:
        """
        Persist a memory and schedule its side effects.

        Returns:
            The new memory id, or None if persistence failed
        """
        try:
            memory = self.build_memory(opts)
            memory.id = self.backend.insert_memory(memory)
        except Exception as e:
            logger.error(f"Failed to store memory: {e}")
            return None

        logger.debug(f"Memory stored: {memory.id} ({memory.memory_type}) {memory.summary[:60]}")

        self.event_bus.publish(MemoryStoredEvent(
            memory_id=memory.id,
            hash_id=memory.hash_id,
            memory_type=memory.memory_type,
            summary=memory.summary,
            importance=memory.importance,
            related_user=memory.related_user,
        ))

        if self.embedder is not None:
            self.tasks.submit("embed", self.embed_memory, memory)
        if self.ledger is not None:
            self.tasks.submit("ledger", self.commit_to_ledger, memory)
        self.tasks.submit("auto_link", self.association.auto_link, memory)
        self.tasks.submit("entities", self.entity_graph.extract_and_link_entities, memory)

        return memory.id

    def embed_memory(self, memory: Memory) -> int:
        """Write the memory vector and its fragments. Returns fragments written."""
        vector = self.embedder.embed(memory.summary)
        if vector is None:
            logger.debug(f"No embedding for memory {memory.id}, staying lexical-only")
            return 0
        self.backend.update_embedding(memory.id, vector)

        texts = fragment_texts(memory)
        vectors = self.embedder.embed_batch([text for _, text in texts])
        fragments = [
            MemoryFragment(memory_id=memory.id, fragment_type=fragment_type,
                           content=text, embedding=vec)
            for (fragment_type, text), vec in zip(texts, vectors)
            if vec is not None
        ]
        if not fragments:
            return 0
        return self.backend.insert_fragments(fragments)

    def commit_to_ledger(self, memory: Memory) -> Optional[str]:
        signature = self.ledger.commit(memory.hash_id, content_hash(memory.content))
        if signature:
            self.backend.set_ledger_signature(memory.id, signature)
        return signature

    def hydrate(self, memory_ids: Sequence[int]) -> List[Memory]:
        """Full records for ids, in the requested order; unknown ids skipped."""
        if not memory_ids:
            return []
        try:
            found = {m.id: m for m in self.backend.get_memories(memory_ids)}
        except Exception as e:
            logger.error(f"Failed to hydrate memories: {e}")
            return []
        ordered = []
        for memory_id in dict.fromkeys(memory_ids):
            if memory_id in found:
                ordered.append(found[memory_id])
        return ordered

    def get_recent(self, hours: float, memory_types: Optional[List[str]] = None,
                   limit: int = 50) -> List[Memory]:
        try:
            return self.backend.get_recent(hours, memory_types, limit)
        except Exception as e:
            logger.error(f"Failed to read recent memories: {e}")
            return []

    def get_self_model(self) -> List[Memory]:
        try:
            return self.backend.get_self_model()
        except Exception as e:
            logger.error(f"Failed to read self model: {e}")
            return []

    def get_stats(self) -> MemoryStats:
        try:
            return self.backend.get_stats(self.config.decay.min_decay)
        except Exception as e:
            logger.error(f"Failed to compute memory stats: {e}")
            return MemoryStats()

    def create_link(self, source_id: int, target_id: int, link_type: str,
                    strength: float = 0.5) -> bool:
        """Explicit association; re-linking the same (source, target, type) overwrites strength."""
        try:
            return self.backend.upsert_link(source_id, target_id, link_type, strength)
        except ValueError as e:
            logger.warning(f"Rejected link {source_id} -> {target_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to create link {source_id} -> {target_id}: {e}")
            return False
