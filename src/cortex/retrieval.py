"""
Hybrid retrieval: vector, metadata, entity and graph signals in one ranking.

recall() runs in ordered phases, each adding to the candidate pool:

1. Vector     - query embedding against memory and fragment vectors,
                max similarity per memory (skipped without an embedder)
2. Metadata   - filtered over-fetch by importance, plus full-text matches
3. Merge      - fetch vector-only hits not already in the pool
4. Rank       - MemoryScorer over every candidate, truncate to limit
5. Entities   - memories mentioning entities similar to the query,
                up to limit // 2 extras, weighted by entity similarity
6. Graph      - linked neighbours of the results, weighted by
                link strength x bond-type multiplier; re-rank, truncate
7. Access     - background access boost, importance rehearsal and
                Hebbian reinforcement among co-retrieved memories

Phases 1, 5 and 6 are best-effort: when one fails the others still run.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .config import RetrievalConfig
from .embeddings import Embedder
from .event_bus import EventBus
from .events import MemoryRecalledEvent
from .graph.association import AssociationGraph
from .graph.entity_graph import EntityGraph
from .options import RecallOptions
from .scoring import MemoryScorer
from .storage.backend import MemoryBackend
from .storage.models import Memory, MemoryFilter, MemorySummary
from .tasks import BackgroundTaskQueue

logger = logging.getLogger(__name__)

ENTITY_LOOKUP_LIMIT = 5
MEMORIES_PER_ENTITY = 10
# Entity weight when the entity matched by name rather than by vector
LEXICAL_ENTITY_SIMILARITY = 0.6


def matches_filter(memory: Memory, flt: MemoryFilter) -> bool:
    """In-process equivalent of the backend's metadata filter."""
    if memory.compacted and not flt.include_compacted:
        return False
    if memory.decay_factor < flt.min_decay:
        return False
    if flt.memory_types and memory.memory_type not in flt.memory_types:
        return False
    if flt.related_user and memory.related_user != flt.related_user:
        return False
    if flt.related_wallet and memory.related_wallet != flt.related_wallet:
        return False
    if flt.min_importance is not None and memory.importance < flt.min_importance:
        return False
    if flt.tags and not set(flt.tags) & set(memory.tags):
        return False
    return True


def rank(memories: Sequence[Memory]) -> List[Memory]:
    """Score descending, ties by ascending id."""
    return sorted(memories, key=lambda m: (-(m.score or 0.0), m.id))


class HybridRetriever:
    def __init__(self,
                 backend: MemoryBackend,
                 config: Optional[RetrievalConfig] = None,
                 event_bus: Optional[EventBus] = None,
                 tasks: Optional[BackgroundTaskQueue] = None,
                 association: Optional[AssociationGraph] = None,
                 entity_graph: Optional[EntityGraph] = None,
                 embedder: Optional[Embedder] = None,
                 scorer: Optional[MemoryScorer] = None):
        self.backend = backend
        self.config = config or RetrievalConfig()
        self.event_bus = event_bus
        self.tasks = tasks
        self.association = association or AssociationGraph(backend, self.config)
        self.entity_graph = entity_graph
        self.embedder = embedder
        self.scorer = scorer or MemoryScorer(self.config)

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        return max(1, min(self.config.max_limit, int(limit)))

    def build_filter(self, opts: RecallOptions, limit: int) -> MemoryFilter:
        return MemoryFilter(
            memory_types=opts.memory_types,
            related_user=opts.related_user,
            related_wallet=opts.related_wallet,
            min_importance=opts.min_importance,
            min_decay=opts.min_decay if opts.min_decay is not None else self.config.min_decay,
            tags=opts.tags,
            limit=limit * self.config.overfetch_factor,
        )

    def recall(self, opts: RecallOptions) -> List[Memory]:
        """
        Ranked memories for a request. Never raises; failures return [].
        """
        try:
            results = self._recall(opts)
        except Exception as e:
            logger.error(f"Memory recall failed: {e}")
            return []

        ids = [m.id for m in results]
        if self.event_bus is not None:
            self.event_bus.publish(MemoryRecalledEvent(
                query=opts.query, result_count=len(results), memory_ids=ids
            ))

        if opts.track_access and ids:
            if self.tasks is not None:
                self.tasks.submit("track_access", self.track_access, ids)
            else:
                self.track_access(ids)

        return results

    def recall_summaries(self, opts: RecallOptions,
                         track_access: bool = False) -> List[MemorySummary]:
        """Progressive disclosure: ranked summaries, no access tracking by default."""
        memories = self.recall(replace(opts, track_access=track_access))
        return [m.to_summary() for m in memories]

    def _recall(self, opts: RecallOptions) -> List[Memory]:
        limit = self.clamp_limit(opts.limit)
        flt = self.build_filter(opts, limit)
        now = datetime.now()

        # Phase 1: vector
        similarities = self._vector_phase(opts.query, flt)

        # Phase 2: metadata + full text
        pool: Dict[int, Memory] = {m.id: m for m in self.backend.query_memories(flt)}
        if opts.query:
            for memory in self.backend.search_text(opts.query, flt):
                pool.setdefault(memory.id, memory)

        # Phase 3: merge vector-only hits
        missing = [memory_id for memory_id in similarities if memory_id not in pool]
        if missing:
            for memory in self.backend.get_memories(missing):
                if matches_filter(memory, flt):
                    pool[memory.id] = memory

        if not pool:
            return []

        # Phase 4: score and rank
        for memory in pool.values():
            memory.score = self.scorer.score(memory, opts, similarities.get(memory.id), now)
        results = rank(pool.values())[:limit]

        # Phase 5: entity-aware expansion
        if opts.query and self.entity_graph is not None:
            results = self._entity_phase(opts, flt, results, similarities, limit, now)

        # Phase 6: bond-typed graph expansion
        if opts.expand_graph and results:
            results = self._graph_phase(opts, flt, results, similarities, limit, now)

        return results

    def _vector_phase(self, query: Optional[str], flt: MemoryFilter) -> Dict[int, float]:
        if not query or self.embedder is None:
            return {}
        vector = self.embedder.embed(query)
        if vector is None:
            logger.debug("Query embedding unavailable, using lexical signals only")
            return {}

        similarities: Dict[int, float] = {}
        try:
            threshold = self.config.vector_threshold
            hits = self.backend.match_memories(vector, threshold, flt.limit, flt)
            hits += self.backend.match_fragments(vector, threshold, flt.limit)
        except Exception as e:
            logger.warning(f"Vector search failed, degrading to metadata search: {e}")
            return {}

        for memory_id, similarity in hits:
            if similarity > similarities.get(memory_id, -1.0):
                similarities[memory_id] = similarity
        return similarities

    def _entity_phase(self, opts: RecallOptions, flt: MemoryFilter, results: List[Memory],
                      similarities: Dict[int, float], limit: int,
                      now: datetime) -> List[Memory]:
        budget = limit // 2
        if budget < 1:
            return results
        try:
            entities = self.entity_graph.find_similar_entities(opts.query, limit=ENTITY_LOOKUP_LIMIT)
            present = {m.id for m in results}
            extras: Dict[int, Memory] = {}
            for entity in entities:
                weight = 0.5 + 0.5 * (entity.similarity if entity.similarity is not None
                                      else LEXICAL_ENTITY_SIMILARITY)
                for memory in self.backend.get_memories_by_entity(entity.id, MEMORIES_PER_ENTITY):
                    if memory.id in present or not matches_filter(memory, flt):
                        continue
                    score = self.scorer.score(memory, opts, similarities.get(memory.id), now) * weight
                    if memory.id not in extras or score > extras[memory.id].score:
                        memory.score = score
                        extras[memory.id] = memory
        except Exception as e:
            logger.warning(f"Entity expansion failed: {e}")
            return results

        if not extras:
            return results
        added = rank(extras.values())[:budget]
        logger.debug(f"Entity expansion added {len(added)} candidates")
        return rank(results + added)[:limit]

    def _graph_phase(self, opts: RecallOptions, flt: MemoryFilter, results: List[Memory],
                     similarities: Dict[int, float], limit: int,
                     now: datetime) -> List[Memory]:
        try:
            linked = self.backend.get_linked_memories(
                [m.id for m in results],
                min_strength=self.config.graph_min_strength,
                limit=limit * 2,
            )
            if not linked:
                return results
            neighbours = {m.id: m for m in self.backend.get_memories([n.memory_id for n in linked])}
        except Exception as e:
            logger.warning(f"Graph expansion failed: {e}")
            return results

        multipliers = self.config.bond_multipliers
        extras = []
        for link in linked:
            memory = neighbours.get(link.memory_id)
            if memory is None or not matches_filter(memory, flt):
                continue
            base = self.scorer.score(memory, opts, similarities.get(memory.id), now)
            memory.score = base * link.strength * multipliers.get(link.link_type, 0.5)
            extras.append(memory)

        return rank(results + extras)[:limit]

    def track_access(self, memory_ids: List[int]) -> None:
        """Access boost, importance rehearsal and Hebbian reinforcement."""
        cfg = self.config
        self.backend.batch_boost_access(memory_ids, cfg.access_decay_boost)
        self.backend.boost_importance(memory_ids, cfg.importance_boost)
        self.association.reinforce(memory_ids)
