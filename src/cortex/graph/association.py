"""Association graph maintenance: auto-linking at store time, Hebbian reinforcement."""

import logging
from typing import Dict, List, Optional, Sequence

from ..config import RetrievalConfig
from ..embeddings import Embedder
from ..heuristics import HeuristicLinkClassifier, LinkClassifier
from ..storage.backend import MemoryBackend
from ..storage.models import Memory

logger = logging.getLogger(__name__)

EVIDENCE_LINK_TYPE = "supports"
EVIDENCE_STRENGTH = 0.9
CONCEPT_CANDIDATES = 10


class AssociationGraph:
    """
    Typed links between memories.

    Links are upserts keyed by (source, target, type), so duplicate or
    concurrent auto-link runs for the same memory converge.
    """

    def __init__(self,
                 backend: MemoryBackend,
                 config: Optional[RetrievalConfig] = None,
                 embedder: Optional[Embedder] = None,
                 classifier: Optional[LinkClassifier] = None):
        self.backend = backend
        self.config = config or RetrievalConfig()
        self.embedder = embedder
        self.classifier = classifier or HeuristicLinkClassifier()

    def _vector_candidates(self, memory: Memory) -> Dict[int, float]:
        if self.embedder is None:
            return {}
        vector = self.embedder.embed(memory.summary)
        if vector is None:
            return {}
        matches = self.backend.match_memories(
            vector,
            threshold=self.config.vector_threshold,
            limit=self.config.max_auto_links * 2 + 1,
        )
        return {memory_id: sim for memory_id, sim in matches if memory_id != memory.id}

    def find_candidates(self, memory: Memory) -> List[Memory]:
        """
        Similar memories to link against.

        Vector matches when an embedder is configured and produces a
        vector; otherwise memories sharing a concept. Each candidate's
        vector similarity (if any) is set on its score attribute.
        """
        similarities = self._vector_candidates(memory)
        if similarities:
            candidates = self.backend.get_memories(list(similarities))
            for candidate in candidates:
                candidate.score = similarities.get(candidate.id)
            candidates.sort(key=lambda m: (-(m.score or 0.0), m.id))
            return candidates

        if not memory.concepts:
            return []
        return self.backend.find_by_concepts(memory.concepts, exclude_id=memory.id,
                                             limit=CONCEPT_CANDIDATES)

    def auto_link(self, memory: Memory) -> int:
        """
        Link a freshly stored memory into the graph.

        Evidence memories get a strong 'supports' edge into the new memory;
        similar memories are classified and linked from it, up to
        max_auto_links.

        Returns:
            Number of links written
        """
        created = 0
        evidence = set()
        requested = [e for e in dict.fromkeys(memory.evidence_ids) if e != memory.id]
        known = {m.id for m in self.backend.get_memories(requested)} if requested else set()
        for evidence_id in requested:
            if evidence_id not in known:
                logger.warning(f"Memory {memory.id} cites unknown evidence {evidence_id}, skipping")
                continue
            if self.backend.upsert_link(evidence_id, memory.id, EVIDENCE_LINK_TYPE, EVIDENCE_STRENGTH):
                created += 1
                evidence.add(evidence_id)

        auto_created = 0
        for candidate in self.find_candidates(memory):
            if auto_created >= self.config.max_auto_links:
                break
            if candidate.id in evidence:
                continue
            result = self.classifier.classify(memory, candidate, candidate.score)
            if result is None:
                continue
            link_type, strength = result
            if self.backend.upsert_link(memory.id, candidate.id, link_type, strength):
                auto_created += 1

        if created or auto_created:
            logger.debug(f"Auto-linked memory {memory.id}: {created} evidence, {auto_created} similar")
        return created + auto_created

    def reinforce(self, memory_ids: Sequence[int]) -> int:
        """Hebbian boost for links among memories retrieved together."""
        unique = list(dict.fromkeys(memory_ids))
        if len(unique) < 2:
            return 0
        return self.backend.boost_link_strength(unique, self.config.hebbian_increment)
