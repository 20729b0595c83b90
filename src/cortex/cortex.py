"""
Cortex: the context object that owns and wires every component.

One instance holds the backend, event bus, task queue, capabilities and
engines; nothing is process-global. Public methods degrade instead of
raising: persistence failures are logged and return None, [] or 0.
Only invalid configuration raises, at construction.

Usage:
    from cortex import Cortex, StoreMemoryOptions, RecallOptions

    with Cortex() as cortex:
        cortex.store(StoreMemoryOptions(summary="SOL pumped 12% this morning",
                                        importance=0.8, tags=["price"]))
        memories = cortex.recall(RecallOptions(query="SOL price"))
        print(cortex.format_context(memories))
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from .capabilities import EmergenceHandler, Ledger
from .config import CortexConfig, load_config
from .decay import DecayEngine
from .dream import DreamCycle, DreamScheduler, PhaseResult
from .embeddings import Embedder, create_embedder
from .event_bus import EventBus
from .events import MemoryStoredEvent
from .formatting import format_memory_context
from .graph.association import AssociationGraph
from .graph.entity_graph import EntityGraph
from .heuristics import ConceptClassifier, EntityExtractor, LinkClassifier
from .llm import LLMClient, create_llm, rule_based_importance
from .memory_store import MemoryStore
from .options import RecallOptions, StoreMemoryOptions
from .retrieval import HybridRetriever
from .scoring import MemoryScorer
from .storage.backend import MemoryBackend
from .storage.models import LinkedMemory, Memory, MemoryStats, MemorySummary
from .storage.palace import MemoryPalace
from .tasks import BackgroundTaskQueue

logger = logging.getLogger(__name__)


class Cortex:
    """
    Long-term memory engine for a conversational agent.

    Args:
        config: Configuration; load_config() when omitted
        backend: Persistence backend; a MemoryPalace at config.db_path when omitted
        embedder: Embedding capability; built from config.embedding when omitted
        llm: LLM capability; built from config.llm when omitted
        ledger: Optional content-hash notarization
        on_emergence: Optional surface for emergence thoughts
        concept_classifier / entity_extractor / link_classifier: heuristic
            strategies, rule-based defaults when omitted

    Raises:
        ConfigurationError: if the configuration is invalid
    """

    def __init__(self,
                 config: Optional[CortexConfig] = None,
                 backend: Optional[MemoryBackend] = None,
                 embedder: Optional[Embedder] = None,
                 llm: Optional[LLMClient] = None,
                 ledger: Optional[Ledger] = None,
                 on_emergence: Optional[EmergenceHandler] = None,
                 concept_classifier: Optional[ConceptClassifier] = None,
                 entity_extractor: Optional[EntityExtractor] = None,
                 link_classifier: Optional[LinkClassifier] = None):
        self.config = config or load_config()
        self.config.validate()

        self.backend = backend or MemoryPalace(self.config.db_path, self.config.database.enable_wal)
        self.embedder = embedder if embedder is not None else create_embedder(self.config.embedding)
        self.llm = llm if llm is not None else create_llm(self.config.llm)

        self.events = EventBus()
        self.tasks = BackgroundTaskQueue(
            workers=self.config.tasks.workers,
            max_size=self.config.tasks.queue_size,
            event_bus=self.events,
            synchronous=self.config.tasks.synchronous,
        )

        retrieval = self.config.retrieval
        self.scorer = MemoryScorer(retrieval)
        self.associations = AssociationGraph(self.backend, retrieval, self.embedder, link_classifier)
        self.entities = EntityGraph(self.backend, self.embedder, entity_extractor, self.tasks,
                                    similarity_threshold=retrieval.entity_threshold)
        self.store_engine = MemoryStore(
            self.backend, self.config, self.events, self.tasks,
            self.associations, self.entities,
            embedder=self.embedder,
            ledger=ledger,
            concept_classifier=concept_classifier,
        )
        self.retriever = HybridRetriever(
            self.backend, retrieval, self.events, self.tasks,
            self.associations, self.entities, self.embedder, self.scorer,
        )
        self.decay_engine = DecayEngine(self.backend, self.config.decay, self.events)
        self.dream_cycle = DreamCycle(
            self.store_engine, self.backend, self.config.dream,
            llm=self.llm, event_bus=self.events, on_emergence=on_emergence,
        )
        self.scheduler = DreamScheduler(self.dream_cycle, self.decay_engine, self.config.dream)

        self._importance_lock = threading.Lock()
        self._importance_accumulated = 0.0
        self.events.subscribe("memory.stored", self._accumulate_importance)

        logger.debug(
            f"Cortex ready (embeddings={'on' if self.embedder else 'off'}, "
            f"llm={'on' if self.llm else 'off'})"
        )

    # Writes

    def store(self, opts: StoreMemoryOptions) -> Optional[int]:
        """Persist a memory; side effects run in the background. None on failure."""
        return self.store_engine.store(opts)

    def create_link(self, source_id: int, target_id: int, link_type: str,
                    strength: float = 0.5) -> bool:
        return self.store_engine.create_link(source_id, target_id, link_type, strength)

    # Reads

    def recall(self, opts: Optional[RecallOptions] = None) -> List[Memory]:
        return self.retriever.recall(opts or RecallOptions())

    def recall_summaries(self, opts: Optional[RecallOptions] = None,
                         track_access: bool = False) -> List[MemorySummary]:
        return self.retriever.recall_summaries(opts or RecallOptions(), track_access)

    def hydrate(self, memory_ids: Sequence[int]) -> List[Memory]:
        return self.store_engine.hydrate(memory_ids)

    def get_recent(self, hours: float, memory_types: Optional[List[str]] = None,
                   limit: int = 50) -> List[Memory]:
        return self.store_engine.get_recent(hours, memory_types, limit)

    def get_self_model(self) -> List[Memory]:
        return self.store_engine.get_self_model()

    def get_stats(self) -> MemoryStats:
        return self.store_engine.get_stats()

    def get_memory_graph(self, seed_ids: Sequence[int], min_strength: float = 0.1,
                         max_results: int = 50) -> List[LinkedMemory]:
        """Two-hop association neighbourhood of a seed set."""
        try:
            return self.backend.get_memory_graph(seed_ids, min_strength, max_results)
        except Exception as e:
            logger.error(f"Failed to read memory graph: {e}")
            return []

    def get_knowledge_graph(self, **kwargs) -> Dict[str, List[Dict[str, Any]]]:
        """Entity/memory node-edge view; see EntityGraph.get_knowledge_graph."""
        try:
            return self.entities.get_knowledge_graph(**kwargs)
        except Exception as e:
            logger.error(f"Failed to build knowledge graph: {e}")
            return {"nodes": [], "edges": []}

    def get_graph_stats(self) -> Dict[str, Any]:
        try:
            return self.entities.get_graph_stats()
        except Exception as e:
            logger.error(f"Failed to read graph stats: {e}")
            return {}

    # Heuristics

    def format_context(self, memories: List[Memory]) -> str:
        return format_memory_context(memories)

    def infer_concepts(self, summary: str, source: Optional[str] = None,
                       tags: Optional[List[str]] = None) -> List[str]:
        return self.store_engine.concept_classifier.infer(summary, source, tags)

    def score_importance(self, description: str) -> float:
        """Importance in [0, 1]: the LLM's 1-10 rating, or the keyword rules."""
        if self.llm is None:
            return rule_based_importance(description)
        return self.llm.score_importance(description)

    # Maintenance

    def decay(self) -> int:
        try:
            return self.decay_engine.run()
        except Exception as e:
            logger.error(f"Memory decay failed: {e}")
            return 0

    def run_dream_cycle_once(self) -> List[PhaseResult]:
        return self.dream_cycle.run_once()

    def start_dream_schedule(self) -> bool:
        return self.scheduler.start()

    def stop_dream_schedule(self) -> None:
        self.scheduler.stop()

    def _accumulate_importance(self, event: MemoryStoredEvent) -> None:
        if event.memory_type != "episodic":
            return
        with self._importance_lock:
            self._importance_accumulated += event.importance
            if self._importance_accumulated < self.config.dream.importance_threshold:
                return
            if self.dream_cycle.is_running:
                return
            accumulated = self._importance_accumulated
            self._importance_accumulated = 0.0

        logger.info(f"Importance threshold reached ({accumulated:.2f}), triggering dream cycle")
        self.tasks.submit("dream_cycle", self.dream_cycle.run_once)

    def subscribe(self, event_type: str, callback: Callable[[Any], None]) -> None:
        """Listen for events ('memory.stored', 'dream.phase_completed', '*', ...)."""
        self.events.subscribe(event_type, callback)

    def wait_for_background(self) -> None:
        """Block until queued side effects have run."""
        self.tasks.join()

    def close(self) -> None:
        self.scheduler.stop()
        self.tasks.shutdown(wait=True)
        self.backend.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
