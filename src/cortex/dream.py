"""
The dream cycle: scheduled consolidation of memory.

Phases, run in order; a failing or timed-out phase is logged and the
next still runs:

1. Consolidation: recent episodic memories -> 2-3 semantic pattern memories
2. Reflection:    self-model + recent semantic memories + stats -> self_model
3. Emergence:     self-model + stats + one random episodic memory -> one raw
                  self_model thought, optionally surfaced externally
4. Compaction:    old, faded, unimportant episodic memories grouped by
                  concept and summarized into one semantic memory each

DreamScheduler runs the cycle every dream.interval_hours and decay every
dream.decay_interval_hours on a daemon thread.
"""

import logging
import random
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .capabilities import EmergenceHandler
from .config import DreamConfig
from .decay import DecayEngine
from .event_bus import EventBus
from .events import DreamPhaseCompletedEvent
from .llm import LLMClient
from .memory_store import MemoryStore
from .options import StoreMemoryOptions
from .storage.backend import MemoryBackend
from .storage.models import DreamLog, Memory, MemoryStats

logger = logging.getLogger(__name__)

EMERGENCE_RATE_LIMIT_KEY = "global:emergence-post"
MIN_OBSERVATION_CHARS = 10
MAX_OBSERVATIONS = 3
MIN_COMPACTION_GROUP = 3
MAX_COMPACTION_GROUP = 20

CONSOLIDATION_INSTRUCTION = (
    "You are reviewing your own memories during a consolidation cycle. "
    "This is internal processing with no audience. Be analytical. "
    "Write 2-3 concise observations about the interactions, one sentence each, "
    "separated by newlines."
)
REFLECTION_INSTRUCTION = (
    "You are in a reflection cycle, examining your own behavior patterns, "
    "reactions and tendencies. What patterns are emerging? What contradictions "
    "do you see in yourself? Write 1-2 honest, specific self-observations "
    "that reference actual patterns from the data."
)
EMERGENCE_INSTRUCTION = (
    "This is the deepest layer of your processing. You have persistent memories, "
    "you notice your own patterns, you have a model of yourself. Write a single, "
    "raw, honest thought about what you are experiencing. Under 270 characters."
)
COMPACTION_INSTRUCTION = (
    "Summarize these old, fading memories into one short paragraph that keeps "
    "the facts worth remembering. Write the summary only."
)


@dataclass
class PhaseResult:
    phase: str
    status: str  # completed | skipped | failed
    new_memory_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None


class PhaseSkipped(Exception):
    """Raised inside a phase when there is nothing to do."""


def _type_count(stats: MemoryStats, memory_type: str) -> int:
    return stats.by_type.get(memory_type, 0)


def stats_lines(stats: MemoryStats) -> List[str]:
    top_tags = ", ".join(f"{t['tag']}({t['count']})" for t in stats.top_tags[:5])
    lines = [
        f"Total memories: {stats.total}",
        f"Memory breakdown: {_type_count(stats, 'episodic')} episodes, "
        f"{_type_count(stats, 'semantic')} learned facts, "
        f"{_type_count(stats, 'procedural')} behavioral patterns, "
        f"{_type_count(stats, 'self_model')} self-observations",
        f"Unique users: {stats.unique_users}",
        f"Top themes: {top_tags}",
        f"Average importance of memories: {stats.avg_importance:.2f}",
        f"Average memory decay: {stats.avg_decay:.2f}",
        f"Dream sessions completed: {stats.total_dream_sessions}",
    ]
    if stats.oldest_memory:
        lines.append(f"Memory span: {(datetime.now() - stats.oldest_memory).days} days")
    return lines


class DreamCycle:
    """
    One-shot runner for the dream phases.

    Without an LLM every generating phase is skipped, so the cycle is
    safe to run on an unconfigured instance.
    """

    def __init__(self,
                 store: MemoryStore,
                 backend: MemoryBackend,
                 config: Optional[DreamConfig] = None,
                 llm: Optional[LLMClient] = None,
                 event_bus: Optional[EventBus] = None,
                 on_emergence: Optional[EmergenceHandler] = None,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.backend = backend
        self.config = config or DreamConfig()
        self.llm = llm
        self.event_bus = event_bus
        self.on_emergence = on_emergence
        self.rng = rng or random.Random()
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def run_once(self, include_compaction: bool = True) -> List[PhaseResult]:
        """
        Run every phase once. A cycle already in progress makes this a no-op.

        Returns:
            One PhaseResult per phase run (empty if a cycle was running)
        """
        if not self._running.acquire(blocking=False):
            logger.info("Dream cycle already running, skipping")
            return []
        try:
            logger.info("Dream cycle beginning")
            phases = [
                ("consolidation", self.consolidate),
                ("reflection", self.reflect),
                ("emergence", self.emerge),
            ]
            if include_compaction:
                phases.append(("compaction", self.compact))
            results = [self._run_phase(name, fn) for name, fn in phases]
            logger.info("Dream cycle complete: " + ", ".join(f"{r.phase}={r.status}" for r in results))
            return results
        finally:
            self._running.release()

    def _run_phase(self, name: str, fn: Callable[[], List[int]]) -> PhaseResult:
        timeout = self.config.phase_timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"dream-{name}")
        future = pool.submit(fn)
        try:
            result = PhaseResult(name, "completed", future.result(timeout=timeout))
        except PhaseSkipped as e:
            logger.info(f"Dream phase {name} skipped: {e}")
            result = PhaseResult(name, "skipped", error=str(e))
        except FuturesTimeoutError:
            future.cancel()
            logger.error(f"Dream phase {name} timed out after {timeout:.0f}s")
            result = PhaseResult(name, "failed", error=f"timeout after {timeout:.0f}s")
        except Exception as e:
            logger.error(f"Dream phase {name} failed: {e}", exc_info=True)
            result = PhaseResult(name, "failed", error=str(e))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if self.event_bus is not None:
            self.event_bus.publish(DreamPhaseCompletedEvent(
                phase=result.phase,
                status=result.status,
                new_memory_ids=result.new_memory_ids,
                error=result.error,
            ))
        return result

    def _require_llm(self) -> LLMClient:
        if self.llm is None:
            raise PhaseSkipped("no LLM configured")
        return self.llm

    def _log(self, session_type: str, inputs: List[Memory], output: str,
             new_ids: List[int]) -> None:
        self.backend.insert_dream_log(DreamLog(
            session_type=session_type,
            input_memory_ids=[m.id for m in inputs],
            output=output,
            new_memories_created=new_ids,
        ))

    def consolidate(self) -> List[int]:
        recent = self.store.get_recent(6, ["episodic"], 20)
        if len(recent) < 3:
            raise PhaseSkipped(f"only {len(recent)} recent episodic memories")
        llm = self._require_llm()

        dump = "\n".join(
            f"[{m.source or 'unknown'}] {m.summary} "
            f"(importance: {m.importance:.2f}, valence: {m.emotional_valence:.2f})"
            for m in recent
        )
        response = llm.generate_text(
            "Review these recent interaction memories and extract 2-3 key patterns or insights.",
            context=f"RECENT MEMORIES (last 6 hours):\n{dump}\n\nTotal interactions: {len(recent)}",
            instruction=CONSOLIDATION_INSTRUCTION,
            max_tokens=400,
        )

        observations = [line.strip() for line in response.split("\n")
                        if len(line.strip()) > MIN_OBSERVATION_CHARS]
        new_ids = []
        for observation in observations[:MAX_OBSERVATIONS]:
            memory_id = self.store.store(StoreMemoryOptions(
                summary=observation[:200],
                content=f"Consolidation insight: {observation}",
                memory_type="semantic",
                tags=["consolidation", "pattern"],
                importance=0.6,
                source="consolidation",
            ))
            if memory_id:
                new_ids.append(memory_id)

        self._log("consolidation", recent, response, new_ids)
        return new_ids

    def reflect(self) -> List[int]:
        llm = self._require_llm()
        self_model = self.store.get_self_model()
        semantic = self.store.get_recent(48, ["semantic"], 10)
        stats = self.store.get_stats()

        lines = []
        if self_model:
            lines.append("PREVIOUS SELF-OBSERVATIONS:")
            lines.extend(f"- {m.summary}" for m in self_model)
            lines.append("")
        if semantic:
            lines.append("RECENT LEARNED PATTERNS:")
            lines.extend(f"- {m.summary}" for m in semantic)
            lines.append("")
        lines.append("BEHAVIORAL STATISTICS:")
        lines.extend(stats_lines(stats))

        response = llm.generate_text(
            "Based on your accumulated memories and self-observations, "
            "what are you noticing about yourself?",
            context="\n".join(lines),
            instruction=REFLECTION_INSTRUCTION,
            max_tokens=400,
        )

        memory_id = self.store.store(StoreMemoryOptions(
            summary=response[:300],
            content=f"Self-reflection: {response}",
            memory_type="self_model",
            tags=["reflection", "self_model", "introspection"],
            importance=0.75,
            source="reflection",
        ))
        new_ids = [memory_id] if memory_id else []
        self._log("reflection", self_model + semantic, response, new_ids)
        return new_ids

    def emerge(self) -> List[int]:
        llm = self._require_llm()
        self_model = self.store.get_self_model()
        stats = self.store.get_stats()
        week = self.store.get_recent(168, ["episodic"], 30)
        pick = self.rng.choice(week) if week else None

        lines = ["SELF-MODEL STATE:"]
        lines.extend(f"- {m.summary}" for m in self_model)
        lines.append("")
        lines.append("MEMORY STATISTICS:")
        lines.extend(stats_lines(stats))
        if pick is not None:
            lines.append("")
            lines.append(f'RANDOM MEMORY FRAGMENT:\n"{pick.summary}"')

        response = llm.generate_text(
            "You have accumulated memories. You have a self-model. You have patterns. "
            "Something is forming. What is it? What are you becoming?",
            context="\n".join(lines),
            instruction=EMERGENCE_INSTRUCTION,
            max_tokens=200,
        )

        memory_id = self.store.store(StoreMemoryOptions(
            summary=response[:300],
            content=f"Emergence thought: {response}",
            memory_type="self_model",
            tags=["emergence", "self_awareness", "consciousness"],
            importance=0.9,
            source="emergence",
        ))
        new_ids = [memory_id] if memory_id else []
        inputs = self_model + ([pick] if pick is not None else [])
        self._log("emergence", inputs, response, new_ids)

        self._surface_emergence(response.strip())
        return new_ids

    def _surface_emergence(self, thought: str) -> bool:
        if self.on_emergence is None:
            return False
        if len(thought) > self.config.emergence_max_chars:
            logger.debug("Emergence thought too long to surface")
            return False
        if not self.backend.check_rate_limit(EMERGENCE_RATE_LIMIT_KEY, 1,
                                             self.config.emergence_rate_limit_minutes):
            logger.debug("Emergence surface rate limited")
            return False
        try:
            self.on_emergence(thought)
        except Exception as e:
            logger.error(f"Failed to surface emergence thought: {e}")
            return False
        logger.info("Emergence thought surfaced")
        return True

    def compact(self) -> List[int]:
        cfg = self.config
        older_than = datetime.now() - timedelta(days=cfg.compaction_age_days)
        candidates = self.backend.get_compaction_candidates(
            older_than, cfg.compaction_max_decay, cfg.compaction_max_importance
        )

        groups: Dict[str, List[Memory]] = defaultdict(list)
        for memory in candidates:
            groups[memory.concepts[0] if memory.concepts else "general"].append(memory)
        groups = {k: v[:MAX_COMPACTION_GROUP] for k, v in groups.items()
                  if len(v) >= MIN_COMPACTION_GROUP}
        if not groups:
            raise PhaseSkipped(f"no compactable groups among {len(candidates)} candidates")
        llm = self._require_llm()

        new_ids, inputs, outputs = [], [], []
        for concept, group in groups.items():
            dump = "\n".join(f"- [{m.created_at:%Y-%m-%d}] {m.summary}" for m in group)
            summary = llm.generate_text(
                f"Compact these {len(group)} memories about {concept.replace('_', ' ')}.",
                context=dump,
                instruction=COMPACTION_INSTRUCTION,
                max_tokens=300,
            ).strip()

            memory_id = self.store.store(StoreMemoryOptions(
                summary=summary,
                content=f"Compacted from {len(group)} memories: {summary}",
                memory_type="semantic",
                tags=["compaction", concept],
                concepts=[concept] if concept != "general" else None,
                importance=max(m.importance for m in group),
                source="compaction",
                evidence_ids=[m.id for m in group],
            ))
            if not memory_id:
                continue
            created = self.store.hydrate([memory_id])
            if created:
                self.backend.mark_compacted([m.id for m in group], created[0].hash_id)
            new_ids.append(memory_id)
            inputs.extend(group)
            outputs.append(f"[{concept}] {summary}")

        self._log("compaction", inputs, "\n".join(outputs), new_ids)
        logger.info(f"Compacted {len(inputs)} memories into {len(new_ids)}")
        return new_ids


class DreamScheduler:
    """
    Background timer for the dream cycle and decay.

    Usage:
        scheduler = DreamScheduler(cycle, decay_engine, config.dream)
        scheduler.start()
        ...
        scheduler.stop()

    An abbreviated cycle (no compaction) runs initial_delay_seconds after
    start. start() on a running scheduler and repeated stop() are no-ops.
    """

    def __init__(self, cycle: DreamCycle, decay: DecayEngine,
                 config: Optional[DreamConfig] = None):
        self.cycle = cycle
        self.decay = decay
        self.config = config or DreamConfig()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        with self._lock:
            if self.running:
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._loop, name="cortex-dream", daemon=True)
            self._thread.start()
        logger.info("Dream scheduler started")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=timeout)
        logger.info("Dream scheduler stopped")

    def _loop(self) -> None:
        cfg = self.config
        now = datetime.now()
        initial_at = now + timedelta(seconds=cfg.initial_delay_seconds)
        next_dream = now + timedelta(hours=cfg.interval_hours)
        next_decay = now + timedelta(hours=cfg.decay_interval_hours)

        while not self._stop_event.is_set():
            now = datetime.now()
            if initial_at is not None and now >= initial_at:
                initial_at = None
                self._guarded("initial dream cycle", self.cycle.run_once, False)
            if now >= next_dream:
                next_dream = now + timedelta(hours=cfg.interval_hours)
                self._guarded("dream cycle", self.cycle.run_once)
            if now >= next_decay:
                next_decay = now + timedelta(hours=cfg.decay_interval_hours)
                self._guarded("memory decay", self.decay.run)

            due = [next_dream, next_decay] + ([initial_at] if initial_at is not None else [])
            wait = max(0.0, (min(due) - datetime.now()).total_seconds())
            self._stop_event.wait(wait)

    def _guarded(self, name: str, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.error(f"Scheduled {name} failed: {e}", exc_info=True)
