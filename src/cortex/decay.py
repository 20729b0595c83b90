"""
Type-aware forgetting curve.

Every run multiplies decay_factor by a per-type rate for memories not
accessed within the cutoff, never below the floor:

    decay = max(decay * rate[type], min_decay)

Episodic memories fade fastest and self-model memories slowest.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from .config import DecayConfig
from .event_bus import EventBus
from .events import MemoryDecayedEvent
from .storage.backend import MemoryBackend

logger = logging.getLogger(__name__)


class DecayEngine:
    def __init__(self, backend: MemoryBackend, config: Optional[DecayConfig] = None,
                 event_bus: Optional[EventBus] = None):
        self.backend = backend
        self.config = config or DecayConfig()
        self.event_bus = event_bus

    def run(self, now: Optional[datetime] = None) -> int:
        """
        Decay every memory type once.

        A failure on one type is logged and the remaining types still run.

        Returns:
            Total number of memories decayed
        """
        cutoff = (now or datetime.now()) - timedelta(hours=self.config.cutoff_hours)
        by_type: Dict[str, int] = {}

        for memory_type, rate in self.config.rates.items():
            try:
                by_type[memory_type] = self.backend.batch_decay(
                    memory_type, rate, self.config.min_decay, cutoff
                )
            except Exception as e:
                logger.error(f"Decay failed for {memory_type} memories: {e}")

        total = sum(by_type.values())
        logger.info(f"Decayed {total} memories: {by_type}")

        if self.event_bus is not None:
            self.event_bus.publish(MemoryDecayedEvent(decayed_count=total, by_type=by_type))
        return total
