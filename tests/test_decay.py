"""Tests for type-aware memory decay"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from cortex.config import DecayConfig
from cortex.decay import DecayEngine
from cortex.event_bus import EventBus

OLD = datetime.now() - timedelta(days=3)


class TestDecayEngine:
    """Test suite for DecayEngine"""

    def test_per_type_rates(self, palace, add_memory):
        ids = {
            memory_type: add_memory(memory_type, memory_type=memory_type, created_at=OLD)
            for memory_type in ("episodic", "semantic", "procedural", "self_model")
        }

        assert DecayEngine(palace).run() == 4

        decay = {m.memory_type: m.decay_factor for m in palace.get_memories(list(ids.values()))}
        assert decay["episodic"] == pytest.approx(0.93)
        assert decay["procedural"] == pytest.approx(0.97)
        assert decay["semantic"] == pytest.approx(0.98)
        assert decay["self_model"] == pytest.approx(0.99)

    def test_recently_accessed_untouched(self, palace, add_memory):
        memory_id = add_memory("fresh")
        assert DecayEngine(palace).run() == 0
        assert palace.get_memories([memory_id])[0].decay_factor == 1.0

    def test_monotonic_and_floored(self, palace, add_memory):
        """Repeated runs never increase decay and never cross the floor"""
        memory_id = add_memory("fading", created_at=OLD)
        engine = DecayEngine(palace)

        previous = 1.0
        for _ in range(60):
            engine.run()
            current = palace.get_memories([memory_id])[0].decay_factor
            assert current <= previous
            assert current >= 0.05
            previous = current

        assert previous == pytest.approx(0.05)

    def test_access_restores(self, palace, add_memory):
        memory_id = add_memory("fading", created_at=OLD, decay_factor=0.5)
        palace.batch_boost_access([memory_id], 0.1)

        DecayEngine(palace).run()

        assert palace.get_memories([memory_id])[0].decay_factor == pytest.approx(0.6)

    def test_one_type_failing_does_not_stop_others(self, palace, add_memory):
        semantic = add_memory("fact", memory_type="semantic", created_at=OLD)
        backend = MagicMock(wraps=palace)

        def batch_decay(memory_type, rate, min_decay, cutoff):
            if memory_type == "episodic":
                raise RuntimeError("boom")
            return palace.batch_decay(memory_type, rate, min_decay, cutoff)

        backend.batch_decay.side_effect = batch_decay

        assert DecayEngine(backend).run() == 1
        assert palace.get_memories([semantic])[0].decay_factor == pytest.approx(0.98)

    def test_custom_config_and_event(self, palace, add_memory):
        add_memory("fading", created_at=OLD)
        bus = EventBus()
        events = []
        bus.subscribe("memory.decayed", events.append)
        config = DecayConfig(rates={"episodic": 0.5}, min_decay=0.1, cutoff_hours=1)

        DecayEngine(palace, config, bus).run()

        assert events[0].decayed_count == 1
        assert events[0].by_type == {"episodic": 1}
