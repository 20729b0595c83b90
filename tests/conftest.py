"""Pytest fixtures for Cortex tests"""
import hashlib
import itertools
import math
import re
from typing import List, Optional

import pytest

from cortex.config import CortexConfig
from cortex.embeddings import Embedder
from cortex.storage.palace import MemoryPalace

DIMENSIONS = 64
_WORD = re.compile(r"[a-z0-9]+")


class FakeEmbedder(Embedder):
    """
    Deterministic bag-of-words embedder.

    Each word is hashed into one of DIMENSIONS buckets, so texts sharing
    words have positive cosine similarity and disjoint texts have zero.
    """

    dimensions = DIMENSIONS

    def __init__(self):
        self.calls: List[str] = []
        self.fail = False

    def embed(self, text: str) -> Optional[List[float]]:
        self.calls.append(text)
        if self.fail:
            return None
        vector = [0.0] * DIMENSIONS
        for word in _WORD.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % DIMENSIONS
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return None
        return [v / norm for v in vector]


class FakeLLM:
    """Scripted LLM: returns queued responses, then the default."""

    def __init__(self, responses=None, default="I keep noticing the same holders return."):
        self.responses = list(responses or [])
        self.default = default
        self.prompts = []

    def generate_text(self, prompt, context=None, instruction=None, max_tokens=None):
        self.prompts.append({"prompt": prompt, "context": context, "instruction": instruction})
        if self.responses:
            return self.responses.pop(0)
        return self.default

    def score_importance(self, description):
        return 0.7


@pytest.fixture
def config(tmp_path):
    """Config rooted in tmp_path with inline background tasks."""
    cfg = CortexConfig(base_path=tmp_path)
    cfg.tasks.synchronous = True
    # Keep the importance trigger out of the way unless a test wants it
    cfg.dream.importance_threshold = 1000.0
    return cfg


@pytest.fixture
def palace():
    """In-memory memory palace."""
    palace = MemoryPalace(':memory:')
    yield palace
    palace.close()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def cortex(config, palace):
    """Cortex without embeddings or LLM over an in-memory palace."""
    from cortex import Cortex

    instance = Cortex(config, backend=palace)
    yield instance
    instance.close()


@pytest.fixture
def embedded_cortex(config, palace, fake_embedder):
    """Cortex with the deterministic embedder."""
    from cortex import Cortex

    instance = Cortex(config, backend=palace, embedder=fake_embedder)
    yield instance
    instance.close()


@pytest.fixture
def add_memory(palace):
    """Insert memories straight into the palace; returns the new id."""
    from cortex.storage.models import Memory

    counter = itertools.count(1)

    def add(summary, memory_type="episodic", **kwargs):
        memory = Memory(
            id=0,
            hash_id=kwargs.pop("hash_id", f"clude-{next(counter):08x}"),
            memory_type=memory_type,
            content=kwargs.pop("content", summary),
            summary=summary,
            **kwargs,
        )
        return palace.insert_memory(memory)

    return add
