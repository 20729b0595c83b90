"""
Cortex - long-term memory for conversational agents.

Stores discrete memories, recalls the ones relevant to a live query by
blending vector similarity, keywords, importance, decay and association
structure, and periodically consolidates and forgets in a dream cycle.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .cortex import Cortex
from .config import CortexConfig, load_config
from .options import StoreMemoryOptions, RecallOptions
from .exceptions import CortexError, ConfigurationError, CapabilityUnavailable, LLMResponseError
from .scoring import MemoryScorer
from .formatting import format_memory_context
from .storage import MemoryBackend, MemoryPalace, Memory, MemorySummary, MemoryStats

__all__ = [
    "Cortex",
    "CortexConfig",
    "load_config",
    "StoreMemoryOptions",
    "RecallOptions",
    "CortexError",
    "ConfigurationError",
    "CapabilityUnavailable",
    "LLMResponseError",
    "MemoryScorer",
    "format_memory_context",
    "MemoryBackend",
    "MemoryPalace",
    "Memory",
    "MemorySummary",
    "MemoryStats",
]
