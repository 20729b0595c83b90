from .backend import MemoryBackend
from .palace import MemoryPalace
from .models import (
    Memory,
    MemorySummary,
    MemoryFragment,
    MemoryLink,
    LinkedMemory,
    Entity,
    EntityMention,
    EntityRelation,
    EntityCooccurrence,
    DreamLog,
    MemoryFilter,
    MemoryStats,
)

__all__ = [
    "MemoryBackend", "MemoryPalace", "Memory", "MemorySummary", "MemoryFragment",
    "MemoryLink", "LinkedMemory", "Entity", "EntityMention", "EntityRelation",
    "EntityCooccurrence", "DreamLog", "MemoryFilter", "MemoryStats",
]
