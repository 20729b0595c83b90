"""
Event type definitions for Cortex.

This module defines typed events emitted by the memory engine:
- MemoryStoredEvent: When a memory is persisted
- MemoryRecalledEvent: When a recall returns results
- MemoryDecayedEvent: When a decay run finishes
- DreamPhaseCompletedEvent: When a dream-cycle phase finishes (or fails)
- BackgroundTaskFailedEvent: When a background side effect raises
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any


@dataclass
class MemoryStoredEvent:
    """Event emitted when a memory is stored."""
    memory_id: int
    hash_id: str
    memory_type: str
    summary: str
    importance: float
    related_user: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "memory.stored"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "memory_id": self.memory_id,
            "hash_id": self.hash_id,
            "memory_type": self.memory_type,
            "summary": self.summary,
            "importance": self.importance,
            "related_user": self.related_user,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class MemoryRecalledEvent:
    """Event emitted when memories are recalled."""
    query: Optional[str]
    result_count: int
    memory_ids: List[int] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "memory.recalled"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "query": self.query,
            "result_count": self.result_count,
            "memory_ids": self.memory_ids,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class MemoryDecayedEvent:
    """Event emitted after a decay run."""
    decayed_count: int
    by_type: Dict[str, int] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "memory.decayed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "decayed_count": self.decayed_count,
            "by_type": self.by_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class DreamPhaseCompletedEvent:
    """Event emitted when a dream phase completes, is skipped, or fails."""
    phase: str
    status: str  # completed | skipped | failed
    new_memory_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "dream.phase_completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "phase": self.phase,
            "status": self.status,
            "new_memory_ids": self.new_memory_ids,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class BackgroundTaskFailedEvent:
    """Event emitted when a fire-and-forget task raises."""
    task_name: str
    error: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "task.failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "task_name": self.task_name,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
