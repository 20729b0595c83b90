"""Request types for storing and recalling memories."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class StoreMemoryOptions:
    """
    Input to Cortex.store().

    Out-of-range values are clamped and over-long text truncated; nothing
    here is rejected.
    """
    summary: str
    content: Optional[str] = None  # defaults to the summary
    memory_type: str = "episodic"
    tags: List[str] = field(default_factory=list)
    concepts: Optional[List[str]] = None  # inferred when omitted
    emotional_valence: float = 0.0
    importance: float = 0.5
    source: Optional[str] = None
    source_id: Optional[str] = None
    related_user: Optional[str] = None
    related_wallet: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    evidence_ids: List[int] = field(default_factory=list)


@dataclass
class RecallOptions:
    """Input to Cortex.recall() and Cortex.recall_summaries()."""
    query: Optional[str] = None
    tags: Optional[List[str]] = None
    related_user: Optional[str] = None
    related_wallet: Optional[str] = None
    memory_types: Optional[List[str]] = None
    limit: int = 5
    min_importance: Optional[float] = None
    min_decay: Optional[float] = None  # defaults to retrieval.min_decay
    track_access: bool = True
    expand_graph: bool = True
