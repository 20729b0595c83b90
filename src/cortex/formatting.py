"""Render recalled memories as a context block for a prompt."""

from datetime import datetime
from typing import List, Optional

from .storage.models import Memory

SECTIONS = (
    ("episodic", "### Past Interactions"),
    ("semantic", "### Things You Know"),
    ("procedural", "### Behavioral Patterns"),
    ("self_model", "### Self-Observations"),
)

CLOSING_LINE = (
    "Use these memories naturally. You REMEMBER these things. "
    "Reference them if relevant but do not force it."
)


def time_ago(when: datetime, now: Optional[datetime] = None) -> str:
    """Coarse age: 'just now', '5h ago', '3d ago', '2w ago'."""
    now = now or datetime.now()
    hours = int((now - when).total_seconds() // 3600)
    if hours < 1:
        return "just now"
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return f"{days // 7}w ago"


def format_memory_context(memories: List[Memory], now: Optional[datetime] = None) -> str:
    """
    Group memories by type under markdown headings.

    Episodic entries carry their age; order within a section follows the
    input (ranked) order. Returns an empty string for no memories.
    """
    if not memories:
        return ""

    lines = ["## Memory Recall"]
    for memory_type, heading in SECTIONS:
        group = [m for m in memories if m.memory_type == memory_type]
        if not group:
            continue
        lines.append(heading)
        for memory in group:
            if memory_type == "episodic":
                lines.append(f"- [{time_ago(memory.created_at, now)}] {memory.summary}")
            else:
                lines.append(f"- {memory.summary}")

    lines.append("")
    lines.append(CLOSING_LINE)
    return "\n".join(lines)
