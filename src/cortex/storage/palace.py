"""
Memory Palace - default persistence backend for Cortex
SQLite-based storage with vector blobs, FTS5 and an association graph.

The palace is a facade over the focused operation classes; they share one
connection and one lock, so a ':memory:' palace behaves as a single
database.
"""

import logging
from pathlib import Path
from typing import Union

from .backend import MemoryBackend
from .crud import MemoryCRUD
from .entities import EntityOperations
from .graph_ops import LinkOperations
from .search import MemorySearch
from .stats import DatabaseStats
from .traversal import GraphTraversal

logger = logging.getLogger(__name__)


class MemoryPalace(MemoryCRUD, MemorySearch, LinkOperations, GraphTraversal,
                   EntityOperations, DatabaseStats, MemoryBackend):
    """
    SQLite implementation of MemoryBackend.

    Features:
    - WAL mode for concurrent readers alongside background writers
    - Full-text candidate search via FTS5
    - In-process vectorised cosine similarity over float32 blobs
    - Upsert-keyed links, mentions and relations
    """

    def __init__(self, db_path: Union[str, Path] = ':memory:', enable_wal: bool = True):
        """
        Args:
            db_path: Path to SQLite database file (or ':memory:' for in-memory)
            enable_wal: Enable WAL mode for concurrent writes (default: True)
        """
        super().__init__(db_path, enable_wal=enable_wal)
        logger.debug(f"Memory palace opened at {self.db_path}")

