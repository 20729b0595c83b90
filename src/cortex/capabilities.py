"""
Interfaces for the external collaborators Cortex can call out to.

- Ledger: notarizes a memory's content hash somewhere durable (e.g. an
  on-chain memo) and returns a signature stored on the memory.
- EmergenceHandler: surfaces an emergence-phase thought externally
  (e.g. posts it), subject to a rate limit enforced by Cortex.
"""

import hashlib
from typing import Callable, Optional, Protocol


class Ledger(Protocol):
    def commit(self, hash_id: str, content_hash: str) -> Optional[str]:
        """Record content_hash under hash_id; return a signature or None."""
        ...


EmergenceHandler = Callable[[str], None]


def content_hash(content: str) -> str:
    """SHA-256 hex digest used for ledger commits."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
