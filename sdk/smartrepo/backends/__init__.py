"""
Storage adapters for smartrepo.

This module provides the backend adapter interface plus reference adapters:
- In-memory (for testing and local development)
- SQLite JSON documents

Production adapters for other document stores implement the same
DocumentBackend protocol.

Invariants:
    - Adapters execute physical operations only; scope, managed fields and
      soft delete are decided by the repository engine
    - Every reference adapter supports equality, $in, $gt and $ne filters
"""

from .base import DocumentBackend, InsertManyResult, apply_mutations, matches
from .memory import InMemoryBackend
from .sqlite import SqliteBackend

__all__ = [
    # Protocol and types
    "DocumentBackend",
    "InsertManyResult",
    "apply_mutations",
    "matches",
    # Implementations
    "InMemoryBackend",
    "SqliteBackend",
]
