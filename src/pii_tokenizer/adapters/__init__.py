"""
Persistence adapters.

Provides:
- PersistenceAdapter: protocol the coordinator talks to
- InMemoryRecord: dict-backed record for non-ORM use and tests

The SQLAlchemy adapter lives in :mod:`pii_tokenizer.adapters.sqlalchemy`
and is imported explicitly so the core does not require SQLAlchemy.
"""

from pii_tokenizer.adapters.base import PersistenceAdapter
from pii_tokenizer.adapters.memory import InMemoryRecord

__all__ = [
    "PersistenceAdapter",
    "InMemoryRecord",
]
