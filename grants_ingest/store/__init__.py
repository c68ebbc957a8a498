"""
Persistence layer.

- base: GrantStore interface, UpsertOutcome, SourceStatusRecord
- sqlite: SQLiteGrantStore (stdlib sqlite3)
"""

from .base import GrantStore, SourceStatusRecord, UpsertOutcome
from .sqlite import SQLiteGrantStore

__all__ = ["GrantStore", "SQLiteGrantStore", "SourceStatusRecord", "UpsertOutcome"]
