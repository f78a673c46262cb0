"""Document store backends."""

from .memory import InMemoryDocumentStore
from .sqlite import SQLiteDocumentStore

__all__ = ["InMemoryDocumentStore", "SQLiteDocumentStore"]
