"""Typed failures raised by the memory engine."""
from __future__ import annotations

from typing import Optional


class MemoryEngineError(Exception):
    """Base class for all memory engine failures."""


class ProviderUnavailable(MemoryEngineError):
    """The embedding provider failed, timed out or returned an unusable vector."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class StoreUnavailable(MemoryEngineError):
    """The document store or conversation log could not complete a call."""


class MalformedRecord(MemoryEngineError):
    """A stored record failed schema validation on read."""

    def __init__(self, message: str, *, record_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class RetrievalSuperseded(MemoryEngineError):
    """A newer retrieval for the same key replaced this one; its result was discarded."""


class DimensionMismatch(MemoryEngineError):
    """A stored embedding does not match the current provider dimension."""

    def __init__(self, record_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Record {record_id} has embedding dimension {actual}, expected {expected}"
        )
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


__all__ = [
    "DimensionMismatch",
    "MalformedRecord",
    "MemoryEngineError",
    "ProviderUnavailable",
    "RetrievalSuperseded",
    "StoreUnavailable",
]
