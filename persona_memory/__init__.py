"""Semantic memory engine: embeddings, ranking, dedup, decay and context assembly."""
from __future__ import annotations

from .config import RuntimeConfig, load_runtime_config
from .errors import (
    DimensionMismatch,
    MalformedRecord,
    MemoryEngineError,
    ProviderUnavailable,
    RetrievalSuperseded,
    StoreUnavailable,
)
from .service import MemoryService, RetrievedContext, get_memory_service

__version__ = "0.1.0"

__all__ = [
    "DimensionMismatch",
    "MalformedRecord",
    "MemoryEngineError",
    "MemoryService",
    "ProviderUnavailable",
    "RetrievalSuperseded",
    "RetrievedContext",
    "RuntimeConfig",
    "StoreUnavailable",
    "get_memory_service",
    "load_runtime_config",
]
