"""Memory record storage, ranking and maintenance."""
from __future__ import annotations

from typing import Optional

from ..config import RuntimeConfig, StoreConfig
from ..observability import Observability
from .access import AccessTracker
from .decay import DecayJob, DecayReport
from .extraction import ExtractedFact, extract_facts, map_kind_to_type
from .ranking import RankingEngine, score_candidates
from .schema import (
    MemoryContext,
    MemoryRecord,
    MemorySource,
    MemoryType,
    ScoreBreakdown,
    SearchResult,
)
from .store import DocumentStore, GuardedDocumentStore
from .stores import InMemoryDocumentStore, SQLiteDocumentStore
from .upsert import UpsertController, UpsertResult


def _resolve_config(config: RuntimeConfig | StoreConfig | None) -> StoreConfig:
    if isinstance(config, RuntimeConfig):
        return config.store
    if isinstance(config, StoreConfig):
        return config
    return StoreConfig()


def get_document_store(
    config: RuntimeConfig | StoreConfig | None = None,
    *,
    observability: Optional[Observability] = None,
) -> DocumentStore:
    store_config = _resolve_config(config)
    if store_config.backend == "memory":
        return InMemoryDocumentStore(observability=observability)
    if store_config.backend == "sqlite":
        return SQLiteDocumentStore(store_config.db_path, observability=observability)
    raise ValueError(f"Unknown document store backend '{store_config.backend}'")


__all__ = [
    "AccessTracker",
    "DecayJob",
    "DecayReport",
    "DocumentStore",
    "ExtractedFact",
    "GuardedDocumentStore",
    "InMemoryDocumentStore",
    "MemoryContext",
    "MemoryRecord",
    "MemorySource",
    "MemoryType",
    "RankingEngine",
    "SQLiteDocumentStore",
    "ScoreBreakdown",
    "SearchResult",
    "UpsertController",
    "UpsertResult",
    "extract_facts",
    "get_document_store",
    "map_kind_to_type",
    "score_candidates",
]
