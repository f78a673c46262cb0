"""Shared fixtures: deterministic embeddings and in-process backends."""
from __future__ import annotations

import hashlib
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from persona_memory.config import (
    ConversationConfig,
    EmbeddingsConfig,
    ObservabilityConfig,
    RuntimeConfig,
    StoreConfig,
)
from persona_memory.conversation import InMemoryConversationLog
from persona_memory.embeddings import BaseEmbeddingsProvider, EmbeddingCache, Embeddings
from persona_memory.memory import InMemoryDocumentStore
from persona_memory.memory.keywords import extract_keywords, summarize, tokenize
from persona_memory.memory.schema import MemoryContext, MemoryRecord, MemorySource, MemoryType
from persona_memory.observability import Observability
from persona_memory.service import MemoryService

DIMENSION = 64
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def basis(index: int, dimension: int = DIMENSION) -> List[float]:
    vector = [0.0] * dimension
    vector[index] = 1.0
    return vector


def at_angle(cosine: float, dimension: int = DIMENSION) -> List[float]:
    """Unit vector whose cosine with ``basis(0)`` is ``cosine``."""
    vector = [0.0] * dimension
    vector[0] = cosine
    vector[1] = math.sqrt(max(0.0, 1.0 - cosine * cosine))
    return vector


class FixtureEmbeddingsProvider(BaseEmbeddingsProvider):
    """Bag-of-words hashing embeddings with per-text overrides."""

    def __init__(self, dimension: int = DIMENSION, vectors: Optional[Dict[str, Sequence[float]]] = None) -> None:
        super().__init__(EmbeddingsConfig(provider="fixture", model=f"fixture-{dimension}", dimension=dimension))
        self.dimension = dimension
        self.vectors: Dict[str, Sequence[float]] = dict(vectors or {})
        self.calls: List[tuple] = []
        self.fail = False

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(tuple(texts))
        if self.fail:
            raise RuntimeError("fixture provider offline")
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> List[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        vector = [0.0] * self.dimension
        for token in tokenize(text):
            index = int(hashlib.sha256(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[index] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


def build_embeddings(provider: BaseEmbeddingsProvider, **kwargs) -> Embeddings:
    options = dict(timeout=2.0, max_retries=0, retry_backoff=0.0)
    options.update(kwargs)
    return Embeddings(provider=provider, cache=EmbeddingCache(), **options)


def build_record(
    *,
    record_id: str = "rec-1",
    owner_id: str = "owner-1",
    content: str = "User works as a marine biologist",
    memory_type: MemoryType = MemoryType.PROFESSIONAL,
    embedding: Optional[Sequence[float]] = None,
    importance: float = 0.5,
    access_count: int = 0,
    decay_factor: float = 1.0,
    age: timedelta = timedelta(days=1),
    is_active: bool = True,
    now: datetime = NOW,
    degraded: bool = False,
) -> MemoryRecord:
    created = now - age
    return MemoryRecord(
        id=record_id,
        owner_id=owner_id,
        type=memory_type,
        content=content,
        summary=summarize(content),
        keywords=extract_keywords(content),
        embedding=tuple(embedding if embedding is not None else basis(0)),
        importance=importance,
        confidence=0.8,
        source=MemorySource.EXPLICIT,
        context=MemoryContext(session_id="session-1", timestamp=created),
        created_at=created,
        last_accessed_at=created,
        access_count=access_count,
        decay_factor=decay_factor,
        is_active=is_active,
        embedding_model="fixture-64",
        degraded=degraded,
    )


@pytest.fixture
def provider() -> FixtureEmbeddingsProvider:
    return FixtureEmbeddingsProvider()


@pytest.fixture
def embeddings(provider) -> Embeddings:
    return build_embeddings(provider)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(
        store=StoreConfig(backend="memory"),
        conversation=ConversationConfig(backend="memory"),
        observability=ObservabilityConfig(json_log_path=None, metrics_namespace="test_pm"),
    )


@pytest.fixture
def observability(runtime_config) -> Observability:
    return Observability(runtime_config.observability)


@pytest.fixture
def service(store, embeddings, runtime_config, observability) -> MemoryService:
    return MemoryService(
        store=store,
        embeddings=embeddings,
        conversation_log=InMemoryConversationLog(),
        config=runtime_config,
        observability=observability,
    )
