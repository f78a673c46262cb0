"""Lazy dependency container for memory engine singletons."""
from __future__ import annotations

from functools import lru_cache
from typing import Callable, Generic, TypeVar

from .config import RuntimeConfig, load_runtime_config

T = TypeVar("T")


class _LazyProxy(Generic[T]):
    """Proxy object that initializes the underlying dependency on access."""

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory

    def __call__(self) -> T:
        return self._factory()

    def __getattr__(self, item: str):
        return getattr(self._factory(), item)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<LazyProxy factory={self._factory!r}>"


@lru_cache(maxsize=1)
def get_config() -> RuntimeConfig:
    return load_runtime_config()


@lru_cache(maxsize=1)
def get_observability():
    from .observability import Observability

    return Observability(get_config().observability)


@lru_cache(maxsize=1)
def get_embedding_cache():
    from .embeddings import EmbeddingCache

    cfg = get_config().embeddings
    return EmbeddingCache(max_entries=cfg.cache_max_entries, max_bytes=cfg.cache_max_bytes)


@lru_cache(maxsize=1)
def get_embeddings_service():
    from .embeddings import get_embeddings

    return get_embeddings(get_config(), cache=get_embedding_cache(), observability=get_observability())


@lru_cache(maxsize=1)
def get_document_store():
    from .memory import get_document_store as build_store

    return build_store(get_config(), observability=get_observability())


@lru_cache(maxsize=1)
def get_conversation_log():
    from .conversation import get_conversation_log as build_log

    return build_log(get_config())


@lru_cache(maxsize=1)
def get_memory_service():
    from .service import MemoryService

    return MemoryService(
        store=get_document_store(),
        embeddings=get_embeddings_service(),
        conversation_log=get_conversation_log(),
        config=get_config(),
        observability=get_observability(),
    )


def reset() -> None:
    """Drop every cached singleton so the next access rebuilds from config."""
    for factory in (
        get_memory_service,
        get_conversation_log,
        get_document_store,
        get_embeddings_service,
        get_embedding_cache,
        get_observability,
        get_config,
    ):
        factory.cache_clear()
    load_runtime_config.cache_clear()


embeddings = _LazyProxy(get_embeddings_service)
store = _LazyProxy(get_document_store)
conversation_log = _LazyProxy(get_conversation_log)
memory_service = _LazyProxy(get_memory_service)
observability = _LazyProxy(get_observability)


__all__ = [
    "conversation_log",
    "embeddings",
    "memory_service",
    "observability",
    "store",
    "get_config",
    "get_conversation_log",
    "get_document_store",
    "get_embedding_cache",
    "get_embeddings_service",
    "get_memory_service",
    "get_observability",
    "reset",
]
