"""Embedding provider contract and the name-based provider registry."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Sequence

from ..config import EmbeddingsConfig, RuntimeConfig


class BaseEmbeddingsProvider(ABC):
    """Turns texts into raw vectors.

    ``Embeddings`` owns caching, retries, normalization and dimension
    checks; a provider only talks to its backend.
    """

    #: Vectors from non-authoritative providers are flagged ``degraded``.
    authoritative: bool = True

    def __init__(self, config: EmbeddingsConfig) -> None:
        self.config = config

    @property
    def model(self) -> str:
        return self.config.model

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per text, in input order."""


ProviderFactory = Callable[[EmbeddingsConfig], BaseEmbeddingsProvider]
BatchEmbedder = Callable[[Sequence[str]], Awaitable[List[List[float]]]]

_REGISTRY: Dict[str, ProviderFactory] = {}


def register_provider(name: str, factory: ProviderFactory) -> None:
    _REGISTRY[name.strip().lower()] = factory


def available_providers() -> List[str]:
    return sorted(_REGISTRY)


def get_provider(config: RuntimeConfig | EmbeddingsConfig) -> BaseEmbeddingsProvider:
    embed_config = config.embeddings if isinstance(config, RuntimeConfig) else config
    name = embed_config.provider.strip().lower()
    factory = _REGISTRY.get(name)
    if factory is None:
        known = ", ".join(available_providers()) or "none"
        raise ValueError(f"Unknown embeddings provider '{name}' (available: {known})")
    return factory(embed_config)


def split_batches(texts: Sequence[str], batch_size: int) -> List[Sequence[str]]:
    size = batch_size if batch_size > 0 else max(len(texts), 1)
    return [texts[start : start + size] for start in range(0, len(texts), size)]


async def embed_in_batches(
    texts: Sequence[str],
    batch_size: int,
    embed_batch: BatchEmbedder,
) -> List[List[float]]:
    """Embed every batch concurrently and stitch the vectors back in order.

    Raises ``ValueError`` when a batch comes back with a different number of
    vectors than it had texts.
    """
    if not texts:
        return []
    batches = split_batches(texts, batch_size)
    outputs = await asyncio.gather(*(embed_batch(batch) for batch in batches))
    vectors: List[List[float]] = []
    for batch, batch_vectors in zip(batches, outputs):
        if len(batch_vectors) != len(batch):
            raise ValueError(f"expected {len(batch)} vectors, got {len(batch_vectors)}")
        vectors.extend(batch_vectors)
    return vectors


__all__ = [
    "BaseEmbeddingsProvider",
    "available_providers",
    "embed_in_batches",
    "get_provider",
    "register_provider",
    "split_batches",
]
