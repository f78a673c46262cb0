"""Embeddings service facade."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, NoReturn, Optional, Sequence

from ..config import EmbeddingsConfig, RuntimeConfig, load_runtime_config
from ..errors import ProviderUnavailable
from ..observability import Observability
from .cache import EmbeddingCache
from .provider import (
    BaseEmbeddingsProvider,
    available_providers,
    embed_in_batches,
    get_provider,
    register_provider,
)
from .providers.hash import HashEmbeddingsProvider
from .providers.openai import OpenAIEmbeddingsProvider
from .providers.sentence_transformers import SentenceTransformersEmbeddingsProvider
from .vectors import cosine_similarity, normalize

logger = logging.getLogger(__name__)

# Register built-in providers
register_provider("openai", lambda cfg: OpenAIEmbeddingsProvider(cfg))
register_provider("sentence_transformers", lambda cfg: SentenceTransformersEmbeddingsProvider(cfg))
register_provider("hash", lambda cfg: HashEmbeddingsProvider(cfg))


@dataclass(frozen=True)
class EmbeddingVector:
    """A unit-normalized embedding and where it came from."""

    values: List[float]
    model: str
    degraded: bool = False

    @property
    def dimension(self) -> int:
        return len(self.values)


@dataclass
class Embeddings:
    provider: BaseEmbeddingsProvider
    cache: EmbeddingCache
    batch_size: int = 32
    timeout: float = 10.0
    max_retries: int = 2
    retry_backoff: float = 0.25
    dimension: int = 0
    fallback: Optional[BaseEmbeddingsProvider] = None
    observability: Optional[Observability] = None

    @property
    def model(self) -> str:
        return self.provider.model

    async def embed(self, text: str) -> EmbeddingVector:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> List[EmbeddingVector]:
        if not texts:
            return []
        model_name = self.provider.model
        degraded = not self.provider.authoritative
        keys = [self.cache.make_cache_key(model_name, text) for text in texts]
        cached = self.cache.get_many(keys)
        results: List[Optional[EmbeddingVector]] = [None] * len(texts)
        missing_indices: List[int] = []
        missing_texts: List[str] = []
        for idx, key in enumerate(keys):
            vector = cached.get(key)
            if vector is None:
                missing_indices.append(idx)
                missing_texts.append(texts[idx])
            else:
                results[idx] = EmbeddingVector(vector, model_name, degraded)
        if self.observability is not None:
            self.observability.record_cache_hit(len(texts) - len(missing_texts))
            self.observability.record_cache_miss(len(missing_texts))
        if missing_texts:
            logger.debug("Embedding cache miss for %d texts", len(missing_texts))
            try:
                vectors = await self._call_provider(self.provider, missing_texts)
            except ProviderUnavailable:
                if self.fallback is None:
                    raise
                logger.warning(
                    "Embedding provider %s unavailable; using degraded %s vectors",
                    model_name,
                    self.fallback.model,
                )
                vectors = await self._call_provider(self.fallback, missing_texts)
                for idx, vector in zip(missing_indices, vectors):
                    results[idx] = EmbeddingVector(vector, self.fallback.model, True)
                return [item for item in results if item is not None]
            to_cache = {}
            for idx, vector in zip(missing_indices, vectors):
                key = keys[idx]
                results[idx] = EmbeddingVector(vector, model_name, degraded)
                to_cache[key] = vector
            self.cache.set_many(to_cache)
        return [item for item in results if item is not None]

    async def _call_provider(
        self, provider: BaseEmbeddingsProvider, texts: Sequence[str]
    ) -> List[List[float]]:
        async def _embed_batch(batch: Sequence[str]) -> List[List[float]]:
            return await self._embed_with_retry(provider, batch)

        try:
            raw = await embed_in_batches(texts, self.batch_size, _embed_batch)
        except ValueError as exc:
            self._fail("count", f"Provider {provider.model} {exc}", retryable=False)
        return [self._validate(provider, vector) for vector in raw]

    async def _embed_with_retry(
        self, provider: BaseEmbeddingsProvider, batch: Sequence[str]
    ) -> List[List[float]]:
        attempts = max(0, self.max_retries) + 1
        last_error = ""
        reason = "error"
        for attempt in range(attempts):
            if self.observability is not None:
                self.observability.record_provider_call(model=provider.model)
            try:
                return await asyncio.wait_for(provider.embed(batch), timeout=self.timeout)
            except asyncio.TimeoutError:
                reason = "timeout"
                last_error = f"timed out after {self.timeout}s"
            except Exception as exc:
                reason = "error"
                last_error = str(exc) or exc.__class__.__name__
            logger.warning(
                "Embedding provider %s failed (attempt %d/%d): %s",
                provider.model,
                attempt + 1,
                attempts,
                last_error,
            )
            if attempt + 1 < attempts and self.retry_backoff > 0:
                await asyncio.sleep(self.retry_backoff * (2**attempt))
        self._fail(reason, f"Embedding provider {provider.model} unavailable: {last_error}")

    def _validate(self, provider: BaseEmbeddingsProvider, vector: Sequence[float]) -> List[float]:
        try:
            normalized = normalize(vector)
        except ValueError as exc:
            self._fail("invalid_vector", f"Provider {provider.model} returned an unusable vector: {exc}", retryable=False)
        if provider.authoritative:
            if self.dimension <= 0:
                self.dimension = len(normalized)
            elif len(normalized) != self.dimension:
                self._fail(
                    "dimension",
                    f"Provider {provider.model} returned {len(normalized)} dims, expected {self.dimension}",
                    retryable=False,
                )
        return normalized

    def _fail(self, reason: str, message: str, *, retryable: bool = True) -> NoReturn:
        if self.observability is not None:
            self.observability.record_provider_failure(reason=reason, error=message)
        raise ProviderUnavailable(message, retryable=retryable)


def _resolve_config(config: RuntimeConfig | EmbeddingsConfig | None) -> EmbeddingsConfig:
    if config is None:
        runtime = load_runtime_config()
        return runtime.embeddings
    if isinstance(config, RuntimeConfig):
        return config.embeddings
    return config


def get_embeddings(
    config: RuntimeConfig | EmbeddingsConfig | None = None,
    *,
    cache: Optional[EmbeddingCache] = None,
    observability: Optional[Observability] = None,
) -> Embeddings:
    embed_config = _resolve_config(config)
    if cache is None:
        cache = EmbeddingCache(
            max_entries=embed_config.cache_max_entries,
            max_bytes=embed_config.cache_max_bytes,
        )
    provider = get_provider(embed_config)
    fallback: Optional[BaseEmbeddingsProvider] = None
    if embed_config.allow_fallback and provider.authoritative:
        fallback = HashEmbeddingsProvider(embed_config)
    return Embeddings(
        provider=provider,
        cache=cache,
        batch_size=embed_config.batch_size,
        timeout=embed_config.timeout,
        max_retries=embed_config.max_retries,
        retry_backoff=embed_config.retry_backoff,
        dimension=embed_config.dimension,
        fallback=fallback,
        observability=observability,
    )


__all__ = [
    "BaseEmbeddingsProvider",
    "EmbeddingCache",
    "EmbeddingVector",
    "Embeddings",
    "available_providers",
    "cosine_similarity",
    "get_embeddings",
    "normalize",
    "register_provider",
]
