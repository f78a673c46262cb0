"""Deterministic hash-derived pseudo-embeddings.

These vectors carry no semantic meaning. The provider is only used when
``allow_fallback`` is switched on, and every vector it produces is marked
degraded so the ranking engine never mistakes it for a real embedding.
"""
from __future__ import annotations

import hashlib
from typing import List, Sequence

from ..provider import BaseEmbeddingsProvider

_DEFAULT_DIMENSION = 1536


class HashEmbeddingsProvider(BaseEmbeddingsProvider):
    authoritative = False

    @property
    def model(self) -> str:
        return f"hash-fallback-{self.dimension}"

    @property
    def dimension(self) -> int:
        return self.config.dimension or _DEFAULT_DIMENSION

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for text in texts:
            digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
            vectors.append(
                [(ord(digest[i % len(digest)]) / 255.0) * 2 - 1 for i in range(self.dimension)]
            )
        return vectors


__all__ = ["HashEmbeddingsProvider"]
