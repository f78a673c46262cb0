"""Embeddings through any OpenAI-compatible endpoint via LiteLLM."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from ..provider import BaseEmbeddingsProvider

try:
    import litellm
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    litellm = None  # type: ignore

logger = logging.getLogger(__name__)


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


class OpenAIEmbeddingsProvider(BaseEmbeddingsProvider):
    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        if litellm is None:
            raise RuntimeError(
                "The openai embeddings provider needs litellm; install "
                "persona-memory[openai] or set EMBEDDINGS_PROVIDER to another backend."
            )
        request: Dict[str, Any] = {"model": self.model, "input": list(texts)}
        if self.config.dimension:
            request["dimensions"] = self.config.dimension
        response = await litellm.aembedding(**request)
        rows = list(_field(response, "data") or [])
        # the API tags each row with its input position
        rows.sort(key=lambda row: _field(row, "index") or 0)
        vectors: List[List[float]] = []
        for row in rows:
            embedding = _field(row, "embedding")
            if not isinstance(embedding, list):
                raise ValueError(f"{self.model} returned a non-list embedding")
            vectors.append([float(x) for x in embedding])
        logger.debug("Embedded %d texts with %s", len(vectors), self.model)
        return vectors


__all__ = ["OpenAIEmbeddingsProvider"]
