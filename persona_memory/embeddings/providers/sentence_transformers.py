"""Local embeddings from a sentence-transformers model.

The model is loaded lazily, once per model name and process, and both the
load and the encode run in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, List, Sequence

from ..provider import BaseEmbeddingsProvider

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

_loaded: Dict[str, Any] = {}
_load_lock = threading.Lock()


def _encoder(model_name: str) -> Any:
    with _load_lock:
        encoder = _loaded.get(model_name)
        if encoder is None:
            from sentence_transformers import SentenceTransformer  # type: ignore

            logger.info("Loading sentence-transformers model %s", model_name)
            encoder = SentenceTransformer(model_name)
            _loaded[model_name] = encoder
        return encoder


class SentenceTransformersEmbeddingsProvider(BaseEmbeddingsProvider):
    @property
    def model(self) -> str:
        return self.config.model or DEFAULT_MODEL

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        encoder = await asyncio.to_thread(_encoder, self.model)
        matrix = await asyncio.to_thread(
            encoder.encode,
            list(texts),
            batch_size=max(1, self.config.batch_size),
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [row.tolist() for row in matrix]


__all__ = ["SentenceTransformersEmbeddingsProvider"]
