"""Embeddings provider implementations."""

from .hash import HashEmbeddingsProvider
from .openai import OpenAIEmbeddingsProvider
from .sentence_transformers import SentenceTransformersEmbeddingsProvider

__all__ = [
    "HashEmbeddingsProvider",
    "OpenAIEmbeddingsProvider",
    "SentenceTransformersEmbeddingsProvider",
]
