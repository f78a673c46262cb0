"""Size-bounded in-memory embeddings cache."""
from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# float64 payload plus per-entry bookkeeping
_FLOAT_BYTES = 8
_ENTRY_OVERHEAD = 64


def _entry_cost(key: str, vector: Sequence[float]) -> int:
    return len(vector) * _FLOAT_BYTES + len(key) + _ENTRY_OVERHEAD


class EmbeddingCache:
    """LRU cache storing normalized embedding vectors by content hash.

    Bounded both by entry count and by an estimated byte cost. A text's
    embedding never changes for a given model, so eviction only costs a
    repeated provider call.
    """

    def __init__(self, max_entries: int = 100, max_bytes: int = 50 * 1024 * 1024) -> None:
        self.max_entries = max(1, int(max_entries))
        self.max_bytes = max(1, int(max_bytes))
        self._entries: "OrderedDict[str, Tuple[float, ...]]" = OrderedDict()
        self._bytes = 0
        self._lock = threading.Lock()

    @staticmethod
    def make_cache_key(model: str, text: str) -> str:
        digest = hashlib.sha256()
        digest.update(model.encode("utf-8"))
        digest.update(b"::")
        digest.update(text.encode("utf-8"))
        return digest.hexdigest()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def get(self, key: str) -> Optional[List[float]]:
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                return None
            self._entries.move_to_end(key)
            return list(vector)

    def get_many(self, keys: Sequence[str]) -> Dict[str, List[float]]:
        result: Dict[str, List[float]] = {}
        for key in keys:
            vector = self.get(key)
            if vector is not None:
                result[key] = vector
        return result

    def set(self, key: str, vector: Sequence[float]) -> None:
        cost = _entry_cost(key, vector)
        if cost > self.max_bytes:
            logger.debug("Embedding of %d dims exceeds cache byte limit; not cached", len(vector))
            return
        with self._lock:
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._bytes -= _entry_cost(key, previous)
            self._entries[key] = tuple(float(v) for v in vector)
            self._bytes += cost
            self._evict_locked()

    def set_many(self, entries: Mapping[str, Sequence[float]]) -> None:
        for key, vector in entries.items():
            self.set(key, vector)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._bytes = 0

    def _evict_locked(self) -> None:
        while self._entries and (
            len(self._entries) > self.max_entries or self._bytes > self.max_bytes
        ):
            key, vector = self._entries.popitem(last=False)
            self._bytes -= _entry_cost(key, vector)


__all__ = ["EmbeddingCache"]
