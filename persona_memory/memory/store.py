"""Document store interfaces."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Protocol, TypeVar, runtime_checkable

from ..errors import MalformedRecord, MemoryEngineError, StoreUnavailable
from ..observability import Observability
from .schema import MemoryRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class DocumentStore(Protocol):
    """Predicate-queryable record storage.

    No vector index is assumed: ``query`` returns a candidate set and all
    ranking happens client-side.
    """

    async def put(self, record: MemoryRecord) -> None:
        ...

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        ...

    async def delete(self, record_id: str) -> bool:
        ...

    async def query(
        self,
        owner_id: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 100,
    ) -> List[MemoryRecord]:
        ...

    async def query_keyword(
        self,
        owner_id: str,
        keyword: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 5,
    ) -> List[MemoryRecord]:
        ...

    async def stats(self, owner_id: str) -> Dict[str, int]:
        ...


class MalformedRecordReporter:
    """Logs and counts records that fail validation on read."""

    def __init__(self, observability: Optional[Observability] = None) -> None:
        self.observability = observability
        self.skipped = 0

    def __call__(self, exc: MalformedRecord) -> None:
        self.skipped += 1
        logger.warning("Skipping malformed memory record %s: %s", exc.record_id, exc)
        if self.observability is not None:
            self.observability.record_malformed(record_id=exc.record_id, error=str(exc))

    def decode_one(self, row: Optional[Mapping[str, Any]]) -> Optional[MemoryRecord]:
        if row is None:
            return None
        try:
            return MemoryRecord.from_dict(row)
        except MalformedRecord as exc:
            self(exc)
            return None


async def guarded(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await ``awaitable`` with a timeout, surfacing failures as ``StoreUnavailable``."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StoreUnavailable(f"store {operation} timed out after {timeout}s") from exc
    except MemoryEngineError:
        raise
    except Exception as exc:
        raise StoreUnavailable(f"store {operation} failed: {exc}") from exc


class GuardedDocumentStore:
    """Wraps a store so every call carries a timeout and fails closed.

    Backend exceptions and timeouts surface as ``StoreUnavailable``.
    """

    def __init__(self, inner: DocumentStore, *, timeout: float = 5.0) -> None:
        self.inner = inner
        self.timeout = timeout

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        return await guarded(operation, awaitable, self.timeout)

    async def put(self, record: MemoryRecord) -> None:
        await self._guard("put", self.inner.put(record))

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        return await self._guard("get", self.inner.get(record_id))

    async def delete(self, record_id: str) -> bool:
        return await self._guard("delete", self.inner.delete(record_id))

    async def query(
        self,
        owner_id: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 100,
    ) -> List[MemoryRecord]:
        return await self._guard("query", self.inner.query(owner_id, is_active=is_active, limit=limit))

    async def query_keyword(
        self,
        owner_id: str,
        keyword: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 5,
    ) -> List[MemoryRecord]:
        return await self._guard(
            "query_keyword",
            self.inner.query_keyword(owner_id, keyword, is_active=is_active, limit=limit),
        )

    async def stats(self, owner_id: str) -> Dict[str, int]:
        return await self._guard("stats", self.inner.stats(owner_id))


__all__ = ["DocumentStore", "GuardedDocumentStore", "MalformedRecordReporter", "guarded"]
