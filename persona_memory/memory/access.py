"""Background bookkeeping for retrieved records."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional, Set

from .schema import MemoryRecord, utc_now
from .store import DocumentStore

logger = logging.getLogger(__name__)


class AccessTracker:
    """Applies access updates and re-embedding flags to stored records.

    Updates read the current record and write back a modified copy. Two
    concurrent updates of the same record may lose one increment; callers
    treat the counter as a hint, not a ledger.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self._tasks: Set[asyncio.Task] = set()

    async def touch(
        self,
        record_id: str,
        *,
        when: Optional[datetime] = None,
        importance: Optional[float] = None,
    ) -> Optional[MemoryRecord]:
        """Increment ``access_count`` and stamp ``last_accessed_at``.

        When ``importance`` is given the stored importance is raised to it,
        never lowered.
        """
        record = await self.store.get(record_id)
        if record is None:
            return None
        updated = record.touched(when or utc_now())
        if importance is not None and importance > updated.importance:
            updated = replace(updated, importance=importance)
        await self.store.put(updated)
        return updated

    async def flag_for_reembedding(self, record_id: str) -> None:
        record = await self.store.get(record_id)
        if record is None or record.needs_reembedding:
            return
        await self.store.put(replace(record, needs_reembedding=True))

    def schedule_touch(self, record_ids: Iterable[str]) -> None:
        now = utc_now()
        for record_id in record_ids:
            self._spawn(self.touch(record_id, when=now), f"access update for {record_id}")

    def schedule_flag(self, record_ids: Iterable[str]) -> None:
        for record_id in record_ids:
            self._spawn(self.flag_for_reembedding(record_id), f"re-embedding flag for {record_id}")

    async def drain(self) -> None:
        """Wait for every scheduled update to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro, description: str) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)

        def _done(done: asyncio.Task) -> None:
            self._tasks.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                logger.warning("Background %s failed: %s", description, exc)

        task.add_done_callback(_done)


__all__ = ["AccessTracker"]
