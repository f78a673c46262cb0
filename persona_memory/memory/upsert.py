"""Update-or-create for memory records."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from ..config import DedupConfig
from ..embeddings import Embeddings
from ..observability import Observability
from .access import AccessTracker
from .keywords import extract_keywords, summarize
from .ranking import RankingEngine
from .schema import (
    MemoryContext,
    MemoryRecord,
    MemorySource,
    MemoryType,
    coerce_source,
    coerce_type,
    utc_now,
)
from .store import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8


@dataclass(frozen=True)
class UpsertResult:
    record_id: str
    created: bool


class UpsertController:
    """Stores a fact unless a near-identical active record already exists.

    The nearest neighbour check and the write are not atomic: two
    concurrent upserts of the same content for one owner can both create a
    record.
    """

    def __init__(
        self,
        store: DocumentStore,
        embeddings: Embeddings,
        ranking: RankingEngine,
        config: Optional[DedupConfig] = None,
        *,
        access: Optional[AccessTracker] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        self.store = store
        self.embeddings = embeddings
        self.ranking = ranking
        self.config = config or DedupConfig()
        self.access = access or ranking.access
        self.observability = observability

    async def upsert(
        self,
        owner_id: str,
        content: str,
        memory_type: MemoryType | str,
        source: MemorySource | str,
        importance: float,
        *,
        confidence: float = DEFAULT_CONFIDENCE,
        session_id: Optional[str] = None,
        message_id: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> UpsertResult:
        content = (content or "").strip()
        if not content:
            raise ValueError("content must not be empty")
        if not owner_id:
            raise ValueError("owner_id must not be empty")
        if not 0.0 <= importance <= 1.0:
            raise ValueError(f"importance must be within [0, 1], got {importance}")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        memory_type = coerce_type(memory_type)
        source = coerce_source(source)

        vector = await self.embeddings.embed(content)
        nearest = await self.ranking.nearest(owner_id, content, vector)
        if nearest is not None and nearest[1] >= self.config.threshold:
            existing, similarity = nearest
            await self.access.touch(
                existing.id,
                importance=importance if self.config.refresh_importance else None,
            )
            logger.debug(
                "Merged upsert into %s for %s (similarity %.4f)", existing.id, owner_id, similarity
            )
            self._record(owner_id, existing.id, False, existing.type.value)
            return UpsertResult(record_id=existing.id, created=False)

        now = utc_now()
        record = MemoryRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            type=memory_type,
            content=content,
            summary=summarize(content),
            keywords=extract_keywords(content),
            embedding=tuple(vector.values),
            importance=float(importance),
            confidence=float(confidence),
            source=source,
            context=MemoryContext(
                session_id=session_id or "default",
                timestamp=now,
                message_id=message_id,
                topic=topic,
                related_ids=self._related(nearest),
            ),
            created_at=now,
            last_accessed_at=now,
            embedding_model=vector.model,
            degraded=vector.degraded,
            needs_reembedding=vector.degraded,
        )
        await self.store.put(record)
        logger.debug("Created memory record %s (%s) for %s", record.id, memory_type.value, owner_id)
        self._record(owner_id, record.id, True, memory_type.value)
        return UpsertResult(record_id=record.id, created=True)

    def _related(self, nearest: Optional[Tuple[MemoryRecord, float]]) -> Tuple[str, ...]:
        if nearest is None or nearest[1] <= self.ranking.config.admission_floor:
            return ()
        return (nearest[0].id,)

    def _record(self, owner_id: str, record_id: str, created: bool, memory_type: str) -> None:
        if self.observability is not None:
            self.observability.record_upsert(
                owner_id=owner_id,
                record_id=record_id,
                created=created,
                memory_type=memory_type,
            )


__all__ = ["UpsertController", "UpsertResult"]
