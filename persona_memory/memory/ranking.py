"""Relevance ranking over an owner's stored memory records."""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from ..config import ScoringConfig
from ..embeddings import EmbeddingVector
from ..embeddings.vectors import cosine_similarity
from ..errors import DimensionMismatch
from ..observability import Observability
from .access import AccessTracker
from .keywords import exact_keyword_match, fuzzy_keyword_match, tokenize, type_relevance
from .schema import MemoryRecord, ScoreBreakdown, SearchResult, age_days, utc_now
from .store import DocumentStore

logger = logging.getLogger(__name__)


def semantic_similarity(
    record: MemoryRecord,
    query_vector: EmbeddingVector,
    query_text: str = "",
) -> Tuple[float, Optional[DimensionMismatch]]:
    """Cosine similarity between ``record`` and the query.

    Degraded vectors carry no meaning, so a degraded query or record only
    matches on identical content. A record whose dimension differs from the
    query scores 0.0 and the mismatch is returned alongside.
    """
    if query_vector.degraded or record.degraded:
        if query_text and record.content.strip().lower() == query_text.strip().lower():
            return 1.0, None
        return 0.0, None
    if record.dimension != query_vector.dimension:
        return 0.0, DimensionMismatch(record.id, query_vector.dimension, record.dimension)
    return cosine_similarity(query_vector.values, record.embedding), None


def _sort_key(result: SearchResult):
    return (-result.relevance_score, -result.record.created_at.timestamp(), result.record.id)


def score_record(
    record: MemoryRecord,
    semantic: float,
    query_tokens: Sequence[str],
    config: ScoringConfig,
    now: datetime,
    *,
    degraded: bool = False,
) -> Optional[SearchResult]:
    """Score one record, or ``None`` when it does not pass admission."""
    keyword_hit = exact_keyword_match(query_tokens, record.keywords)
    if not (semantic > config.admission_floor or keyword_hit):
        return None
    age = age_days(record.created_at, now)
    half_life = config.half_life_days if config.half_life_days > 0 else 1.0
    fuzzy = fuzzy_keyword_match(query_tokens, record.keywords, config.fuzzy_threshold)
    components = ScoreBreakdown(
        semantic=semantic,
        importance=config.importance_weight * record.importance,
        recency=config.recency_weight * math.exp(-age / half_life),
        access=config.access_weight * min(config.access_cap, record.access_count * config.access_unit),
        decay=config.decay_weight * record.importance * record.decay_factor,
        exact_keyword=config.exact_keyword_weight if keyword_hit else 0.0,
        fuzzy_keyword=config.fuzzy_keyword_weight * fuzzy,
        type_relevance=config.type_relevance_weight
        * type_relevance(record.type.value, query_tokens, config.type_keywords),
    )
    total = components.total
    if not math.isfinite(total):
        return None
    return SearchResult(
        record=record,
        relevance_score=total,
        semantic_similarity=semantic,
        components=components,
        keyword_match=keyword_hit,
        degraded=degraded,
    )


def score_candidates(
    records: Iterable[MemoryRecord],
    query_text: str,
    query_vector: EmbeddingVector,
    config: ScoringConfig,
    now: Optional[datetime] = None,
) -> Tuple[List[SearchResult], List[DimensionMismatch]]:
    """Pure ranking: admitted results in order plus any dimension mismatches."""
    now = now or utc_now()
    tokens = tokenize(query_text)
    results: List[SearchResult] = []
    mismatches: List[DimensionMismatch] = []
    for record in records:
        semantic, mismatch = semantic_similarity(record, query_vector, query_text)
        if mismatch is not None:
            mismatches.append(mismatch)
        result = score_record(
            record,
            semantic,
            tokens,
            config,
            now,
            degraded=query_vector.degraded or record.degraded,
        )
        if result is not None:
            results.append(result)
    results.sort(key=_sort_key)
    return results[: max(config.max_retrieved, 0)], mismatches


class RankingEngine:
    """Fetches an owner's active candidates and ranks them client-side."""

    def __init__(
        self,
        store: DocumentStore,
        config: ScoringConfig,
        *,
        access: Optional[AccessTracker] = None,
        observability: Optional[Observability] = None,
        candidate_pool_size: int = 100,
    ) -> None:
        self.store = store
        self.config = config
        self.access = access or AccessTracker(store)
        self.observability = observability
        self.candidate_pool_size = candidate_pool_size

    async def rank(
        self,
        owner_id: str,
        query_text: str,
        query_embedding: EmbeddingVector,
        candidate_pool_size: Optional[int] = None,
    ) -> List[SearchResult]:
        records = await self.store.query(
            owner_id,
            is_active=True,
            limit=candidate_pool_size or self.candidate_pool_size,
        )
        results, mismatches = score_candidates(records, query_text, query_embedding, self.config)
        self._report_mismatches(mismatches)
        if results:
            self.access.schedule_touch(result.record.id for result in results)
        if self.observability is not None:
            if results:
                self.observability.record_memory_hit(owner_id=owner_id, count=len(results))
            else:
                self.observability.record_memory_miss(owner_id=owner_id)
        logger.debug("Ranked %d of %d candidates for %s", len(results), len(records), owner_id)
        return results

    async def nearest(
        self,
        owner_id: str,
        query_text: str,
        query_embedding: EmbeddingVector,
    ) -> Optional[Tuple[MemoryRecord, float]]:
        """The active record most similar to the query, with its similarity."""
        records = await self.store.query(owner_id, is_active=True, limit=self.candidate_pool_size)
        best: Optional[Tuple[MemoryRecord, float]] = None
        mismatches: List[DimensionMismatch] = []
        for record in records:
            semantic, mismatch = semantic_similarity(record, query_embedding, query_text)
            if mismatch is not None:
                mismatches.append(mismatch)
                continue
            if best is None or semantic > best[1]:
                best = (record, semantic)
        self._report_mismatches(mismatches)
        return best

    def _report_mismatches(self, mismatches: Sequence[DimensionMismatch]) -> None:
        if not mismatches:
            return
        for mismatch in mismatches:
            logger.warning("%s; similarity treated as 0, flagged for re-embedding", mismatch)
            if self.observability is not None:
                self.observability.record_dimension_mismatch(
                    record_id=mismatch.record_id,
                    expected=mismatch.expected,
                    actual=mismatch.actual,
                )
        self.access.schedule_flag(m.record_id for m in mismatches)


__all__ = ["RankingEngine", "score_candidates", "score_record", "semantic_similarity"]
