"""High-level memory service wiring embeddings, store, ranking and context."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .config import RuntimeConfig, load_runtime_config
from .context import ContextAssembler, estimate_tokens
from .conversation import ConversationLog, ConversationMessage, SessionInfo, get_conversation_log
from .embeddings import Embeddings, get_embeddings
from .errors import ProviderUnavailable, RetrievalSuperseded
from .memory import (
    AccessTracker,
    DecayJob,
    DecayReport,
    DocumentStore,
    GuardedDocumentStore,
    MemoryRecord,
    MemorySource,
    MemoryType,
    RankingEngine,
    SearchResult,
    UpsertController,
    UpsertResult,
    extract_facts,
    get_document_store,
)
from .memory.keywords import extract_keywords, tokenize
from .memory.schema import ScoreBreakdown
from .memory.store import guarded
from .observability import Observability

logger = logging.getLogger(__name__)

KEYWORD_FALLBACK_TERMS = 3
KEYWORD_FALLBACK_PER_TERM = 5
KEYWORD_FALLBACK_RESULTS = 5
LIST_LIMIT = 1_000_000


@dataclass(frozen=True)
class RetrievedContext:
    text: str
    results: List[SearchResult] = field(default_factory=list)
    messages: List[ConversationMessage] = field(default_factory=list)
    keyword_fallback: bool = False
    degraded: bool = False


class MemoryService:
    """Surface area for the surrounding application."""

    def __init__(
        self,
        *,
        store: DocumentStore,
        embeddings: Embeddings,
        conversation_log: ConversationLog,
        config: Optional[RuntimeConfig] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        self.config = config or load_runtime_config()
        self.observability = observability
        self.store = GuardedDocumentStore(store, timeout=self.config.store.timeout)
        self.embeddings = embeddings
        self.conversation_log = conversation_log
        self.access = AccessTracker(self.store)
        self.ranking = RankingEngine(
            self.store,
            self.config.scoring,
            access=self.access,
            observability=observability,
            candidate_pool_size=self.config.store.candidate_pool_size,
        )
        self.upserts = UpsertController(
            self.store,
            embeddings,
            self.ranking,
            self.config.dedup,
            access=self.access,
            observability=observability,
        )
        self.decay = DecayJob(self.store, self.config.decay, observability=observability)
        self.assembler = ContextAssembler(self.config.context)
        self._inflight: Dict[Tuple[str, str], asyncio.Task] = {}

    # ------------------------------------------------------------------
    async def upsert(
        self,
        owner_id: str,
        content: str,
        memory_type: MemoryType | str,
        source: MemorySource | str = MemorySource.EXPLICIT,
        importance: float = 0.5,
        **kwargs,
    ) -> UpsertResult:
        return await self.upserts.upsert(owner_id, content, memory_type, source, importance, **kwargs)

    async def extract_and_store(
        self,
        owner_id: str,
        content: str,
        session_id: Optional[str] = None,
        source: MemorySource | str = MemorySource.CONVERSATION,
    ) -> List[UpsertResult]:
        results: List[UpsertResult] = []
        for fact in extract_facts(content):
            results.append(
                await self.upserts.upsert(
                    owner_id,
                    fact.content,
                    fact.type,
                    source,
                    fact.importance,
                    session_id=session_id,
                )
            )
        logger.debug("Extracted %d facts for %s", len(results), owner_id)
        return results

    async def search(self, owner_id: str, query: str, *, limit: Optional[int] = None) -> List[SearchResult]:
        vector = await self.embeddings.embed(query)
        results = await self.ranking.rank(owner_id, query, vector)
        return results[:limit] if limit is not None else results

    async def retrieve_context(
        self,
        owner_id: str,
        query: str,
        session_id: Optional[str] = None,
        *,
        token_budget: Optional[int] = None,
    ) -> RetrievedContext:
        """Rank memories for ``query`` and assemble the context blob.

        A newer call for the same owner and session cancels this one; the
        superseded caller gets ``RetrievalSuperseded`` instead of a stale
        result.
        """
        key = (owner_id, session_id or "")
        previous = self._inflight.get(key)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(self._retrieve(owner_id, query, session_id, token_budget))
        self._inflight[key] = task
        try:
            result = await task
        except asyncio.CancelledError:
            if self._inflight.get(key) is not task:
                raise RetrievalSuperseded(f"retrieval for {owner_id} superseded") from None
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]
        if self._inflight.get(key, task) is not task:
            raise RetrievalSuperseded(f"retrieval for {owner_id} superseded")
        return result

    async def _retrieve(
        self,
        owner_id: str,
        query: str,
        session_id: Optional[str],
        token_budget: Optional[int],
    ) -> RetrievedContext:
        keyword_fallback = False
        try:
            vector = await self.embeddings.embed(query)
        except ProviderUnavailable as exc:
            if not self.config.store.keyword_fallback:
                raise
            logger.warning("Embedding unavailable, using keyword fallback for %s: %s", owner_id, exc)
            results = await self._keyword_results(owner_id, query)
            keyword_fallback = True
            degraded = True
        else:
            results = await self.ranking.rank(owner_id, query, vector)
            degraded = vector.degraded
        messages: List[ConversationMessage] = []
        if session_id:
            messages = await guarded(
                "conversation query",
                self.conversation_log.query(
                    session_id, self.config.conversation.recent_limit, most_recent_first=False
                ),
                self.config.store.timeout,
            )
        text = self.assembler.assemble(results, messages, token_budget)
        return RetrievedContext(
            text=text,
            results=results,
            messages=messages,
            keyword_fallback=keyword_fallback,
            degraded=degraded,
        )

    async def _keyword_results(self, owner_id: str, query: str) -> List[SearchResult]:
        keywords = extract_keywords(query)
        terms: List[str] = []
        for token in tokenize(query):
            if token in keywords and token not in terms:
                terms.append(token)
        terms = terms[:KEYWORD_FALLBACK_TERMS]
        found: Dict[str, MemoryRecord] = {}
        for term in terms:
            for record in await self.store.query_keyword(owner_id, term, limit=KEYWORD_FALLBACK_PER_TERM):
                found.setdefault(record.id, record)
        ordered = sorted(found.values(), key=lambda r: (-r.importance, -r.created_at.timestamp(), r.id))
        return [
            SearchResult(
                record=record,
                relevance_score=record.importance,
                semantic_similarity=0.0,
                components=ScoreBreakdown(importance=record.importance),
                keyword_match=True,
                degraded=True,
            )
            for record in ordered[:KEYWORD_FALLBACK_RESULTS]
        ]

    # ------------------------------------------------------------------
    async def start_session(self, owner_id: str) -> str:
        session_id = uuid.uuid4().hex
        await guarded(
            "open session",
            self.conversation_log.open_session(session_id, owner_id),
            self.config.store.timeout,
        )
        return session_id

    async def record_message(self, session_id: str, role: str, content: str) -> ConversationMessage:
        return await guarded(
            "append message",
            self.conversation_log.append(
                session_id,
                role,
                content,
                token_estimate=estimate_tokens(content, self.config.context.chars_per_token),
            ),
            self.config.store.timeout,
        )

    async def sessions(self, owner_id: Optional[str] = None) -> List[SessionInfo]:
        return await guarded("list sessions", self.conversation_log.sessions(owner_id), self.config.store.timeout)

    # ------------------------------------------------------------------
    async def list_records(self, owner_id: str, *, include_inactive: bool = True) -> List[MemoryRecord]:
        return await self.store.query(owner_id, is_active=None if include_inactive else True, limit=LIST_LIMIT)

    async def delete(self, record_id: str) -> bool:
        return await self.store.delete(record_id)

    async def clear(self, owner_id: str) -> int:
        records = await self.store.query(owner_id, is_active=None, limit=LIST_LIMIT)
        deleted = 0
        for record in records:
            if await self.store.delete(record.id):
                deleted += 1
        logger.info("Cleared %d memory records for %s", deleted, owner_id)
        return deleted

    async def deactivate(self, record_id: str) -> bool:
        record = await self.store.get(record_id)
        if record is None or not record.is_active:
            return False
        await self.store.put(replace(record, is_active=False))
        return True

    async def run_decay(self, owner_id: str) -> DecayReport:
        return await self.decay.run(owner_id)

    async def reembed(self, owner_id: str) -> int:
        """Re-embed flagged or degraded records with the current provider."""
        records = await self.store.query(owner_id, is_active=None, limit=LIST_LIMIT)
        flagged = [r for r in records if r.needs_reembedding or r.degraded]
        if not flagged:
            return 0
        vectors = await self.embeddings.embed_many([r.content for r in flagged])
        count = 0
        for record, vector in zip(flagged, vectors):
            if vector.degraded:
                continue
            await self.store.put(
                replace(
                    record,
                    embedding=tuple(vector.values),
                    embedding_model=vector.model,
                    degraded=False,
                    needs_reembedding=False,
                )
            )
            count += 1
        logger.info("Re-embedded %d of %d flagged records for %s", count, len(flagged), owner_id)
        return count

    async def stats(self, owner_id: str) -> Dict[str, int]:
        return await self.store.stats(owner_id)

    async def drain(self) -> None:
        await self.access.drain()


def get_memory_service(
    config: Optional[RuntimeConfig] = None,
    *,
    observability: Optional[Observability] = None,
    embeddings: Optional[Embeddings] = None,
    store: Optional[DocumentStore] = None,
    conversation_log: Optional[ConversationLog] = None,
) -> MemoryService:
    config = config or load_runtime_config()
    return MemoryService(
        store=store or get_document_store(config, observability=observability),
        embeddings=embeddings or get_embeddings(config, observability=observability),
        conversation_log=conversation_log or get_conversation_log(config),
        config=config,
        observability=observability,
    )


__all__ = ["MemoryService", "RetrievedContext", "get_memory_service"]
