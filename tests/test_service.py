"""End-to-end behaviour of the memory service facade."""
from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from persona_memory import MemoryService, ProviderUnavailable, RetrievalSuperseded
from persona_memory.config import StoreConfig
from persona_memory.context.assembler import CONVERSATION_HEADER, MEMORY_HEADER, PROFILE_HEADER
from persona_memory.conversation import InMemoryConversationLog
from persona_memory.memory.schema import MemorySource, MemoryType

from conftest import build_embeddings, build_record


@pytest.mark.asyncio
async def test_retrieve_context_combines_memories_and_conversation(service):
    session_id = await service.start_session("owner-1")
    await service.upsert("owner-1", "User's favorite color is blue", MemoryType.PREFERENCE, importance=0.7)
    await service.upsert("owner-1", "User is training for a marathon in October", MemoryType.GOAL, importance=0.6)
    await service.record_message(session_id, "user", "Any ideas for my marathon training?")
    await service.record_message(session_id, "assistant", "Sure, let's plan long runs.")

    context = await service.retrieve_context("owner-1", "marathon training plan", session_id)
    await service.drain()

    assert not context.keyword_fallback
    assert MEMORY_HEADER in context.text
    assert "User is training for a marathon in October" in context.text
    assert CONVERSATION_HEADER in context.text
    assert context.text.endswith("assistant: Sure, let's plan long runs.")
    assert [m.role for m in context.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_retrieval_updates_access_counts(service):
    result = await service.upsert("owner-1", "Keeps bees in the garden", MemoryType.PERSONAL, importance=0.5)
    await service.search("owner-1", "bees garden")
    await service.drain()
    record = await service.store.get(result.record_id)
    assert record.access_count == 1


@pytest.mark.asyncio
async def test_keyword_fallback_when_provider_unavailable(service, provider):
    await service.upsert("owner-1", "Plays the cello in a quartet", MemoryType.PERSONAL, importance=0.4)
    await service.upsert("owner-1", "Teaches cello lessons on weekends", MemoryType.PROFESSIONAL, importance=0.9)
    await service.upsert("owner-1", "Grows tomatoes", MemoryType.PERSONAL, importance=0.8)
    provider.fail = True

    context = await service.retrieve_context("owner-1", "cello practice")

    assert context.keyword_fallback and context.degraded
    assert [r.record.content for r in context.results] == [
        "Teaches cello lessons on weekends",
        "Plays the cello in a quartet",
    ]
    assert PROFILE_HEADER in context.text
    assert "Grows tomatoes" not in context.text


@pytest.mark.asyncio
async def test_provider_failure_propagates_without_keyword_fallback(service, provider):
    service.config.store.keyword_fallback = False
    provider.fail = True
    with pytest.raises(ProviderUnavailable):
        await service.retrieve_context("owner-1", "anything")


@pytest.mark.asyncio
async def test_newer_retrieval_supersedes_in_flight_one(service):
    await service.upsert("owner-1", "Collects vinyl records", MemoryType.PERSONAL, importance=0.5)
    first = asyncio.create_task(service.retrieve_context("owner-1", "slow query", "s-1"))
    await asyncio.sleep(0)
    second = await service.retrieve_context("owner-1", "vinyl records", "s-1")

    with pytest.raises(RetrievalSuperseded):
        await first
    assert "Collects vinyl records" in second.text


@pytest.mark.asyncio
async def test_retrievals_for_different_sessions_run_independently(service):
    await service.upsert("owner-1", "Collects vinyl records", MemoryType.PERSONAL, importance=0.5)
    first, second = await asyncio.gather(
        service.retrieve_context("owner-1", "vinyl", "s-1"),
        service.retrieve_context("owner-1", "vinyl", "s-2"),
    )
    assert first.results and second.results


@pytest.mark.asyncio
async def test_extract_and_store_upserts_heuristic_facts(service):
    results = await service.extract_and_store(
        "owner-1",
        "My name is Dana and I live in Lisbon. I love hiking in the mountains on weekends. ok.",
        session_id="s-1",
    )
    assert len(results) == 2 and all(r.created for r in results)
    records = await service.list_records("owner-1")
    assert {r.type for r in records} == {MemoryType.PERSONAL, MemoryType.PREFERENCE}
    assert all(r.source == MemorySource.CONVERSATION for r in records)

    again = await service.extract_and_store("owner-1", "My name is Dana and I live in Lisbon.")
    assert not again[0].created


@pytest.mark.asyncio
async def test_record_management(service):
    a = await service.upsert("owner-1", "Drives an electric car", MemoryType.PERSONAL)
    b = await service.upsert("owner-1", "Prefers aisle seats", MemoryType.PREFERENCE)
    await service.upsert("owner-2", "Prefers aisle seats", MemoryType.PREFERENCE)

    assert await service.deactivate(a.record_id) is True
    assert await service.deactivate(a.record_id) is False
    assert [r.id for r in await service.list_records("owner-1", include_inactive=False)] == [b.record_id]
    assert len(await service.list_records("owner-1")) == 2
    assert await service.stats("owner-1") == {"total": 2, "active": 1, "inactive": 1, "flagged": 0}

    assert await service.delete(b.record_id) is True
    assert await service.clear("owner-1") == 1
    assert await service.list_records("owner-1") == []
    assert len(await service.list_records("owner-2")) == 1


@pytest.mark.asyncio
async def test_reembed_refreshes_flagged_records(service, store):
    stale = build_record(record_id="legacy", content="Speaks Portuguese", embedding=[1.0, 0.0, 0.0])
    await store.put(replace(stale, needs_reembedding=True))
    await store.put(build_record(record_id="fine", content="Speaks Spanish"))

    assert await service.reembed("owner-1") == 1
    refreshed = await store.get("legacy")
    assert refreshed.dimension == 64
    assert not refreshed.needs_reembedding
    assert refreshed.embedding_model == "fixture-64"
    assert await service.reembed("owner-1") == 0


@pytest.mark.asyncio
async def test_run_decay_delegates_to_job(service, store):
    from datetime import timedelta

    await store.put(build_record(record_id="old", age=timedelta(days=3000), importance=0.1))
    report = await service.run_decay("owner-1")
    assert report.deactivated == 1


@pytest.mark.asyncio
async def test_record_message_estimates_tokens(service):
    session_id = await service.start_session("owner-1")
    message = await service.record_message(session_id, "user", "x" * 10)
    assert message.token_estimate == 3
    sessions = await service.sessions("owner-1")
    assert sessions[0].message_count == 1


@pytest.mark.asyncio
async def test_degraded_fallback_marks_new_records(runtime_config, store, provider):
    from persona_memory.config import EmbeddingsConfig
    from persona_memory.embeddings.providers.hash import HashEmbeddingsProvider

    embeddings = build_embeddings(
        provider, fallback=HashEmbeddingsProvider(EmbeddingsConfig(provider="hash", dimension=64))
    )
    service = MemoryService(
        store=store,
        embeddings=embeddings,
        conversation_log=InMemoryConversationLog(),
        config=runtime_config,
    )
    provider.fail = True
    result = await service.upsert("owner-1", "Enjoys bouldering", MemoryType.PREFERENCE)
    record = await store.get(result.record_id)
    assert record.degraded and record.needs_reembedding
    assert (await service.stats("owner-1"))["flagged"] == 1

    provider.fail = False
    assert await service.reembed("owner-1") == 1
    assert not (await store.get(result.record_id)).degraded


@pytest.mark.asyncio
async def test_store_outage_surfaces_as_store_unavailable(runtime_config, embeddings):
    from persona_memory import StoreUnavailable
    from persona_memory.memory import InMemoryDocumentStore

    class OfflineStore(InMemoryDocumentStore):
        async def query(self, owner_id, *, is_active=True, limit=100):
            raise ConnectionError("store offline")

    runtime_config.store = StoreConfig(backend="memory", timeout=0.5)
    service = MemoryService(
        store=OfflineStore(),
        embeddings=embeddings,
        conversation_log=InMemoryConversationLog(),
        config=runtime_config,
    )
    with pytest.raises(StoreUnavailable):
        await service.search("owner-1", "anything")
