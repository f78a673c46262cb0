"""Token-budgeted context assembly."""
from __future__ import annotations

from datetime import timedelta

from hypothesis import given, settings, strategies as st

from persona_memory.context import ContextAssembler, assemble_context, estimate_tokens
from persona_memory.context.assembler import CONVERSATION_HEADER, MEMORY_HEADER, PROFILE_HEADER
from persona_memory.conversation import ConversationMessage
from persona_memory.memory.schema import MemoryType, ScoreBreakdown, SearchResult

from conftest import NOW, build_record


def _result(record_id: str, content: str, memory_type: MemoryType, importance: float, score: float) -> SearchResult:
    record = build_record(record_id=record_id, content=content, memory_type=memory_type, importance=importance)
    return SearchResult(record=record, relevance_score=score, semantic_similarity=score, components=ScoreBreakdown())


def _message(index: int, content: str, role: str = "user") -> ConversationMessage:
    return ConversationMessage(
        session_id="s-1",
        role=role,
        content=content,
        timestamp=NOW + timedelta(seconds=index),
    )


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("abcdef", chars_per_token=3) == 2


def test_segments_are_labeled_and_ordered():
    results = [
        _result("p1", "Name is Dana", MemoryType.PERSONAL, 0.9, 0.8),
        _result("m1", "Working on a compiler", MemoryType.GOAL, 0.6, 0.9),
    ]
    messages = [_message(0, "hello"), _message(1, "hi there", role="assistant")]

    text = assemble_context(results, messages, 2000)

    assert text.index(PROFILE_HEADER) < text.index(MEMORY_HEADER) < text.index(CONVERSATION_HEADER)
    assert "- Name is Dana" in text
    assert "- Working on a compiler (relevance: 0.90)" in text
    assert text.endswith("user: hello\nassistant: hi there")


def test_empty_segments_are_omitted():
    text = assemble_context([], [_message(0, "just chatting")], 2000)
    assert PROFILE_HEADER not in text
    assert MEMORY_HEADER not in text
    assert text == f"{CONVERSATION_HEADER}\nuser: just chatting"
    assert assemble_context([], [], 2000) == ""


def test_profile_orders_by_importance_and_memory_by_score():
    results = [
        _result("p-low", "Likes tea", MemoryType.PREFERENCE, 0.2, 0.99),
        _result("p-high", "Name is Dana", MemoryType.PERSONAL, 0.9, 0.40),
        _result("m-low", "Knows Rust", MemoryType.KNOWLEDGE, 0.9, 0.40),
        _result("m-high", "Meeting on Friday", MemoryType.EVENT, 0.1, 0.95),
    ]
    text = assemble_context(results, [], 2000)
    assert text.index("Name is Dana") < text.index("Likes tea")
    assert text.index("Meeting on Friday") < text.index("Knows Rust")


def test_conversation_drops_oldest_messages_first():
    messages = [_message(i, f"message number {i:02d} " + "x" * 20) for i in range(10)]
    # 40% of 75 tokens fits the header and the two newest messages
    text = assemble_context([], messages, 75)
    lines = text.splitlines()[1:]
    assert len(lines) == 2
    assert lines[-1].startswith("user: message number 09")
    kept = [int(line.split()[3]) for line in lines]
    assert kept == sorted(kept)
    assert kept == list(range(10 - len(kept), 10))


def test_entries_are_never_split():
    long_entry = _result("m1", "word " * 200, MemoryType.KNOWLEDGE, 0.5, 0.9)
    short_entry = _result("m2", "Short fact", MemoryType.KNOWLEDGE, 0.5, 0.5)
    text = assemble_context([long_entry, short_entry], [], 60)
    # the oversized top entry blocks the segment; nothing is truncated
    assert text == ""


def test_zero_budget_yields_empty_context():
    assert ContextAssembler().assemble([_result("p", "Name is Dana", MemoryType.PERSONAL, 0.9, 0.9)], [], 0) == ""


entry_text = st.text(alphabet=st.characters(min_codepoint=32, max_codepoint=126), min_size=1, max_size=120)


@settings(max_examples=60, deadline=None)
@given(
    st.lists(st.tuples(entry_text, st.sampled_from(list(MemoryType)), st.floats(0, 1)), max_size=12),
    st.lists(entry_text, max_size=12),
    st.integers(min_value=0, max_value=400),
)
def test_context_never_overshoots_budget_by_more_than_one_entry(entries, messages, budget):
    results = [
        _result(f"r{i}", content.strip() or "x", memory_type, importance, importance)
        for i, (content, memory_type, importance) in enumerate(entries)
    ]
    conversation = [_message(i, content) for i, content in enumerate(messages)]
    text = assemble_context(results, conversation, budget)

    longest = max(
        [estimate_tokens(f"- {r.record.summary} (relevance: 1.00)") for r in results]
        + [estimate_tokens(f"user: {m.content}") for m in conversation]
        + [0]
    )
    assert estimate_tokens(text) <= budget + longest
