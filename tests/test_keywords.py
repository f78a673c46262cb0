from __future__ import annotations

import pytest

from persona_memory.config import DEFAULT_TYPE_KEYWORDS
from persona_memory.memory.extraction import extract_facts, map_kind_to_type
from persona_memory.memory.keywords import (
    exact_keyword_match,
    extract_keywords,
    edit_similarity,
    fuzzy_keyword_match,
    summarize,
    tokenize,
    type_relevance,
)
from persona_memory.memory.schema import MemoryType


def test_tokenize_lowercases_and_strips_punctuation():
    assert tokenize("What COLOR, do I like?") == ["what", "color", "do", "i", "like"]


def test_extract_keywords_drops_short_and_common_words():
    keywords = extract_keywords("User's favorite color is blue")
    assert {"favorite", "color", "blue", "user"} <= keywords
    assert "is" not in keywords


def test_extract_keywords_keeps_entities():
    keywords = extract_keywords("Meeting Alice at 2024 with bob@example.com")
    assert "alice" in keywords
    assert "2024" in keywords
    assert "bob@example.com" in keywords


def test_extract_keywords_is_capped():
    text = " ".join(f"word{i:02d}" for i in range(40))
    assert len(extract_keywords(text)) == 15


def test_summarize_keeps_short_content():
    assert summarize("  Short fact.  ") == "Short fact."


def test_summarize_uses_first_sentence():
    content = "User adopted a rescue greyhound named Biscuit. " + "It loves long walks on the beach. " * 5
    assert summarize(content) == "User adopted a rescue greyhound named Biscuit"


def test_summarize_truncates_long_first_sentence():
    content = "x" * 150
    summary = summarize(content)
    assert summary.endswith("...")
    assert len(summary) == 80


def test_exact_keyword_match_is_case_insensitive():
    assert exact_keyword_match(["color"], {"Color", "blue"})
    assert not exact_keyword_match(["colour"], {"color"})


def test_fuzzy_keyword_match_is_threshold_gated():
    assert fuzzy_keyword_match(["colour"], {"color"}, 0.8) == pytest.approx(5 / 6)
    assert fuzzy_keyword_match(["dog"], {"color"}, 0.8) == 0.0
    # identical tokens belong to the exact match component
    assert fuzzy_keyword_match(["color"], {"color"}, 0.8) == 0.0


def test_edit_similarity_is_normalized_levenshtein():
    assert edit_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
    assert edit_similarity("", "") == 1.0
    assert edit_similarity("abc", "") == 0.0
    # two substitutions over seven characters stays under the default threshold
    assert fuzzy_keyword_match(["recieve"], {"receive"}, 0.8) == 0.0
    assert fuzzy_keyword_match(["recieve"], {"receive"}, 0.7) == pytest.approx(5 / 7)


def test_type_relevance_uses_vocabulary_table():
    tokens = tokenize("what color do I like")
    assert type_relevance("preference", tokens, DEFAULT_TYPE_KEYWORDS) == 1.0
    assert type_relevance("event", tokens, DEFAULT_TYPE_KEYWORDS) == 0.0
    assert type_relevance("preference", tokens, {"preference": ()}) == 0.0


def test_extract_facts_classifies_sentences():
    content = (
        "My name is Dana and I live in Lisbon. "
        "I prefer green tea over coffee in the morning. "
        "We are working on a robotics project this year. "
        "Short one."
    )
    facts = extract_facts(content)
    assert [f.type for f in facts] == [MemoryType.PERSONAL, MemoryType.PREFERENCE, MemoryType.GOAL]
    assert [f.importance for f in facts] == [0.8, 0.7, 0.6]
    assert facts[0].content == "My name is Dana and I live in Lisbon"


def test_extract_facts_limits_results_and_skips_short_sentences():
    content = ". ".join(f"I like sailing boat number {i} quite a lot" for i in range(6))
    assert len(extract_facts(content)) == 3
    assert extract_facts("I like it. I am here.") == []


@pytest.mark.parametrize(
    "kind, expected",
    [
        ("work", MemoryType.PROFESSIONAL),
        ("Friend", MemoryType.RELATIONSHIP),
        ("meeting", MemoryType.EVENT),
        ("favorite", MemoryType.PREFERENCE),
        ("birthday", MemoryType.PERSONAL),
        ("deadline", MemoryType.GOAL),
        ("always", MemoryType.INSTRUCTION),
        ("astronomy", MemoryType.KNOWLEDGE),
        ("", MemoryType.KNOWLEDGE),
    ],
)
def test_map_kind_to_type(kind, expected):
    assert map_kind_to_type(kind) == expected
