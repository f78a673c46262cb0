"""Heuristic fact extraction used when no analysis model is available."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from .schema import MemoryType

MAX_FACTS = 3
MIN_SENTENCE_LENGTH = 20

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

_KIND_TO_TYPE = {
    MemoryType.PERSONAL: ("personal", "name", "age", "birthday", "location"),
    MemoryType.PREFERENCE: ("preference", "like", "dislike", "favorite"),
    MemoryType.PROFESSIONAL: ("professional", "work", "job", "career"),
    MemoryType.GOAL: ("goal", "project", "plan", "deadline"),
    MemoryType.RELATIONSHIP: ("relationship", "friend", "family", "colleague"),
    MemoryType.EVENT: ("event", "meeting", "appointment"),
    MemoryType.INSTRUCTION: ("instruction", "remember", "always", "never"),
}
_KIND_LOOKUP = {kind: memory_type for memory_type, kinds in _KIND_TO_TYPE.items() for kind in kinds}

# (markers, type, importance); the first matching rule wins per sentence
_RULES = (
    (("my name is", "i'm ", "i am "), MemoryType.PERSONAL, 0.8),
    (("i like", "i prefer", "i love", "i hate"), MemoryType.PREFERENCE, 0.7),
    (("project", "goal", "working on"), MemoryType.GOAL, 0.6),
)


@dataclass(frozen=True)
class ExtractedFact:
    content: str
    type: MemoryType
    importance: float


def map_kind_to_type(kind: str) -> MemoryType:
    """Map a free-form fact kind onto a ``MemoryType``; unknown kinds are knowledge."""
    return _KIND_LOOKUP.get((kind or "").strip().lower(), MemoryType.KNOWLEDGE)


def extract_facts(content: str, limit: int = MAX_FACTS) -> List[ExtractedFact]:
    facts: List[ExtractedFact] = []
    sentences = (s.strip() for s in _SENTENCE_SPLIT_RE.split(content or ""))
    for sentence in sentences:
        if len(sentence) <= MIN_SENTENCE_LENGTH:
            continue
        lowered = sentence.lower() + " "
        for markers, memory_type, importance in _RULES:
            if any(marker in lowered for marker in markers):
                facts.append(ExtractedFact(sentence, memory_type, importance))
                break
        if len(facts) >= limit:
            break
    return facts


__all__ = ["ExtractedFact", "extract_facts", "map_kind_to_type"]
