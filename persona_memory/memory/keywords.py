"""Keyword extraction, summaries and keyword matching heuristics."""
from __future__ import annotations

import re
from typing import FrozenSet, Iterable, List, Mapping, Sequence, Set

MAX_KEYWORDS = 15
SUMMARY_FULL_LENGTH = 100
SUMMARY_SENTENCE_LENGTH = 80

_WORD_SPLIT_RE = re.compile(r"[\W_]+", re.UNICODE)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")

COMMON_WORDS: FrozenSet[str] = frozenset(
    """
    the and for are but not you all can had her was one our out day get has him his how its may new
    now old see two who boy did man men she use way what will with this that they have from been said
    each make more time very when come here just like long many over such take than them well were also
    back call came could find first good great help know last left life look made most move much name
    need next only open part play seem show small some tell turn want ways went work year your
    """.split()
)


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens, punctuation stripped."""
    return [token for token in _WORD_SPLIT_RE.split((text or "").lower()) if token]


def _is_entity(word: str) -> bool:
    if not word:
        return False
    return word[0].isupper() or "@" in word or "/" in word or word.isdigit()


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> FrozenSet[str]:
    """Content words plus entity-looking tokens (capitalized words, dates, emails, numbers)."""
    ordered: List[str] = []
    seen: Set[str] = set()

    def _add(word: str) -> None:
        if word and word not in seen:
            seen.add(word)
            ordered.append(word)

    for word in tokenize(text):
        if len(word) > 2 and word not in COMMON_WORDS:
            _add(word)
    for raw in (text or "").split():
        word = raw.strip(".,;:!?\"'()[]{}")
        if _is_entity(word):
            for part in tokenize(word):
                if len(part) > 2 and part not in COMMON_WORDS:
                    _add(part)
            if "@" in word or "/" in word:
                _add(word.lower())
    return frozenset(ordered[:limit])


def summarize(content: str) -> str:
    """Short summary: the content itself when short, else its first sentence."""
    content = (content or "").strip()
    if len(content) <= SUMMARY_FULL_LENGTH:
        return content
    first = _SENTENCE_SPLIT_RE.split(content, maxsplit=1)[0].strip()
    if len(first) > SUMMARY_SENTENCE_LENGTH:
        return first[: SUMMARY_SENTENCE_LENGTH - 3] + "..."
    return first or content[: SUMMARY_SENTENCE_LENGTH - 3] + "..."


def exact_keyword_match(query_tokens: Iterable[str], keywords: Iterable[str]) -> bool:
    lowered = {k.lower() for k in keywords}
    return any(token in lowered for token in query_tokens)


def _levenshtein_distance(s1: str, s2: str) -> int:
    if not s1 or not s2:
        return max(len(s1), len(s2))
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def edit_similarity(a: str, b: str) -> float:
    """``1 - levenshtein(a, b) / max(len(a), len(b))``, in ``[0, 1]``."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1 - _levenshtein_distance(a, b) / max_len


def fuzzy_keyword_match(
    query_tokens: Sequence[str],
    keywords: Iterable[str],
    threshold: float,
) -> float:
    """Best normalized edit-distance similarity between a query token and a non-identical keyword.

    Returns 0.0 unless the best similarity reaches ``threshold``.
    """
    best = 0.0
    candidates = [token for token in query_tokens if len(token) > 2]
    for keyword in keywords:
        keyword = keyword.lower()
        for token in candidates:
            if token == keyword:
                continue
            similarity = edit_similarity(token, keyword)
            if similarity > best:
                best = similarity
    return best if best >= threshold else 0.0


def type_relevance(
    memory_type: str,
    query_tokens: Iterable[str],
    table: Mapping[str, Sequence[str]],
) -> float:
    """1.0 when any query token belongs to the vocabulary of ``memory_type``."""
    vocabulary = table.get(memory_type, ())
    if not vocabulary:
        return 0.0
    lookup = set(vocabulary)
    return 1.0 if any(token in lookup for token in query_tokens) else 0.0


__all__ = [
    "COMMON_WORDS",
    "edit_similarity",
    "exact_keyword_match",
    "extract_keywords",
    "fuzzy_keyword_match",
    "summarize",
    "tokenize",
    "type_relevance",
]
