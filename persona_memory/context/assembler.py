"""Token-budgeted context assembly."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from ..config import ContextConfig
from ..conversation.log import ConversationMessage
from ..memory.schema import PROFILE_TYPES, SearchResult

PROFILE_HEADER = "User Profile:"
MEMORY_HEADER = "Relevant Background:"
CONVERSATION_HEADER = "Recent Conversation:"


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Character-based token estimate, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / max(1, chars_per_token))


@dataclass
class _Segment:
    header: str
    budget: int
    chars_per_token: int
    lines: List[str] = field(default_factory=list)
    used: int = 0

    def cost(self, line: str) -> int:
        # each line is followed by a newline in the final text
        return estimate_tokens(line + "\n", self.chars_per_token)

    def fill(self, entries: Iterable[str]) -> None:
        self.used = self.cost(self.header)
        for entry in entries:
            cost = self.cost(entry)
            if self.used + cost > self.budget:
                break
            self.lines.append(entry)
            self.used += cost

    def render(self) -> Optional[str]:
        if not self.lines:
            return None
        return "\n".join([self.header, *self.lines])


def _profile_entry(result: SearchResult) -> str:
    return f"- {result.record.summary or result.record.content}"


def _memory_entry(result: SearchResult) -> str:
    return f"- {result.record.summary or result.record.content} (relevance: {result.relevance_score:.2f})"


def _conversation_entry(message: ConversationMessage) -> str:
    return f"{message.role}: {message.content}"


class ContextAssembler:
    """Splits the budget into profile, memory and conversation segments.

    Entries are never split; a segment stops at the first entry that would
    overflow its share and is omitted entirely when nothing fits.
    """

    def __init__(self, config: Optional[ContextConfig] = None) -> None:
        self.config = config or ContextConfig()

    def assemble(
        self,
        results: Sequence[SearchResult],
        recent_messages: Sequence[ConversationMessage],
        total_token_budget: Optional[int] = None,
    ) -> str:
        total = self.config.total_token_budget if total_token_budget is None else total_token_budget
        if total <= 0:
            return ""
        cpt = self.config.chars_per_token

        profile = [r for r in results if r.record.type in PROFILE_TYPES]
        profile.sort(key=lambda r: (-r.record.importance, -r.relevance_score, r.record.id))
        memory = [r for r in results if r.record.type not in PROFILE_TYPES]
        memory.sort(key=lambda r: (-r.relevance_score, r.record.id))

        profile_segment = _Segment(PROFILE_HEADER, int(total * self.config.profile_share), cpt)
        profile_segment.fill(_profile_entry(r) for r in profile)

        memory_segment = _Segment(MEMORY_HEADER, int(total * self.config.memory_share), cpt)
        memory_segment.fill(_memory_entry(r) for r in memory)

        # newest first so the oldest messages are the ones dropped
        conversation_segment = _Segment(CONVERSATION_HEADER, int(total * self.config.conversation_share), cpt)
        chronological = sorted(
            (m for m in recent_messages if m.content and m.content.strip()),
            key=lambda m: m.timestamp,
        )
        conversation_segment.fill(_conversation_entry(m) for m in reversed(chronological))
        conversation_segment.lines.reverse()

        rendered = [
            segment.render()
            for segment in (profile_segment, memory_segment, conversation_segment)
        ]
        return "\n\n".join(text for text in rendered if text)


def assemble_context(
    ranked_results: Sequence[SearchResult],
    recent_messages: Sequence[ConversationMessage],
    total_token_budget: int,
    *,
    config: Optional[ContextConfig] = None,
) -> str:
    return ContextAssembler(config).assemble(ranked_results, recent_messages, total_token_budget)


__all__ = [
    "CONVERSATION_HEADER",
    "ContextAssembler",
    "MEMORY_HEADER",
    "PROFILE_HEADER",
    "assemble_context",
    "estimate_tokens",
]
