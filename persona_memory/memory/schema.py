"""Typed schema for memory records and search results."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from ..errors import MalformedRecord

NORM_TOLERANCE = 1e-3


class MemoryType(str, Enum):
    PERSONAL = "personal"
    PREFERENCE = "preference"
    PROFESSIONAL = "professional"
    GOAL = "goal"
    INSTRUCTION = "instruction"
    KNOWLEDGE = "knowledge"
    RELATIONSHIP = "relationship"
    EVENT = "event"


class MemorySource(str, Enum):
    CONVERSATION = "conversation"
    ANALYZED_CONTENT = "analyzed-content"
    EXPLICIT = "explicit"
    INFERRED = "inferred"


PROFILE_TYPES: FrozenSet[MemoryType] = frozenset({MemoryType.PERSONAL, MemoryType.PREFERENCE})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def age_days(since: datetime, now: Optional[datetime] = None) -> float:
    """Days elapsed between ``since`` and ``now``, never negative."""
    now = now or utc_now()
    return max(0.0, (now - since).total_seconds() / 86400.0)


@dataclass(frozen=True)
class MemoryContext:
    session_id: str
    timestamp: datetime = field(default_factory=utc_now)
    message_id: Optional[str] = None
    topic: Optional[str] = None
    related_ids: tuple[str, ...] = ()

    def model_dump(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "message_id": self.message_id,
            "timestamp": self.timestamp.timestamp(),
            "topic": self.topic,
            "related_ids": list(self.related_ids),
        }


@dataclass(frozen=True)
class MemoryRecord:
    id: str
    owner_id: str
    type: MemoryType
    content: str
    summary: str
    keywords: FrozenSet[str]
    embedding: tuple[float, ...]
    importance: float
    confidence: float
    source: MemorySource
    context: MemoryContext
    created_at: datetime
    last_accessed_at: datetime
    access_count: int = 0
    decay_factor: float = 1.0
    is_active: bool = True
    embedding_model: str = ""
    degraded: bool = False
    needs_reembedding: bool = False

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def touched(self, when: Optional[datetime] = None) -> "MemoryRecord":
        """Copy with the access-update applied."""
        return replace(
            self,
            access_count=self.access_count + 1,
            last_accessed_at=when or utc_now(),
        )

    def model_dump(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "type": self.type.value,
            "content": self.content,
            "summary": self.summary,
            "keywords": sorted(self.keywords),
            "embedding": list(self.embedding),
            "importance": self.importance,
            "confidence": self.confidence,
            "source": self.source.value,
            "context": self.context.model_dump(),
            "created_at": self.created_at.timestamp(),
            "last_accessed_at": self.last_accessed_at.timestamp(),
            "access_count": self.access_count,
            "decay_factor": self.decay_factor,
            "is_active": self.is_active,
            "embedding_model": self.embedding_model,
            "degraded": self.degraded,
            "needs_reembedding": self.needs_reembedding,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemoryRecord":
        """Decode and validate a stored mapping.

        Raises:
            MalformedRecord: on any missing field, wrong type or out-of-range value.
        """
        if not isinstance(data, Mapping):
            raise MalformedRecord(f"record payload is {type(data).__name__}, expected mapping")
        record_id = data.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise MalformedRecord("record id missing or not a string")
        try:
            context_data = _require(data, "context", Mapping, record_id)
            context = MemoryContext(
                session_id=_require(context_data, "session_id", str, record_id),
                message_id=_optional_str(context_data.get("message_id"), "message_id", record_id),
                timestamp=_as_datetime(context_data.get("timestamp"), "context.timestamp", record_id),
                topic=_optional_str(context_data.get("topic"), "topic", record_id),
                related_ids=tuple(_string_list(context_data.get("related_ids", []), "related_ids", record_id)),
            )
            return cls(
                id=record_id,
                owner_id=_require(data, "owner_id", str, record_id),
                type=_as_enum(MemoryType, data.get("type"), "type", record_id),
                content=_require(data, "content", str, record_id),
                summary=_require(data, "summary", str, record_id),
                keywords=frozenset(_string_list(data.get("keywords"), "keywords", record_id)),
                embedding=_as_embedding(data.get("embedding"), record_id),
                importance=_unit_float(data.get("importance"), "importance", record_id),
                confidence=_unit_float(data.get("confidence"), "confidence", record_id),
                source=_as_enum(MemorySource, data.get("source"), "source", record_id),
                context=context,
                created_at=_as_datetime(data.get("created_at"), "created_at", record_id),
                last_accessed_at=_as_datetime(data.get("last_accessed_at"), "last_accessed_at", record_id),
                access_count=_non_negative_int(data.get("access_count"), "access_count", record_id),
                decay_factor=_unit_float(data.get("decay_factor"), "decay_factor", record_id),
                is_active=_as_bool(data.get("is_active"), "is_active", record_id),
                embedding_model=str(data.get("embedding_model") or ""),
                degraded=bool(data.get("degraded", False)),
                needs_reembedding=bool(data.get("needs_reembedding", False)),
            )
        except MalformedRecord:
            raise
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedRecord(f"record {record_id}: {exc}", record_id=record_id) from exc


@dataclass(frozen=True)
class ScoreBreakdown:
    semantic: float = 0.0
    importance: float = 0.0
    recency: float = 0.0
    access: float = 0.0
    decay: float = 0.0
    exact_keyword: float = 0.0
    fuzzy_keyword: float = 0.0
    type_relevance: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.semantic
            + self.importance
            + self.recency
            + self.access
            + self.decay
            + self.exact_keyword
            + self.fuzzy_keyword
            + self.type_relevance
        )

    def as_dict(self) -> Dict[str, float]:
        return {
            "semantic": self.semantic,
            "importance": self.importance,
            "recency": self.recency,
            "access": self.access,
            "decay": self.decay,
            "exact_keyword": self.exact_keyword,
            "fuzzy_keyword": self.fuzzy_keyword,
            "type_relevance": self.type_relevance,
        }


@dataclass(frozen=True)
class SearchResult:
    record: MemoryRecord
    relevance_score: float
    semantic_similarity: float
    components: ScoreBreakdown
    keyword_match: bool = False
    degraded: bool = False


# ---------------------------------------------------------------------------
# Field validation helpers
# ---------------------------------------------------------------------------

def _require(data: Mapping[str, Any], key: str, kind: type, record_id: str) -> Any:
    if key not in data:
        raise MalformedRecord(f"record {record_id}: missing field '{key}'", record_id=record_id)
    value = data[key]
    if not isinstance(value, kind):
        raise MalformedRecord(
            f"record {record_id}: field '{key}' is {type(value).__name__}", record_id=record_id
        )
    return value


def _optional_str(value: Any, name: str, record_id: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedRecord(f"record {record_id}: field '{name}' is not a string", record_id=record_id)
    return value


def _string_list(value: Any, name: str, record_id: str) -> List[str]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise MalformedRecord(f"record {record_id}: field '{name}' is not a list", record_id=record_id)
    if not all(isinstance(item, str) for item in value):
        raise MalformedRecord(f"record {record_id}: field '{name}' contains non-strings", record_id=record_id)
    return list(value)


def _as_enum(enum_cls: type[Enum], value: Any, name: str, record_id: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise MalformedRecord(f"record {record_id}: invalid {name} {value!r}", record_id=record_id) from exc


def _finite_float(value: Any, name: str, record_id: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRecord(f"record {record_id}: field '{name}' is not a number", record_id=record_id)
    result = float(value)
    if not math.isfinite(result):
        raise MalformedRecord(f"record {record_id}: field '{name}' is not finite", record_id=record_id)
    return result


def _unit_float(value: Any, name: str, record_id: str) -> float:
    result = _finite_float(value, name, record_id)
    if not 0.0 <= result <= 1.0:
        raise MalformedRecord(f"record {record_id}: field '{name}' outside [0, 1]", record_id=record_id)
    return result


def _non_negative_int(value: Any, name: str, record_id: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedRecord(f"record {record_id}: field '{name}' is not a non-negative int", record_id=record_id)
    return value


def _as_bool(value: Any, name: str, record_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise MalformedRecord(f"record {record_id}: field '{name}' is not a boolean", record_id=record_id)


def _as_datetime(value: Any, name: str, record_id: str) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(_finite_float(value, name, record_id), tz=timezone.utc)


def _as_embedding(value: Any, record_id: str) -> tuple[float, ...]:
    if not isinstance(value, (list, tuple)) or not value:
        raise MalformedRecord(f"record {record_id}: embedding missing or empty", record_id=record_id)
    vector = tuple(_finite_float(v, "embedding", record_id) for v in value)
    norm = math.sqrt(sum(v * v for v in vector))
    if abs(norm - 1.0) > NORM_TOLERANCE:
        raise MalformedRecord(f"record {record_id}: embedding is not unit-normalized", record_id=record_id)
    return vector


def coerce_type(value: MemoryType | str) -> MemoryType:
    return value if isinstance(value, MemoryType) else MemoryType(str(value).lower())


def coerce_source(value: MemorySource | str) -> MemorySource:
    return value if isinstance(value, MemorySource) else MemorySource(str(value).lower())


__all__ = [
    "MemoryContext",
    "MemoryRecord",
    "MemorySource",
    "MemoryType",
    "PROFILE_TYPES",
    "ScoreBreakdown",
    "SearchResult",
    "age_days",
    "coerce_source",
    "coerce_type",
    "utc_now",
]
