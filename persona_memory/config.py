"""Runtime configuration loading utilities."""
from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

dotenv_path = os.getenv("PERSONA_MEMORY_DOTENV")
if dotenv_path:
    load_dotenv(dotenv_path, override=False)
else:
    load_dotenv(override=False)

DEFAULT_TYPE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "personal": ("name", "age", "birthday", "live", "born", "home", "who", "myself", "family"),
    "preference": ("like", "love", "prefer", "favorite", "favourite", "enjoy", "hate", "dislike", "color", "colour"),
    "professional": ("work", "job", "career", "company", "office", "skill", "role", "boss"),
    "goal": ("goal", "plan", "want", "project", "deadline", "target", "aim", "achieve"),
    "instruction": ("always", "never", "should", "remember", "format", "respond", "style"),
    "knowledge": ("know", "fact", "learn", "interest", "topic", "explain", "about"),
    "relationship": ("friend", "wife", "husband", "partner", "mother", "father", "sister", "brother", "colleague"),
    "event": ("when", "date", "meeting", "appointment", "schedule", "tomorrow", "week", "event"),
}


@dataclass(slots=True)
class EmbeddingsConfig:
    provider: str = "openai"
    model: str = "text-embedding-3-small"
    batch_size: int = 32
    dimension: int = 0
    timeout: float = 10.0
    max_retries: int = 2
    retry_backoff: float = 0.25
    cache_max_entries: int = 100
    cache_max_bytes: int = 50 * 1024 * 1024
    allow_fallback: bool = False


@dataclass(slots=True)
class StoreConfig:
    backend: str = "sqlite"
    db_path: Path = Path("./tmp/persona_memory.sqlite")
    timeout: float = 5.0
    candidate_pool_size: int = 100
    keyword_fallback: bool = True


@dataclass(slots=True)
class ScoringConfig:
    admission_floor: float = 0.3
    max_retrieved: int = 15
    importance_weight: float = 0.3
    recency_weight: float = 0.2
    half_life_days: float = 30.0
    access_weight: float = 1.0
    access_unit: float = 0.01
    access_cap: float = 0.1
    decay_weight: float = 0.1
    exact_keyword_weight: float = 0.15
    fuzzy_keyword_weight: float = 0.1
    fuzzy_threshold: float = 0.8
    type_relevance_weight: float = 0.1
    type_keywords: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_TYPE_KEYWORDS)
    )


@dataclass(slots=True)
class DedupConfig:
    threshold: float = 0.95
    refresh_importance: bool = False


@dataclass(slots=True)
class ContextConfig:
    total_token_budget: int = 2000
    profile_share: float = 0.25
    memory_share: float = 0.35
    conversation_share: float = 0.40
    chars_per_token: int = 4


@dataclass(slots=True)
class DecayConfig:
    access_step: float = 0.1
    access_floor: float = 0.5
    age_step: float = 0.01
    age_floor: float = 0.1
    materiality: float = 0.05
    staleness_days: float = 365.0
    low_importance: float = 0.5


@dataclass(slots=True)
class ConversationConfig:
    backend: str = "sqlite"
    db_path: Path = Path("./tmp/persona_conversations.sqlite")
    recent_limit: int = 6


@dataclass(slots=True)
class ObservabilityConfig:
    json_log_path: Optional[Path] = Path("./logs/persona_memory.jsonl")
    metrics_namespace: str = "persona_memory"


@dataclass(slots=True)
class RuntimeConfig:
    embeddings: EmbeddingsConfig = field(default_factory=EmbeddingsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def _load_config_file() -> Dict[str, Any]:
    env_path = os.getenv("PERSONA_MEMORY_CONFIG")
    candidates = []
    if env_path:
        candidates.append(Path(env_path))
    candidates.extend(
        Path(p)
        for p in (
            "persona_memory.toml",
            "config/persona_memory.toml",
        )
    )
    for candidate in candidates:
        if candidate.is_file():
            with candidate.expanduser().open("rb") as fh:
                return tomllib.load(fh)
    return {}


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on", "y"}:
        return True
    if text in {"0", "false", "no", "off", "n"}:
        return False
    return default


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _lookup(settings: Mapping[str, Any], *path: str, default: Any = None) -> Any:
    current: Any = settings
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def _parse_list(value: Any, default: Sequence[str]) -> Tuple[str, ...]:
    if value is None:
        return tuple(default)
    if isinstance(value, (list, tuple)):
        return tuple(str(v).strip().lower() for v in value if str(v).strip())
    return tuple(
        item.strip().lower()
        for item in str(value).split(",")
        if item and item.strip()
    )


def _merge_type_keywords(
    base: Mapping[str, Sequence[str]],
    config_section: Any,
    environ: Mapping[str, str],
) -> Dict[str, Tuple[str, ...]]:
    table = {key: tuple(words) for key, words in base.items()}
    if isinstance(config_section, Mapping):
        for type_name, words in config_section.items():
            key = str(type_name).strip().lower()
            if key in table:
                table[key] = _parse_list(words, table[key])
    env_json = environ.get("SCORING_TYPE_KEYWORDS")
    if env_json:
        try:
            overrides = json.loads(env_json)
        except json.JSONDecodeError:
            overrides = {}
        if isinstance(overrides, Mapping):
            for type_name, words in overrides.items():
                key = str(type_name).strip().lower()
                if key in table:
                    table[key] = _parse_list(words, table[key])
    return table


def _optional_path(value: Any) -> Optional[Path]:
    if value is None:
        return None
    candidate = str(value).strip()
    if candidate.lower() in {"", "none", "null", "disable", "disabled"}:
        return None
    return Path(candidate).expanduser()


def _float_setting(env: Mapping[str, str], settings: Mapping[str, Any], env_key: str, section: str, key: str, default: float) -> float:
    return _as_float(env.get(env_key, _lookup(settings, section, key, default=default)), default)


def _int_setting(env: Mapping[str, str], settings: Mapping[str, Any], env_key: str, section: str, key: str, default: int) -> int:
    return _as_int(env.get(env_key, _lookup(settings, section, key, default=default)), default)


@lru_cache(maxsize=1)
def load_runtime_config() -> RuntimeConfig:
    settings = _load_config_file()
    env = os.environ

    embeddings = EmbeddingsConfig(
        provider=str(
            env.get(
                "EMBEDDINGS_PROVIDER",
                _lookup(settings, "embeddings", "provider", default="openai"),
            )
        ).strip(),
        model=str(
            env.get(
                "EMBEDDINGS_MODEL",
                _lookup(settings, "embeddings", "model", default="text-embedding-3-small"),
            )
        ).strip(),
        batch_size=_int_setting(env, settings, "EMBEDDINGS_BATCH", "embeddings", "batch_size", 32),
        dimension=_int_setting(env, settings, "EMBEDDINGS_DIMENSION", "embeddings", "dimension", 0),
        timeout=_float_setting(env, settings, "EMBEDDINGS_TIMEOUT", "embeddings", "timeout", 10.0),
        max_retries=_int_setting(env, settings, "EMBEDDINGS_MAX_RETRIES", "embeddings", "max_retries", 2),
        retry_backoff=_float_setting(env, settings, "EMBEDDINGS_RETRY_BACKOFF", "embeddings", "retry_backoff", 0.25),
        cache_max_entries=_int_setting(env, settings, "EMBEDDINGS_CACHE_ENTRIES", "embeddings", "cache_max_entries", 100),
        cache_max_bytes=_int_setting(
            env, settings, "EMBEDDINGS_CACHE_BYTES", "embeddings", "cache_max_bytes", 50 * 1024 * 1024
        ),
        allow_fallback=_as_bool(
            env.get(
                "EMBEDDINGS_ALLOW_FALLBACK",
                _lookup(settings, "embeddings", "allow_fallback", default=False),
            ),
            False,
        ),
    )

    store = StoreConfig(
        backend=str(
            env.get("STORE_BACKEND", _lookup(settings, "store", "backend", default="sqlite"))
        ).strip().lower()
        or "sqlite",
        db_path=Path(
            env.get(
                "STORE_DB_PATH",
                _lookup(settings, "store", "db_path", default="./tmp/persona_memory.sqlite"),
            )
        ).expanduser(),
        timeout=_float_setting(env, settings, "STORE_TIMEOUT", "store", "timeout", 5.0),
        candidate_pool_size=_int_setting(env, settings, "STORE_CANDIDATE_POOL", "store", "candidate_pool_size", 100),
        keyword_fallback=_as_bool(
            env.get(
                "STORE_KEYWORD_FALLBACK",
                _lookup(settings, "store", "keyword_fallback", default=True),
            ),
            True,
        ),
    )

    defaults = ScoringConfig()
    scoring = ScoringConfig(
        admission_floor=_float_setting(env, settings, "SCORING_ADMISSION_FLOOR", "scoring", "admission_floor", defaults.admission_floor),
        max_retrieved=_int_setting(env, settings, "SCORING_MAX_RETRIEVED", "scoring", "max_retrieved", defaults.max_retrieved),
        importance_weight=_float_setting(env, settings, "SCORING_IMPORTANCE_WEIGHT", "scoring", "importance_weight", defaults.importance_weight),
        recency_weight=_float_setting(env, settings, "SCORING_RECENCY_WEIGHT", "scoring", "recency_weight", defaults.recency_weight),
        half_life_days=_float_setting(env, settings, "SCORING_HALF_LIFE_DAYS", "scoring", "half_life_days", defaults.half_life_days),
        access_weight=_float_setting(env, settings, "SCORING_ACCESS_WEIGHT", "scoring", "access_weight", defaults.access_weight),
        access_unit=_float_setting(env, settings, "SCORING_ACCESS_UNIT", "scoring", "access_unit", defaults.access_unit),
        access_cap=_float_setting(env, settings, "SCORING_ACCESS_CAP", "scoring", "access_cap", defaults.access_cap),
        decay_weight=_float_setting(env, settings, "SCORING_DECAY_WEIGHT", "scoring", "decay_weight", defaults.decay_weight),
        exact_keyword_weight=_float_setting(
            env, settings, "SCORING_EXACT_KEYWORD_WEIGHT", "scoring", "exact_keyword_weight", defaults.exact_keyword_weight
        ),
        fuzzy_keyword_weight=_float_setting(
            env, settings, "SCORING_FUZZY_KEYWORD_WEIGHT", "scoring", "fuzzy_keyword_weight", defaults.fuzzy_keyword_weight
        ),
        fuzzy_threshold=_float_setting(env, settings, "SCORING_FUZZY_THRESHOLD", "scoring", "fuzzy_threshold", defaults.fuzzy_threshold),
        type_relevance_weight=_float_setting(
            env, settings, "SCORING_TYPE_RELEVANCE_WEIGHT", "scoring", "type_relevance_weight", defaults.type_relevance_weight
        ),
        type_keywords=_merge_type_keywords(
            DEFAULT_TYPE_KEYWORDS,
            _lookup(settings, "scoring", "type_keywords", default={}),
            env,
        ),
    )

    dedup = DedupConfig(
        threshold=_float_setting(env, settings, "DEDUP_THRESHOLD", "dedup", "threshold", 0.95),
        refresh_importance=_as_bool(
            env.get(
                "DEDUP_REFRESH_IMPORTANCE",
                _lookup(settings, "dedup", "refresh_importance", default=False),
            ),
            False,
        ),
    )

    context = ContextConfig(
        total_token_budget=_int_setting(env, settings, "CONTEXT_TOKEN_BUDGET", "context", "total_token_budget", 2000),
        profile_share=_float_setting(env, settings, "CONTEXT_PROFILE_SHARE", "context", "profile_share", 0.25),
        memory_share=_float_setting(env, settings, "CONTEXT_MEMORY_SHARE", "context", "memory_share", 0.35),
        conversation_share=_float_setting(env, settings, "CONTEXT_CONVERSATION_SHARE", "context", "conversation_share", 0.40),
        chars_per_token=max(1, _int_setting(env, settings, "CONTEXT_CHARS_PER_TOKEN", "context", "chars_per_token", 4)),
    )

    decay_defaults = DecayConfig()
    decay = DecayConfig(
        access_step=_float_setting(env, settings, "DECAY_ACCESS_STEP", "decay", "access_step", decay_defaults.access_step),
        access_floor=_float_setting(env, settings, "DECAY_ACCESS_FLOOR", "decay", "access_floor", decay_defaults.access_floor),
        age_step=_float_setting(env, settings, "DECAY_AGE_STEP", "decay", "age_step", decay_defaults.age_step),
        age_floor=_float_setting(env, settings, "DECAY_AGE_FLOOR", "decay", "age_floor", decay_defaults.age_floor),
        materiality=_float_setting(env, settings, "DECAY_MATERIALITY", "decay", "materiality", decay_defaults.materiality),
        staleness_days=_float_setting(env, settings, "DECAY_STALENESS_DAYS", "decay", "staleness_days", decay_defaults.staleness_days),
        low_importance=_float_setting(env, settings, "DECAY_LOW_IMPORTANCE", "decay", "low_importance", decay_defaults.low_importance),
    )

    conversation = ConversationConfig(
        backend=str(
            env.get("CONVERSATION_BACKEND", _lookup(settings, "conversation", "backend", default="sqlite"))
        ).strip().lower()
        or "sqlite",
        db_path=Path(
            env.get(
                "CONVERSATION_DB_PATH",
                _lookup(settings, "conversation", "db_path", default="./tmp/persona_conversations.sqlite"),
            )
        ).expanduser(),
        recent_limit=_int_setting(env, settings, "CONVERSATION_RECENT_LIMIT", "conversation", "recent_limit", 6),
    )

    observability = ObservabilityConfig(
        json_log_path=_optional_path(
            env.get(
                "OBSERVABILITY_LOG_PATH",
                _lookup(settings, "observability", "json_log_path", default="./logs/persona_memory.jsonl"),
            )
        ),
        metrics_namespace=str(
            env.get(
                "OBSERVABILITY_METRICS_NS",
                _lookup(settings, "observability", "metrics_namespace", default="persona_memory"),
            )
        ).strip()
        or "persona_memory",
    )

    return RuntimeConfig(
        embeddings=embeddings,
        store=store,
        scoring=scoring,
        dedup=dedup,
        context=context,
        decay=decay,
        conversation=conversation,
        observability=observability,
    )


__all__ = [
    "ContextConfig",
    "ConversationConfig",
    "DecayConfig",
    "DedupConfig",
    "DEFAULT_TYPE_KEYWORDS",
    "EmbeddingsConfig",
    "ObservabilityConfig",
    "RuntimeConfig",
    "ScoringConfig",
    "StoreConfig",
    "load_runtime_config",
]
