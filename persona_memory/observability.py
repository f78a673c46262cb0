"""Observability utilities for the memory engine."""
from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest

from .config import ObservabilityConfig


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


class Observability:
    """Collects metrics and emits JSON logs."""

    def __init__(self, config: Optional[ObservabilityConfig] = None) -> None:
        self.config = config or ObservabilityConfig(json_log_path=None)
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()
        self._log_path: Optional[Path] = None
        if self.config.json_log_path:
            path = Path(self.config.json_log_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self._log_path = path

        self._records_enabled = bool(self._log_path)

        # Prometheus counters
        ns = self.config.metrics_namespace
        self._cache_hits = Counter(f"{ns}_embedding_cache_hits_total", "Embedding cache hits", registry=self.registry)
        self._cache_misses = Counter(f"{ns}_embedding_cache_misses_total", "Embedding cache misses", registry=self.registry)
        self._provider_calls = Counter(f"{ns}_provider_calls_total", "Embedding provider calls", ["model"], registry=self.registry)
        self._provider_failures = Counter(
            f"{ns}_provider_failures_total", "Embedding provider failures", ["reason"], registry=self.registry
        )
        self._records_created = Counter(f"{ns}_records_created_total", "Memory records created", ["type"], registry=self.registry)
        self._records_merged = Counter(f"{ns}_records_merged_total", "Upserts merged into an existing record", registry=self.registry)
        self._memory_hits = Counter(f"{ns}_memory_hits_total", "Memory hits", registry=self.registry)
        self._memory_misses = Counter(f"{ns}_memory_misses_total", "Memory misses", registry=self.registry)
        self._malformed = Counter(f"{ns}_malformed_records_total", "Malformed records skipped", registry=self.registry)
        self._dimension_mismatches = Counter(
            f"{ns}_dimension_mismatches_total", "Records excluded for embedding dimension mismatch", registry=self.registry
        )
        self._decay_updates = Counter(f"{ns}_decay_updates_total", "Decay factor writes", registry=self.registry)
        self._deactivations = Counter(f"{ns}_deactivations_total", "Records deactivated by maintenance", registry=self.registry)

    # ------------------------------------------------------------------
    def record_cache_hit(self, count: int = 1) -> None:
        if count > 0:
            self._cache_hits.inc(count)

    def record_cache_miss(self, count: int = 1) -> None:
        if count > 0:
            self._cache_misses.inc(count)

    def record_provider_call(self, *, model: str) -> None:
        self._provider_calls.labels(model or "unknown").inc()

    def record_provider_failure(self, *, reason: str, error: str) -> None:
        self._provider_failures.labels(reason).inc()
        self._log_event("provider_failure", reason=reason, error=error)

    # ------------------------------------------------------------------
    def record_upsert(self, *, owner_id: str, record_id: str, created: bool, memory_type: str) -> None:
        if created:
            self._records_created.labels(memory_type).inc()
        else:
            self._records_merged.inc()
        self._log_event(
            "record_created" if created else "record_merged",
            owner=owner_id,
            record_id=record_id,
            memory_type=memory_type,
        )

    def record_memory_hit(self, *, owner_id: str, count: int) -> None:
        self._memory_hits.inc(count)
        self._log_event("memory_hit", owner=owner_id, count=count)

    def record_memory_miss(self, *, owner_id: str) -> None:
        self._memory_misses.inc()
        self._log_event("memory_miss", owner=owner_id)

    def record_malformed(self, *, record_id: Optional[str], error: str) -> None:
        self._malformed.inc()
        self._log_event("malformed_record", record_id=record_id, error=error)

    def record_dimension_mismatch(self, *, record_id: str, expected: int, actual: int) -> None:
        self._dimension_mismatches.inc()
        self._log_event("dimension_mismatch", record_id=record_id, expected=expected, actual=actual)

    def record_decay_run(self, *, owner_id: str, scanned: int, updated: int, deactivated: int) -> None:
        if updated:
            self._decay_updates.inc(updated)
        if deactivated:
            self._deactivations.inc(deactivated)
        self._log_event("decay_run", owner=owner_id, scanned=scanned, updated=updated, deactivated=deactivated)

    # ------------------------------------------------------------------
    def export_metrics(self) -> bytes:
        return generate_latest(self.registry)

    # ------------------------------------------------------------------
    def _log_event(self, event_type: str, **payload: Any) -> None:
        if not self._records_enabled or self._log_path is None:
            return
        record = {"ts": _ts(), "type": event_type, **{k: v for k, v in payload.items() if v is not None}}
        line = json.dumps(record)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")


__all__ = ["Observability"]
