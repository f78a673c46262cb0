"""Process-local document store, mainly for tests and ephemeral sessions."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ...observability import Observability
from ..schema import MemoryRecord
from ..store import MalformedRecordReporter


def _sort_key(row: Dict[str, Any]) -> tuple:
    created = row.get("created_at")
    created_value = float(created) if isinstance(created, (int, float)) else 0.0
    return (-created_value, str(row.get("id", "")))


class InMemoryDocumentStore:
    """Keeps serialized records in a dict so reads go through full validation."""

    def __init__(self, *, observability: Optional[Observability] = None) -> None:
        self._rows: Dict[str, Dict[str, Any]] = {}
        self._reporter = MalformedRecordReporter(observability)

    @property
    def skipped_malformed(self) -> int:
        return self._reporter.skipped

    async def put(self, record: MemoryRecord) -> None:
        self._rows[record.id] = record.model_dump()

    async def put_raw(self, row: Dict[str, Any]) -> None:
        self._rows[str(row.get("id"))] = dict(row)

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        return self._reporter.decode_one(self._rows.get(record_id))

    async def delete(self, record_id: str) -> bool:
        return self._rows.pop(record_id, None) is not None

    def _matching(self, owner_id: str, is_active: Optional[bool]) -> List[Dict[str, Any]]:
        rows = [
            row
            for row in self._rows.values()
            if row.get("owner_id") == owner_id
            and (is_active is None or row.get("is_active") == is_active)
        ]
        rows.sort(key=_sort_key)
        return rows

    def _decode(self, rows: List[Dict[str, Any]], limit: int) -> List[MemoryRecord]:
        records: List[MemoryRecord] = []
        for row in rows:
            if len(records) >= limit:
                break
            record = self._reporter.decode_one(row)
            if record is not None:
                records.append(record)
        return records

    async def query(
        self,
        owner_id: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 100,
    ) -> List[MemoryRecord]:
        return self._decode(self._matching(owner_id, is_active), max(limit, 0))

    async def query_keyword(
        self,
        owner_id: str,
        keyword: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 5,
    ) -> List[MemoryRecord]:
        rows = [
            row
            for row in self._matching(owner_id, is_active)
            if isinstance(row.get("keywords"), list) and keyword in row["keywords"]
        ]
        return self._decode(rows, max(limit, 0))

    async def stats(self, owner_id: str) -> Dict[str, int]:
        rows = self._matching(owner_id, None)
        active = sum(1 for row in rows if row.get("is_active") is True)
        flagged = sum(1 for row in rows if row.get("needs_reembedding") or row.get("degraded"))
        return {
            "total": len(rows),
            "active": active,
            "inactive": len(rows) - active,
            "flagged": flagged,
        }


__all__ = ["InMemoryDocumentStore"]
