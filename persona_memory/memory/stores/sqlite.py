"""SQLite-backed document store for memory records."""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from array import array
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ...errors import MalformedRecord
from ...observability import Observability
from ..schema import MemoryRecord
from ..store import MalformedRecordReporter

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_COLUMNS = (
    "id, owner_id, type, content, summary, keywords, embedding, importance, confidence, "
    "source, context, created_at, last_accessed_at, access_count, decay_factor, is_active, "
    "embedding_model, degraded, needs_reembedding"
)


def _vector_to_blob(vector: Sequence[float]) -> bytes:
    arr = array("d", vector)
    return arr.tobytes()


def _blob_to_vector(blob: bytes | memoryview | None, record_id: Optional[str] = None) -> List[float]:
    if not blob:
        return []
    arr = array("d")
    try:
        arr.frombytes(bytes(blob))
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(f"unreadable embedding blob: {exc}", record_id=record_id) from exc
    return list(arr)


def _loads(value: Any) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return value


class SQLiteDocumentStore:
    """Store memory records in SQLite; all ranking happens client-side."""

    def __init__(
        self,
        path: str | Path = ":memory:",
        *,
        observability: Optional[Observability] = None,
    ) -> None:
        self.path = Path(path)
        if self.path != Path(":memory:"):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.path), timeout=30, check_same_thread=False)
        self._lock = threading.Lock()
        self._reporter = MalformedRecordReporter(observability)
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @property
    def skipped_malformed(self) -> int:
        return self._reporter.skipped

    # DocumentStore interface -------------------------------------------------
    async def put(self, record: MemoryRecord) -> None:
        await asyncio.to_thread(self._upsert_row, self._record_to_row(record))

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        rows = await asyncio.to_thread(
            self._select, f"SELECT {_COLUMNS} FROM memory_records WHERE id=?", (record_id,)
        )
        if not rows:
            return None
        return self._decode_row(rows[0])

    async def delete(self, record_id: str) -> bool:
        return await asyncio.to_thread(self._delete, record_id)

    async def query(
        self,
        owner_id: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 100,
    ) -> List[MemoryRecord]:
        sql = f"SELECT {_COLUMNS} FROM memory_records WHERE owner_id=?"
        params: List[Any] = [owner_id]
        if is_active is not None:
            sql += " AND is_active=?"
            params.append(1 if is_active else 0)
        sql += " ORDER BY created_at DESC, id ASC LIMIT ?"
        params.append(max(limit, 0))
        rows = await asyncio.to_thread(self._select, sql, tuple(params))
        return self._decode(rows)

    async def query_keyword(
        self,
        owner_id: str,
        keyword: str,
        *,
        is_active: Optional[bool] = True,
        limit: int = 5,
    ) -> List[MemoryRecord]:
        sql = (
            f"SELECT {_COLUMNS} FROM memory_records WHERE owner_id=? "
            "AND json_valid(memory_records.keywords) "
            "AND EXISTS (SELECT 1 FROM json_each(memory_records.keywords) WHERE json_each.value = ?)"
        )
        params: List[Any] = [owner_id, keyword]
        if is_active is not None:
            sql += " AND is_active=?"
            params.append(1 if is_active else 0)
        sql += " ORDER BY created_at DESC, id ASC LIMIT ?"
        params.append(max(limit, 0))
        rows = await asyncio.to_thread(self._select, sql, tuple(params))
        return self._decode(rows)

    async def stats(self, owner_id: str) -> Dict[str, int]:
        return await asyncio.to_thread(self._fetch_stats, owner_id)

    # Internal helpers -------------------------------------------------------
    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_records (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    content TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    keywords TEXT NOT NULL,
                    embedding BLOB,
                    importance REAL NOT NULL,
                    confidence REAL NOT NULL,
                    source TEXT NOT NULL,
                    context TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    last_accessed_at REAL NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0,
                    decay_factor REAL NOT NULL DEFAULT 1.0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    embedding_model TEXT NOT NULL DEFAULT '',
                    degraded INTEGER NOT NULL DEFAULT 0,
                    needs_reembedding INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_memory_owner_active ON memory_records(owner_id, is_active, created_at DESC)"
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO memory_metadata (key, value) VALUES (?, ?)",
                ("schema_version", json.dumps(SCHEMA_VERSION)),
            )
            self._conn.commit()

    def _record_to_row(self, record: MemoryRecord) -> tuple:
        payload = record.model_dump()
        return (
            payload["id"],
            payload["owner_id"],
            payload["type"],
            payload["content"],
            payload["summary"],
            json.dumps(payload["keywords"]),
            _vector_to_blob(payload["embedding"]),
            payload["importance"],
            payload["confidence"],
            payload["source"],
            json.dumps(payload["context"]),
            payload["created_at"],
            payload["last_accessed_at"],
            payload["access_count"],
            payload["decay_factor"],
            1 if payload["is_active"] else 0,
            payload["embedding_model"],
            1 if payload["degraded"] else 0,
            1 if payload["needs_reembedding"] else 0,
        )

    def _row_to_dict(self, row: Sequence[Any]) -> Dict[str, Any]:
        (
            record_id,
            owner_id,
            memory_type,
            content,
            summary,
            keywords_json,
            embedding_blob,
            importance,
            confidence,
            source,
            context_json,
            created_at,
            last_accessed_at,
            access_count,
            decay_factor,
            is_active,
            embedding_model,
            degraded,
            needs_reembedding,
        ) = row
        return {
            "id": record_id,
            "owner_id": owner_id,
            "type": memory_type,
            "content": content,
            "summary": summary,
            "keywords": _loads(keywords_json),
            "embedding": _blob_to_vector(embedding_blob, record_id),
            "importance": importance,
            "confidence": confidence,
            "source": source,
            "context": _loads(context_json),
            "created_at": created_at,
            "last_accessed_at": last_accessed_at,
            "access_count": access_count,
            "decay_factor": decay_factor,
            "is_active": is_active,
            "embedding_model": embedding_model,
            "degraded": bool(degraded),
            "needs_reembedding": bool(needs_reembedding),
        }

    def _decode_row(self, row: Sequence[Any]) -> Optional[MemoryRecord]:
        try:
            payload = self._row_to_dict(row)
        except MalformedRecord as exc:
            self._reporter(exc)
            return None
        return self._reporter.decode_one(payload)

    def _decode(self, rows: Sequence[Sequence[Any]]) -> List[MemoryRecord]:
        records: List[MemoryRecord] = []
        for row in rows:
            record = self._decode_row(row)
            if record is not None:
                records.append(record)
        return records

    def _upsert_row(self, payload: Sequence[Any]) -> None:
        placeholders = ", ".join("?" for _ in payload)
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO memory_records ({_COLUMNS}) VALUES ({placeholders})",
                payload,
            )
            self._conn.commit()

    def _select(self, sql: str, params: Sequence[Any]) -> List[tuple]:
        with self._lock:
            cur = self._conn.execute(sql, params)
            return cur.fetchall()

    def _delete(self, record_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM memory_records WHERE id=?", (record_id,))
            self._conn.commit()
            return cur.rowcount > 0

    def _fetch_stats(self, owner_id: str) -> Dict[str, int]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT
                    COUNT(*) as total_count,
                    SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END) as active_count,
                    SUM(CASE WHEN needs_reembedding = 1 OR degraded = 1 THEN 1 ELSE 0 END) as flagged_count
                FROM memory_records
                WHERE owner_id=?
                """,
                (owner_id,),
            )
            (total_count, active_count, flagged_count) = cur.fetchone()
        total = int(total_count or 0)
        active = int(active_count or 0)
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "flagged": int(flagged_count or 0),
        }


__all__ = ["SQLiteDocumentStore"]
