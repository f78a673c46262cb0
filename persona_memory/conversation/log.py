"""Append-only conversation buffers."""
from __future__ import annotations

import asyncio
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from ..memory.schema import utc_now


@dataclass(frozen=True)
class ConversationMessage:
    session_id: str
    role: str
    content: str
    timestamp: datetime
    token_estimate: int = 0


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    owner_id: Optional[str]
    started_at: datetime
    message_count: int
    last_activity: datetime


@runtime_checkable
class ConversationLog(Protocol):
    async def open_session(self, session_id: str, owner_id: str) -> SessionInfo:
        ...

    async def append(
        self,
        session_id: str,
        role: str,
        content: str,
        timestamp: Optional[datetime] = None,
        *,
        token_estimate: int = 0,
    ) -> ConversationMessage:
        ...

    async def query(
        self,
        session_id: str,
        limit: int = 6,
        most_recent_first: bool = True,
    ) -> List[ConversationMessage]:
        ...

    async def sessions(self, owner_id: Optional[str] = None) -> List[SessionInfo]:
        ...


def _select_recent(
    messages: List[ConversationMessage], limit: int, most_recent_first: bool
) -> List[ConversationMessage]:
    recent = messages[-limit:] if limit > 0 else []
    return list(reversed(recent)) if most_recent_first else list(recent)


class InMemoryConversationLog:
    def __init__(self) -> None:
        self._messages: Dict[str, List[ConversationMessage]] = {}
        self._owners: Dict[str, Optional[str]] = {}
        self._started: Dict[str, datetime] = {}

    async def open_session(self, session_id: str, owner_id: str) -> SessionInfo:
        self._owners[session_id] = owner_id
        self._started.setdefault(session_id, utc_now())
        self._messages.setdefault(session_id, [])
        return self._info(session_id)

    async def append(
        self,
        session_id: str,
        role: str,
        content: str,
        timestamp: Optional[datetime] = None,
        *,
        token_estimate: int = 0,
    ) -> ConversationMessage:
        message = ConversationMessage(
            session_id=session_id,
            role=role,
            content=content,
            timestamp=timestamp or utc_now(),
            token_estimate=token_estimate,
        )
        self._started.setdefault(session_id, message.timestamp)
        self._messages.setdefault(session_id, []).append(message)
        return message

    async def query(
        self,
        session_id: str,
        limit: int = 6,
        most_recent_first: bool = True,
    ) -> List[ConversationMessage]:
        messages = sorted(self._messages.get(session_id, []), key=lambda m: m.timestamp)
        return _select_recent(messages, limit, most_recent_first)

    async def sessions(self, owner_id: Optional[str] = None) -> List[SessionInfo]:
        infos = [self._info(session_id) for session_id in self._started]
        if owner_id is not None:
            infos = [info for info in infos if info.owner_id == owner_id]
        infos.sort(key=lambda info: info.last_activity, reverse=True)
        return infos

    def _info(self, session_id: str) -> SessionInfo:
        messages = self._messages.get(session_id, [])
        started = self._started[session_id]
        last = max((m.timestamp for m in messages), default=started)
        return SessionInfo(
            session_id=session_id,
            owner_id=self._owners.get(session_id),
            started_at=started,
            message_count=len(messages),
            last_activity=last,
        )


def _from_ts(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


class SQLiteConversationLog:
    """Conversation buffer persisted in SQLite."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = Path(path)
        if self.path != Path(":memory:"):
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.path), timeout=30, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversation_sessions (
                    session_id TEXT PRIMARY KEY,
                    owner_id TEXT,
                    started_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversation_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    ts REAL NOT NULL,
                    token_estimate INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_conversation_session_ts ON conversation_messages(session_id, ts)"
            )
            self._conn.commit()

    async def open_session(self, session_id: str, owner_id: str) -> SessionInfo:
        await asyncio.to_thread(self._open_session, session_id, owner_id, utc_now().timestamp())
        infos = await asyncio.to_thread(self._fetch_sessions, session_id, None)
        return infos[0]

    async def append(
        self,
        session_id: str,
        role: str,
        content: str,
        timestamp: Optional[datetime] = None,
        *,
        token_estimate: int = 0,
    ) -> ConversationMessage:
        message = ConversationMessage(
            session_id=session_id,
            role=role,
            content=content,
            timestamp=timestamp or utc_now(),
            token_estimate=token_estimate,
        )
        await asyncio.to_thread(self._insert, message)
        return message

    async def query(
        self,
        session_id: str,
        limit: int = 6,
        most_recent_first: bool = True,
    ) -> List[ConversationMessage]:
        messages = await asyncio.to_thread(self._fetch_recent, session_id, max(limit, 0))
        return messages if most_recent_first else list(reversed(messages))

    async def sessions(self, owner_id: Optional[str] = None) -> List[SessionInfo]:
        return await asyncio.to_thread(self._fetch_sessions, None, owner_id)

    # ------------------------------------------------------------------
    def _open_session(self, session_id: str, owner_id: str, started_at: float) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO conversation_sessions (session_id, owner_id, started_at) VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET owner_id=excluded.owner_id
                """,
                (session_id, owner_id, started_at),
            )
            self._conn.commit()

    def _insert(self, message: ConversationMessage) -> None:
        ts = message.timestamp.timestamp()
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO conversation_sessions (session_id, owner_id, started_at) VALUES (?, NULL, ?)",
                (message.session_id, ts),
            )
            self._conn.execute(
                "INSERT INTO conversation_messages (session_id, role, content, ts, token_estimate) VALUES (?, ?, ?, ?, ?)",
                (message.session_id, message.role, message.content, ts, message.token_estimate),
            )
            self._conn.commit()

    def _fetch_recent(self, session_id: str, limit: int) -> List[ConversationMessage]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT session_id, role, content, ts, token_estimate FROM conversation_messages
                WHERE session_id=? ORDER BY ts DESC, id DESC LIMIT ?
                """,
                (session_id, limit),
            )
            rows = cur.fetchall()
        return [
            ConversationMessage(
                session_id=row[0],
                role=row[1],
                content=row[2],
                timestamp=_from_ts(row[3]),
                token_estimate=int(row[4]),
            )
            for row in rows
        ]

    def _fetch_sessions(self, session_id: Optional[str], owner_id: Optional[str]) -> List[SessionInfo]:
        sql = """
            SELECT s.session_id, s.owner_id, s.started_at, COUNT(m.id), MAX(m.ts)
            FROM conversation_sessions s
            LEFT JOIN conversation_messages m ON m.session_id = s.session_id
        """
        clauses = []
        params: List[object] = []
        if session_id is not None:
            clauses.append("s.session_id=?")
            params.append(session_id)
        if owner_id is not None:
            clauses.append("s.owner_id=?")
            params.append(owner_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " GROUP BY s.session_id ORDER BY COALESCE(MAX(m.ts), s.started_at) DESC"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [
            SessionInfo(
                session_id=row[0],
                owner_id=row[1],
                started_at=_from_ts(row[2]),
                message_count=int(row[3] or 0),
                last_activity=_from_ts(row[4] if row[4] is not None else row[2]),
            )
            for row in rows
        ]


__all__ = [
    "ConversationLog",
    "ConversationMessage",
    "InMemoryConversationLog",
    "SQLiteConversationLog",
    "SessionInfo",
]
