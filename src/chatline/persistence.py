"""
Persistence gateway — durable messages, user status and call logs.

The core only talks to the ``PersistenceGateway`` protocol. ``SQLiteStore``
is the bundled implementation: blocking sqlite3 calls run in worker
threads, writes are serialised by an asyncio lock, and every sqlite error
surfaces as ``PersistenceError``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from chatline.errors import PersistenceError
from chatline.models.records import CallLog, Message

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    async def save_message(
        self,
        sender_id: str,
        receiver_id: str,
        body: str,
        kind: str = "text",
        file_ref: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> int: ...

    async def update_status(self, user_id: str, status: str) -> None: ...

    async def save_call_log(
        self,
        caller_id: str,
        receiver_id: str,
        call_type: str,
        status: str,
        duration_seconds: int,
    ) -> None: ...

    async def get_messages(self, user_a: str, user_b: str, limit: int = 50) -> list[Message]: ...

    async def get_call_history(self, user_id: str, limit: int = 20) -> list[CallLog]: ...


_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_id TEXT NOT NULL,
    receiver_id TEXT NOT NULL,
    message TEXT NOT NULL,
    message_type TEXT NOT NULL DEFAULT 'text',
    file_url TEXT DEFAULT NULL,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
"""

_USER_STATUS_DDL = """
CREATE TABLE IF NOT EXISTS user_status (
    user_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'offline',
    last_seen TEXT NOT NULL
);
"""

_CALL_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS call_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    caller_id TEXT NOT NULL,
    receiver_id TEXT NOT NULL,
    call_type TEXT NOT NULL DEFAULT 'audio',
    status TEXT NOT NULL DEFAULT 'missed',
    duration INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    ended_at TEXT
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, receiver_id, id);",
    "CREATE INDEX IF NOT EXISTS idx_call_logs_caller ON call_logs(caller_id);",
    "CREATE INDEX IF NOT EXISTS idx_call_logs_receiver ON call_logs(receiver_id);",
]


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteStore:
    """SQLite-backed persistence gateway."""

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Create the schema if it does not exist yet."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(_MESSAGES_DDL)
                connection.execute(_USER_STATUS_DDL)
                connection.execute(_CALL_LOGS_DDL)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await self._call("init", _init)
        logger.debug(f"Chat database initialised at {self._db_path}")

    async def close(self) -> None:  # pragma: no cover - connections are per call
        return None

    async def save_message(
        self,
        sender_id: str,
        receiver_id: str,
        body: str,
        kind: str = "text",
        file_ref: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        stamp = _to_str(created_at) if created_at is not None else _utc_now_str()
        async with self._write_lock:
            return await self._call(
                "save_message",
                self._insert,
                "INSERT INTO messages (sender_id, receiver_id, message, message_type, file_url, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (sender_id, receiver_id, body, kind, file_ref, stamp),
            )

    async def update_status(self, user_id: str, status: str) -> None:
        now = _utc_now_str()
        async with self._write_lock:
            await self._call(
                "update_status",
                self._execute,
                "INSERT INTO user_status (user_id, status, last_seen) VALUES (?, ?, ?)"
                " ON CONFLICT(user_id) DO UPDATE SET status = excluded.status, last_seen = excluded.last_seen",
                (user_id, status, now),
            )

    async def get_status(self, user_id: str) -> Optional[str]:
        row = await self._call(
            "get_status",
            self._fetchone,
            "SELECT status FROM user_status WHERE user_id = ?",
            (user_id,),
        )
        return row["status"] if row else None

    async def save_call_log(
        self,
        caller_id: str,
        receiver_id: str,
        call_type: str,
        status: str,
        duration_seconds: int,
    ) -> None:
        ended = datetime.now(timezone.utc).replace(microsecond=0)
        started = datetime.fromtimestamp(ended.timestamp() - max(duration_seconds, 0), tz=timezone.utc)
        async with self._write_lock:
            await self._call(
                "save_call_log",
                self._insert,
                "INSERT INTO call_logs (caller_id, receiver_id, call_type, status, duration, started_at, ended_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (caller_id, receiver_id, call_type, status, duration_seconds, _to_str(started), _to_str(ended)),
            )

    async def get_messages(self, user_a: str, user_b: str, limit: int = 50) -> list[Message]:
        """Most recent ``limit`` messages between two users, oldest first."""
        rows = await self._call(
            "get_messages",
            self._fetchall,
            "SELECT id, sender_id, receiver_id, message, message_type, file_url, is_read, created_at"
            " FROM messages"
            " WHERE (sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?)"
            " ORDER BY id DESC LIMIT ?",
            (user_a, user_b, user_b, user_a, limit),
        )
        return [
            Message(
                id=row["id"],
                sender_id=row["sender_id"],
                receiver_id=row["receiver_id"],
                body=row["message"],
                kind=row["message_type"],
                file_ref=row["file_url"],
                created_at=_parse_ts(row["created_at"]),
                is_read=bool(row["is_read"]),
            )
            for row in reversed(rows)
        ]

    async def get_call_history(self, user_id: str, limit: int = 20) -> list[CallLog]:
        rows = await self._call(
            "get_call_history",
            self._fetchall,
            "SELECT id, caller_id, receiver_id, call_type, status, duration, started_at, ended_at"
            " FROM call_logs WHERE caller_id = ? OR receiver_id = ?"
            " ORDER BY id DESC LIMIT ?",
            (user_id, user_id, limit),
        )
        return [
            CallLog(
                id=row["id"],
                caller_id=row["caller_id"],
                receiver_id=row["receiver_id"],
                call_type=row["call_type"],
                status=row["status"],
                duration=row["duration"],
                started_at=_parse_ts(row["started_at"]),
                ended_at=_parse_ts(row["ended_at"]) if row["ended_at"] else None,
            )
            for row in rows
        ]

    async def _call(self, operation: str, fn: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            raise PersistenceError(f"{operation} failed: {exc}", operation) from exc

    def _execute(self, query: str, params: tuple = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _insert(self, query: str, params: tuple = ()) -> int:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            connection.commit()
            return int(cursor.lastrowid)

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            cursor = connection.execute(query, params)
            return cursor.fetchone()


def _to_str(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None).isoformat(timespec="milliseconds") + "Z"


def _utc_now_str() -> str:
    return _to_str(datetime.now(timezone.utc).replace(microsecond=0))


def _parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1]
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
