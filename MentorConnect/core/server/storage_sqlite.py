"""SQLite persistence for the MentorConnect relay.

Stores chat messages and each user's online flag / last-active time.
Message rows carry the fields the relay depends on: chat_id, sender_id,
receiver_id, content, type, created_at (plus the read flag).

``SQLiteStore`` is synchronous and guarded by a lock so it can be used
from executor threads. ``SQLitePersistence`` wraps it in the async
Persistence protocol the core talks to.

The DB file location is controlled by Config.SQLITE_DB_FILE.
"""

from __future__ import annotations

import asyncio
import functools
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from MentorConnect.core.message.protocol import ChatMessage, ContentType, chat_id
from MentorConnect.core.server.errors import PersistenceError


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS users (
  user_id TEXT PRIMARY KEY,
  is_online INTEGER NOT NULL DEFAULT 0,
  last_active REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  chat_id TEXT NOT NULL,
  sender_id TEXT NOT NULL,
  receiver_id TEXT NOT NULL,
  content TEXT NOT NULL,
  type TEXT NOT NULL DEFAULT 'text' CHECK (type IN ('text', 'image', 'file')),
  is_read INTEGER NOT NULL DEFAULT 0,
  created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id, id);

CREATE INDEX IF NOT EXISTS idx_messages_unread ON messages(receiver_id, is_read);
"""


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        chat_id=str(row["chat_id"]),
        sender_id=str(row["sender_id"]),
        receiver_id=str(row["receiver_id"]),
        content=str(row["content"]),
        type=ContentType(row["type"]),
        created_at=float(row["created_at"]),
        id=int(row["id"]),
        is_read=bool(row["is_read"]),
    )


class SQLiteStore:
    """A small SQLite-backed store."""

    def __init__(self, db_path: str):
        self.db_path = db_path if db_path == ":memory:" else str(Path(db_path))
        self._lock = threading.RLock()
        self._closed = False
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._guard("init schema"):
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            if self._closed:
                raise PersistenceError(f"{operation} failed: store is closed")
            try:
                yield
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.rollback()
                raise PersistenceError(f"{operation} failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                self._conn.close()

    # --------------------------- users ---------------------------
    def set_user_online_status(self, user_id: str, is_online: bool, last_active: float) -> None:
        with self._guard("set_user_online_status"):
            self._conn.execute(
                """
                INSERT INTO users(user_id, is_online, last_active) VALUES(?,?,?)
                ON CONFLICT(user_id) DO UPDATE SET
                  is_online=excluded.is_online,
                  last_active=excluded.last_active
                """,
                (user_id, 1 if is_online else 0, float(last_active)),
            )
            self._conn.commit()

    def get_user_status(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._guard("get_user_status"):
            row = self._conn.execute(
                "SELECT user_id, is_online, last_active FROM users WHERE user_id=?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "user_id": str(row["user_id"]),
            "is_online": bool(row["is_online"]),
            "last_active": float(row["last_active"]),
        }

    def reset_online_flags(self) -> int:
        """Mark every user offline. Used at startup; returns rows changed."""
        with self._guard("reset_online_flags"):
            cur = self._conn.execute("UPDATE users SET is_online=0 WHERE is_online=1")
            self._conn.commit()
            return cur.rowcount

    # ------------------------- messages -------------------------
    def save_message(self, message: ChatMessage) -> ChatMessage:
        """Insert a message and return a copy carrying its row id."""
        with self._guard("save_message"):
            cur = self._conn.execute(
                """
                INSERT INTO messages(chat_id, sender_id, receiver_id, content, type, is_read, created_at)
                VALUES(?,?,?,?,?,?,?)
                """,
                (
                    message.chat_id,
                    message.sender_id,
                    message.receiver_id,
                    message.content,
                    message.type.value,
                    1 if message.is_read else 0,
                    float(message.created_at),
                ),
            )
            self._conn.commit()
            row_id = int(cur.lastrowid)
        return ChatMessage(
            chat_id=message.chat_id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            content=message.content,
            type=message.type,
            created_at=message.created_at,
            id=row_id,
            is_read=message.is_read,
        )

    def get_history(self, user_id: str, other_id: str, limit: int = 50) -> List[ChatMessage]:
        with self._guard("get_history"):
            rows = self._conn.execute(
                """
                SELECT * FROM messages
                WHERE chat_id=?
                ORDER BY id DESC
                LIMIT ?
                """,
                (chat_id(user_id, other_id), int(limit)),
            ).fetchall()
        # Return chronological order
        rows.reverse()
        return [_row_to_message(r) for r in rows]

    def list_chats(self, user_id: str) -> List[Dict[str, Any]]:
        with self._guard("list_chats"):
            last_rows = self._conn.execute(
                """
                SELECT * FROM messages
                WHERE id IN (
                  SELECT MAX(id) FROM messages
                  WHERE sender_id=? OR receiver_id=?
                  GROUP BY chat_id
                )
                ORDER BY id DESC
                """,
                (user_id, user_id),
            ).fetchall()
            unread_rows = self._conn.execute(
                """
                SELECT chat_id, COUNT(*) AS unread FROM messages
                WHERE receiver_id=? AND is_read=0
                GROUP BY chat_id
                """,
                (user_id,),
            ).fetchall()
            online_rows = self._conn.execute(
                "SELECT user_id, is_online, last_active FROM users"
            ).fetchall()

        unread = {str(r["chat_id"]): int(r["unread"]) for r in unread_rows}
        status = {str(r["user_id"]): r for r in online_rows}
        out: List[Dict[str, Any]] = []
        for r in last_rows:
            partner = str(r["receiver_id"]) if r["sender_id"] == user_id else str(r["sender_id"])
            partner_status = status.get(partner)
            out.append(
                {
                    "chat_id": str(r["chat_id"]),
                    "with": partner,
                    "last_message": str(r["content"]),
                    "last_type": str(r["type"]),
                    "last_sender": str(r["sender_id"]),
                    "last_created_at": float(r["created_at"]),
                    "unread": unread.get(str(r["chat_id"]), 0),
                    "is_online": bool(partner_status["is_online"]) if partner_status else False,
                    "last_active": float(partner_status["last_active"]) if partner_status else None,
                }
            )
        return out

    def mark_read(self, reader_id: str, other_id: str) -> int:
        with self._guard("mark_read"):
            cur = self._conn.execute(
                "UPDATE messages SET is_read=1 WHERE chat_id=? AND receiver_id=? AND is_read=0",
                (chat_id(reader_id, other_id), reader_id),
            )
            self._conn.commit()
            return cur.rowcount


class SQLitePersistence:
    """
    Async Persistence adapter over SQLiteStore.

    Each call runs in the default executor so the event loop never blocks
    on disk I/O.
    """

    def __init__(self, store: SQLiteStore):
        self._store = store

    @property
    def store(self) -> SQLiteStore:
        return self._store

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def save_message(self, message: ChatMessage) -> ChatMessage:
        return await self._run(self._store.save_message, message)

    async def set_user_online_status(self, user_id: str, is_online: bool, last_active: float) -> None:
        await self._run(self._store.set_user_online_status, user_id, is_online, last_active)

    async def get_history(self, user_id: str, other_id: str, limit: int = 50) -> List[ChatMessage]:
        return await self._run(self._store.get_history, user_id, other_id, limit)

    async def list_chats(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._run(self._store.list_chats, user_id)

    async def mark_read(self, reader_id: str, other_id: str) -> int:
        return await self._run(self._store.mark_read, reader_id, other_id)

    def close(self) -> None:
        self._store.close()
