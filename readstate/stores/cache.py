"""Persistent message cache: sqlite-backed history and read positions.

The cache is never the source of truth; it refills timelines that were
trimmed in memory and keeps last_seen_message_id across restarts.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from readstate.errors import CacheError
from readstate.lib.sqlite import connect
from readstate.models import Message

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    entity_id TEXT NOT NULL,
    dedup_key TEXT NOT NULL,
    message_id TEXT NOT NULL,
    sender TEXT NOT NULL,
    archive_id TEXT,
    timestamp TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    is_outgoing INTEGER NOT NULL DEFAULT 0,
    is_delayed INTEGER NOT NULL DEFAULT 0,
    is_mention INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (entity_id, dedup_key)
);
CREATE INDEX IF NOT EXISTS idx_messages_entity_ts ON messages(entity_id, timestamp);
CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_archive ON messages(entity_id, archive_id)
    WHERE archive_id IS NOT NULL;
CREATE TABLE IF NOT EXISTS read_positions (
    entity_id TEXT PRIMARY KEY,
    last_seen_message_id TEXT,
    last_read_at TEXT
);
"""

_COLUMNS = "message_id, sender, archive_id, timestamp, body, is_outgoing, is_delayed, is_mention"


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["message_id"],
        sender=row["sender"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        body=row["body"],
        archive_id=row["archive_id"],
        is_outgoing=bool(row["is_outgoing"]),
        is_delayed=bool(row["is_delayed"]),
        is_mention=bool(row["is_mention"]),
    )


def _iso(ts: datetime) -> str:
    # UTC so text ordering in sqlite matches time ordering
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat()


def _dedup_key(msg: Message) -> str:
    # sender + local id is present on every message; archive ids are optional
    return f"from:{msg.sender}:id:{msg.id}"


class MessageCache:
    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = connect(db_path)
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise CacheError(f"Cannot open message cache at {db_path}: {e}") from e

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            with self._lock:
                return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise CacheError(f"Message cache query failed: {e}") from e

    def save_messages(self, entity_id: str, messages: Iterable[Message]) -> int:
        """Insert messages not already cached. Returns the number written."""
        rows = [
            (
                entity_id,
                _dedup_key(msg),
                msg.id,
                msg.sender,
                msg.archive_id,
                _iso(msg.timestamp),
                msg.body,
                int(msg.is_outgoing),
                int(msg.is_delayed),
                int(msg.is_mention),
            )
            for msg in messages
            if not msg.no_store
        ]
        if not rows:
            return 0
        try:
            with self._lock:
                before = self._conn.total_changes
                self._conn.execute("BEGIN")
                self._conn.executemany(
                    "INSERT OR IGNORE INTO messages (entity_id, dedup_key, " + _COLUMNS + ") "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
                self._conn.execute("COMMIT")
                written = self._conn.total_changes - before
        except sqlite3.Error as e:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            raise CacheError(f"Failed to cache messages for {entity_id}: {e}") from e
        log.debug(f"Cached {written}/{len(rows)} messages for {entity_id}")
        return written

    def query(
        self,
        entity_id: str,
        before: datetime | None = None,
        after: datetime | None = None,
        limit: int = 100,
    ) -> list[Message]:
        """Cached messages in ascending time order.

        With `before` only, returns the newest `limit` messages older than it;
        otherwise the oldest `limit` messages matching the bounds.
        """
        clauses = ["entity_id = ?"]
        params: list = [entity_id]
        if before is not None:
            clauses.append("timestamp < ?")
            params.append(_iso(before))
        if after is not None:
            clauses.append("timestamp > ?")
            params.append(_iso(after))
        where = " AND ".join(clauses)

        newest_first = before is not None and after is None
        order = "DESC" if newest_first else "ASC"
        rows = self._execute(
            f"SELECT {_COLUMNS} FROM messages WHERE {where} "
            f"ORDER BY timestamp {order}, rowid {order} LIMIT ?",
            (*params, limit),
        ).fetchall()
        messages = [_row_to_message(row) for row in rows]
        if newest_first:
            messages.reverse()
        return messages

    def latest(self, entity_id: str, limit: int = 100) -> list[Message]:
        rows = self._execute(
            f"SELECT {_COLUMNS} FROM messages WHERE entity_id = ? "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (entity_id, limit),
        ).fetchall()
        return [_row_to_message(row) for row in reversed(rows)]

    def count(self, entity_id: str) -> int:
        row = self._execute(
            "SELECT COUNT(*) FROM messages WHERE entity_id = ?", (entity_id,)
        ).fetchone()
        return row[0]

    def save_read_position(
        self,
        entity_id: str,
        last_seen_message_id: str | None,
        last_read_at: datetime | None = None,
    ) -> None:
        self._execute(
            """
            INSERT INTO read_positions (entity_id, last_seen_message_id, last_read_at)
            VALUES (?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                last_seen_message_id = excluded.last_seen_message_id,
                last_read_at = excluded.last_read_at
            """,
            (entity_id, last_seen_message_id, _iso(last_read_at) if last_read_at else None),
        )

    def load_read_position(self, entity_id: str) -> tuple[str | None, datetime | None]:
        row = self._execute(
            "SELECT last_seen_message_id, last_read_at FROM read_positions WHERE entity_id = ?",
            (entity_id,),
        ).fetchone()
        if not row:
            return None, None
        last_read_at = datetime.fromisoformat(row["last_read_at"]) if row["last_read_at"] else None
        return row["last_seen_message_id"], last_read_at

    def clear(self, entity_id: str) -> None:
        """Drop cached history for an entity; the read position is kept."""
        self._execute("DELETE FROM messages WHERE entity_id = ?", (entity_id,))

    def forget(self, entity_id: str) -> None:
        self._execute("DELETE FROM messages WHERE entity_id = ?", (entity_id,))
        self._execute("DELETE FROM read_positions WHERE entity_id = ?", (entity_id,))
