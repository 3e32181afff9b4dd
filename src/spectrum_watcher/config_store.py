"""SQLite backed storage for Spectrum Watcher configuration."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from .models import SubscriberConfig

_DB_PRAGMA = "PRAGMA journal_mode=WAL;" "PRAGMA synchronous=NORMAL;" "PRAGMA foreign_keys=ON;"

MAX_FORUM_ID_LENGTH = 32

_UNSET: Any = object()


class ConfigStore:
    """Persisted settings, subscriber configuration and generic row access."""

    def __init__(self, path: Path):
        self._path = path
        self._conn = sqlite3.connect(self._path)
        self._conn.row_factory = sqlite3.Row
        self._setup()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------
    def _setup(self) -> None:
        with closing(self._conn.cursor()) as cur:
            for statement in _DB_PRAGMA.split(";"):
                if statement.strip():
                    cur.execute(statement)
            cur.executescript(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS spectrum_config (
                    subscriber_id TEXT NOT NULL PRIMARY KEY,
                    destination_id TEXT,
                    forum_id TEXT,
                    updated_by TEXT,
                    updated_at TEXT
                );
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Generic row access
    # ------------------------------------------------------------------
    def execute(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a parameterised statement and return the fetched rows."""

        with closing(self._conn.cursor()) as cur:
            try:
                cur.execute(query, tuple(params))
                rows = cur.fetchall()
            except sqlite3.Error:
                self._conn.rollback()
                raise
            self._conn.commit()
        return rows

    # ------------------------------------------------------------------
    # Basic settings
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "INSERT INTO settings(key, value) VALUES(?, ?)"
                " ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, value),
            )
            self._conn.commit()

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with closing(self._conn.cursor()) as cur:
            cur.execute("SELECT value FROM settings WHERE key=?", (key,))
            row = cur.fetchone()
        return row["value"] if row else default

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------
    def get_subscriber(self, subscriber_id: str) -> SubscriberConfig | None:
        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "SELECT subscriber_id, destination_id, forum_id, updated_by, updated_at"
                " FROM spectrum_config WHERE subscriber_id=?",
                (str(subscriber_id),),
            )
            row = cur.fetchone()
        return _row_to_subscriber(row) if row else None

    def list_subscribers(self) -> list[SubscriberConfig]:
        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "SELECT subscriber_id, destination_id, forum_id, updated_by, updated_at"
                " FROM spectrum_config ORDER BY subscriber_id"
            )
            rows = cur.fetchall()
        return [_row_to_subscriber(row) for row in rows]

    def set_subscriber(
        self,
        subscriber_id: str,
        *,
        forum_id: str | None = _UNSET,
        destination_id: str | None = _UNSET,
        updated_by: str | None = None,
    ) -> SubscriberConfig:
        """Create or update a subscriber, keeping fields that were not passed."""

        key = str(subscriber_id)
        current = self.get_subscriber(key)
        if forum_id is _UNSET:
            next_forum = current.forum_id if current else None
        else:
            next_forum = _normalize_forum_id(forum_id)
        if destination_id is _UNSET:
            next_destination = current.destination_id if current else None
        else:
            next_destination = (str(destination_id).strip() or None) if destination_id else None

        updated_at = datetime.now(timezone.utc)
        with closing(self._conn.cursor()) as cur:
            cur.execute(
                "INSERT INTO spectrum_config("
                "subscriber_id, destination_id, forum_id, updated_by, updated_at)"
                " VALUES(?, ?, ?, ?, ?)"
                " ON CONFLICT(subscriber_id) DO UPDATE SET"
                " destination_id=excluded.destination_id,"
                " forum_id=excluded.forum_id,"
                " updated_by=excluded.updated_by,"
                " updated_at=excluded.updated_at",
                (
                    key,
                    next_destination,
                    next_forum,
                    str(updated_by) if updated_by else None,
                    updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        return SubscriberConfig(
            subscriber_id=key,
            forum_id=next_forum,
            destination_id=next_destination,
            updated_by=str(updated_by) if updated_by else None,
            updated_at=updated_at,
        )

    def clear_subscriber(self, subscriber_id: str) -> bool:
        with closing(self._conn.cursor()) as cur:
            cur.execute("DELETE FROM spectrum_config WHERE subscriber_id=?", (str(subscriber_id),))
            deleted = cur.rowcount > 0
            self._conn.commit()
        return deleted


def _normalize_forum_id(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    if not stripped:
        raise ValueError("Forum id must not be blank")
    if len(stripped) > MAX_FORUM_ID_LENGTH:
        raise ValueError(f"Forum id must be at most {MAX_FORUM_ID_LENGTH} characters")
    return stripped


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_subscriber(row: sqlite3.Row) -> SubscriberConfig:
    return SubscriberConfig(
        subscriber_id=str(row["subscriber_id"]),
        forum_id=str(row["forum_id"]) if row["forum_id"] else None,
        destination_id=str(row["destination_id"]) if row["destination_id"] else None,
        updated_by=str(row["updated_by"]) if row["updated_by"] else None,
        updated_at=_parse_timestamp(row["updated_at"]),
    )
