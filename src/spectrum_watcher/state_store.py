"""Durable per-subscriber cursor of the last announced thread."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Protocol, Sequence

from .models import WatchCursor
from .threads import ThreadIdentifier, parse_thread_id

logger = logging.getLogger(__name__)


class RowStore(Protocol):
    def execute(self, query: str, params: Sequence[Any] = ()) -> Sequence[Any]: ...


class CursorCache:
    """In-memory view of persisted cursors, keyed by subscriber."""

    def __init__(self) -> None:
        self._entries: dict[str, ThreadIdentifier] = {}

    def get(self, subscriber_id: str) -> ThreadIdentifier | None:
        return self._entries.get(str(subscriber_id))

    def put(self, subscriber_id: str, thread_id: ThreadIdentifier) -> None:
        self._entries[str(subscriber_id)] = thread_id

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)


class StateStore:
    """Cache-aside access to the ``spectrum_watcher_state`` table.

    The cache is only written after the row store accepted the value, so it
    never runs ahead of what is persisted.
    """

    def __init__(self, rows: RowStore, cache: CursorCache | None = None):
        self._rows = rows
        self._cache = cache if cache is not None else CursorCache()

    @property
    def cache(self) -> CursorCache:
        return self._cache

    def ensure_schema(self) -> None:
        # Ids stay text; numeric ids wider than 64 bits must round-trip exactly.
        self._rows.execute(
            "CREATE TABLE IF NOT EXISTS spectrum_watcher_state ("
            " subscriber_id TEXT NOT NULL PRIMARY KEY,"
            " last_thread_id TEXT"
            ")"
        )

    def load_all(self) -> int:
        rows = self._rows.execute(
            "SELECT subscriber_id, last_thread_id FROM spectrum_watcher_state"
        )
        self._cache.clear()
        for row in rows:
            thread_id = parse_thread_id(row["last_thread_id"])
            if thread_id is None:
                continue
            self._cache.put(str(row["subscriber_id"]), thread_id)
        return len(self._cache)

    def get(self, subscriber_id: str) -> WatchCursor | None:
        key = str(subscriber_id)
        cached = self._cache.get(key)
        if cached is not None:
            return WatchCursor(subscriber_id=key, thread_id=cached)

        rows = self._rows.execute(
            "SELECT last_thread_id FROM spectrum_watcher_state WHERE subscriber_id=?",
            (key,),
        )
        if not rows:
            return None
        thread_id = parse_thread_id(rows[0]["last_thread_id"])
        if thread_id is None:
            return None
        self._cache.put(key, thread_id)
        return WatchCursor(subscriber_id=key, thread_id=thread_id)

    def set(self, subscriber_id: str, value: Any) -> WatchCursor | None:
        key = str(subscriber_id)
        thread_id = parse_thread_id(value)
        if thread_id is None:
            return None

        self._rows.execute(
            "INSERT INTO spectrum_watcher_state(subscriber_id, last_thread_id)"
            " VALUES(?, ?)"
            " ON CONFLICT(subscriber_id) DO UPDATE SET last_thread_id=excluded.last_thread_id",
            (key, thread_id.raw),
        )
        self._cache.put(key, thread_id)
        logger.debug("Курсор %s перемещён на тред %s", key, thread_id.raw)
        return WatchCursor(subscriber_id=key, thread_id=thread_id)
