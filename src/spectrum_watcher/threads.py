"""Thread identifiers, ordering and URL helpers."""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import quote

COMMUNITY_FORUM_URL = "https://robertsspaceindustries.com/spectrum/community/SC/forum"

# Spectrum has been seen to return ids under any of these names.
_THREAD_ID_FIELDS: tuple[str, ...] = ("id", "thread_id", "threadId", "post_id")
_SLUG_PATHS: tuple[tuple[str, ...], ...] = (("slug",), ("thread", "slug"))

_INTEGER_RE = re.compile(r"-?[0-9]+")


@dataclass(frozen=True, slots=True)
class ThreadIdentifier:
    """Thread id as received from Spectrum.

    ``raw`` is kept verbatim for storage and display. ``numeric`` holds the
    exact integer value when ``raw`` is a decimal integer.
    """

    raw: str
    numeric: int | None

    def __str__(self) -> str:
        return self.raw


def parse_thread_id(value: Any) -> ThreadIdentifier | None:
    if value is None:
        return None
    raw = str(value)
    stripped = raw.strip()
    if not stripped:
        return None
    numeric: int | None = None
    if _INTEGER_RE.fullmatch(stripped):
        try:
            numeric = int(stripped)
        except ValueError:
            # Beyond the interpreter's int conversion limit; ordered by raw text.
            numeric = None
    return ThreadIdentifier(raw=raw, numeric=numeric)


def is_newer(candidate: ThreadIdentifier, baseline: ThreadIdentifier | None) -> bool:
    """Return True when ``candidate`` sorts after ``baseline``.

    Numeric ids compare as integers. As soon as either side is not numeric
    the comparison falls back to the raw strings.
    """

    if baseline is None:
        return True
    if candidate.numeric is not None and baseline.numeric is not None:
        return candidate.numeric > baseline.numeric
    return candidate.raw > baseline.raw


def _compare(left: ThreadIdentifier, right: ThreadIdentifier) -> int:
    if is_newer(left, right):
        return 1
    if is_newer(right, left):
        return -1
    return 0


thread_sort_key = functools.cmp_to_key(_compare)


@dataclass(frozen=True, slots=True)
class ThreadEntry:
    """Thread list item paired with its parsed identifier."""

    payload: Mapping[str, Any]
    thread_id: ThreadIdentifier

    @property
    def slug(self) -> str | None:
        return extract_slug(self.payload)

    @property
    def subject(self) -> str:
        return str(self.payload.get("subject") or "").strip()


def extract_thread_id(thread: Mapping[str, Any]) -> ThreadIdentifier | None:
    for field in _THREAD_ID_FIELDS:
        value = thread.get(field)
        if value is not None:
            return parse_thread_id(value)
    return None


def extract_slug(thread: Mapping[str, Any] | None) -> str | None:
    if not isinstance(thread, Mapping):
        return None
    for path in _SLUG_PATHS:
        node: Any = thread
        for key in path:
            node = node.get(key) if isinstance(node, Mapping) else None
        if isinstance(node, str) and node.strip():
            return node.strip()
    return None


def collect_entries(threads: Iterable[Any]) -> list[ThreadEntry]:
    """Parse thread ids and sort entries from oldest to newest."""

    entries: list[ThreadEntry] = []
    for thread in threads:
        if not isinstance(thread, Mapping):
            continue
        thread_id = extract_thread_id(thread)
        if thread_id is None:
            continue
        entries.append(ThreadEntry(payload=thread, thread_id=thread_id))
    entries.sort(key=lambda entry: thread_sort_key(entry.thread_id))
    return entries


def newer_entries(
    entries: Sequence[ThreadEntry], cursor: ThreadIdentifier | None
) -> list[ThreadEntry]:
    newer = [entry for entry in entries if is_newer(entry.thread_id, cursor)]
    newer.sort(key=lambda entry: thread_sort_key(entry.thread_id))
    return newer


def forum_url(forum_id: str) -> str:
    return f"{COMMUNITY_FORUM_URL}/{quote(str(forum_id), safe='')}"


def build_thread_url(forum_id: str, slug: str | None) -> str:
    base = forum_url(forum_id)
    if not slug:
        return base
    return f"{base}/thread/{quote(slug, safe='')}"
