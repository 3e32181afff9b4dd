"""Data models used across the watcher service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .threads import ThreadIdentifier


@dataclass(slots=True)
class RuntimeOptions:
    """Tunable behaviour of the polling loop."""

    poll_interval: float = 300.0
    initial_delay: float = 10.0
    send_rate: float = 1.0


@dataclass(slots=True)
class SubscriberConfig:
    """One community watching a Spectrum forum."""

    subscriber_id: str
    forum_id: str | None
    destination_id: str | None
    updated_by: str | None = None
    updated_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.forum_id and self.destination_id)


@dataclass(slots=True)
class SessionCredentials:
    """Authentication context for a single forum."""

    forum_id: str
    rsi_token: str
    mark_token: str
    referer: str
    cookie_header: str
    expires_at: float


@dataclass(slots=True)
class WatchCursor:
    """Last successfully announced thread of a subscriber."""

    subscriber_id: str
    thread_id: "ThreadIdentifier"


@dataclass(slots=True)
class RenderedThread:
    """Outgoing announcement produced by the renderer."""

    title: str
    url: str
    author_name: str
    author_icon: str | None
    description: str
    image_url: str | None
    footer: str | None
    timestamp: datetime
