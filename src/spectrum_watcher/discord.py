"""Discord API client used to deliver announcements."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import aiohttp

_API_BASE = "https://discord.com/api/v10"
_DEFAULT_USER_AGENT = "DiscordBot (https://robertsspaceindustries.com/spectrum, 1.0)"

# Guild text, announcement and the three thread channel types.
TEXT_CHANNEL_TYPES = frozenset({0, 5, 10, 11, 12})

logger = logging.getLogger(__name__)


class DiscordAPIError(Exception):
    """Discord rejected a request."""

    def __init__(self, status: int | None, message: str):
        super().__init__(f"{status}: {message}" if status is not None else message)
        self.status = status
        self.message = message


@dataclass(slots=True)
class ChannelInfo:
    """Basic channel metadata from Discord API."""

    id: str
    type: int
    guild_id: str | None = None
    name: str | None = None

    @property
    def is_text_based(self) -> bool:
        return self.type in TEXT_CHANNEL_TYPES


class Announcer(Protocol):
    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None: ...

    async def send_embed(self, channel_id: str, embed: Mapping[str, Any]) -> None: ...


class DiscordClient:
    """Thin asynchronous wrapper around the Discord REST API."""

    def __init__(self, session: aiohttp.ClientSession, token: str | None = None):
        self._session = session
        self._token: str | None = None
        self._lock = asyncio.Lock()
        self.set_token(token)

    def set_token(self, token: str | None) -> None:
        token = token.strip() if token else ""
        if token and not token.lower().startswith("bot "):
            token = f"Bot {token}"
        self._token = token or None

    @property
    def has_token(self) -> bool:
        return self._token is not None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": self._token or "",
            "User-Agent": _DEFAULT_USER_AGENT,
            "Accept": "application/json",
        }

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None:
        """Fetch channel metadata, or ``None`` when it cannot be resolved."""
        if not self._token:
            return None

        url = f"{_API_BASE}/channels/{channel_id}"
        async with self._lock:
            try:
                timeout_cfg = aiohttp.ClientTimeout(total=15)
                async with self._session.get(
                    url, headers=self._headers(), timeout=timeout_cfg
                ) as resp:
                    if resp.status >= 400:
                        logger.warning(
                            "Discord ответил статусом %s при получении информации о канале %s",
                            resp.status,
                            channel_id,
                        )
                        return None
                    data = await resp.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Не удалось получить информацию о Discord канале %s: %s",
                    channel_id,
                    exc,
                )
                return None

        if not isinstance(data, Mapping):
            return None

        try:
            channel_type = int(str(data.get("type")))
        except (TypeError, ValueError):
            channel_type = -1

        return ChannelInfo(
            id=str(data.get("id") or channel_id),
            type=channel_type,
            guild_id=str(data.get("guild_id")) if data.get("guild_id") else None,
            name=str(data.get("name")) if data.get("name") else None,
        )

    async def send_embed(self, channel_id: str, embed: Mapping[str, Any]) -> None:
        """Post a single embed message; raises :class:`DiscordAPIError` on failure."""
        if not self._token:
            raise DiscordAPIError(None, "Discord token is not configured")

        url = f"{_API_BASE}/channels/{channel_id}/messages"
        headers = self._headers()
        headers["Content-Type"] = "application/json"
        async with self._lock:
            try:
                timeout_cfg = aiohttp.ClientTimeout(total=20)
                async with self._session.post(
                    url,
                    headers=headers,
                    json={"embeds": [dict(embed)]},
                    timeout=timeout_cfg,
                ) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        raise DiscordAPIError(resp.status, body[:300])
                    await resp.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise DiscordAPIError(None, str(exc) or exc.__class__.__name__) from exc
