"""Spectrum session token acquisition and caching."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import aiohttp

from .models import SessionCredentials
from .threads import COMMUNITY_FORUM_URL, forum_url

SPECTRUM_ROOT_URL = "https://robertsspaceindustries.com/spectrum"
USER_AGENT = "SpectrumWatcher/1.0 (+https://robertsspaceindustries.com/spectrum)"
SESSION_TTL = 15 * 60.0

_RSI_TOKEN_COOKIE = "Rsi-Token"
_SINGLE_QUOTED_MARK_RE = re.compile(r"'token'\s*:\s*'([^']+)'")
_DOUBLE_QUOTED_MARK_RE = re.compile(r'"token"\s*:\s*"([^"]+)"')

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CachedTokens:
    rsi_token: str
    mark_token: str
    expires_at: float


class SessionCache:
    """Process-wide token pair shared by every forum."""

    def __init__(
        self,
        *,
        ttl: float = SESSION_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entry: CachedTokens | None = None

    def now(self) -> float:
        return self._clock()

    def get(self, *, allow_expired: bool = False) -> CachedTokens | None:
        entry = self._entry
        if entry is None:
            return None
        if not allow_expired and entry.expires_at <= self._clock():
            return None
        return entry

    def store(self, rsi_token: str, mark_token: str) -> CachedTokens | None:
        if not rsi_token or not mark_token:
            return None
        self._entry = CachedTokens(
            rsi_token=rsi_token,
            mark_token=mark_token,
            expires_at=self._clock() + self._ttl,
        )
        return self._entry

    def clear(self) -> None:
        self._entry = None


def extract_cookie_value(cookies: Iterable[Any], name: str) -> str | None:
    """Return the first value of cookie ``name`` (case-insensitive)."""

    wanted = name.strip().lower()
    for cookie in cookies:
        if not isinstance(cookie, str):
            continue
        for part in cookie.split(";"):
            key, sep, value = part.strip().partition("=")
            if sep and key.strip().lower() == wanted:
                return value
    return None


def extract_mark_token(html: str | None) -> str | None:
    if not html:
        return None
    match = _SINGLE_QUOTED_MARK_RE.search(html) or _DOUBLE_QUOTED_MARK_RE.search(html)
    return match.group(1) if match else None


def build_credentials(
    tokens: CachedTokens | None, forum_id: str
) -> SessionCredentials | None:
    if tokens is None or not tokens.rsi_token or not tokens.mark_token:
        return None
    return SessionCredentials(
        forum_id=str(forum_id),
        rsi_token=tokens.rsi_token,
        mark_token=tokens.mark_token,
        referer=forum_url(forum_id),
        cookie_header=f"Rsi-Token={tokens.rsi_token}; Rsi-Mark={tokens.mark_token}",
        expires_at=tokens.expires_at,
    )


def preflight_urls(forum_id: str) -> list[str]:
    forum_path = forum_url(forum_id)
    return [forum_path, f"{forum_path}/", COMMUNITY_FORUM_URL, SPECTRUM_ROOT_URL]


class TokenManager:
    """Obtain short-lived Spectrum tokens by loading a public forum page."""

    def __init__(self, session: aiohttp.ClientSession, cache: SessionCache):
        self._session = session
        self._cache = cache

    @property
    def cache(self) -> SessionCache:
        return self._cache

    async def acquire(self, forum_id: str) -> SessionCredentials | None:
        cached = self._cache.get()
        if cached is not None:
            return build_credentials(cached, forum_id)

        for url in preflight_urls(forum_id):
            tokens = await self.fetch_tokens(url)
            if tokens is not None:
                return build_credentials(tokens, forum_id)

        fallback = self._cache.get(allow_expired=True)
        if fallback is not None:
            logger.warning(
                "Не удалось обновить токены Spectrum для форума %s, используются устаревшие",
                forum_id,
            )
            return build_credentials(fallback, forum_id)

        logger.warning("Нет токенов Spectrum для форума %s", forum_id)
        return None

    async def fetch_tokens(self, url: str) -> CachedTokens | None:
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        try:
            timeout_cfg = aiohttp.ClientTimeout(total=15)
            async with self._session.get(url, headers=headers, timeout=timeout_cfg) as resp:
                if resp.status >= 400:
                    logger.warning(
                        "Предварительный запрос токенов %s вернул статус %s", url, resp.status
                    )
                    await resp.read()
                    return None
                html = await resp.text()
                cookies = resp.headers.getall("Set-Cookie", [])
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Не удалось получить токены Spectrum с %s: %s", url, exc)
            return None

        rsi_token = extract_cookie_value(cookies, _RSI_TOKEN_COOKIE)
        mark_token = extract_mark_token(html)
        if not rsi_token or not mark_token:
            logger.debug("Страница %s не содержит полного набора токенов", url)
            return None
        return self._cache.store(rsi_token, mark_token)
