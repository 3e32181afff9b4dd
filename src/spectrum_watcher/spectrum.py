"""Spectrum forum API client."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

import aiohttp

from .models import SessionCredentials
from .session import USER_AGENT, TokenManager

API_ROOT = "https://robertsspaceindustries.com/api/spectrum"
THREAD_LIST_ENDPOINT = "/forum/channel/threads"
THREAD_DETAIL_ENDPOINT = "/forum/thread/classic"
THREAD_LIST_SORT = "newest"
THREAD_DETAIL_SORT = "newest"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ListResponse:
    threads: Sequence[Mapping[str, Any]] = field(default_factory=tuple)


@dataclass(slots=True)
class DetailResponse:
    detail: Mapping[str, Any]


@dataclass(slots=True)
class ErrorResponse:
    reason: str
    status: int | None = None


ApiResponse = Union[ListResponse, DetailResponse, ErrorResponse]


def decode_response(status: int, text: str, *, kind: str) -> ApiResponse:
    """Turn a raw Spectrum reply into one of the response variants.

    ``kind`` is ``"list"`` for thread listings and ``"detail"`` otherwise.
    """

    if status >= 400:
        return ErrorResponse(reason=f"HTTP {status}", status=status)
    try:
        payload = json.loads(text) if text else None
    except ValueError:
        return ErrorResponse(reason="invalid JSON payload", status=status)
    if not isinstance(payload, Mapping) or payload.get("success") != 1:
        message = payload.get("msg") if isinstance(payload, Mapping) else None
        return ErrorResponse(reason=str(message or "unknown error"), status=status)

    data = payload.get("data")
    if kind == "list":
        threads = data.get("threads") if isinstance(data, Mapping) else None
        if not isinstance(threads, list):
            return ListResponse()
        return ListResponse(
            threads=tuple(item for item in threads if isinstance(item, Mapping))
        )
    if not isinstance(data, Mapping):
        return ErrorResponse(reason="missing thread payload", status=status)
    return DetailResponse(detail=data)


class SpectrumClient:
    """Thin asynchronous wrapper around the Spectrum forum API."""

    def __init__(self, session: aiohttp.ClientSession, tokens: TokenManager):
        self._session = session
        self._tokens = tokens

    async def list_threads(
        self, forum_id: str
    ) -> tuple[Sequence[Mapping[str, Any]], SessionCredentials | None]:
        credentials = await self._tokens.acquire(forum_id)
        if credentials is None:
            return [], None

        response = await self.request(
            credentials,
            THREAD_LIST_ENDPOINT,
            {"channel_id": str(forum_id), "page": 1, "sort": THREAD_LIST_SORT},
            kind="list",
        )
        if not isinstance(response, ListResponse):
            return [], credentials
        return list(response.threads), credentials

    async def thread_detail(
        self, credentials: SessionCredentials | None, slug: str | None
    ) -> Mapping[str, Any] | None:
        if credentials is None or not slug:
            return None
        response = await self.request(
            credentials,
            THREAD_DETAIL_ENDPOINT,
            {"slug": slug, "sort": THREAD_DETAIL_SORT},
            kind="detail",
        )
        if isinstance(response, DetailResponse):
            return response.detail
        return None

    async def request(
        self,
        credentials: SessionCredentials | None,
        endpoint: str,
        payload: Mapping[str, Any],
        *,
        kind: str = "detail",
    ) -> ApiResponse:
        if credentials is None:
            return ErrorResponse(reason="no session")

        headers = {
            "User-Agent": USER_AGENT,
            "X-Requested-With": "XMLHttpRequest",
            "X-Rsi-Mark": credentials.mark_token,
            "X-Rsi-Token": credentials.rsi_token,
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
            "Referer": credentials.referer,
            "Cookie": credentials.cookie_header,
        }

        try:
            timeout_cfg = aiohttp.ClientTimeout(total=20)
            async with self._session.post(
                f"{API_ROOT}{endpoint}",
                headers=headers,
                data=json.dumps(payload),
                timeout=timeout_cfg,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Запрос к Spectrum %s завершился ошибкой: %s", endpoint, exc)
            return ErrorResponse(reason=str(exc) or exc.__class__.__name__)

        response = decode_response(status, text, kind=kind)
        if isinstance(response, ErrorResponse):
            logger.error(
                "Spectrum отклонил запрос %s (форум %s): %s",
                endpoint,
                credentials.forum_id,
                response.reason,
            )
        return response
