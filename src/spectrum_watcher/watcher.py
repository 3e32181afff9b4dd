"""Polling of Spectrum forums and announcement of new threads."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from .discord import Announcer
from .formatting import build_embed, render_thread
from .models import RenderedThread, SessionCredentials, SubscriberConfig
from .state_store import StateStore
from .threads import ThreadEntry, build_thread_url, collect_entries, is_newer, newer_entries
from .utils import RateLimiter, SingleFlightGuard

logger = logging.getLogger(__name__)

MSG_NOT_CONFIGURED = "Spectrum Watcher is not configured for this server."
MSG_NO_FORUM = "No forum ID is configured for this server."
MSG_NO_CHANNEL = "No announcement channel is configured for this server."
MSG_NO_THREADS = "Unable to retrieve threads from Spectrum at the moment."
MSG_NO_VALID_THREADS = "No valid threads were returned by Spectrum."
MSG_MISSING_SLUG_POST = "The latest thread is missing a slug, so it cannot be posted."
MSG_MISSING_SLUG_FETCH = "The latest thread is missing a slug, so it cannot be fetched."
MSG_DETAIL_FAILED = "Unable to load the latest thread details from Spectrum."
MSG_SEND_FAILED = "Failed to send the latest thread to the configured channel."


class SubscriberSource(Protocol):
    def list_subscribers(self) -> Sequence[SubscriberConfig]: ...

    def get_subscriber(self, subscriber_id: str) -> SubscriberConfig | None: ...


class ForumClient(Protocol):
    async def list_threads(
        self, forum_id: str
    ) -> tuple[Sequence[Mapping[str, Any]], SessionCredentials | None]: ...

    async def thread_detail(
        self, credentials: SessionCredentials | None, slug: str | None
    ) -> Mapping[str, Any] | None: ...


@dataclass(slots=True)
class PostLatestResult:
    """Outcome of a manual "post latest thread" request."""

    ok: bool
    message: str | None = None
    thread_id: str | None = None
    thread_url: str | None = None
    destination_id: str | None = None


@dataclass(slots=True)
class ThreadSnapshot:
    """Newest thread of a forum, reported without posting it."""

    ok: bool
    message: str | None = None
    latest_thread_id: str | None = None
    title: str | None = None
    thread_url: str | None = None


async def post_thread(
    announcer: Announcer, config: SubscriberConfig, rendered: RenderedThread
) -> bool:
    """Deliver ``rendered`` to the subscriber's channel; ``True`` on success."""

    channel_id = config.destination_id
    if not channel_id:
        logger.warning("Для сервера %s не задан канал объявлений", config.subscriber_id)
        return False

    channel = await announcer.fetch_channel(channel_id)
    if channel is None:
        logger.warning(
            "Канал %s сервера %s не найден, объявление пропущено",
            channel_id,
            config.subscriber_id,
        )
        return False
    if not channel.is_text_based:
        logger.warning(
            "Канал %s сервера %s не поддерживает текстовые сообщения (тип %s)",
            channel_id,
            config.subscriber_id,
            channel.type,
        )
        return False

    try:
        await announcer.send_embed(channel_id, build_embed(rendered))
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception(
            "Не удалось отправить объявление %s в канал %s", rendered.url, channel_id
        )
        return False
    return True


class SpectrumWatcher:
    """Announces each new forum thread once per subscriber."""

    def __init__(
        self,
        subscribers: SubscriberSource,
        client: ForumClient,
        state: StateStore,
        announcer: Announcer,
        *,
        rate_limiter: RateLimiter | None = None,
    ):
        self._subscribers = subscribers
        self._client = client
        self._state = state
        self._announcer = announcer
        self._rate = rate_limiter
        self._guard = SingleFlightGuard()

    @property
    def busy(self) -> bool:
        return self._guard.busy

    @property
    def state(self) -> StateStore:
        return self._state

    async def check_for_new_threads(self) -> bool:
        """Run one poll cycle. Returns ``False`` when a cycle is already running."""

        with self._guard.attempt() as acquired:
            if not acquired:
                logger.debug("Проверка Spectrum уже выполняется, запуск пропущен")
                return False
            self._reload_cursors()
            for config in list(self._subscribers.list_subscribers()):
                try:
                    await self.check_subscriber(config)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(
                        "Ошибка при проверке форума %s для сервера %s",
                        config.forum_id,
                        config.subscriber_id,
                    )
        return True

    async def check_subscriber(self, config: SubscriberConfig) -> int:
        """Announce threads newer than the cursor; returns how many were sent."""

        if not config.forum_id or not config.destination_id:
            return 0

        threads, credentials = await self._client.list_threads(config.forum_id)
        if not threads or credentials is None:
            logger.debug("Форум %s не вернул тредов", config.forum_id)
            return 0

        entries = collect_entries(threads)
        if not entries:
            return 0

        cursor = self._state.get(config.subscriber_id)
        if cursor is None:
            newest = entries[-1]
            self._state.set(config.subscriber_id, newest.thread_id.raw)
            logger.info(
                "Сервер %s начинает отслеживать форум %s с треда %s",
                config.subscriber_id,
                config.forum_id,
                newest.thread_id.raw,
            )
            return 0

        announced = 0
        for entry in newer_entries(entries, cursor.thread_id):
            slug = entry.slug
            if not slug:
                logger.warning(
                    "Тред %s форума %s не содержит slug и будет пропущен",
                    entry.thread_id.raw,
                    config.forum_id,
                )
                continue

            detail = await self._client.thread_detail(credentials, slug)
            if detail is None:
                logger.warning(
                    "Не удалось загрузить тред %s форума %s, обработка остановлена",
                    entry.thread_id.raw,
                    config.forum_id,
                )
                break

            rendered = render_thread(config.forum_id, entry.payload, detail)
            if self._rate is not None:
                await self._rate.wait()
            if not await post_thread(self._announcer, config, rendered):
                break

            try:
                self._state.set(config.subscriber_id, entry.thread_id.raw)
            except Exception:
                logger.exception(
                    "Не удалось сохранить курсор %s для сервера %s",
                    entry.thread_id.raw,
                    config.subscriber_id,
                )
                break
            announced += 1
            logger.info(
                "Тред %s опубликован для сервера %s", entry.thread_id.raw, config.subscriber_id
            )
        return announced

    async def post_latest_thread(self, subscriber_id: str) -> PostLatestResult:
        config = self._subscribers.get_subscriber(subscriber_id)
        if config is None:
            return PostLatestResult(ok=False, message=MSG_NOT_CONFIGURED)
        if not config.forum_id:
            return PostLatestResult(ok=False, message=MSG_NO_FORUM)
        if not config.destination_id:
            return PostLatestResult(ok=False, message=MSG_NO_CHANNEL)

        latest, credentials, failure = await self._latest_entry(config.forum_id)
        if latest is None:
            return PostLatestResult(ok=False, message=failure)
        slug = latest.slug
        if not slug:
            return PostLatestResult(ok=False, message=MSG_MISSING_SLUG_POST)

        detail = await self._client.thread_detail(credentials, slug)
        if detail is None:
            return PostLatestResult(ok=False, message=MSG_DETAIL_FAILED)

        rendered = render_thread(config.forum_id, latest.payload, detail)
        if not await post_thread(self._announcer, config, rendered):
            return PostLatestResult(ok=False, message=MSG_SEND_FAILED)

        self._reload_cursors()
        cursor = self._state.get(config.subscriber_id)
        if cursor is None or is_newer(latest.thread_id, cursor.thread_id):
            try:
                self._state.set(config.subscriber_id, latest.thread_id.raw)
            except Exception:
                logger.exception(
                    "Не удалось сохранить курсор %s для сервера %s",
                    latest.thread_id.raw,
                    config.subscriber_id,
                )
        return PostLatestResult(
            ok=True,
            thread_id=latest.thread_id.raw,
            thread_url=rendered.url,
            destination_id=config.destination_id,
        )

    async def latest_thread_snapshot(self, subscriber_id: str) -> ThreadSnapshot:
        config = self._subscribers.get_subscriber(subscriber_id)
        if config is None:
            return ThreadSnapshot(ok=False, message=MSG_NOT_CONFIGURED)
        if not config.forum_id:
            return ThreadSnapshot(ok=False, message=MSG_NO_FORUM)

        latest, credentials, failure = await self._latest_entry(config.forum_id)
        if latest is None:
            return ThreadSnapshot(ok=False, message=failure)
        slug = latest.slug
        if not slug:
            return ThreadSnapshot(ok=False, message=MSG_MISSING_SLUG_FETCH)

        title = latest.subject
        if not title:
            detail = await self._client.thread_detail(credentials, slug)
            if detail is not None:
                title = render_thread(config.forum_id, latest.payload, detail).title
        return ThreadSnapshot(
            ok=True,
            latest_thread_id=latest.thread_id.raw,
            title=title or None,
            thread_url=build_thread_url(config.forum_id, slug),
        )

    def _reload_cursors(self) -> None:
        # Cursors may be moved by another process sharing the database.
        try:
            self._state.load_all()
        except Exception:
            logger.exception("Не удалось перечитать курсоры Spectrum, используется кэш")

    async def _latest_entry(
        self, forum_id: str
    ) -> tuple[ThreadEntry | None, SessionCredentials | None, str | None]:
        threads, credentials = await self._client.list_threads(forum_id)
        if not threads or credentials is None:
            return None, None, MSG_NO_THREADS
        entries = collect_entries(threads)
        if not entries:
            return None, credentials, MSG_NO_VALID_THREADS
        return entries[-1], credentials, None
