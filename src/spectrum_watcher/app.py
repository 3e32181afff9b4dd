"""Application bootstrap for Spectrum Watcher."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

import aiohttp

from .config_store import ConfigStore
from .discord import DiscordClient
from .models import RuntimeOptions
from .session import SessionCache, TokenManager
from .spectrum import SpectrumClient
from .state_store import StateStore
from .utils import RateLimiter, parse_interval, parse_rate
from .watcher import SpectrumWatcher

logger = logging.getLogger(__name__)

POLL_INTERVAL_ENV = "SPECTRUM_POLL_INTERVAL_MS"
SEND_RATE_ENV = "SPECTRUM_SEND_RATE"
INITIAL_DELAY = 10.0


def load_runtime(environ: Mapping[str, str] | None = None) -> RuntimeOptions:
    env = os.environ if environ is None else environ
    interval_ms = parse_interval(env.get(POLL_INTERVAL_ENV))
    return RuntimeOptions(
        poll_interval=interval_ms / 1000.0,
        initial_delay=INITIAL_DELAY,
        send_rate=parse_rate(env.get(SEND_RATE_ENV)),
    )


class SpectrumWatcherApp:
    """High level coordinator tying together Spectrum, Discord and storage."""

    def __init__(
        self,
        *,
        db_path: Path,
        discord_token: str | None,
        runtime: RuntimeOptions | None = None,
    ):
        self._store = ConfigStore(db_path)
        self._discord_token = discord_token
        self._runtime = runtime or load_runtime()
        self._cycles: set[asyncio.Task[bool]] = set()

    @property
    def store(self) -> ConfigStore:
        return self._store

    def build_watcher(self, session: aiohttp.ClientSession) -> SpectrumWatcher:
        tokens = TokenManager(session, SessionCache())
        state = StateStore(self._store)
        state.ensure_schema()
        loaded = state.load_all()
        logger.info("Загружено курсоров Spectrum: %d", loaded)
        return SpectrumWatcher(
            self._store,
            SpectrumClient(session, tokens),
            state,
            DiscordClient(session, self._discord_token),
            rate_limiter=RateLimiter(self._runtime.send_rate),
        )

    async def run(self) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                watcher = self.build_watcher(session)
                logger.info(
                    "Spectrum Watcher запущен, интервал опроса %.0f с",
                    self._runtime.poll_interval,
                )

                initial_task = asyncio.create_task(
                    self._supervise(
                        "spectrum-initial-check",
                        lambda: self._initial_trigger(watcher),
                    ),
                    name="spectrum-initial-check-supervisor",
                )
                poll_task = asyncio.create_task(
                    self._supervise("spectrum-poller", lambda: self._poll_loop(watcher)),
                    name="spectrum-poller-supervisor",
                )
                try:
                    await asyncio.gather(initial_task, poll_task)
                finally:
                    for task in (initial_task, poll_task, *self._cycles):
                        task.cancel()
                    await asyncio.gather(
                        initial_task, poll_task, *self._cycles, return_exceptions=True
                    )
        finally:
            self._store.close()

    def trigger(self, watcher: SpectrumWatcher) -> asyncio.Task[bool]:
        """Start a poll cycle in the background."""

        task = asyncio.create_task(watcher.check_for_new_threads(), name="spectrum-cycle")
        self._cycles.add(task)
        task.add_done_callback(self._cycle_finished)
        return task

    def _cycle_finished(self, task: asyncio.Task[bool]) -> None:
        self._cycles.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Цикл проверки Spectrum завершился ошибкой", exc_info=exc)

    async def _initial_trigger(self, watcher: SpectrumWatcher) -> None:
        await asyncio.sleep(self._runtime.initial_delay)
        self.trigger(watcher)
        # One-shot: park until cancelled so the supervisor does not restart it.
        await asyncio.Event().wait()

    async def _poll_loop(self, watcher: SpectrumWatcher) -> None:
        while True:
            await asyncio.sleep(self._runtime.poll_interval)
            self.trigger(watcher)

    async def _supervise(
        self,
        name: str,
        factory: Callable[[], Awaitable[None]],
        *,
        retry_delay: float = 5.0,
    ) -> None:
        while True:
            try:
                await factory()
            except asyncio.CancelledError:
                logger.info("Задача %s остановлена", name)
                raise
            except Exception:
                logger.exception("Задача %s завершилась с ошибкой", name)
            else:
                logger.warning("Задача %s завершилась неожиданно, будет перезапущена", name)
            await asyncio.sleep(retry_delay)
