"""Command line entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import Sequence

import aiohttp

from .app import SpectrumWatcherApp
from .config_store import ConfigStore
from .state_store import StateStore

TOKEN_ENV = "SPECTRUM_DISCORD_TOKEN"
TOKEN_SETTING = "discord.token"
CLI_ACTOR = "cli"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Announce new Spectrum forum threads in Discord")
    parser.add_argument("--db-path", default="spectrum.db", help="Путь к файлу хранилища")
    parser.add_argument(
        "--discord-token",
        help=f"Токен Discord бота. Можно передать через {TOKEN_ENV}",
    )
    parser.add_argument(
        "--save-token",
        action="store_true",
        help="Сохранить переданный токен в хранилище (в открытом виде)",
    )
    parser.add_argument("--log-level", default="INFO", help="Уровень логирования")

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("run", help="Запустить наблюдение за форумами (по умолчанию)")

    set_forum = commands.add_parser("set-forum", help="Задать форум Spectrum для сервера")
    set_forum.add_argument("subscriber", help="Идентификатор сервера Discord")
    set_forum.add_argument("forum_id", help="Идентификатор форума Spectrum")

    set_channel = commands.add_parser("set-channel", help="Задать канал для объявлений")
    set_channel.add_argument("subscriber", help="Идентификатор сервера Discord")
    set_channel.add_argument("channel_id", help="Идентификатор канала Discord")

    clear = commands.add_parser("clear", help="Удалить настройки сервера")
    clear.add_argument("subscriber", help="Идентификатор сервера Discord")

    status = commands.add_parser("status", help="Показать настройки и последний тред")
    status.add_argument("subscriber", help="Идентификатор сервера Discord")

    post_latest = commands.add_parser("post-latest", help="Опубликовать последний тред")
    post_latest.add_argument("subscriber", help="Идентификатор сервера Discord")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "run"

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    db_path = Path(args.db_path)
    store = ConfigStore(db_path)
    try:
        if args.discord_token and args.save_token:
            store.set_setting(TOKEN_SETTING, args.discord_token.strip())
        token = args.discord_token or os.getenv(TOKEN_ENV) or store.get_setting(TOKEN_SETTING)
        if command in _CONFIG_COMMANDS:
            return _CONFIG_COMMANDS[command](store, args, parser)
    finally:
        store.close()

    if command != "status" and not token:
        parser.error(f"Нужно передать --discord-token или переменную окружения {TOKEN_ENV}")

    app = SpectrumWatcherApp(db_path=db_path, discord_token=token)
    if command == "status":
        try:
            return asyncio.run(_status(app, args.subscriber))
        finally:
            app.store.close()
    if command == "post-latest":
        try:
            return asyncio.run(_post_latest(app, args.subscriber))
        finally:
            app.store.close()

    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Остановка по запросу пользователя")
    return 0


def _set_forum(store: ConfigStore, args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    try:
        config = store.set_subscriber(args.subscriber, forum_id=args.forum_id, updated_by=CLI_ACTOR)
    except ValueError as exc:
        parser.error(str(exc))
    print(f"Форум {config.forum_id} назначен серверу {config.subscriber_id}")
    return 0


def _set_channel(
    store: ConfigStore, args: argparse.Namespace, parser: argparse.ArgumentParser
) -> int:
    config = store.set_subscriber(
        args.subscriber, destination_id=args.channel_id, updated_by=CLI_ACTOR
    )
    print(f"Канал {config.destination_id} назначен серверу {config.subscriber_id}")
    return 0


def _clear(store: ConfigStore, args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    if store.clear_subscriber(args.subscriber):
        print("Настройки удалены")
        return 0
    print("Настройки не найдены")
    return 1


_CONFIG_COMMANDS = {"set-forum": _set_forum, "set-channel": _set_channel, "clear": _clear}


async def _status(app: SpectrumWatcherApp, subscriber: str) -> int:
    config = app.store.get_subscriber(subscriber)
    if config is None:
        print(f"Сервер {subscriber} не настроен")
        return 1

    state = StateStore(app.store)
    state.ensure_schema()
    cursor = state.get(config.subscriber_id)
    print(f"Сервер: {config.subscriber_id}")
    print(f"Форум: {config.forum_id or '-'}")
    print(f"Канал: {config.destination_id or '-'}")
    print(f"Последний опубликованный тред: {cursor.thread_id.raw if cursor else '-'}")
    if config.updated_at is not None:
        print(f"Обновлено: {config.updated_at.isoformat()} ({config.updated_by or '-'})")

    if not config.forum_id:
        return 0
    async with aiohttp.ClientSession() as session:
        snapshot = await app.build_watcher(session).latest_thread_snapshot(subscriber)
    if not snapshot.ok:
        print(snapshot.message)
        return 1
    print(f"Новейший тред на форуме: {snapshot.latest_thread_id} {snapshot.title or ''}".rstrip())
    print(snapshot.thread_url)
    return 0


async def _post_latest(app: SpectrumWatcherApp, subscriber: str) -> int:
    async with aiohttp.ClientSession() as session:
        result = await app.build_watcher(session).post_latest_thread(subscriber)
    if not result.ok:
        print(result.message)
        return 1
    print(f"Опубликован тред {result.thread_id}: {result.thread_url}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
