from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Mapping

import pytest

from spectrum_watcher.discord import ChannelInfo, DiscordAPIError, DiscordClient
from spectrum_watcher.models import RenderedThread, SubscriberConfig
from spectrum_watcher.watcher import post_thread


def _rendered() -> RenderedThread:
    return RenderedThread(
        title="Patch Notes",
        url="https://example.invalid/thread/patch",
        author_name="CIG",
        author_icon=None,
        description="Hello.",
        image_url=None,
        footer="Spectrum • Patch Notes",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _config(destination: str | None = "chan-1") -> SubscriberConfig:
    return SubscriberConfig(subscriber_id="guild-1", forum_id="190048", destination_id=destination)


class DummyAnnouncer:
    def __init__(self, channel: ChannelInfo | None, *, fail: bool = False) -> None:
        self.channel = channel
        self.fail = fail
        self.sent: list[tuple[str, Mapping[str, Any]]] = []

    async def fetch_channel(self, channel_id: str) -> ChannelInfo | None:
        return self.channel

    async def send_embed(self, channel_id: str, embed: Mapping[str, Any]) -> None:
        if self.fail:
            raise DiscordAPIError(403, "Missing Permissions")
        self.sent.append((channel_id, embed))


def test_post_thread_sends_embed() -> None:
    announcer = DummyAnnouncer(ChannelInfo(id="chan-1", type=0))

    async def runner() -> None:
        assert await post_thread(announcer, _config(), _rendered()) is True

    asyncio.run(runner())
    channel_id, embed = announcer.sent[0]
    assert channel_id == "chan-1"
    assert embed["title"] == "Patch Notes"
    assert embed["footer"] == {"text": "Spectrum • Patch Notes"}


def test_post_thread_rejects_missing_or_voice_channel() -> None:
    async def runner() -> None:
        missing = DummyAnnouncer(None)
        assert await post_thread(missing, _config(), _rendered()) is False

        voice = DummyAnnouncer(ChannelInfo(id="chan-1", type=2))
        assert await post_thread(voice, _config(), _rendered()) is False
        assert voice.sent == []

        unset = DummyAnnouncer(ChannelInfo(id="chan-1", type=0))
        assert await post_thread(unset, _config(None), _rendered()) is False

    asyncio.run(runner())


def test_post_thread_reports_delivery_errors() -> None:
    announcer = DummyAnnouncer(ChannelInfo(id="chan-1", type=5), fail=True)

    async def runner() -> None:
        assert await post_thread(announcer, _config(), _rendered()) is False

    asyncio.run(runner())


def test_channel_text_types() -> None:
    for channel_type in (0, 5, 10, 11, 12):
        assert ChannelInfo(id="1", type=channel_type).is_text_based
    for channel_type in (2, 4, 13, 15):
        assert not ChannelInfo(id="1", type=channel_type).is_text_based


class FakeResponse:
    def __init__(self, status: int, payload: Any = None) -> None:
        self.status = status
        self._payload = payload

    async def json(self) -> Any:
        return self._payload

    async def text(self) -> str:
        return json.dumps(self._payload)

    async def read(self) -> bytes:
        return b""

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


class FakeSession:
    def __init__(self, get_response: FakeResponse, post_response: FakeResponse) -> None:
        self.get_response = get_response
        self.post_response = post_response
        self.requests: list[tuple[str, str, dict[str, Any]]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append(("GET", url, kwargs))
        return self.get_response

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append(("POST", url, kwargs))
        return self.post_response


def test_discord_client_fetch_and_send() -> None:
    session = FakeSession(
        FakeResponse(200, {"id": "chan-1", "type": 5, "guild_id": "g", "name": "news"}),
        FakeResponse(200, {"id": "msg"}),
    )
    client = DiscordClient(session, " secret ")

    async def runner() -> None:
        channel = await client.fetch_channel("chan-1")
        assert channel == ChannelInfo(id="chan-1", type=5, guild_id="g", name="news")
        await client.send_embed("chan-1", {"title": "x"})

    asyncio.run(runner())

    method, url, kwargs = session.requests[1]
    assert method == "POST"
    assert url.endswith("/channels/chan-1/messages")
    assert kwargs["json"] == {"embeds": [{"title": "x"}]}
    assert kwargs["headers"]["Authorization"] == "Bot secret"


def test_discord_client_errors() -> None:
    session = FakeSession(FakeResponse(404), FakeResponse(403, {"message": "Missing Access"}))
    client = DiscordClient(session, "Bot secret")

    async def runner() -> None:
        assert await client.fetch_channel("chan-1") is None
        with pytest.raises(DiscordAPIError) as excinfo:
            await client.send_embed("chan-1", {"title": "x"})
        assert excinfo.value.status == 403

        tokenless = DiscordClient(session, None)
        assert tokenless.has_token is False
        assert await tokenless.fetch_channel("chan-1") is None
        with pytest.raises(DiscordAPIError):
            await tokenless.send_embed("chan-1", {})

    asyncio.run(runner())
