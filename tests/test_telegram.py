"""Tests for the Telegram client, notifier and command poller."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from aiohttp import test_utils, web

from weatherbot.bot.enrollment import SUBSCRIBED_TEXT, UNSUBSCRIBED_TEXT, EnrollmentHandler
from weatherbot.bot.telegram import CommandPoller, TelegramClient, TelegramError, TelegramNotifier
from weatherbot.shared.config import TelegramConfig
from weatherbot.shared.errors import NotifyError


def fake_bot_api(calls: list) -> web.Application:
    """A Bot API stand-in that records requests."""

    async def handle(request: web.Request) -> web.Response:
        method = request.match_info["method"]
        payload = await request.json()
        calls.append((method, payload))
        if payload.get("chat_id") == 403:
            return web.json_response(
                {"ok": False, "error_code": 403, "description": "Forbidden: bot was blocked by the user"}
            )
        if method == "getUpdates":
            return web.json_response({"ok": True, "result": [{"update_id": 5}]})
        return web.json_response({"ok": True, "result": {"message_id": 1}})

    async def garbage(request: web.Request) -> web.Response:
        return web.Response(text="<html>bad gateway</html>", status=502)

    app = web.Application()
    app.router.add_post("/botSECRET/garbage", garbage)
    app.router.add_post("/botSECRET/{method}", handle)
    return app


class TestTelegramClient:

    @pytest.mark.asyncio
    async def test_send_message(self):
        calls = []
        async with test_utils.TestServer(fake_bot_api(calls)) as server:
            config = TelegramConfig(token="SECRET", api_url=str(server.make_url("/")).rstrip("/"))
            client = TelegramClient(lambda: config)
            try:
                result = await client.send_message(42, "hello", disable_notification=True)
            finally:
                await client.close()

        assert result == {"message_id": 1}
        assert calls == [
            ("sendMessage", {"chat_id": 42, "text": "hello", "disable_notification": True})
        ]

    @pytest.mark.asyncio
    async def test_api_error(self):
        async with test_utils.TestServer(fake_bot_api([])) as server:
            config = TelegramConfig(token="SECRET", api_url=str(server.make_url("/")).rstrip("/"))
            client = TelegramClient(lambda: config)
            try:
                with pytest.raises(TelegramError) as exc_info:
                    await client.send_message(403, "hello")
            finally:
                await client.close()

        assert exc_info.value.error_code == 403
        assert "blocked" in exc_info.value.description

    @pytest.mark.asyncio
    async def test_invalid_body(self):
        async with test_utils.TestServer(fake_bot_api([])) as server:
            config = TelegramConfig(token="SECRET", api_url=str(server.make_url("/")).rstrip("/"))
            client = TelegramClient(lambda: config)
            try:
                with pytest.raises(TelegramError):
                    await client.call("garbage", {})
            finally:
                await client.close()

    @pytest.mark.asyncio
    async def test_get_updates_uses_offset(self):
        calls = []
        async with test_utils.TestServer(fake_bot_api(calls)) as server:
            config = TelegramConfig(
                token="SECRET", api_url=str(server.make_url("/")).rstrip("/"), poll_timeout=0
            )
            client = TelegramClient(lambda: config)
            try:
                updates = await client.get_updates(offset=7)
            finally:
                await client.close()

        assert updates == [{"update_id": 5}]
        assert calls[0][1] == {"timeout": 0, "allowed_updates": ["message"], "offset": 7}


class TestTelegramNotifier:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("urgent, silent", [(True, False), (False, True)])
    async def test_silent_unless_urgent(self, urgent, silent):
        client = MagicMock()
        client.send_message = AsyncMock()

        await TelegramNotifier(client).send(1, "text", urgent=urgent)

        client.send_message.assert_awaited_once_with(1, "text", disable_notification=silent)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            TelegramError("sendMessage", "Forbidden", 403),
            aiohttp.ClientConnectionError("connection reset"),
            asyncio.TimeoutError(),
        ],
    )
    async def test_errors_become_notify_errors(self, error):
        client = MagicMock()
        client.send_message = AsyncMock(side_effect=error)

        with pytest.raises(NotifyError):
            await TelegramNotifier(client).send(1, "text")


class TestCommandPoller:

    @pytest.mark.parametrize(
        "text, command",
        [
            ("/subscribe", "subscribe"),
            ("/unsubscribe@weather_bot", "unsubscribe"),
            ("/Subscribe now", "subscribe"),
            ("subscribe", None),
            ("/", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_command(self, text, command):
        assert CommandPoller.parse_command(text) == command

    @pytest.mark.asyncio
    async def test_poll_once_runs_commands_and_replies(self, storage):
        client = MagicMock()
        client.get_updates = AsyncMock(
            return_value=[
                {"update_id": 10, "message": {"chat": {"id": 1}, "text": "/subscribe"}},
                {"update_id": 11, "message": {"chat": {"id": 2}, "text": "hello"}},
                {"update_id": 12, "message": {"chat": {"id": 3}, "text": "/subscribe"}},
                {"update_id": 13, "edited_message": {"chat": {"id": 4}, "text": "/subscribe"}},
            ]
        )
        client.send_message = AsyncMock()
        poller = CommandPoller(client, EnrollmentHandler(storage))

        tasks = await poller.poll_once()
        await asyncio.gather(*tasks)

        assert len(tasks) == 2
        assert sorted(storage.list_all()) == [1, 3]
        client.send_message.assert_any_await(1, SUBSCRIBED_TEXT.format(chat_id=1))
        client.send_message.assert_any_await(3, SUBSCRIBED_TEXT.format(chat_id=3))

        client.get_updates = AsyncMock(return_value=[])
        await poller.poll_once()
        client.get_updates.assert_awaited_once_with(14)

    @pytest.mark.asyncio
    async def test_reply_failure_is_not_raised(self, storage):
        storage.subscribe(1)
        client = MagicMock()
        client.get_updates = AsyncMock(
            return_value=[{"update_id": 1, "message": {"chat": {"id": 1}, "text": "/unsubscribe"}}]
        )
        client.send_message = AsyncMock(side_effect=TelegramError("sendMessage", "Forbidden", 403))
        poller = CommandPoller(client, EnrollmentHandler(storage))

        await poller.poll_once()
        await poller.wait_pending()

        assert storage.list_all() == []
        client.send_message.assert_awaited_once_with(1, UNSUBSCRIBED_TEXT)

    @pytest.mark.asyncio
    async def test_run_backs_off_after_errors(self, storage):
        client = MagicMock()
        poller = CommandPoller(client, EnrollmentHandler(storage), error_delay=0)

        async def failing_then_stop(offset):
            if client.get_updates.await_count >= 2:
                poller.stop()
                return []
            raise aiohttp.ClientConnectionError("network down")

        client.get_updates = AsyncMock(side_effect=failing_then_stop)

        await asyncio.wait_for(poller.run(), timeout=5)

        assert client.get_updates.await_count == 2

    @pytest.mark.asyncio
    async def test_run_survives_unexpected_errors(self, storage):
        client = MagicMock()
        poller = CommandPoller(client, EnrollmentHandler(storage), error_delay=0)

        async def broken_then_stop(offset):
            if client.get_updates.await_count >= 2:
                poller.stop()
                return []
            raise KeyError("update_id")

        client.get_updates = AsyncMock(side_effect=broken_then_stop)

        await asyncio.wait_for(poller.run(), timeout=5)

        assert client.get_updates.await_count == 2

    @pytest.mark.asyncio
    async def test_command_without_chat_is_ignored(self, storage):
        client = MagicMock()
        client.get_updates = AsyncMock(
            return_value=[
                {"update_id": 1, "message": {"text": "/subscribe"}},
                {"update_id": 2, "message": {"chat": {"id": 9}, "text": "/subscribe"}},
            ]
        )
        client.send_message = AsyncMock()
        poller = CommandPoller(client, EnrollmentHandler(storage))

        tasks = await poller.poll_once()
        await asyncio.gather(*tasks)

        assert len(tasks) == 1
        assert storage.list_all() == [9]
