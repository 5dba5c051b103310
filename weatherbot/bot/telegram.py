"""Telegram Bot API client, notifier and command poller."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import aiohttp

from weatherbot.shared.config import TelegramConfig
from weatherbot.shared.errors import NotifyError, WeatherBotError

from .dispatcher import Notifier
from .enrollment import EnrollmentHandler

logger = logging.getLogger(__name__)


class TelegramError(WeatherBotError):
    """The Bot API answered a request with ``ok: false``."""

    def __init__(self, method: str, description: str, error_code: Optional[int] = None):
        super().__init__(f"{method} failed ({error_code}): {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


class TelegramClient:
    """Minimal async client for the Telegram Bot API.

    The token and API URL are read from the current configuration on every
    request, so a reloaded token is picked up without reconnecting.
    """

    def __init__(
        self,
        settings_source: Callable[[], TelegramConfig],
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings_source = settings_source
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def call(self, method: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """Call a Bot API method and return its ``result``.

        Raises:
            TelegramError: If the API reports a failure.
            aiohttp.ClientError: On transport errors.
            asyncio.TimeoutError: If the request times out.
        """
        config = self.settings_source()
        url = f"{config.api_url}/bot{config.token}/{method}"
        client_timeout = aiohttp.ClientTimeout(total=timeout or config.request_timeout)

        async with self._get_session().post(url, json=payload, timeout=client_timeout) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError as e:
                raise TelegramError(method, f"invalid response body: {e}", response.status) from e

        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description", "unknown error") if isinstance(data, dict) else str(data)
            error_code = data.get("error_code") if isinstance(data, dict) else response.status
            raise TelegramError(method, description, error_code)
        return data.get("result")

    async def send_message(self, chat_id: int, text: str, disable_notification: bool = False) -> Any:
        return await self.call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "disable_notification": disable_notification},
        )

    async def get_updates(self, offset: Optional[int] = None) -> List[dict]:
        """Long-poll for new updates."""
        config = self.settings_source()
        payload: Dict[str, Any] = {"timeout": config.poll_timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        return await self.call(
            "getUpdates", payload, timeout=config.poll_timeout + config.request_timeout
        ) or []

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class TelegramNotifier(Notifier):
    """Sends rendered readings as Telegram messages.

    Non-urgent readings are delivered silently.
    """

    def __init__(self, client: TelegramClient):
        self.client = client

    async def send(self, recipient_id: int, text: str, urgent: bool = True) -> None:
        logger.debug(f"Sending message to Telegram chat {recipient_id}")
        try:
            await self.client.send_message(recipient_id, text, disable_notification=not urgent)
        except TelegramError as e:
            raise NotifyError(f"Telegram rejected message to {recipient_id}: {e.description}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotifyError(f"Error while sending message to {recipient_id}: {e!r}") from e


class CommandPoller:
    """Long-polls bot updates and runs enrollment commands.

    Each command runs in its own task, independent of other commands and of
    the relay pipeline.
    """

    def __init__(
        self,
        client: TelegramClient,
        enrollment: EnrollmentHandler,
        error_delay: float = 5.0,
    ):
        self.client = client
        self.enrollment = enrollment
        self.error_delay = error_delay
        self.commands: Dict[str, Callable[[int], Awaitable[str]]] = {
            "subscribe": enrollment.handle_subscribe,
            "unsubscribe": enrollment.handle_unsubscribe,
        }
        self._offset: Optional[int] = None
        self._running = False
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def parse_command(text: Optional[str]) -> Optional[str]:
        """Extract the command name from ``/command@bot args``."""
        if not text or not text.startswith("/"):
            return None
        command = text.split()[0][1:]
        return command.split("@", 1)[0].lower() or None

    async def _run_command(self, chat_id: int, command: str):
        reply = await self.commands[command](chat_id)
        try:
            await self.client.send_message(chat_id, reply)
        except (TelegramError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not reply to /{command} from chat {chat_id}: {e}")

    def _handle_update(self, update: dict) -> Optional[asyncio.Task]:
        message = update.get("message") or {}
        command = self.parse_command(message.get("text"))
        if command not in self.commands:
            logger.debug(f"Ignoring update {update.get('update_id')}")
            return None

        chat_id = (message.get("chat") or {}).get("id")
        if chat_id is None:
            logger.warning(f"Ignoring /{command} without a chat in update {update.get('update_id')}")
            return None
        logger.info(f"Received /{command} from chat {chat_id}")
        task = asyncio.ensure_future(self._run_command(chat_id, command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def poll_once(self) -> List[asyncio.Task]:
        """Fetch one batch of updates and start a task per command."""
        updates = await self.client.get_updates(self._offset)
        tasks = []
        for update in updates:
            self._offset = update["update_id"] + 1
            task = self._handle_update(update)
            if task is not None:
                tasks.append(task)
        return tasks

    async def run(self):
        """Poll until stopped, backing off after errors."""
        self._running = True
        logger.info("Listening for bot commands")
        while self._running:
            try:
                await self.poll_once()
            except (TelegramError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Polling for updates failed, retrying in {self.error_delay}s: {e}")
                await asyncio.sleep(self.error_delay)
            except Exception as e:
                logger.exception(f"Unexpected error while polling for updates: {e}")
                await asyncio.sleep(self.error_delay)

    def stop(self):
        self._running = False

    async def wait_pending(self):
        """Wait for in-flight commands to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
