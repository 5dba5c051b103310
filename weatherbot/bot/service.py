"""Weather relay service - wires MQTT, Telegram and storage together."""

import asyncio
import logging
import signal
import sys
from typing import Optional, Set

from weatherbot.shared.config import SettingsCell, load_settings
from weatherbot.shared.database import Storage, open_storage
from weatherbot.shared.errors import ConfigError, WeatherBotError
from weatherbot.shared.logging import set_level, setup_logging

from .dispatcher import FanOutDispatcher
from .enrollment import EnrollmentHandler
from .listener import MQTTListener
from .pipeline import InboundMessage, RelayPipeline
from .telegram import CommandPoller, TelegramClient, TelegramNotifier

logger = logging.getLogger(__name__)


class WeatherRelayService:
    """Relays weather station readings to Telegram subscribers."""

    def __init__(self, cell: SettingsCell, storage: Optional[Storage] = None):
        """Initialize the relay service.

        Args:
            cell: Holder of the current settings snapshot.
            storage: Storage backend; opened from the settings if omitted.
        """
        self.cell = cell
        self.storage = storage or open_storage(lambda: self.cell.current().storage)
        self.queue: "asyncio.Queue[InboundMessage]" = asyncio.Queue()

        settings = cell.current()
        self.telegram = TelegramClient(lambda: self.cell.current().telegram)
        self.dispatcher = FanOutDispatcher(
            TelegramNotifier(self.telegram),
            max_concurrency=settings.telegram.max_concurrency,
        )
        self.pipeline = RelayPipeline(self.storage, self.storage, self.dispatcher)
        self.poller = CommandPoller(self.telegram, EnrollmentHandler(self.storage))
        self.listener = MQTTListener(self.cell.current, self.queue)
        self._reload_tasks: Set[asyncio.Task] = set()

    def _setup_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        """Set up signal handlers for graceful shutdown and reload."""
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self.shutdown, signum)
        loop.add_signal_handler(signal.SIGHUP, self._schedule_reload)

    def _schedule_reload(self):
        task = asyncio.ensure_future(self.reload())
        self._reload_tasks.add(task)
        task.add_done_callback(self._reload_tasks.discard)

    def shutdown(self, signum: Optional[int] = None):
        if signum is not None:
            logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        self.pipeline.stop()
        self.poller.stop()

    async def reload(self):
        """Swap in a freshly loaded settings snapshot.

        File reads and the MQTT reconnect, which joins paho's network
        thread, run in a worker thread.
        """
        previous = self.cell.current()
        try:
            await asyncio.to_thread(self.cell.reload)
        except ConfigError as e:
            logger.error(f"Keeping current configuration, reload failed: {e}")
            return

        settings = self.cell.current()
        set_level(settings.log_level)
        self.dispatcher.max_concurrency = settings.telegram.max_concurrency
        if settings.storage.backend != previous.storage.backend:
            logger.warning("Changing the storage backend requires a restart")
        if self.listener.needs_restart(settings):
            await asyncio.to_thread(self.listener.restart)

    async def run(self):
        """Run the relay until shut down."""
        if not self.cell.current().telegram.token:
            raise ConfigError("Telegram token is not configured (telegram.token or TELEGRAM_TOKEN)")

        await asyncio.to_thread(self.storage.initialize)
        self._setup_signal_handlers(asyncio.get_running_loop())

        self.listener.start()
        poller_task = asyncio.create_task(self.poller.run())
        try:
            await self.pipeline.run(self.queue)
        finally:
            logger.info("Shutting down weather relay...")
            await asyncio.gather(*self._reload_tasks, return_exceptions=True)
            self.listener.stop()
            poller_task.cancel()
            await asyncio.gather(poller_task, return_exceptions=True)
            await self.poller.wait_pending()
            await self.telegram.close()
            self.storage.close()
            logger.info("Weather relay stopped.")


def run_relay(config_path: Optional[str] = None):
    """Run the weather relay service.

    Args:
        config_path: Optional path to config file.
    """
    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        logging.basicConfig()
        logger.error(f"Error while reading settings: {e}")
        sys.exit(1)

    setup_logging(settings.log_level)
    logger.info("Starting weather relay...")

    async def _main():
        service = WeatherRelayService(SettingsCell(settings, config_path))
        await service.run()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except WeatherBotError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
