"""Relay pipeline: decode, fan out and persist every inbound message."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from weatherbot.shared.database import ReadingStore, SubscriberRegistry
from weatherbot.shared.errors import DecodeError, StoreError
from weatherbot.shared.models import Reading
from weatherbot.shared.telemetry import ReadingClock, decode

from .dispatcher import DispatchReport, FanOutDispatcher

logger = logging.getLogger(__name__)


class MessageState(Enum):
    """Terminal state of a message in the pipeline."""
    DECODE_FAILED = "decode_failed"
    DISPATCH_FAILED = "dispatch_failed"
    PERSISTED = "persisted"
    PERSIST_FAILED = "persist_failed"


@dataclass(frozen=True)
class InboundMessage:
    """A payload received on an MQTT topic."""
    topic: str
    payload: bytes


@dataclass
class MessageOutcome:
    """Terminal state of one message, with whatever was produced on the way."""
    state: MessageState
    reading: Optional[Reading] = None
    report: Optional[DispatchReport] = None
    error: Optional[str] = None


class RelayPipeline:
    """Drains the inbound queue strictly in arrival order.

    For every message: decode, take a subscriber snapshot, dispatch, then
    append to the weather log. Messages are never retried or requeued.
    Registry and store calls run in worker threads so slow storage does not
    block the event loop that accepts inbound messages.
    """

    def __init__(
        self,
        registry: SubscriberRegistry,
        store: ReadingStore,
        dispatcher: FanOutDispatcher,
        clock: Optional[ReadingClock] = None,
    ):
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock or ReadingClock()
        self._stopping: Optional[asyncio.Event] = None
        self._stop_requested = False
        self.stats = {
            "received": 0,
            "decode_failed": 0,
            "dispatch_failed": 0,
            "persisted": 0,
            "persist_failed": 0,
        }

    async def process(self, message: InboundMessage) -> MessageOutcome:
        """Run one message through the pipeline to a terminal state."""
        self.stats["received"] += 1

        try:
            telemetry = decode(message.payload)
        except DecodeError as e:
            self.stats["decode_failed"] += 1
            logger.warning(f"Dropping undecodable message from {message.topic}: {e}")
            return MessageOutcome(state=MessageState.DECODE_FAILED, error=str(e))

        reading = self.clock.stamp(telemetry)
        logger.info(
            f"Received reading from {message.topic}: temp={reading.temperature} "
            f"pressure={reading.pressure} humidity={reading.humidity}"
        )

        try:
            recipients = await asyncio.to_thread(self.registry.list_all)
        except StoreError as e:
            # Nothing was sent; the reading is still worth keeping
            self.stats["dispatch_failed"] += 1
            logger.error(f"Could not read subscribers, skipping dispatch: {e}")
            report = None
            dispatch_error = str(e)
        else:
            report = await self.dispatcher.dispatch(reading, recipients)
            dispatch_error = None

        try:
            reading_id = await asyncio.to_thread(self.store.append, reading)
        except StoreError as e:
            # Notifications already sent are not retracted
            self.stats["persist_failed"] += 1
            logger.error(f"Failed to store reading from {message.topic}: {e}")
            return MessageOutcome(
                state=MessageState.PERSIST_FAILED, reading=reading, report=report, error=str(e)
            )

        self.stats["persisted"] += 1
        logger.debug(f"Stored reading {reading_id}")
        state = MessageState.DISPATCH_FAILED if dispatch_error else MessageState.PERSISTED
        return MessageOutcome(
            state=state, reading=reading.with_id(reading_id), report=report, error=dispatch_error
        )

    async def run(self, queue: "asyncio.Queue[InboundMessage]") -> None:
        """Consume messages until stop() is called.

        The message being processed when stop() is called is finished first.
        """
        self._stopping = asyncio.Event()
        if self._stop_requested:
            self._stopping.set()
        logger.info("Relay pipeline waiting for messages")

        stop_waiter = asyncio.ensure_future(self._stopping.wait())
        try:
            while not self._stopping.is_set():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    break

                message = getter.result()
                try:
                    await self.process(message)
                except Exception as e:
                    logger.exception(f"Unexpected error processing message from {message.topic}: {e}")
                finally:
                    queue.task_done()
        finally:
            stop_waiter.cancel()
            logger.info(f"Relay pipeline stopped: {self.stats}")

    def stop(self) -> None:
        """Stop consuming after the in-flight message completes."""
        self._stop_requested = True
        if self._stopping is not None:
            self._stopping.set()
