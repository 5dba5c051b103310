"""Fan-out of rendered readings to every subscriber."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from weatherbot.shared.models import Reading
from weatherbot.shared.telemetry import render_notification, should_alert

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers a formatted message to one recipient."""

    @abstractmethod
    async def send(self, recipient_id: int, text: str, urgent: bool = True) -> None:
        """Deliver ``text`` to ``recipient_id``.

        Raises:
            NotifyError: If the message could not be delivered.
        """


@dataclass
class DeliveryOutcome:
    """Result of delivering one notification to one recipient."""
    recipient_id: int
    success: bool
    error: Optional[str] = None


@dataclass
class DispatchReport:
    """Per-recipient outcomes of one fan-out, in snapshot order."""
    reading: Reading
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> List[int]:
        return [o.recipient_id for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[int]:
        return [o.recipient_id for o in self.outcomes if not o.success]

    def __len__(self) -> int:
        return len(self.outcomes)


class FanOutDispatcher:
    """Delivers a reading's notification to each recipient independently.

    A failed delivery is recorded in the report and never stops delivery to
    the remaining recipients. No retries are attempted here.
    """

    def __init__(self, notifier: Notifier, max_concurrency: int = 1):
        """Initialize the dispatcher.

        Args:
            notifier: Delivery channel.
            max_concurrency: Deliveries in flight at once; 1 delivers
                sequentially.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.notifier = notifier
        self.max_concurrency = max_concurrency

    async def _deliver(
        self,
        recipient_id: int,
        text: str,
        urgent: bool,
        semaphore: asyncio.Semaphore,
    ) -> DeliveryOutcome:
        async with semaphore:
            try:
                await self.notifier.send(recipient_id, text, urgent=urgent)
            except Exception as e:
                logger.warning(f"Delivery to {recipient_id} failed: {e}")
                return DeliveryOutcome(recipient_id=recipient_id, success=False, error=str(e))
        logger.debug(f"Delivered reading to {recipient_id}")
        return DeliveryOutcome(recipient_id=recipient_id, success=True)

    async def dispatch(self, reading: Reading, recipients: Sequence[int]) -> DispatchReport:
        """Send the rendered reading to every recipient in the snapshot.

        Args:
            reading: The reading to announce.
            recipients: Registry snapshot taken for this reading.

        Returns:
            A report with exactly one outcome per recipient.
        """
        text = render_notification(reading)
        urgent = should_alert(reading)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        outcomes = await asyncio.gather(
            *(self._deliver(r, text, urgent, semaphore) for r in recipients)
        )
        report = DispatchReport(reading=reading, outcomes=list(outcomes))

        if report.failed:
            logger.warning(
                f"Dispatched reading to {len(report.delivered)}/{len(report)} "
                f"subscribers, failed: {report.failed}"
            )
        else:
            logger.info(f"Dispatched reading to {len(report)} subscribers")
        return report
