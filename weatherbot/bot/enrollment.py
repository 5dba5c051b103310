"""Subscribe/unsubscribe command handling."""

import asyncio
import logging

from weatherbot.shared.database import SubscriberRegistry
from weatherbot.shared.errors import StoreError, SubscriberExistsError, SubscriberNotFoundError

logger = logging.getLogger(__name__)

SUBSCRIBED_TEXT = "Successfully subscribed to weather updates. Your chat id is {chat_id}"
ALREADY_SUBSCRIBED_TEXT = "You are already subscribed"
UNSUBSCRIBED_TEXT = "Successfully unsubscribed"
NOT_SUBSCRIBED_TEXT = "Can't unsubscribe. Are you subscribed?"
STORAGE_ERROR_TEXT = "Something went wrong, please try again later"


class EnrollmentHandler:
    """Maps registry outcomes to the replies shown to the user."""

    def __init__(self, registry: SubscriberRegistry):
        self.registry = registry

    async def handle_subscribe(self, recipient_id: int) -> str:
        try:
            subscriber = await asyncio.to_thread(self.registry.subscribe, recipient_id)
        except SubscriberExistsError:
            logger.info(f"Chat {recipient_id} is already subscribed")
            return ALREADY_SUBSCRIBED_TEXT
        except StoreError as e:
            logger.error(f"Could not subscribe chat {recipient_id}: {e}")
            return STORAGE_ERROR_TEXT

        logger.info(f"Subscribed chat {recipient_id} (subscriber {subscriber.id})")
        return SUBSCRIBED_TEXT.format(chat_id=recipient_id)

    async def handle_unsubscribe(self, recipient_id: int) -> str:
        try:
            await asyncio.to_thread(self.registry.unsubscribe, recipient_id)
        except SubscriberNotFoundError:
            logger.info(f"Chat {recipient_id} asked to unsubscribe but is not subscribed")
            return NOT_SUBSCRIBED_TEXT
        except StoreError as e:
            logger.error(f"Could not unsubscribe chat {recipient_id}: {e}")
            return STORAGE_ERROR_TEXT

        logger.info(f"Unsubscribed chat {recipient_id}")
        return UNSUBSCRIBED_TEXT
