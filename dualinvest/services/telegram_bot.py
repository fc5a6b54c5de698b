"""Telegram notifications for subscriptions, hedges and cycle failures."""

import logging

from telegram import Bot
from telegram.error import TelegramError

from dualinvest.config import Settings

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Send-only bot. Delivery failures are logged, never raised."""

    def __init__(self, token: str, chat_ids: list[int]):
        self.chat_ids = set(chat_ids)
        self._bot = Bot(token=token)
        self._initialized = False

    async def send_notification(self, message: str):
        """Send a message to all whitelisted chat IDs."""
        try:
            if not self._initialized:
                await self._bot.initialize()
                self._initialized = True
        except TelegramError as e:
            logger.warning(f"Telegram bot initialization failed: {e}")
            return
        for chat_id in self.chat_ids:
            try:
                await self._bot.send_message(chat_id=chat_id, text=message)
            except TelegramError as e:
                logger.warning(f"Failed to send Telegram notification to {chat_id}: {e}")

    async def close(self):
        if self._initialized:
            await self._bot.shutdown()
            self._initialized = False


def init_notifier(settings: Settings) -> TelegramNotifier | None:
    """Build the notifier, or None when Telegram is not configured."""
    if not settings.telegram_bot_token or not settings.telegram_chat_ids:
        return None
    return TelegramNotifier(token=settings.telegram_bot_token, chat_ids=settings.telegram_chat_ids)


async def notify(notifier: TelegramNotifier | None, message: str):
    if notifier is not None:
        await notifier.send_notification(message)
