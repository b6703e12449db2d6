"""
Telegram delivery channel for notifications.
"""

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from ..errors import DeliveryFailure

logger = logging.getLogger(__name__)


class TelegramChannel:
    """Sends MarkdownV2 messages to a chat through the bot."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, chat_id: int, text: str) -> None:
        """
        Send a message.

        Raises:
            DeliveryFailure: if Telegram rejects or cannot deliver the message
        """
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN_V2
            )
        except TelegramError as e:
            raise DeliveryFailure(f"Failed to send message to chat {chat_id}: {e}") from e
        logger.debug(f"Sent message to chat {chat_id}")
