"""Telegram delivery of reminders and run messages."""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import Forbidden, TelegramError

from studyfit.ports.notification_port import render_reminder
from studyfit.ports.reminder_port import ReminderContent

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """NotificationPort over a telegram.Bot; plain text, no parse mode."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> bool:
        try:
            await self._bot.send_message(chat_id=chat_id, text=text)
        except Forbidden:
            logger.warning("Chat %d blocked the bot; message dropped", chat_id)
            return False
        except TelegramError as exc:
            logger.warning("Failed to send message to chat %d: %s", chat_id, exc)
            return False
        return True

    async def send_reminder(self, chat_id: int, content: ReminderContent) -> bool:
        delivered = await self.send_message(chat_id, render_reminder(content))
        if delivered:
            logger.info("Reminder '%s' delivered to chat %d", content.title, chat_id)
        return delivered
