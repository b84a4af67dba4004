"""Tests for studyfit.adapters.telegram_notifier — message and reminder delivery."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import Forbidden, NetworkError

from studyfit.adapters.telegram_notifier import TelegramNotifier
from studyfit.ports.notification_port import render_reminder
from studyfit.ports.reminder_port import ReminderContent


def _notifier(side_effect=None):
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=side_effect)
    return TelegramNotifier(bot), bot


class TestRenderReminder:
    def test_title_and_body(self):
        assert render_reminder(ReminderContent("Vocabulary", "Time to study")) == "⏰ Vocabulary\nTime to study"

    def test_empty_body(self):
        assert render_reminder(ReminderContent("Vocabulary", "")) == "⏰ Vocabulary"


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_plain_text(self):
        notifier, bot = _notifier()
        assert await notifier.send_message(12345, "*not markdown*") is True
        bot.send_message.assert_awaited_once_with(chat_id=12345, text="*not markdown*")

    @pytest.mark.asyncio
    async def test_blocked_chat_returns_false(self):
        notifier, _ = _notifier(Forbidden("bot was blocked by the user"))
        assert await notifier.send_message(12345, "hi") is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self):
        notifier, _ = _notifier(NetworkError("timeout"))
        assert await notifier.send_message(12345, "hi") is False


class TestSendReminder:
    @pytest.mark.asyncio
    async def test_renders_content(self):
        notifier, bot = _notifier()
        delivered = await notifier.send_reminder(12345, ReminderContent("Vocabulary", "Time to study"))
        assert delivered is True
        assert bot.send_message.call_args.kwargs["text"] == "⏰ Vocabulary\nTime to study"
