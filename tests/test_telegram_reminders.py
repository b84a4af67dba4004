"""Tests for studyfit.adapters.telegram_reminders — JobQueue-backed reminders."""

from datetime import time as dt_time
from unittest.mock import AsyncMock, MagicMock

import pytest

from studyfit.adapters.telegram_reminders import TelegramReminders, job_queue_day
from studyfit.ports.reminder_port import ReminderContent


def _adapter(chat_id=12345, allowed=(12345,)):
    job_queue = MagicMock()
    notifier = MagicMock()
    notifier.send_reminder = AsyncMock(return_value=True)
    adapter = TelegramReminders(job_queue, notifier, chat_id, allowed, timezone="Asia/Seoul")
    return adapter, job_queue, notifier


class TestJobQueueDay:
    @pytest.mark.parametrize(
        "weekday,expected",
        [(1, 1), (2, 2), (3, 3), (4, 4), (5, 5), (6, 6), (7, 0)],
    )
    def test_monday_first_to_sunday_zero(self, weekday, expected):
        assert job_queue_day(weekday) == expected


class TestPermission:
    @pytest.mark.asyncio
    async def test_allowed_chat(self):
        adapter, _, _ = _adapter()
        assert await adapter.request_permission() is True

    @pytest.mark.asyncio
    async def test_unknown_chat(self):
        adapter, _, _ = _adapter(chat_id=999)
        assert await adapter.request_permission() is False

    @pytest.mark.asyncio
    async def test_empty_allow_list(self):
        adapter, _, _ = _adapter(chat_id=999, allowed=())
        assert await adapter.request_permission() is True


class TestSchedule:
    @pytest.mark.asyncio
    async def test_registers_daily_job_on_one_day(self):
        adapter, job_queue, _ = _adapter()
        content = ReminderContent(title="Vocabulary", body="Time to study")

        handle = await adapter.schedule_recurring(3, 9, 30, content)

        job_queue.run_daily.assert_called_once()
        kwargs = job_queue.run_daily.call_args.kwargs
        assert kwargs["days"] == (3,)          # Wednesday
        assert kwargs["time"].replace(tzinfo=None) == dt_time(9, 30)
        assert str(kwargs["time"].tzinfo) == "Asia/Seoul"
        assert kwargs["name"] == handle
        assert kwargs["chat_id"] == 12345
        assert kwargs["data"] == content

    @pytest.mark.asyncio
    async def test_sunday_is_day_zero(self):
        adapter, job_queue, _ = _adapter()
        await adapter.schedule_recurring(7, 8, 0, ReminderContent("T", "B"))
        assert job_queue.run_daily.call_args.kwargs["days"] == (0,)

    @pytest.mark.asyncio
    async def test_handles_are_unique(self):
        adapter, _, _ = _adapter()
        content = ReminderContent("T", "B")
        first = await adapter.schedule_recurring(1, 8, 0, content)
        second = await adapter.schedule_recurring(1, 8, 0, content)
        assert first != second


class TestCancel:
    @pytest.mark.asyncio
    async def test_removes_named_jobs(self):
        adapter, job_queue, _ = _adapter()
        job = MagicMock()
        job_queue.get_jobs_by_name.return_value = (job,)

        await adapter.cancel("reminder:12345:abc")

        job_queue.get_jobs_by_name.assert_called_once_with("reminder:12345:abc")
        job.schedule_removal.assert_called_once()

    @pytest.mark.asyncio
    async def test_unknown_handle_is_noop(self):
        adapter, job_queue, _ = _adapter()
        job_queue.get_jobs_by_name.return_value = ()
        await adapter.cancel("gone")


class TestFire:
    @pytest.mark.asyncio
    async def test_delivers_job_content_to_chat(self):
        adapter, _, notifier = _adapter()
        content = ReminderContent(title="Vocabulary", body="Time to study")
        context = MagicMock()
        context.job.data = content
        context.job.chat_id = 12345

        await adapter._fire(context)

        notifier.send_reminder.assert_awaited_once_with(12345, content)
