"""Telegram reminder adapter — implements ReminderPort on the bot's JobQueue.

Each recurring trigger is one `run_daily` job restricted to a single
weekday. The job name is the opaque handle handed back to the scheduler, so
cancelling is a lookup by name. JobQueue counts days 0=Sunday .. 6=Saturday,
which is the platform numbering (1=Sunday .. 7=Saturday) shifted down by one.
"""

from __future__ import annotations

import logging
import uuid
from datetime import time as dt_time
from typing import TYPE_CHECKING, Iterable
from zoneinfo import ZoneInfo

from telegram.ext import ContextTypes, JobQueue

from studyfit.core.weekdays import to_platform_weekday
from studyfit.ports.reminder_port import ReminderContent

if TYPE_CHECKING:
    from studyfit.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def job_queue_day(weekday: int) -> int:
    """Scheduler weekday (1=Mon .. 7=Sun) → JobQueue day (0=Sun .. 6=Sat)."""
    return to_platform_weekday(weekday) - 1


class TelegramReminders:
    """JobQueue implementation of ReminderPort for one chat."""

    def __init__(
        self,
        job_queue: JobQueue,
        notifier: NotificationPort,
        chat_id: int,
        allowed_user_ids: Iterable[int] = (),
        timezone: str | None = None,
    ) -> None:
        if timezone is None:
            from studyfit.config import settings
            timezone = settings.TIMEZONE
        self._job_queue = job_queue
        self._notifier = notifier
        self._chat_id = chat_id
        self._allowed = set(allowed_user_ids)
        self._tz = ZoneInfo(timezone)

    async def request_permission(self) -> bool:
        """Private chats share the user's id; an empty allow-list allows all."""
        return not self._allowed or self._chat_id in self._allowed

    async def schedule_recurring(
        self, weekday: int, hour: int, minute: int, content: ReminderContent,
    ) -> str:
        handle = f"reminder:{self._chat_id}:{uuid.uuid4().hex[:12]}"
        self._job_queue.run_daily(
            self._fire,
            time=dt_time(hour=hour, minute=minute, tzinfo=self._tz),
            days=(job_queue_day(weekday),),
            name=handle,
            chat_id=self._chat_id,
            data=content,
        )
        logger.debug(
            "Reminder %s registered for weekday %d at %02d:%02d", handle, weekday, hour, minute,
        )
        return handle

    async def cancel(self, handle: str) -> None:
        """Remove the job named handle; unknown or expired handles are a no-op."""
        for job in self._job_queue.get_jobs_by_name(handle):
            job.schedule_removal()

    async def _fire(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        content: ReminderContent = context.job.data
        await self._notifier.send_reminder(context.job.chat_id, content)
