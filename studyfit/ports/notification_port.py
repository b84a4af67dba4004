"""Notification port — delivers reminder and run messages to a chat.

Delivery is best-effort: implementations report failure through the return
value instead of raising, so a blocked chat never breaks a reminder job.
"""

from __future__ import annotations

from typing import Protocol

from studyfit.ports.reminder_port import ReminderContent


def render_reminder(content: ReminderContent) -> str:
    """Chat text for a fired reminder."""
    if not content.body:
        return f"⏰ {content.title}"
    return f"⏰ {content.title}\n{content.body}"


class NotificationPort(Protocol):
    """Outbound chat messages."""

    async def send_message(self, chat_id: int, text: str) -> bool: ...

    async def send_reminder(self, chat_id: int, content: ReminderContent) -> bool: ...
