"""Reminder port — the system notification capability.

Accepts a recurring (weekday, hour, minute) trigger plus content and hands
back an opaque handle. The core keeps its own handle bookkeeping: there is no
query-by-content API.

Weekdays passed in use the caller's numbering (1=Monday .. 7=Sunday).
Implementations translate to their platform numbering through
studyfit.core.weekdays.to_platform_weekday.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ReminderContent:
    """What the user sees when a reminder fires."""

    title: str
    body: str


class ReminderPort(Protocol):
    """Abstract recurring-reminder interface used by the trigger scheduler."""

    async def request_permission(self) -> bool: ...

    async def schedule_recurring(
        self, weekday: int, hour: int, minute: int, content: ReminderContent,
    ) -> str: ...

    async def cancel(self, handle: str) -> None: ...
