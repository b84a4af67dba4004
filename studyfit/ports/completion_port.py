"""Completion recorder port — where finished and partial runs are written.

Fire-and-forget from the run engine's point of view: a failing recorder is
logged and never blocks a phase transition. The read side backs /history.
"""

from __future__ import annotations

from typing import Protocol

from studyfit.data.models import CheckinNote, DraftRecord


class CompletionRecorderPort(Protocol):
    """Abstract run-record store used by the run engine and the history view."""

    async def append(self, user_id: str, record: DraftRecord) -> None: ...

    async def append_checkin(self, user_id: str, note: CheckinNote) -> None: ...

    def list_records(self, user_id: str) -> list[DraftRecord]: ...

    def list_checkins(self, user_id: str, ymd: str | None = None) -> list[CheckinNote]: ...
