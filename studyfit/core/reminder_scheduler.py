"""
StudyFit — Routine reminder scheduler.

Keeps the reminder capability's registered triggers in sync with the
weekly plan. Every plan item with a start time and a non-empty step list
gets one recurring (weekday, hour, minute) trigger.

The scheduler keeps its own planId → handles record in the cache, since
the capability cannot be queried by content. Re-scheduling always cancels
the previous handles for a planId before registering new ones, so running
sync_all twice leaves exactly one live set.

This module is provider-agnostic: it depends on the ReminderPort protocol,
not on a specific implementation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from studyfit.core.library import resolve_steps, resolve_title
from studyfit.core.weekdays import day_key_to_weekday, has_passed_this_week, next_occurrence
from studyfit.data.models import parse_hhmm
from studyfit.ports.cache_port import user_key
from studyfit.ports.reminder_port import ReminderContent

if TYPE_CHECKING:
    from studyfit.core.library import RoutineLibrary
    from studyfit.data.models import PlanItem, WeeklyPlan
    from studyfit.ports.cache_port import CachePort
    from studyfit.ports.reminder_port import ReminderPort

logger = logging.getLogger(__name__)

TRIGGER_KEY_BASE = "routineNotiIdsV1"

TriggerRecord = dict[str, list[str]]


@dataclass
class SyncResult:
    """Outcome of a sync/reschedule call. permitted=False means nothing ran."""

    permitted: bool
    scheduled: int = 0
    failed: int = 0
    cancelled: int = 0


@dataclass(frozen=True)
class TriggerSpec:
    """A recurring trigger derived from one plan item."""

    plan_id: str
    weekday: int          # 1=Mon .. 7=Sun
    hour: int
    minute: int
    content: ReminderContent


@dataclass(frozen=True)
class TriggerStatus:
    """Diagnostics for one trigger relative to a moment in time."""

    spec: TriggerSpec
    passed_this_week: bool
    next_fire: datetime


def derive_trigger(
    day_key: str,
    item: PlanItem,
    library: RoutineLibrary,
    body: str,
) -> TriggerSpec | None:
    """Build the trigger for a plan item, or None if the item gets no reminder.

    Unscheduled items and items whose steps resolve empty are skipped.
    """
    hm = parse_hhmm(item.start_at)
    if hm is None:
        return None
    if not resolve_steps(item, library):
        return None
    return TriggerSpec(
        plan_id=item.plan_id,
        weekday=day_key_to_weekday(day_key),
        hour=hm[0],
        minute=hm[1],
        content=ReminderContent(title=resolve_title(item, library), body=body),
    )


def derive_triggers(plan: WeeklyPlan, library: RoutineLibrary, body: str) -> list[TriggerSpec]:
    specs = []
    for day_key, item in plan.items():
        spec = derive_trigger(day_key, item, library, body)
        if spec is not None:
            specs.append(spec)
    return specs


class ReminderScheduler:
    """Registers and cancels routine reminders for one capability."""

    def __init__(
        self,
        reminders: ReminderPort,
        cache: CachePort,
        reminder_body: str | None = None,
    ) -> None:
        if reminder_body is None:
            from studyfit.config import settings
            reminder_body = settings.REMINDER_BODY
        self._reminders = reminders
        self._cache = cache
        self._body = reminder_body

    # -----------------------------------------------------------------------
    # Trigger record persistence
    # -----------------------------------------------------------------------

    def load_record(self, user_id: str) -> TriggerRecord:
        """Read the planId → handles record; malformed data reads as empty."""
        raw = self._cache.get_item(user_key(TRIGGER_KEY_BASE, user_id))
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Malformed trigger record for user %s: %s", user_id, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {
            str(plan_id): [str(h) for h in handles]
            for plan_id, handles in data.items()
            if isinstance(handles, list)
        }

    def _save_record(self, user_id: str, record: TriggerRecord) -> None:
        self._cache.set_item(user_key(TRIGGER_KEY_BASE, user_id), json.dumps(record))

    def live_handle_count(self, user_id: str) -> int:
        return sum(len(h) for h in self.load_record(user_id).values())

    # -----------------------------------------------------------------------
    # Capability calls
    # -----------------------------------------------------------------------

    async def _cancel_handles(self, handles: list[str]) -> int:
        cancelled = 0
        for handle in handles:
            try:
                await self._reminders.cancel(handle)
                cancelled += 1
            except Exception as exc:
                logger.warning("Failed to cancel reminder %s: %s", handle, exc)
        return cancelled

    async def _register(self, spec: TriggerSpec) -> str | None:
        try:
            return await self._reminders.schedule_recurring(
                spec.weekday, spec.hour, spec.minute, spec.content,
            )
        except Exception as exc:
            logger.warning(
                "Failed to schedule reminder for plan item %s (weekday %d %02d:%02d): %s",
                spec.plan_id, spec.weekday, spec.hour, spec.minute, exc,
            )
            return None

    # -----------------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------------

    async def sync_all(
        self, user_id: str, plan: WeeklyPlan, library: RoutineLibrary,
    ) -> SyncResult:
        """Cancel every tracked reminder, then register one per eligible item.

        Individual registration failures are logged and skipped; the call is
        idempotent, so a retry repairs a partial batch.
        """
        if not await self._reminders.request_permission():
            logger.info("Reminder permission denied for user %s", user_id)
            return SyncResult(permitted=False)

        old = self.load_record(user_id)
        cancelled = await self._cancel_handles([h for hs in old.values() for h in hs])

        record: TriggerRecord = {}
        result = SyncResult(permitted=True, cancelled=cancelled)
        for spec in derive_triggers(plan, library, self._body):
            handle = await self._register(spec)
            if handle is None:
                result.failed += 1
                continue
            record.setdefault(spec.plan_id, []).append(handle)
            result.scheduled += 1

        self._save_record(user_id, record)
        logger.info(
            "Reminders synced for user %s: %d scheduled, %d failed, %d cancelled",
            user_id, result.scheduled, result.failed, result.cancelled,
        )
        return result

    async def reschedule_one(
        self,
        user_id: str,
        day_key: str,
        item: PlanItem,
        library: RoutineLibrary,
    ) -> SyncResult:
        """Cancel-then-register for a single plan item, leaving others alone."""
        if not await self._reminders.request_permission():
            return SyncResult(permitted=False)

        record = self.load_record(user_id)
        cancelled = await self._cancel_handles(record.pop(item.plan_id, []))
        result = SyncResult(permitted=True, cancelled=cancelled)

        spec = derive_trigger(day_key, item, library, self._body)
        if spec is not None:
            handle = await self._register(spec)
            if handle is None:
                result.failed = 1
            else:
                record[item.plan_id] = [handle]
                result.scheduled = 1

        self._save_record(user_id, record)
        logger.info(
            "Reminder for plan item %s rescheduled (%d scheduled, %d cancelled)",
            item.plan_id, result.scheduled, result.cancelled,
        )
        return result

    async def cancel_one(self, user_id: str, plan_id: str) -> int:
        """Cancel the reminders of one plan item (e.g. after removing it)."""
        record = self.load_record(user_id)
        handles = record.pop(plan_id, [])
        cancelled = await self._cancel_handles(handles)
        self._save_record(user_id, record)
        return cancelled

    async def cancel_all(self, user_id: str) -> int:
        """Cancel every tracked reminder of user_id and clear the record."""
        record = self.load_record(user_id)
        cancelled = await self._cancel_handles([h for hs in record.values() for h in hs])
        self._save_record(user_id, {})
        logger.info("All reminders cancelled for user %s (%d)", user_id, cancelled)
        return cancelled

    def diagnostics(
        self, plan: WeeklyPlan, library: RoutineLibrary, now: datetime,
    ) -> list[TriggerStatus]:
        """Report, per trigger, whether this week's occurrence already passed.

        Purely informational: the capability is expected to skip to the next
        occurrence on its own.
        """
        return [
            TriggerStatus(
                spec=spec,
                passed_this_week=has_passed_this_week(now, spec.weekday, spec.hour, spec.minute),
                next_fire=next_occurrence(now, spec.weekday, spec.hour, spec.minute),
            )
            for spec in derive_triggers(plan, library, self._body)
        ]
