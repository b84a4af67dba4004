"""
StudyFit — Session manager.

Binds chats to signed-in users and owns the per-user runtime state:
the loaded plan, the routine library, the reminder scheduler and the one
active run. Auth changes arrive through on_auth_changed:

* a user id → fresh load of the plan, remote subscription, reminder sync;
* None → the active run is torn down and in-memory state is cleared.
  Cached data and registered reminders are left alone.

Signed-in chats are remembered in the cache so a restarted bot can sign
them back in (restore_sessions) and re-register their reminders.

Plan edits made through the manager keep reminders in step with the plan,
unless the user opted out with /reminders off; the opt-out is stored per
user and survives remote changes, edits and restarts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable
from zoneinfo import ZoneInfo

from studyfit.core.library import (
    RoutineLibrary,
    load_library,
    load_user_routines,
    save_user_routines,
)
from studyfit.core.reminder_scheduler import ReminderScheduler, SyncResult
from studyfit.core.run_engine import Phase, RunSession, TransitionCallback
from studyfit.core.run_queue import build_adhoc_queue, build_today_queue
from studyfit.core.weekdays import logical_day_key, logical_ymd
from studyfit.data.models import (
    CheckinNote,
    DraftRecord,
    PlanItem,
    RoutineTemplate,
    RunQueueItem,
    Step,
    WeeklyPlan,
)
from studyfit.ports.cache_port import user_key

if TYPE_CHECKING:
    from studyfit.core.plan_store import PlanStore
    from studyfit.ports.cache_port import CachePort
    from studyfit.ports.completion_port import CompletionRecorderPort
    from studyfit.ports.reminder_port import ReminderPort

logger = logging.getLogger(__name__)

ReminderFactory = Callable[[int], "ReminderPort"]

BINDINGS_KEY = "chatBindingsV1"
REMINDERS_ENABLED_KEY_BASE = "remindersEnabled"


@dataclass
class UserSession:
    """Signed-in state of one chat."""

    chat_id: int
    user_id: str
    plan: WeeklyPlan
    library: RoutineLibrary
    scheduler: ReminderScheduler | None = None
    run: RunSession | None = None
    last_sync: SyncResult | None = field(default=None, repr=False)

    @property
    def has_active_run(self) -> bool:
        return self.run is not None and self.run.phase is not Phase.EXITED


class SessionManager:
    """Tracks which user is signed in on which chat."""

    def __init__(
        self,
        plans: PlanStore,
        cache: CachePort,
        recorder: CompletionRecorderPort,
        reminders_for: ReminderFactory | None = None,
        *,
        timezone: str | None = None,
        default_offset_minutes: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if timezone is None or default_offset_minutes is None:
            from studyfit.config import settings
            timezone = timezone or settings.TIMEZONE
            if default_offset_minutes is None:
                default_offset_minutes = settings.DAY_START_OFFSET_MINUTES

        self._plans = plans
        self._cache = cache
        self._recorder = recorder
        self._reminders_for = reminders_for
        self._tz = ZoneInfo(timezone)
        self._default_offset = default_offset_minutes
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._sessions: dict[int, UserSession] = {}

    # -----------------------------------------------------------------------
    # Auth
    # -----------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def get(self, chat_id: int) -> UserSession | None:
        return self._sessions.get(chat_id)

    async def on_auth_changed(self, chat_id: int, user_id: str | None) -> UserSession | None:
        """React to a sign-in (user id) or sign-out (None) on chat_id."""
        current = self._sessions.get(chat_id)
        if current is not None and (user_id is None or current.user_id != user_id):
            await self._teardown(current)

        if user_id is None:
            self._forget_binding(chat_id)
            return None
        if current is not None and current.user_id == user_id:
            return current

        plan = await self._plans.load(user_id)
        session = UserSession(
            chat_id=chat_id,
            user_id=user_id,
            plan=plan,
            library=load_library(self._cache, user_id),
        )
        if self._reminders_for is not None:
            session.scheduler = ReminderScheduler(self._reminders_for(chat_id), self._cache)
        self._sessions[chat_id] = session
        self._remember_binding(chat_id, user_id)

        async def _on_remote_change(new_plan: WeeklyPlan) -> None:
            if new_plan == session.plan:
                logger.debug("Remote echo of the current plan for user %s ignored", user_id)
                return
            session.plan = new_plan
            await self.sync_reminders(chat_id)

        self._plans.subscribe(user_id, _on_remote_change)
        await self.sync_reminders(chat_id)
        logger.info("User %s signed in on chat %d", user_id, chat_id)
        return session

    async def _teardown(self, session: UserSession) -> None:
        if session.run is not None:
            await session.run.close()
            session.run = None
        self._plans.forget(session.user_id)
        self._sessions.pop(session.chat_id, None)
        logger.info("User %s signed out of chat %d", session.user_id, session.chat_id)

    async def shutdown(self) -> None:
        """Tear down every session. Chat bindings stay for the next start."""
        for session in list(self._sessions.values()):
            await self._teardown(session)
        await self._plans.flush()

    # -- chat bindings ---------------------------------------------------------

    def bindings(self) -> dict[int, str]:
        """Signed-in chats as persisted in the cache: chat id → user id."""
        raw = self._cache.get_item(BINDINGS_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return {int(chat): str(uid) for chat, uid in data.items()}
        except (json.JSONDecodeError, AttributeError, ValueError) as exc:
            logger.warning("Malformed chat bindings in cache: %s", exc)
            return {}

    def _write_bindings(self, bindings: dict[int, str]) -> None:
        self._cache.set_item(BINDINGS_KEY, json.dumps({str(c): u for c, u in bindings.items()}))

    def _remember_binding(self, chat_id: int, user_id: str) -> None:
        bindings = self.bindings()
        if bindings.get(chat_id) != user_id:
            bindings[chat_id] = user_id
            self._write_bindings(bindings)

    def _forget_binding(self, chat_id: int) -> None:
        bindings = self.bindings()
        if bindings.pop(chat_id, None) is not None:
            self._write_bindings(bindings)

    async def restore_sessions(self) -> int:
        """Sign every persisted chat back in (bot startup).

        Reminder jobs do not survive a restart; signing in re-runs sync_all,
        which drops the stale handles and registers fresh ones.
        """
        restored = 0
        for chat_id, user_id in self.bindings().items():
            try:
                await self.on_auth_changed(chat_id, user_id)
            except Exception as exc:
                logger.error("Could not restore chat %d for user %s: %s", chat_id, user_id, exc)
                continue
            restored += 1
        return restored

    def _require(self, chat_id: int) -> UserSession:
        session = self._sessions.get(chat_id)
        if session is None:
            raise LookupError(f"No user signed in on chat {chat_id}")
        return session

    # -----------------------------------------------------------------------
    # Reminders
    # -----------------------------------------------------------------------

    def reminders_enabled(self, user_id: str) -> bool:
        """False once the user opted out with /reminders off."""
        return self._cache.get_item(user_key(REMINDERS_ENABLED_KEY_BASE, user_id)) != "0"

    def _active_scheduler(self, session: UserSession) -> ReminderScheduler | None:
        if session.scheduler is None or not self.reminders_enabled(session.user_id):
            return None
        return session.scheduler

    async def sync_reminders(self, chat_id: int) -> SyncResult | None:
        """Re-register every reminder; None when unavailable or opted out."""
        session = self._require(chat_id)
        if self._active_scheduler(session) is None:
            return None
        session.last_sync = await session.scheduler.sync_all(
            session.user_id, session.plan, session.library,
        )
        return session.last_sync

    async def enable_reminders(self, chat_id: int) -> SyncResult | None:
        session = self._require(chat_id)
        self._cache.set_item(user_key(REMINDERS_ENABLED_KEY_BASE, session.user_id), "1")
        return await self.sync_reminders(chat_id)

    async def disable_reminders(self, chat_id: int) -> int:
        """Opt out: cancel every reminder and keep them off across edits and restarts."""
        session = self._require(chat_id)
        self._cache.set_item(user_key(REMINDERS_ENABLED_KEY_BASE, session.user_id), "0")
        if session.scheduler is None:
            return 0
        return await session.scheduler.cancel_all(session.user_id)

    # -----------------------------------------------------------------------
    # Plan edits
    # -----------------------------------------------------------------------

    def day_offset(self, user_id: str) -> int:
        return self._plans.get_day_offset(user_id, self._default_offset)

    def set_day_offset(self, chat_id: int, minutes: int) -> None:
        session = self._require(chat_id)
        self._plans.set_day_offset(session.user_id, minutes)

    def reset_day_offset(self, chat_id: int) -> int:
        """Drop the user's own offset; returns the default now in effect."""
        session = self._require(chat_id)
        self._plans.clear_day_offset(session.user_id)
        return self._default_offset

    def today_key(self, chat_id: int) -> str:
        session = self._require(chat_id)
        return logical_day_key(self._clock(), self.day_offset(session.user_id))

    async def add_item(
        self,
        chat_id: int,
        day_key: str,
        routine_id: str,
        *,
        start_at: str | None = None,
        set_count: int = 1,
        content: str = "",
    ) -> PlanItem:
        session = self._require(chat_id)
        item = await self._plans.add_item(
            session.user_id, day_key, routine_id,
            start_at=start_at, set_count=set_count, content=content,
            library=session.library,
        )
        session.plan = self._plans.current(session.user_id)
        scheduler = self._active_scheduler(session)
        if scheduler is not None:
            await scheduler.reschedule_one(session.user_id, day_key, item, session.library)
        return item

    async def remove_item(self, chat_id: int, day_key: str, plan_id: str) -> bool:
        session = self._require(chat_id)
        removed = await self._plans.remove_item(session.user_id, day_key, plan_id)
        if removed:
            session.plan = self._plans.current(session.user_id)
            if session.scheduler is not None:
                await session.scheduler.cancel_one(session.user_id, plan_id)
        return removed

    async def set_start_time(self, chat_id: int, plan_id: str, start_at: str | None) -> PlanItem:
        session = self._require(chat_id)
        item = await self._plans.edit_item(
            session.user_id, plan_id, start_at=start_at, library=session.library,
        )
        session.plan = self._plans.current(session.user_id)
        scheduler = self._active_scheduler(session)
        if scheduler is not None:
            day_key, _ = session.plan.find(plan_id)
            await scheduler.reschedule_one(session.user_id, day_key, item, session.library)
        return item

    async def edit_steps(self, chat_id: int, plan_id: str, steps: Iterable[Step]) -> PlanItem:
        session = self._require(chat_id)
        item = await self._plans.edit_item(
            session.user_id, plan_id, steps=list(steps), library=session.library,
        )
        session.plan = self._plans.current(session.user_id)
        scheduler = self._active_scheduler(session)
        if scheduler is not None:
            day_key, _ = session.plan.find(plan_id)
            await scheduler.reschedule_one(session.user_id, day_key, item, session.library)
        return item

    async def copy_day(self, chat_id: int, source: str, target: str) -> list[PlanItem]:
        session = self._require(chat_id)
        copies = await self._plans.copy_day(session.user_id, source, target)
        session.plan = self._plans.current(session.user_id)
        await self.sync_reminders(chat_id)
        return copies

    async def save_routine(self, chat_id: int, routine: RoutineTemplate) -> RoutineLibrary:
        """Add or replace one of the user's own routine templates.

        Plan items that reference it pick up the new steps, so reminders are
        re-synced.
        """
        if not routine.steps:
            raise ValueError("A routine needs at least one step")
        session = self._require(chat_id)
        own = [r for r in load_user_routines(self._cache, session.user_id) if r.id != routine.id]
        own.append(routine)
        save_user_routines(self._cache, session.user_id, own)
        session.library = load_library(self._cache, session.user_id)
        logger.info("Routine %s saved for user %s", routine.id, session.user_id)
        await self.sync_reminders(chat_id)
        return session.library

    # -----------------------------------------------------------------------
    # History
    # -----------------------------------------------------------------------

    def history(self, chat_id: int, limit: int = 10) -> tuple[list[DraftRecord], list[CheckinNote]]:
        """The latest run records and today's check-in notes (logical day)."""
        session = self._require(chat_id)
        records = self._recorder.list_records(session.user_id)[-limit:] if limit > 0 else []
        ymd = logical_ymd(self._clock(), self.day_offset(session.user_id))
        return records, self._recorder.list_checkins(session.user_id, ymd)

    # -----------------------------------------------------------------------
    # Runs
    # -----------------------------------------------------------------------

    def today_queue(self, chat_id: int) -> list[RunQueueItem]:
        session = self._require(chat_id)
        return build_today_queue(
            session.plan, session.library, self._clock(), self.day_offset(session.user_id),
        )

    async def start_run(
        self,
        chat_id: int,
        queue: list[RunQueueItem] | None = None,
        on_transition: TransitionCallback | None = None,
        **session_kwargs,
    ) -> RunSession:
        """Open a new run over queue (today's queue by default).

        Only one run per chat: an unfinished previous run is closed first
        without recording anything.
        """
        session = self._require(chat_id)
        if session.run is not None:
            await session.run.close()
        if queue is None:
            queue = self.today_queue(chat_id)
        session.run = RunSession(
            session.user_id,
            queue,
            self._recorder,
            on_transition=on_transition,
            clock=self._clock,
            day_offset_minutes=self.day_offset(session.user_id),
            **session_kwargs,
        )
        logger.info("Run opened for user %s with %d routines", session.user_id, len(queue))
        return session.run

    async def start_adhoc_run(
        self,
        chat_id: int,
        title: str,
        packed_steps: str,
        set_count: int = 1,
        on_transition: TransitionCallback | None = None,
        **session_kwargs,
    ) -> RunSession:
        queue = build_adhoc_queue(title, packed_steps, set_count)
        return await self.start_run(chat_id, queue, on_transition, **session_kwargs)

    def active_run(self, chat_id: int) -> RunSession | None:
        session = self._sessions.get(chat_id)
        if session is None or not session.has_active_run:
            return None
        return session.run
