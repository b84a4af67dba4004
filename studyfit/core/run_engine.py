"""
StudyFit — Run engine.

Drives a queue of routines through the step/set state machine:

    Listing → Ready → Running ⇄ Paused → Ready(next) | CheckingIn → exit

The transition logic is a pure function, transition(state, event), so it
can be exercised without a clock. RunSession is the driver: it owns the
single tick source for the active run, writes draft/final records through
the completion recorder and moves to the next queue item after check-in.

Countdown is in whole seconds (step minutes × 60). A tick on the last
second of a step credits that second and advances; a manual skip advances
without crediting the remaining time.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from studyfit.core.weekdays import logical_ymd
from studyfit.data.models import Checkin, CheckinNote, DraftRecord, RunQueueItem, Step

if TYPE_CHECKING:
    from studyfit.ports.completion_port import CompletionRecorderPort

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    LISTING = "listing"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    CHECKING_IN = "checking_in"
    EXITED = "exited"


class Event(str, Enum):
    BEGIN = "begin"       # Ready → Running (explicit user start)
    TICK = "tick"         # one second elapsed while Running
    SKIP = "skip"         # manual "next step / next set"
    PAUSE = "pause"
    RESUME = "resume"


@dataclass(frozen=True)
class RunState:
    """Transient state of one execution session. Never persisted as-is."""

    queue: tuple[RunQueueItem, ...]
    phase: Phase = Phase.LISTING
    queue_index: int = 0
    set_index: int = 0
    step_index: int = 0
    remaining_seconds: int = 0
    elapsed_seconds_total: int = 0
    final_elapsed_seconds: int | None = None   # set on entering CheckingIn

    @property
    def current(self) -> RunQueueItem | None:
        if 0 <= self.queue_index < len(self.queue):
            return self.queue[self.queue_index]
        return None

    @property
    def current_step(self) -> Step | None:
        item = self.current
        if item is None or not item.steps:
            return None
        return item.steps[min(self.step_index, len(item.steps) - 1)]

    @property
    def planned_seconds(self) -> int:
        item = self.current
        return item.duration_minutes * 60 if item is not None else 0

    @property
    def is_last_step_in_set(self) -> bool:
        item = self.current
        return item is not None and self.step_index >= len(item.steps) - 1

    @property
    def is_last_set(self) -> bool:
        item = self.current
        return item is not None and self.set_index >= item.set_count - 1

    @property
    def has_next_routine(self) -> bool:
        return self.queue_index + 1 < len(self.queue)

    @property
    def position(self) -> tuple[int, int, int]:
        return self.queue_index, self.set_index, self.step_index


def _step_seconds(item: RunQueueItem, step_index: int) -> int:
    return item.steps[step_index].duration_minutes * 60


def new_run(queue: Sequence[RunQueueItem]) -> RunState:
    """Initial Listing state for a queue."""
    return RunState(queue=tuple(queue))


def select(state: RunState, index: int) -> RunState:
    """Put queue item index into Ready with a fresh timer and zero elapsed."""
    if not 0 <= index < len(state.queue):
        raise IndexError(f"Queue index out of range: {index}")
    item = state.queue[index]
    if not item.steps:
        raise ValueError(f"Routine {item.title!r} has no steps")
    return replace(
        state,
        phase=Phase.READY,
        queue_index=index,
        set_index=0,
        step_index=0,
        remaining_seconds=_step_seconds(item, 0),
        elapsed_seconds_total=0,
        final_elapsed_seconds=None,
    )


def _advance(state: RunState) -> RunState:
    """Move to the next step, the next set, or CheckingIn."""
    item = state.current
    if not state.is_last_step_in_set:
        step = state.step_index + 1
        return replace(
            state,
            phase=Phase.RUNNING,
            step_index=step,
            remaining_seconds=_step_seconds(item, step),
        )
    if not state.is_last_set:
        return replace(
            state,
            phase=Phase.RUNNING,
            set_index=state.set_index + 1,
            step_index=0,
            remaining_seconds=_step_seconds(item, 0),
        )
    # Timer drift can under-count; a finished routine is credited in full.
    return replace(
        state,
        phase=Phase.CHECKING_IN,
        remaining_seconds=0,
        final_elapsed_seconds=max(state.elapsed_seconds_total, state.planned_seconds),
    )


def transition(state: RunState, event: Event) -> RunState:
    """Pure state transition. Events that don't apply to the phase are no-ops."""
    phase = state.phase

    if event is Event.BEGIN:
        if phase is Phase.READY:
            return replace(state, phase=Phase.RUNNING)
        return state

    if event is Event.TICK:
        if phase is not Phase.RUNNING:
            return state
        elapsed = state.elapsed_seconds_total + 1
        if state.remaining_seconds <= 1:
            return _advance(replace(state, remaining_seconds=0, elapsed_seconds_total=elapsed))
        return replace(
            state,
            remaining_seconds=state.remaining_seconds - 1,
            elapsed_seconds_total=elapsed,
        )

    if event is Event.SKIP:
        if phase in (Phase.RUNNING, Phase.PAUSED):
            return _advance(state)
        return state

    if event is Event.PAUSE:
        if phase is Phase.RUNNING:
            return replace(state, phase=Phase.PAUSED)
        return state

    if event is Event.RESUME:
        if phase is Phase.PAUSED:
            return replace(state, phase=Phase.RUNNING)
        return state

    raise ValueError(f"Unknown event: {event!r}")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def draft_record(state: RunState, now: datetime) -> DraftRecord:
    """Snapshot of an interrupted run."""
    item = state.current
    return DraftRecord(
        status="draft",
        title=item.title,
        set_count=item.set_count,
        planned_minutes=item.duration_minutes,
        elapsed_seconds=max(0, state.elapsed_seconds_total),
        completed_at=now.isoformat(),
    )


def final_record(state: RunState, checkin: Checkin, now: datetime) -> DraftRecord:
    """Record of a completed run, with the user's check-in."""
    item = state.current
    elapsed = state.final_elapsed_seconds
    if elapsed is None:
        elapsed = max(state.elapsed_seconds_total, state.planned_seconds)
    return DraftRecord(
        status="final",
        title=item.title,
        set_count=item.set_count,
        planned_minutes=item.duration_minutes,
        elapsed_seconds=elapsed,
        completed_at=now.isoformat(),
        mood=checkin.mood,
        focus=checkin.focus,
        goal_achieved=checkin.goal_achieved,
    )


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

TransitionCallback = Callable[[RunState], Awaitable[None] | None]


class RunSession:
    """One active execution session for one user.

    Only one tick source exists per session: the ticker task is started when
    the run enters Running and cancelled on pause, check-in or exit.
    """

    def __init__(
        self,
        user_id: str,
        queue: Sequence[RunQueueItem],
        recorder: CompletionRecorderPort,
        *,
        on_transition: TransitionCallback | None = None,
        clock: Callable[[], datetime] | None = None,
        day_offset_minutes: int | None = None,
        tick_seconds: float | None = None,
        settle_seconds: float | None = None,
        autotick: bool = True,
    ) -> None:
        from studyfit.config import settings

        if clock is None:
            from zoneinfo import ZoneInfo
            tz = ZoneInfo(settings.TIMEZONE)
            clock = lambda: datetime.now(tz)  # noqa: E731

        self.user_id = user_id
        self._recorder = recorder
        self._on_transition = on_transition
        self._clock = clock
        self._day_offset = (
            settings.DAY_START_OFFSET_MINUTES if day_offset_minutes is None else day_offset_minutes
        )
        self._tick_seconds = settings.TICK_SECONDS if tick_seconds is None else tick_seconds
        self._settle_seconds = (
            settings.SETTLE_DELAY_SECONDS if settle_seconds is None else settle_seconds
        )
        self._autotick = autotick
        self._state = new_run(queue)
        self._ticker: asyncio.Task | None = None
        self._callbacks: set[asyncio.Future] = set()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    # -- state plumbing ------------------------------------------------------

    def _apply(self, new_state: RunState) -> RunState:
        old = self._state
        self._state = new_state
        if (old.phase, old.position) != (new_state.phase, new_state.position):
            logger.debug(
                "Run %s: %s %s → %s %s",
                self.user_id, old.phase.value, old.position,
                new_state.phase.value, new_state.position,
            )
            self._notify(new_state)
        if new_state.phase is Phase.RUNNING:
            self._start_ticker()
        else:
            self._stop_ticker()
        return new_state

    def _notify(self, state: RunState) -> None:
        if self._on_transition is None:
            return
        result = self._on_transition(state)
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._callbacks.add(future)
            future.add_done_callback(self._callbacks.discard)

    def _start_ticker(self) -> None:
        if not self._autotick or self._ticker is not None:
            return
        self._ticker = asyncio.get_running_loop().create_task(self._run_ticker())

    def _stop_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is not None and ticker is not asyncio.current_task():
            ticker.cancel()

    async def _run_ticker(self) -> None:
        try:
            while self._state.phase is Phase.RUNNING:
                await asyncio.sleep(self._tick_seconds)
                if self._state.phase is not Phase.RUNNING:
                    break
                before = self._state.position
                self.tick()
                if self._state.phase is Phase.RUNNING and self._state.position != before:
                    await asyncio.sleep(self._settle_seconds)
        finally:
            if self._ticker is asyncio.current_task():
                self._ticker = None

    # -- user actions --------------------------------------------------------

    def select(self, index: int) -> RunState:
        """Listing (or CheckingIn) → Ready for queue item index."""
        if self._state.phase not in (Phase.LISTING, Phase.READY):
            return self._state
        return self._apply(select(self._state, index))

    def start(self) -> RunState:
        return self._apply(transition(self._state, Event.BEGIN))

    def tick(self) -> RunState:
        return self._apply(transition(self._state, Event.TICK))

    def skip(self) -> RunState:
        return self._apply(transition(self._state, Event.SKIP))

    def pause(self) -> RunState:
        return self._apply(transition(self._state, Event.PAUSE))

    def resume(self) -> RunState:
        return self._apply(transition(self._state, Event.RESUME))

    def toggle_pause(self) -> RunState:
        if self._state.phase is Phase.RUNNING:
            return self.pause()
        return self.resume()

    async def save_draft_and_exit(self) -> DraftRecord | None:
        """Stop the timer, record a draft of the elapsed time and exit.

        Only valid while Running or Paused; otherwise a no-op returning None.
        The queue does not advance.
        """
        if self._state.phase not in (Phase.RUNNING, Phase.PAUSED):
            return None
        self._stop_ticker()
        record = draft_record(self._state, self._clock())
        self._apply(replace(self._state, phase=Phase.EXITED))
        await self._record(record)
        logger.info(
            "Draft saved for user %s: '%s' after %ds",
            self.user_id, record.title, record.elapsed_seconds,
        )
        return record

    async def confirm_checkin(self, checkin: Checkin, proceed: bool = True) -> DraftRecord | None:
        """Record the finished routine with its check-in, then advance or exit.

        proceed=True moves to the next queue item's Ready state when there is
        one; otherwise (or with proceed=False) the session exits.
        """
        state = self._state
        if state.phase is not Phase.CHECKING_IN:
            return None
        now = self._clock()
        record = final_record(state, checkin, now)
        note = CheckinNote(
            ymd=logical_ymd(now, self._day_offset),
            routine_index=state.queue_index,
            routine_title=state.current.title,
            mood=checkin.mood,
            focus=checkin.focus,
            goal_achieved=checkin.goal_achieved,
            saved_at=now.isoformat(),
        )

        if proceed and state.has_next_routine:
            self._apply(select(state, state.queue_index + 1))
        else:
            self._apply(replace(state, phase=Phase.EXITED))

        await self._record(record, note)
        logger.info(
            "Routine '%s' finished for user %s (%ds, mood %d, focus %d)",
            record.title, self.user_id, record.elapsed_seconds, checkin.mood, checkin.focus,
        )
        return record

    async def close(self) -> None:
        """Tear down without recording anything (sign-out, shutdown)."""
        self._stop_ticker()
        if self._state.phase is not Phase.EXITED:
            self._apply(replace(self._state, phase=Phase.EXITED))

    async def join(self) -> None:
        """Wait until the ticker stops (the run left Running)."""
        while self._ticker is not None:
            ticker = self._ticker
            try:
                await asyncio.shield(ticker)
            except asyncio.CancelledError:
                if not ticker.cancelled():
                    raise

    async def _record(self, record: DraftRecord, note: CheckinNote | None = None) -> None:
        try:
            await self._recorder.append(self.user_id, record)
        except Exception as exc:
            logger.error("Failed to record run for user %s: %s", self.user_id, exc)
        if note is None:
            return
        try:
            await self._recorder.append_checkin(self.user_id, note)
        except Exception as exc:
            logger.error("Failed to record check-in for user %s: %s", self.user_id, exc)
