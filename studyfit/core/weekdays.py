"""
StudyFit — Weekday numbering and the logical day boundary.

Two numbering systems meet here and nowhere else:

* Scheduler numbering: 1=Monday .. 7=Sunday, matching the day keys
  ("mon" .. "sun") and datetime.isoweekday().
* Platform numbering: 1=Sunday .. 7=Saturday, what reminder platforms
  expect. Adapters that need a 0-based variant subtract one.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from studyfit.data.models import DAY_KEYS

# Scheduler weekday (1=Mon .. 7=Sun) → platform weekday (1=Sun .. 7=Sat)
PLATFORM_WEEKDAY: dict[int, int] = {1: 2, 2: 3, 3: 4, 4: 5, 5: 6, 6: 7, 7: 1}


def day_key_to_weekday(day_key: str) -> int:
    """"mon" → 1 .. "sun" → 7."""
    try:
        return DAY_KEYS.index(day_key) + 1
    except ValueError:
        raise KeyError(f"Unknown day key: {day_key!r}") from None


def weekday_to_day_key(weekday: int) -> str:
    """1 → "mon" .. 7 → "sun"."""
    if not 1 <= weekday <= 7:
        raise ValueError(f"Weekday out of range: {weekday}")
    return DAY_KEYS[weekday - 1]


def to_platform_weekday(weekday: int) -> int:
    """Translate scheduler numbering (1=Mon) to platform numbering (1=Sun)."""
    try:
        return PLATFORM_WEEKDAY[weekday]
    except KeyError:
        raise ValueError(f"Weekday out of range: {weekday}") from None


def day_key_of(moment: datetime) -> str:
    """Day key of a (calendar) datetime."""
    return DAY_KEYS[moment.weekday()]


# ---------------------------------------------------------------------------
# Logical day
# ---------------------------------------------------------------------------


def logical_now(now: datetime, offset_minutes: int) -> datetime:
    """Shift now back by the day-start offset.

    With offset 240 (04:00), Tuesday 02:30 is still logically Monday 22:30.
    """
    return now - timedelta(minutes=offset_minutes)


def logical_day_key(now: datetime, offset_minutes: int) -> str:
    return day_key_of(logical_now(now, offset_minutes))


def logical_ymd(now: datetime, offset_minutes: int) -> str:
    return logical_now(now, offset_minutes).date().isoformat()


# ---------------------------------------------------------------------------
# Occurrence math (diagnostics; the platform owns actual firing)
# ---------------------------------------------------------------------------


def this_week_occurrence(now: datetime, weekday: int, hour: int, minute: int) -> datetime:
    """The (weekday, hour, minute) occurrence inside now's Monday-started week."""
    if not 1 <= weekday <= 7:
        raise ValueError(f"Weekday out of range: {weekday}")
    monday = now - timedelta(days=now.weekday())
    day = monday + timedelta(days=weekday - 1)
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def has_passed_this_week(now: datetime, weekday: int, hour: int, minute: int) -> bool:
    """True if this week's occurrence is at or before now."""
    return this_week_occurrence(now, weekday, hour, minute) <= now


def next_occurrence(now: datetime, weekday: int, hour: int, minute: int) -> datetime:
    """Next strictly-future occurrence of (weekday, hour, minute).

    An occurrence earlier today (or earlier this week) rolls to next week; it
    never fires immediately.
    """
    if not 1 <= weekday <= 7:
        raise ValueError(f"Weekday out of range: {weekday}")
    diff = (weekday - now.isoweekday()) % 7
    candidate = (now + timedelta(days=diff)).replace(
        hour=hour, minute=minute, second=0, microsecond=0,
    )
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate
