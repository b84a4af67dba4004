"""
StudyFit — Data Models.

Two families live here:

* Persisted documents (pydantic): Step, RoutineTemplate, PlanItem and
  WeeklyPlan. These round-trip through the local cache and the remote
  document store as camelCase JSON, and parsing them is tolerant: a
  half-broken document is normalized instead of rejected.
* Runtime records (dataclasses): RunQueueItem, DraftRecord, Checkin and
  CheckinNote. Queue items are derived fresh on every run; records are
  append-only once written.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DAY_KEYS: tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def new_plan_id() -> str:
    """Generate a fresh plan item id."""
    return uuid.uuid4().hex[:12]


def parse_hhmm(value: str | None) -> tuple[int, int] | None:
    """Parse "H:MM" / "HH:MM" (24h) into (hour, minute), or None if invalid."""
    if not value:
        return None
    match = _HHMM_RE.match(str(value).strip())
    if match is None:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def format_hhmm(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


# ---------------------------------------------------------------------------
# Persisted documents
# ---------------------------------------------------------------------------


class Step(BaseModel):
    """One timed step of a routine.

    JSON example: {"step": "Review vocabulary", "minutes": 20}
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    label: str = Field(default="", alias="step")
    duration_minutes: int = Field(default=0, alias="minutes")

    @field_validator("label", mode="before")
    @classmethod
    def coerce_label(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def clamp_minutes(cls, v: Any) -> int:
        try:
            return max(0, int(v or 0))
        except (TypeError, ValueError):
            return 0


class RoutineTemplate(BaseModel):
    """A reusable step sequence, either built-in or user-authored."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = "Routine"
    steps: tuple[Step, ...] = ()
    tags: frozenset[str] = frozenset()

    @property
    def minutes_per_set(self) -> int:
        return sum(s.duration_minutes for s in self.steps)


class PlanItem(BaseModel):
    """One scheduled occurrence of a routine within a weekday's list.

    JSON example:
    {
        "planId": "3f9c1a2b7d10",
        "routineId": "preset-2",
        "title": "Vocabulary drill",
        "steps": [{"step": "Memorize", "minutes": 20}],
        "startAt": "09:00",
        "setCount": 2
    }
    """

    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(default_factory=new_plan_id, alias="planId")
    routine_id: str = Field(default="", alias="routineId")
    title_override: str | None = Field(default=None, alias="title")
    steps_override: list[Step] | None = Field(default=None, alias="steps")
    tags_override: list[str] | None = Field(default=None, alias="tags")
    start_at: str | None = Field(default=None, alias="startAt")
    set_count: int = Field(default=1, alias="setCount")
    content: str = ""

    @model_validator(mode="before")
    @classmethod
    def legacy_keys(cls, data: Any) -> Any:
        # Older documents stored the routine reference as "id" and the
        # free-text field as "subject".
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("routineId") and data.get("id"):
                data["routineId"] = data["id"]
            if not data.get("content") and data.get("subject"):
                data["content"] = data["subject"]
            if not data.get("planId"):
                data.pop("planId", None)
        return data

    @field_validator("plan_id", "routine_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("start_at", mode="before")
    @classmethod
    def normalize_start_at(cls, v: Any) -> str | None:
        parsed = parse_hhmm(v if isinstance(v, str) else None)
        if parsed is None:
            return None
        return format_hhmm(*parsed)

    @field_validator("set_count", mode="before")
    @classmethod
    def clamp_set_count(cls, v: Any) -> int:
        try:
            return max(1, int(v or 1))
        except (TypeError, ValueError):
            return 1

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def start_minutes(self) -> int | None:
        """Minutes of day for start_at, or None when unscheduled."""
        parsed = parse_hhmm(self.start_at)
        if parsed is None:
            return None
        return parsed[0] * 60 + parsed[1]


class WeeklyPlan(BaseModel):
    """Seven weekday lists of plan items.

    planId is unique across the whole plan; duplicates found while parsing
    are given fresh ids.
    """

    mon: list[PlanItem] = []
    tue: list[PlanItem] = []
    wed: list[PlanItem] = []
    thu: list[PlanItem] = []
    fri: list[PlanItem] = []
    sat: list[PlanItem] = []
    sun: list[PlanItem] = []

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        # Accept {"days": {...}} and {"week": {...}} envelopes as well as bare
        # day mappings; non-list day values become empty lists.
        if not isinstance(data, dict):
            return data
        for envelope in ("days", "week"):
            inner = data.get(envelope)
            if isinstance(inner, dict):
                data = inner
                break
        return {
            day: [
                x for x in data[day] if isinstance(x, (dict, PlanItem))
            ] if isinstance(data.get(day), list) else []
            for day in DAY_KEYS
        }

    @model_validator(mode="after")
    def dedupe_plan_ids(self) -> WeeklyPlan:
        seen: set[str] = set()
        for _, item in self.items():
            if item.plan_id in seen:
                item.plan_id = new_plan_id()
            seen.add(item.plan_id)
        return self

    def day(self, day_key: str) -> list[PlanItem]:
        if day_key not in DAY_KEYS:
            raise KeyError(f"Unknown day key: {day_key!r}")
        return getattr(self, day_key)

    def items(self) -> Iterator[tuple[str, PlanItem]]:
        """Yield (day_key, item) pairs in weekday order."""
        for day_key in DAY_KEYS:
            for item in getattr(self, day_key):
                yield day_key, item

    def find(self, plan_id: str) -> tuple[str, PlanItem] | None:
        for day_key, item in self.items():
            if item.plan_id == plan_id:
                return day_key, item
        return None

    def is_empty(self) -> bool:
        return not any(True for _ in self.items())

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunQueueItem:
    """A plan item materialized for execution. Never written back to the plan."""

    title: str
    steps: tuple[Step, ...]
    set_count: int = 1
    content: str = ""
    start_at_minutes: int | None = None   # minutes of day, None = unscheduled
    plan_id: str | None = None

    @property
    def minutes_per_set(self) -> int:
        return sum(s.duration_minutes for s in self.steps)

    @property
    def duration_minutes(self) -> int:
        return self.minutes_per_set * self.set_count

    @property
    def time_label(self) -> str:
        if self.start_at_minutes is None:
            return "unscheduled"
        return f"{self.start_at_minutes // 60:02d}:{self.start_at_minutes % 60:02d}"


@dataclass(frozen=True)
class Checkin:
    """Self-assessment collected when a routine finishes."""

    mood: int = 3
    focus: int = 3
    goal_achieved: bool = False

    def __post_init__(self) -> None:
        for name in ("mood", "focus"):
            value = getattr(self, name)
            if not 1 <= value <= 5:
                raise ValueError(f"{name} must be between 1 and 5, got {value}")


@dataclass
class DraftRecord:
    """A persisted snapshot of a partially (draft) or fully (final) completed run."""

    status: str                       # "draft" | "final"
    title: str
    set_count: int
    planned_minutes: int
    elapsed_seconds: int
    completed_at: str                 # ISO datetime
    mood: int | None = None
    focus: int | None = None
    goal_achieved: bool | None = None


@dataclass
class CheckinNote:
    """A day-scoped check-in entry, keyed by logical date."""

    ymd: str                          # logical date YYYY-MM-DD
    routine_index: int
    routine_title: str
    mood: int
    focus: int
    goal_achieved: bool
    saved_at: str = ""
