"""
StudyFit — Run queue materialization.

Turns today's plan items (or an ad hoc single routine) into RunQueueItems.
Items are built fresh every time and never written back to the plan.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from studyfit.core.library import RoutineLibrary, resolve_steps, resolve_title
from studyfit.core.weekdays import logical_day_key
from studyfit.data.models import PlanItem, RunQueueItem, Step, WeeklyPlan

logger = logging.getLogger(__name__)


def materialize(item: PlanItem, library: RoutineLibrary) -> RunQueueItem | None:
    """Build the runnable form of a plan item, or None if its steps resolve empty."""
    steps = resolve_steps(item, library)
    if not steps:
        logger.debug("Plan item %s has no steps, skipping", item.plan_id)
        return None
    return RunQueueItem(
        title=resolve_title(item, library),
        steps=tuple(steps),
        set_count=max(1, item.set_count),
        content=item.content,
        start_at_minutes=item.start_minutes,
        plan_id=item.plan_id,
    )


def sort_queue(queue: Iterable[RunQueueItem]) -> list[RunQueueItem]:
    """Order by start time; unscheduled last; ties keep their original order."""
    return sorted(
        queue,
        key=lambda q: (q.start_at_minutes is None, q.start_at_minutes or 0),
    )


def build_day_queue(plan: WeeklyPlan, day_key: str, library: RoutineLibrary) -> list[RunQueueItem]:
    materialized = []
    for item in plan.day(day_key):
        run_item = materialize(item, library)
        if run_item is not None:
            materialized.append(run_item)
    return sort_queue(materialized)


def build_today_queue(
    plan: WeeklyPlan,
    library: RoutineLibrary,
    now: datetime,
    offset_minutes: int,
) -> list[RunQueueItem]:
    """Queue for the logical "today" (the day rolls over at offset_minutes)."""
    day_key = logical_day_key(now, offset_minutes)
    queue = build_day_queue(plan, day_key, library)
    logger.info("Built %d-item queue for %s", len(queue), day_key)
    return queue


# ---------------------------------------------------------------------------
# Ad hoc single-routine runs
# ---------------------------------------------------------------------------


def parse_packed_steps(packed: str | None) -> list[Step]:
    """Parse "label,minutes|label,minutes" into steps.

    Blank labels are dropped; missing or non-numeric minutes become 0.
    """
    if not packed:
        return []
    steps = []
    for pair in packed.split("|"):
        label, _, minutes = pair.partition(",")
        label = label.strip()
        if not label:
            continue
        steps.append(Step(label=label, duration_minutes=minutes.strip() or 0))
    return steps


def pack_steps(steps: Iterable[Step]) -> str:
    return "|".join(f"{s.label},{s.duration_minutes}" for s in steps)


def build_adhoc_queue(
    title: str,
    steps: str | Iterable[Step],
    set_count: int = 1,
    content: str = "",
) -> list[RunQueueItem]:
    """A one-item queue built straight from a payload, bypassing the plan."""
    parsed = parse_packed_steps(steps) if isinstance(steps, str) else list(steps)
    if not parsed:
        raise ValueError("Ad hoc routine has no steps")
    return [
        RunQueueItem(
            title=title.strip() or "Routine",
            steps=tuple(parsed),
            set_count=max(1, set_count),
            content=content.strip(),
        )
    ]
