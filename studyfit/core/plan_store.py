"""
StudyFit — Plan Store.

Owns each user's WeeklyPlan and its reconciliation between the local cache
and the remote document store.

* load: cache first, then the remote document. A remote document is
  authoritative and overwrites the cache; a missing remote document with a
  non-empty cache is repaired by pushing the cache up. Absence anywhere
  resolves to an empty plan.
* save: write-through. The cache write always happens; the remote push is
  best-effort so editing never blocks on the network.
* subscribe: remote changes replace the in-memory plan wholesale
  (last writer wins at document granularity).

Every mutation (add, remove, reorder, edit, copy) goes through save.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from pydantic import ValidationError

from studyfit.core.library import RoutineLibrary
from studyfit.data.models import (
    DAY_KEYS,
    PlanItem,
    Step,
    WeeklyPlan,
    format_hhmm,
    new_plan_id,
    parse_hhmm,
)
from studyfit.ports.cache_port import CachePort, user_key
from studyfit.ports.document_store_port import (
    DocumentStorePort,
    RemoteUnavailable,
    Unsubscribe,
    user_doc_path,
)

logger = logging.getLogger(__name__)

WEEKLY_KEY_BASE = "weeklyPlannerV1"
DAY_OFFSET_KEY_BASE = "dayStartOffsetMin"
PLAN_DOC_VERSION = 1

PlanCallback = Callable[[WeeklyPlan], Awaitable[None] | None]

_UNSET = object()


def plan_doc_path(user_id: str) -> str:
    return user_doc_path(user_id, "weeklyPlanner", "current")


def parse_plan(raw: object) -> WeeklyPlan | None:
    """Parse a stored plan document; None if it is malformed."""
    try:
        return WeeklyPlan.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Malformed weekly plan document: %s", exc)
        return None


def sorted_day(plan: WeeklyPlan, day_key: str) -> list[PlanItem]:
    """A day's items by start time, unscheduled last, ties in stored order."""
    return sorted(
        plan.day(day_key),
        key=lambda it: (it.start_minutes is None, it.start_minutes or 0),
    )


class PlanStore:
    """Per-user weekly plans backed by a cache and an optional remote store."""

    def __init__(
        self,
        cache: CachePort,
        remote: DocumentStorePort | None = None,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._plans: dict[str, WeeklyPlan] = {}
        self._subscriptions: dict[str, Unsubscribe] = {}
        self._pushes: set[asyncio.Task] = set()
        self._push_lock = asyncio.Lock()

    # -- cache ---------------------------------------------------------------

    def _read_cache(self, user_id: str) -> WeeklyPlan | None:
        raw = self._cache.get_item(user_key(WEEKLY_KEY_BASE, user_id))
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Malformed cached plan for user %s: %s", user_id, exc)
            return None
        return parse_plan(data)

    def _write_cache(self, user_id: str, plan: WeeklyPlan) -> None:
        self._cache.set_item(
            user_key(WEEKLY_KEY_BASE, user_id),
            json.dumps(plan.to_document(), ensure_ascii=False),
        )

    # -- remote --------------------------------------------------------------

    async def _pull(self, user_id: str) -> WeeklyPlan | None:
        """Fetch the remote plan. Raises RemoteUnavailable."""
        doc = await self._remote.get(plan_doc_path(user_id))
        if doc is None:
            return None
        return parse_plan(doc)

    async def _push(self, user_id: str, plan: WeeklyPlan) -> bool:
        """Best-effort remote write. Returns False on failure."""
        if self._remote is None:
            return False
        document = {
            "days": plan.to_document(),
            "version": PLAN_DOC_VERSION,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._remote.set(plan_doc_path(user_id), document, merge=True)
        except RemoteUnavailable as exc:
            logger.warning("Remote plan push failed for user %s: %s", user_id, exc)
            return False
        return True

    # -- contract ------------------------------------------------------------

    async def load(self, user_id: str) -> WeeklyPlan:
        """Resolve the user's plan (never fails for "not found")."""
        cached = self._read_cache(user_id)
        plan = cached

        if self._remote is not None:
            try:
                remote_plan = await self._pull(user_id)
            except RemoteUnavailable as exc:
                logger.warning("Remote unavailable, using cached plan for user %s: %s", user_id, exc)
            else:
                if remote_plan is not None:
                    plan = remote_plan
                    self._write_cache(user_id, remote_plan)
                elif cached is not None and not cached.is_empty():
                    logger.info("Remote plan missing for user %s, pushing cache", user_id)
                    await self._push(user_id, cached)

        if plan is None:
            plan = WeeklyPlan()
        self._plans[user_id] = plan
        return plan

    async def save(self, user_id: str, plan: WeeklyPlan) -> None:
        """Write-through: cache now, remote push in the background."""
        self._plans[user_id] = plan
        self._write_cache(user_id, plan)
        logger.info("Plan saved for user %s", user_id)
        if self._remote is None:
            return
        task = asyncio.get_running_loop().create_task(self._push_in_background(user_id, plan))
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)

    async def _push_in_background(self, user_id: str, plan: WeeklyPlan) -> None:
        try:
            async with self._push_lock:
                pushed = await self._push(user_id, plan)
        except Exception as exc:
            logger.error("Remote plan push crashed for user %s: %s", user_id, exc)
            return
        logger.debug("Remote plan push for user %s finished (ok=%s)", user_id, pushed)

    async def flush(self) -> None:
        """Wait for in-flight remote pushes (tests, shutdown)."""
        while self._pushes:
            await asyncio.gather(*list(self._pushes), return_exceptions=True)

    def subscribe(self, user_id: str, on_change: PlanCallback | None = None) -> Unsubscribe:
        """Follow remote changes for user_id; returns an unsubscribe callable."""
        self.unsubscribe(user_id)
        if self._remote is None:
            return lambda: None

        async def _handle(document: dict | None) -> None:
            if document is None:
                return
            plan = parse_plan(document)
            if plan is None:
                return
            self._write_cache(user_id, plan)
            self._plans[user_id] = plan
            logger.debug("Remote plan change applied for user %s", user_id)
            if on_change is not None:
                result = on_change(plan)
                if inspect.isawaitable(result):
                    await result

        unsubscribe = self._remote.on_change(plan_doc_path(user_id), _handle)
        self._subscriptions[user_id] = unsubscribe
        return unsubscribe

    def unsubscribe(self, user_id: str) -> None:
        unsubscribe = self._subscriptions.pop(user_id, None)
        if unsubscribe is not None:
            unsubscribe()

    def current(self, user_id: str) -> WeeklyPlan | None:
        """The in-memory plan, if loaded."""
        return self._plans.get(user_id)

    def forget(self, user_id: str) -> None:
        """Drop in-memory state for user_id (sign-out). The cache is kept."""
        self.unsubscribe(user_id)
        self._plans.pop(user_id, None)

    # -- day offset ----------------------------------------------------------

    def get_day_offset(self, user_id: str, default: int) -> int:
        raw = self._cache.get_item(user_key(DAY_OFFSET_KEY_BASE, user_id))
        try:
            value = int(raw) if raw is not None else default
        except ValueError:
            return default
        return value if 0 <= value < 24 * 60 else default

    def set_day_offset(self, user_id: str, minutes: int) -> None:
        if not 0 <= minutes < 24 * 60:
            raise ValueError(f"Day offset out of range: {minutes}")
        self._cache.set_item(user_key(DAY_OFFSET_KEY_BASE, user_id), str(minutes))

    def clear_day_offset(self, user_id: str) -> bool:
        return self._cache.remove_item(user_key(DAY_OFFSET_KEY_BASE, user_id))

    # -- mutations -----------------------------------------------------------

    async def _working_copy(self, user_id: str) -> WeeklyPlan:
        plan = self._plans.get(user_id)
        if plan is None:
            plan = await self.load(user_id)
        return plan.model_copy(deep=True)

    async def add_item(
        self,
        user_id: str,
        day_key: str,
        routine_id: str,
        *,
        start_at: str | None = None,
        title: str | None = None,
        set_count: int = 1,
        content: str = "",
        library: RoutineLibrary | None = None,
    ) -> PlanItem:
        """Append a routine to a day. Returns the new item."""
        if start_at is not None and parse_hhmm(start_at) is None:
            raise ValueError(f"Invalid start time: {start_at!r}")
        plan = await self._working_copy(user_id)
        day = plan.day(day_key)

        template = library.resolve(routine_id) if library is not None else None
        item = PlanItem(
            plan_id=new_plan_id(),
            routine_id=routine_id,
            title_override=title or (template.title if template else None),
            tags_override=sorted(template.tags) if template and template.tags else None,
            start_at=start_at,
            set_count=set_count,
            content=content,
        )
        day.append(item)
        await self.save(user_id, plan)
        logger.info("Plan item %s added to %s for user %s", item.plan_id, day_key, user_id)
        return item

    async def remove_item(self, user_id: str, day_key: str, plan_id: str) -> bool:
        plan = await self._working_copy(user_id)
        day = plan.day(day_key)
        kept = [it for it in day if it.plan_id != plan_id]
        if len(kept) == len(day):
            return False
        day[:] = kept
        await self.save(user_id, plan)
        logger.info("Plan item %s removed from %s for user %s", plan_id, day_key, user_id)
        return True

    async def reorder_day(self, user_id: str, day_key: str, plan_ids: list[str]) -> WeeklyPlan:
        """Reorder a day; plan_ids must be a permutation of the day's ids."""
        plan = await self._working_copy(user_id)
        day = plan.day(day_key)
        by_id = {it.plan_id: it for it in day}
        if sorted(plan_ids) != sorted(by_id):
            raise ValueError("plan_ids must list exactly the day's items")
        day[:] = [by_id[pid] for pid in plan_ids]
        await self.save(user_id, plan)
        return plan

    async def edit_item(
        self,
        user_id: str,
        plan_id: str,
        *,
        steps: list[Step] | None = None,
        start_at: str | None | object = _UNSET,
        title: str | None = None,
        set_count: int | None = None,
        content: str | None = None,
        library: RoutineLibrary | None = None,
    ) -> PlanItem:
        """Edit one item in place. start_at=None clears the time."""
        if steps is not None:
            if not steps:
                raise ValueError("At least one step is required")
            steps = [
                Step(label=s.label.strip() or "Step", duration_minutes=max(1, s.duration_minutes))
                for s in steps
            ]
        if start_at is not _UNSET and start_at is not None and parse_hhmm(start_at) is None:
            raise ValueError(f"Invalid start time: {start_at!r}")

        plan = await self._working_copy(user_id)
        found = plan.find(plan_id)
        if found is None:
            raise KeyError(f"Unknown plan item: {plan_id}")
        _, item = found

        template = library.resolve(item.routine_id) if library is not None else None
        if steps is not None:
            item.steps_override = steps
        if start_at is not _UNSET:
            parsed = parse_hhmm(start_at) if start_at is not None else None
            item.start_at = format_hhmm(*parsed) if parsed else None
        if title is not None:
            item.title_override = title
        elif item.title_override is None and template is not None:
            item.title_override = template.title
        if item.tags_override is None and template is not None and template.tags:
            item.tags_override = sorted(template.tags)
        if set_count is not None:
            item.set_count = max(1, set_count)
        if content is not None:
            item.content = content

        await self.save(user_id, plan)
        return item

    async def copy_day(self, user_id: str, source: str, target: str) -> list[PlanItem]:
        """Append copies of source's items to target, with fresh plan ids."""
        if target not in DAY_KEYS:
            raise KeyError(f"Unknown day key: {target!r}")
        plan = await self._working_copy(user_id)
        copies = [
            it.model_copy(update={"plan_id": new_plan_id()}, deep=True)
            for it in plan.day(source)
        ]
        plan.day(target).extend(copies)
        await self.save(user_id, plan)
        return copies
