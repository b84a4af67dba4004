"""
StudyFit — Routine Library.

Read-only catalog of routine templates keyed by id: a fixed built-in
catalog merged with the user's own collection. On an id collision the
user-authored entry wins. Editing templates happens elsewhere; the core
only resolves.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from studyfit.data.models import PlanItem, RoutineTemplate, Step
from studyfit.ports.cache_port import CachePort, user_key

logger = logging.getLogger(__name__)

USER_ROUTINES_KEY_BASE = "routineLibraryV1"


def _preset(rid: str, title: str, tags: Iterable[str], *steps: tuple[str, int]) -> RoutineTemplate:
    return RoutineTemplate(
        id=rid,
        title=title,
        steps=tuple(Step(label=label, duration_minutes=m) for label, m in steps),
        tags=frozenset(tags),
    )


BUILTIN_ROUTINES: tuple[RoutineTemplate, ...] = (
    _preset("preset-2", "Vocabulary memorization", ["#memorize"],
            ("Memorize new words", 20), ("Write example sentences", 15), ("Quick self-quiz", 10)),
    _preset("preset-3", "Wrong-answer focus", ["#practice", "#review"],
            ("Review recent mistakes", 20), ("Redo similar problems", 25),
            ("Compare right and wrong answers", 15)),
    _preset("preset-4", "Night-before-exam wrap-up", ["#review"],
            ("Summarize the whole scope", 40), ("Solve likely questions", 30),
            ("Write a mistakes note", 20)),
    _preset("preset-5", "Write your own problem", ["#concepts"],
            ("Pick one key concept", 5), ("Write a problem", 10), ("Solve and annotate it", 15)),
    _preset("preset-6", "Math long-form answers", ["#practice"],
            ("Solve three long-form problems", 20), ("Check the working", 10),
            ("Compare with model answers", 10)),
    _preset("preset-8", "Reading analysis", ["#concepts"],
            ("Read one passage", 10), ("Sketch the structure", 10), ("Answer and check", 10)),
    _preset("preset-10", "Quick mistakes recap", ["#review"],
            ("Skim the mistakes note", 10), ("Drill missed words", 5), ("Solve one similar problem", 5)),
    _preset("preset-12", "Explain it yourself (Feynman)", ["#concepts"],
            ("Pick one math concept", 5), ("Explain it as if to a child", 10),
            ("Re-study the gaps", 10)),
    _preset("preset-15", "Problem-type drill", ["#practice"],
            ("Choose a problem type", 5), ("Solve problems of that type", 25)),
    _preset("preset-16", "Exam mode", ["#practice"],
            ("Solve a full exam-style set", 30), ("Grade and analyze mistakes", 10)),
    _preset("preset-20", "Word list review", ["#memorize"],
            ("Random test of 10 words", 10), ("Drill the missed words", 10)),
)


class RoutineLibrary:
    """Merged view of built-in and user-authored routine templates."""

    def __init__(
        self,
        user_routines: Iterable[RoutineTemplate] = (),
        builtins: Iterable[RoutineTemplate] = BUILTIN_ROUTINES,
    ) -> None:
        merged: dict[str, RoutineTemplate] = {r.id: r for r in builtins}
        for routine in user_routines:
            merged[routine.id] = routine
        self._by_id = merged

    def resolve(self, routine_id: str | None) -> RoutineTemplate | None:
        """Return the template for routine_id, or None if it doesn't exist."""
        if not routine_id:
            return None
        return self._by_id.get(routine_id)

    def all(self) -> list[RoutineTemplate]:
        return list(self._by_id.values())

    def search(self, query: str = "", tag: str = "") -> list[RoutineTemplate]:
        """Case-insensitive title/step search, optionally restricted to a tag."""
        q = query.strip().lower()
        results = []
        for routine in self._by_id.values():
            if tag and tag not in routine.tags:
                continue
            haystack = " ".join([routine.title, *(s.label for s in routine.steps)]).lower()
            if q and q not in haystack:
                continue
            results.append(routine)
        return results

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, routine_id: object) -> bool:
        return routine_id in self._by_id


def parse_user_routines(raw: Any) -> list[RoutineTemplate]:
    """Turn a stored list of routine dicts into templates.

    Entries without an id or without any steps are skipped.
    """
    if not isinstance(raw, list):
        return []
    routines: list[RoutineTemplate] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("id"):
            continue
        try:
            steps = tuple(Step.model_validate(s) for s in entry.get("steps") or [] if isinstance(s, dict))
            routine = RoutineTemplate(
                id=str(entry["id"]),
                title=str(entry.get("title") or "Routine"),
                steps=steps,
                tags=frozenset(str(t) for t in entry.get("tags") or []),
            )
        except (ValidationError, TypeError) as exc:
            logger.warning("Skipping malformed routine %r: %s", entry.get("id"), exc)
            continue
        if routine.steps:
            routines.append(routine)
    return routines


def load_user_routines(cache: CachePort, user_id: str) -> list[RoutineTemplate]:
    """The user's own templates from the cache; malformed data reads as none."""
    raw = cache.get_item(user_key(USER_ROUTINES_KEY_BASE, user_id))
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Malformed routine library for user %s: %s", user_id, exc)
        return []
    return parse_user_routines(parsed)


def load_library(cache: CachePort, user_id: str) -> RoutineLibrary:
    """Build the library for user_id from the cached user collection."""
    return RoutineLibrary(load_user_routines(cache, user_id))


def save_user_routines(cache: CachePort, user_id: str, routines: Iterable[RoutineTemplate]) -> None:
    """Persist the user's own collection, replacing what was stored."""
    payload = [
        {
            "id": r.id,
            "title": r.title,
            "steps": [s.model_dump(by_alias=True) for s in r.steps],
            "tags": sorted(r.tags),
        }
        for r in routines
    ]
    cache.set_item(user_key(USER_ROUTINES_KEY_BASE, user_id), json.dumps(payload, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Plan item resolution
# ---------------------------------------------------------------------------


def resolve_steps(item: PlanItem, library: RoutineLibrary) -> tuple[Step, ...]:
    """Steps a plan item will run.

    A non-empty steps override wins; otherwise the template's steps; a
    dangling routine id resolves to no steps (the item is inert).
    """
    if item.steps_override:
        return tuple(item.steps_override)
    template = library.resolve(item.routine_id)
    if template is None:
        return ()
    return template.steps


def resolve_title(item: PlanItem, library: RoutineLibrary) -> str:
    if item.title_override:
        return item.title_override
    template = library.resolve(item.routine_id)
    if template is not None and template.title:
        return template.title
    return "Routine"
