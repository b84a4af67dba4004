"""Tests for studyfit.core.run_queue — queue materialization."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from studyfit.core.library import RoutineLibrary
from studyfit.core.run_queue import (
    build_adhoc_queue,
    build_day_queue,
    build_today_queue,
    materialize,
    pack_steps,
    parse_packed_steps,
)
from studyfit.data.models import PlanItem, RoutineTemplate, Step, WeeklyPlan

KST = ZoneInfo("Asia/Seoul")


@pytest.fixture
def ab_library():
    return RoutineLibrary([
        RoutineTemplate(
            id="ab",
            title="A then B",
            steps=(Step(label="A", duration_minutes=5), Step(label="B", duration_minutes=10)),
        )
    ])


class TestMaterialize:
    def test_duration_with_sets(self, ab_library):
        run_item = materialize(PlanItem(routine_id="ab", set_count=2), ab_library)
        assert run_item.duration_minutes == 30
        assert run_item.minutes_per_set == 15
        assert run_item.title == "A then B"

    def test_carries_content_and_start(self, ab_library):
        item = PlanItem(plan_id="p1", routine_id="ab", start_at="07:45", content="Unit 4")
        run_item = materialize(item, ab_library)
        assert run_item.content == "Unit 4"
        assert run_item.start_at_minutes == 465
        assert run_item.plan_id == "p1"

    def test_dangling_item_is_none(self, ab_library):
        assert materialize(PlanItem(routine_id="gone"), ab_library) is None

    def test_override_rescues_dangling_item(self, ab_library):
        item = PlanItem(routine_id="gone", steps_override=[Step(label="X", duration_minutes=3)])
        assert materialize(item, ab_library).duration_minutes == 3


class TestDayQueue:
    def test_dangling_items_excluded(self, ab_library):
        plan = WeeklyPlan.model_validate({"mon": [
            {"routineId": "ab"}, {"routineId": "gone"}, {"routineId": "ab"},
        ]})
        assert len(build_day_queue(plan, "mon", ab_library)) == 2

    def test_sorted_by_start_unscheduled_last(self, ab_library):
        plan = WeeklyPlan.model_validate({"tue": [
            {"planId": "none-1", "routineId": "ab"},
            {"planId": "pm", "routineId": "ab", "startAt": "18:00"},
            {"planId": "none-2", "routineId": "ab"},
            {"planId": "am", "routineId": "ab", "startAt": "06:30"},
            {"planId": "pm-2", "routineId": "ab", "startAt": "18:00"},
        ]})
        queue = build_day_queue(plan, "tue", ab_library)
        assert [q.plan_id for q in queue] == ["am", "pm", "pm-2", "none-1", "none-2"]

    def test_does_not_mutate_plan(self, ab_library):
        plan = WeeklyPlan.model_validate({"mon": [{"routineId": "ab", "startAt": "09:00"}]})
        before = plan.to_document()
        build_day_queue(plan, "mon", ab_library)
        assert plan.to_document() == before


class TestTodayQueue:
    def test_uses_logical_day(self, ab_library):
        plan = WeeklyPlan.model_validate({
            "tue": [{"routineId": "ab", "title": "Tuesday"}],
            "wed": [{"routineId": "ab", "title": "Wednesday"}],
        })
        wed_early = datetime(2026, 3, 4, 3, 0, tzinfo=KST)
        assert build_today_queue(plan, ab_library, wed_early, 240)[0].title == "Tuesday"
        assert build_today_queue(plan, ab_library, wed_early, 0)[0].title == "Wednesday"


class TestPackedSteps:
    def test_parse(self):
        steps = parse_packed_steps("Memorize,20|Quiz,5")
        assert [(s.label, s.duration_minutes) for s in steps] == [("Memorize", 20), ("Quiz", 5)]

    def test_blank_labels_dropped_and_bad_minutes_zeroed(self):
        steps = parse_packed_steps(",10|Read,abc|Write|Check,-3")
        assert [(s.label, s.duration_minutes) for s in steps] == [("Read", 0), ("Write", 0), ("Check", 0)]

    def test_empty(self):
        assert parse_packed_steps("") == []
        assert parse_packed_steps(None) == []

    def test_pack(self):
        assert pack_steps([Step(label="A", duration_minutes=5)]) == "A,5"


class TestAdhocQueue:
    def test_single_item(self):
        queue = build_adhoc_queue("Words", "Memorize,20|Quiz,5", set_count=2)
        assert len(queue) == 1
        assert queue[0].title == "Words"
        assert queue[0].duration_minutes == 50
        assert queue[0].plan_id is None

    def test_accepts_step_list(self):
        queue = build_adhoc_queue(" ", [Step(label="A", duration_minutes=1)])
        assert queue[0].title == "Routine"

    def test_no_steps_rejected(self):
        with pytest.raises(ValueError):
            build_adhoc_queue("Empty", "")
