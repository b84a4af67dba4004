"""Tests for studyfit.core.reminder_scheduler — trigger sync against a fake capability."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from studyfit.core.reminder_scheduler import ReminderScheduler, derive_trigger, derive_triggers
from studyfit.data.models import PlanItem, WeeklyPlan

KST = ZoneInfo("Asia/Seoul")


def _plan():
    return WeeklyPlan.model_validate({
        "mon": [
            {"planId": "p-mon", "routineId": "preset-2", "startAt": "09:00"},
            {"planId": "p-nostart", "routineId": "preset-3"},
        ],
        "wed": [
            {"planId": "p-wed", "routineId": "preset-20", "startAt": "19:30", "title": "Evening words"},
            {"planId": "p-dangling", "routineId": "deleted", "startAt": "20:00"},
        ],
        "sun": [{"planId": "p-sun", "routineId": "preset-16", "startAt": "10:00"}],
    })


@pytest.fixture
def scheduler(reminders, cache):
    return ReminderScheduler(reminders, cache, reminder_body="Time to study")


# ---------------------------------------------------------------------------
# Trigger derivation
# ---------------------------------------------------------------------------


class TestDeriveTrigger:
    def test_scheduled_item(self, library):
        item = PlanItem(plan_id="p", routine_id="preset-2", start_at="09:00")
        spec = derive_trigger("wed", item, library, "body")
        assert (spec.weekday, spec.hour, spec.minute) == (3, 9, 0)
        assert spec.content.title == "Vocabulary memorization"
        assert spec.content.body == "body"

    def test_unscheduled_item_has_no_trigger(self, library):
        assert derive_trigger("wed", PlanItem(routine_id="preset-2"), library, "b") is None

    def test_dangling_item_has_no_trigger(self, library):
        item = PlanItem(routine_id="deleted", start_at="09:00")
        assert derive_trigger("wed", item, library, "b") is None

    def test_plan(self, library):
        specs = derive_triggers(_plan(), library, "b")
        assert [s.plan_id for s in specs] == ["p-mon", "p-wed", "p-sun"]
        assert [s.weekday for s in specs] == [1, 3, 7]


# ---------------------------------------------------------------------------
# sync_all
# ---------------------------------------------------------------------------


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_registers_eligible_items(self, scheduler, reminders, library):
        result = await scheduler.sync_all("u1", _plan(), library)

        assert result.permitted is True
        assert result.scheduled == 3
        assert result.failed == 0
        live = sorted(reminders.live.values(), key=lambda r: r["weekday"])
        assert [(r["weekday"], r["platform_weekday"]) for r in live] == [(1, 2), (3, 4), (7, 1)]
        assert live[1]["title"] == "Evening words"
        assert live[1]["body"] == "Time to study"
        assert (live[1]["hour"], live[1]["minute"]) == (19, 30)

    @pytest.mark.asyncio
    async def test_wednesday_nine_am_uses_table(self, scheduler, reminders, library):
        plan = WeeklyPlan.model_validate({"wed": [{"routineId": "preset-2", "startAt": "09:00"}]})
        await scheduler.sync_all("u1", plan, library)
        (registered,) = reminders.live.values()
        assert registered["platform_weekday"] == 4

    @pytest.mark.asyncio
    async def test_idempotent(self, scheduler, reminders, library):
        first = await scheduler.sync_all("u1", _plan(), library)
        second = await scheduler.sync_all("u1", _plan(), library)

        assert second.scheduled == first.scheduled
        assert second.cancelled == first.scheduled
        assert len(reminders.live) == first.scheduled
        assert scheduler.live_handle_count("u1") == first.scheduled

    @pytest.mark.asyncio
    async def test_permission_denied(self, reminders, cache, library):
        reminders.permitted = False
        scheduler = ReminderScheduler(reminders, cache, reminder_body="b")
        result = await scheduler.sync_all("u1", _plan(), library)
        assert result.permitted is False
        assert reminders.live == {}

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_the_rest(self, scheduler, reminders, library):
        reminders.fail_titles = {"Evening words"}
        result = await scheduler.sync_all("u1", _plan(), library)

        assert result.scheduled == 2
        assert result.failed == 1
        assert "p-wed" not in scheduler.load_record("u1")

        reminders.fail_titles = set()
        retry = await scheduler.sync_all("u1", _plan(), library)
        assert retry.scheduled == 3
        assert len(reminders.live) == 3

    @pytest.mark.asyncio
    async def test_removed_items_lose_their_reminders(self, scheduler, reminders, library):
        await scheduler.sync_all("u1", _plan(), library)
        await scheduler.sync_all("u1", WeeklyPlan(), library)
        assert reminders.live == {}

    @pytest.mark.asyncio
    async def test_malformed_record_reads_empty(self, scheduler, cache):
        cache.set_item("routineNotiIdsV1_u1", "[broken")
        assert scheduler.load_record("u1") == {}


# ---------------------------------------------------------------------------
# Scoped operations
# ---------------------------------------------------------------------------


class TestScoped:
    @pytest.mark.asyncio
    async def test_reschedule_one_leaves_others(self, scheduler, reminders, library):
        plan = _plan()
        await scheduler.sync_all("u1", plan, library)
        before = dict(scheduler.load_record("u1"))

        item = plan.find("p-mon")[1]
        item.start_at = "10:15"
        result = await scheduler.reschedule_one("u1", "mon", item, library)

        after = scheduler.load_record("u1")
        assert result.cancelled == 1
        assert result.scheduled == 1
        assert after["p-wed"] == before["p-wed"]
        assert after["p-mon"] != before["p-mon"]
        moved = reminders.live[after["p-mon"][0]]
        assert (moved["hour"], moved["minute"]) == (10, 15)
        assert len(reminders.live) == 3

    @pytest.mark.asyncio
    async def test_reschedule_cleared_time_only_cancels(self, scheduler, reminders, library):
        plan = _plan()
        await scheduler.sync_all("u1", plan, library)
        item = plan.find("p-sun")[1]
        item.start_at = None

        result = await scheduler.reschedule_one("u1", "sun", item, library)

        assert result.scheduled == 0
        assert "p-sun" not in scheduler.load_record("u1")
        assert len(reminders.live) == 2

    @pytest.mark.asyncio
    async def test_cancel_one(self, scheduler, reminders, library):
        await scheduler.sync_all("u1", _plan(), library)
        assert await scheduler.cancel_one("u1", "p-wed") == 1
        assert await scheduler.cancel_one("u1", "p-wed") == 0
        assert len(reminders.live) == 2

    @pytest.mark.asyncio
    async def test_cancel_all(self, scheduler, reminders, library):
        await scheduler.sync_all("u1", _plan(), library)
        assert await scheduler.cancel_all("u1") == 3
        assert reminders.live == {}
        assert scheduler.load_record("u1") == {}

    @pytest.mark.asyncio
    async def test_cancel_of_stale_handle_is_noop(self, scheduler, reminders, cache, library):
        cache.set_item("routineNotiIdsV1_u1", '{"gone": ["h999"]}')
        result = await scheduler.sync_all("u1", _plan(), library)
        assert result.scheduled == 3


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class TestDiagnostics:
    def test_passed_this_week(self, scheduler, library):
        wed_noon = datetime(2026, 3, 4, 12, 0, tzinfo=KST)
        statuses = {s.spec.plan_id: s for s in scheduler.diagnostics(_plan(), library, wed_noon)}

        assert statuses["p-mon"].passed_this_week is True
        assert statuses["p-mon"].next_fire == datetime(2026, 3, 9, 9, 0, tzinfo=KST)
        assert statuses["p-wed"].passed_this_week is False
        assert statuses["p-wed"].next_fire == datetime(2026, 3, 4, 19, 30, tzinfo=KST)
        assert statuses["p-sun"].passed_this_week is False
