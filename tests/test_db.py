"""Tests for studyfit.data.db — CacheDB and RecordDB (SQLite storage)."""

import pytest

from studyfit.data.models import CheckinNote, DraftRecord


class TestCacheDB:
    def test_missing_key_is_none(self, cache):
        assert cache.get_item("weeklyPlannerV1_42") is None

    def test_set_and_get(self, cache):
        cache.set_item("k", "v")
        assert cache.get_item("k") == "v"

    def test_set_overwrites(self, cache):
        cache.set_item("k", "v1")
        cache.set_item("k", "v2")
        assert cache.get_item("k") == "v2"

    def test_remove(self, cache):
        cache.set_item("k", "v")
        assert cache.remove_item("k") is True
        assert cache.get_item("k") is None
        assert cache.remove_item("k") is False

    def test_persists_across_instances(self, tmp_db_path):
        from studyfit.data.db import CacheDB

        CacheDB(db_path=tmp_db_path).set_item("k", "v")
        assert CacheDB(db_path=tmp_db_path).get_item("k") == "v"


def _record(status="final", title="Vocabulary memorization", elapsed=2700, **kw):
    return DraftRecord(
        status=status,
        title=title,
        set_count=1,
        planned_minutes=45,
        elapsed_seconds=elapsed,
        completed_at="2026-03-02T10:00:00+09:00",
        **kw,
    )


class TestRecordDB:
    @pytest.mark.asyncio
    async def test_append_and_list(self, record_db):
        await record_db.append("u1", _record(mood=4, focus=5, goal_achieved=True))
        await record_db.append("u1", _record(status="draft", elapsed=300))

        records = record_db.list_records("u1")
        assert [r.status for r in records] == ["final", "draft"]
        assert records[0].mood == 4
        assert records[0].goal_achieved is True
        assert records[1].mood is None
        assert records[1].goal_achieved is None
        assert records[1].elapsed_seconds == 300

    @pytest.mark.asyncio
    async def test_records_scoped_per_user(self, record_db):
        await record_db.append("u1", _record())
        assert record_db.list_records("u2") == []

    @pytest.mark.asyncio
    async def test_checkins_filtered_by_date(self, record_db):
        for ymd in ("2026-03-01", "2026-03-02", "2026-03-02"):
            await record_db.append_checkin("u1", CheckinNote(
                ymd=ymd, routine_index=0, routine_title="T",
                mood=3, focus=2, goal_achieved=False, saved_at="x",
            ))

        assert len(record_db.list_checkins("u1")) == 3
        day = record_db.list_checkins("u1", "2026-03-02")
        assert len(day) == 2
        assert day[0].goal_achieved is False
        assert day[0].focus == 2
