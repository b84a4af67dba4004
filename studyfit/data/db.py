"""
StudyFit — Local storage.

CacheDB is the on-device key-value cache: plain string values under
per-user namespaced keys (see studyfit.ports.cache_port.user_key).

RecordDB is the local Completion Recorder: run records and day-scoped
check-in notes are appended and never updated.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from studyfit.data.models import CheckinNote, DraftRecord

logger = logging.getLogger(__name__)


class CacheDB:
    """SQLite-backed key-value cache."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from studyfit.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
        logger.debug("Cache table initialized at %s", self._db_path)

    def get_item(self, key: str) -> str | None:
        """Return the stored string for key, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM cache WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return row["value"]

    def set_item(self, key: str, value: str) -> None:
        """Insert or overwrite key."""
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO cache (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def remove_item(self, key: str) -> bool:
        """Delete key; False if it was not stored."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM cache WHERE key = ?", (key,))
        return cursor.rowcount > 0


class RecordDB:
    """SQLite-backed completion recorder (run records + check-in notes)."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from studyfit.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the records and checkins tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id         TEXT    NOT NULL,
                    status          TEXT    NOT NULL,
                    title           TEXT    NOT NULL,
                    set_count       INTEGER NOT NULL,
                    planned_minutes INTEGER NOT NULL,
                    elapsed_seconds INTEGER NOT NULL,
                    completed_at    TEXT    NOT NULL,
                    mood            INTEGER,
                    focus           INTEGER,
                    goal_achieved   INTEGER
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS checkins (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id       TEXT    NOT NULL,
                    ymd           TEXT    NOT NULL,
                    routine_index INTEGER NOT NULL,
                    routine_title TEXT    NOT NULL,
                    mood          INTEGER NOT NULL,
                    focus         INTEGER NOT NULL,
                    goal_achieved INTEGER NOT NULL,
                    saved_at      TEXT    NOT NULL
                )
            """)
        logger.debug("Record tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DraftRecord:
        goal = row["goal_achieved"]
        return DraftRecord(
            status=row["status"],
            title=row["title"],
            set_count=row["set_count"],
            planned_minutes=row["planned_minutes"],
            elapsed_seconds=row["elapsed_seconds"],
            completed_at=row["completed_at"],
            mood=row["mood"],
            focus=row["focus"],
            goal_achieved=None if goal is None else bool(goal),
        )

    async def append(self, user_id: str, record: DraftRecord) -> None:
        """Append a run record for user_id."""
        goal = None if record.goal_achieved is None else int(record.goal_achieved)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO records
                    (user_id, status, title, set_count, planned_minutes,
                     elapsed_seconds, completed_at, mood, focus, goal_achieved)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, record.status, record.title, record.set_count,
                    record.planned_minutes, record.elapsed_seconds,
                    record.completed_at, record.mood, record.focus, goal,
                ),
            )
        logger.info(
            "Recorded %s run '%s' for user %s (%ds)",
            record.status, record.title, user_id, record.elapsed_seconds,
        )

    async def append_checkin(self, user_id: str, note: CheckinNote) -> None:
        """Append a day-scoped check-in note for user_id."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO checkins
                    (user_id, ymd, routine_index, routine_title,
                     mood, focus, goal_achieved, saved_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, note.ymd, note.routine_index, note.routine_title,
                    note.mood, note.focus, int(note.goal_achieved), note.saved_at,
                ),
            )

    def list_records(self, user_id: str) -> list[DraftRecord]:
        """Return user_id's records in append order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM records WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def list_checkins(self, user_id: str, ymd: str | None = None) -> list[CheckinNote]:
        """Return user_id's check-in notes, optionally for one logical date."""
        query = "SELECT * FROM checkins WHERE user_id = ?"
        params: list = [user_id]
        if ymd is not None:
            query += " AND ymd = ?"
            params.append(ymd)
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            CheckinNote(
                ymd=r["ymd"],
                routine_index=r["routine_index"],
                routine_title=r["routine_title"],
                mood=r["mood"],
                focus=r["focus"],
                goal_achieved=bool(r["goal_achieved"]),
                saved_at=r["saved_at"],
            )
            for r in rows
        ]
