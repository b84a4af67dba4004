"""
StudyFit — Centralized configuration.

Bot token, access list, storage locations, remote plan store, and the
clock settings for logical days and run timers, read from the environment
(and a .env file at the project root).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from studyfit/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Security: empty list means everyone may sign in
    ALLOWED_USER_IDS: list[int] = []

    # SQLite (local cache + local completion records)
    DATABASE_PATH: str = "data/studyfit.db"

    # Remote document store (empty URL → cache-only mode)
    REMOTE_STORE_URL: str = ""
    REMOTE_STORE_TOKEN: str = ""
    REMOTE_POLL_SECONDS: float = 30.0

    # Time
    TIMEZONE: str = "Asia/Seoul"
    DAY_START_OFFSET_MINUTES: int = 240   # logical day rolls over at 04:00

    # Run timer
    TICK_SECONDS: float = 1.0
    SETTLE_DELAY_SECONDS: float = 0.2

    # Reminders
    REMINDER_BODY: str = "Time to start your routine."

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("DAY_START_OFFSET_MINUTES", mode="before")
    @classmethod
    def parse_offset(cls, v: str | int) -> int:
        offset = int(v)
        if not 0 <= offset < 24 * 60:
            raise ValueError(f"DAY_START_OFFSET_MINUTES out of range: {offset}")
        return offset


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/studyfit.db"),
        REMOTE_STORE_URL=os.getenv("REMOTE_STORE_URL", ""),
        REMOTE_STORE_TOKEN=os.getenv("REMOTE_STORE_TOKEN", ""),
        REMOTE_POLL_SECONDS=os.getenv("REMOTE_POLL_SECONDS", "30"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Seoul"),
        DAY_START_OFFSET_MINUTES=os.getenv("DAY_START_OFFSET_MINUTES", "240"),
        TICK_SECONDS=os.getenv("TICK_SECONDS", "1"),
        SETTLE_DELAY_SECONDS=os.getenv("SETTLE_DELAY_SECONDS", "0.2"),
        REMINDER_BODY=os.getenv("REMINDER_BODY", "Time to start your routine."),
    )


# Singleton, imported by all other modules as:
#   from studyfit.config import settings
settings = _load_settings()
