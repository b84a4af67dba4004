"""Cache port — the local key-value cache.

Keys are namespaced per user so that a sign-out followed by a different
sign-in never reads the previous account's data.
"""

from __future__ import annotations

from typing import Protocol


def user_key(base: str, user_id: str) -> str:
    """Namespace a cache key for one user: user_key("weeklyPlannerV1", "42")."""
    return f"{base}_{user_id}"


class CachePort(Protocol):
    """Abstract cache interface used by the Plan Store and trigger scheduler."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> bool: ...
