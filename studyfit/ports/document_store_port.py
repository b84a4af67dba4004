"""Document store port — the remote key-value document service.

Paths are scoped per user (see user_doc_path). Adapters raise
RemoteUnavailable for any transport or server failure; the Plan Store is
the boundary that catches it.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

Unsubscribe = Callable[[], None]
DocumentCallback = Callable[[dict | None], Awaitable[None]]


class RemoteUnavailable(Exception):
    """Raised when the remote document store cannot be reached."""


def user_doc_path(user_id: str, *parts: str) -> str:
    """Build a per-user document path, e.g. users/42/weeklyPlanner/current."""
    return "/".join(("users", user_id, *parts))


class DocumentStorePort(Protocol):
    """Abstract document store interface used by the Plan Store."""

    async def get(self, path: str) -> dict | None: ...

    async def set(self, path: str, document: dict, merge: bool = False) -> None: ...

    def on_change(self, path: str, callback: DocumentCallback) -> Unsubscribe: ...
