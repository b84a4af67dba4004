"""HTTP document store adapter — implements DocumentStorePort.

Talks to a JSON document service over httpx:

    GET   {base}/{path}   → 200 + document, 404 when absent
    PUT   {base}/{path}   → replace the document
    PATCH {base}/{path}   → shallow-merge into the document

Every transport or server failure is raised as RemoteUnavailable.
on_change polls the document and calls back when its content differs from
the last snapshot seen.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from studyfit.ports.document_store_port import DocumentCallback, RemoteUnavailable, Unsubscribe

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 5


class HttpDocumentStore:
    """httpx implementation of DocumentStorePort."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        poll_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._poll_seconds = poll_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def get(self, path: str) -> dict | None:
        try:
            async with self._client() as client:
                resp = await client.get(f"/{path}")
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RemoteUnavailable(f"GET {path} failed: {exc}") from exc
        return data if isinstance(data, dict) else None

    async def set(self, path: str, document: dict, merge: bool = False) -> None:
        try:
            async with self._client() as client:
                if merge:
                    resp = await client.patch(f"/{path}", json=document)
                else:
                    resp = await client.put(f"/{path}", json=document)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(f"{'PATCH' if merge else 'PUT'} {path} failed: {exc}") from exc

    async def poll_once(self, path: str, last: dict | None) -> tuple[bool, dict | None]:
        """Fetch path and report whether it changed since last."""
        current = await self.get(path)
        return current != last, current

    def on_change(self, path: str, callback: DocumentCallback) -> Unsubscribe:
        """Poll path in the background; returns a callable that stops polling."""

        async def _poll() -> None:
            last: dict | None = None
            first = True
            while True:
                try:
                    changed, current = await self.poll_once(path, last)
                except RemoteUnavailable as exc:
                    logger.warning("Polling %s failed: %s", path, exc)
                else:
                    # The first snapshot is the baseline, not a change.
                    if changed and not first:
                        try:
                            await callback(current)
                        except Exception as exc:
                            logger.error("Change handler for %s failed: %s", path, exc)
                    last, first = current, False
                await asyncio.sleep(self._poll_seconds)

        task = asyncio.get_running_loop().create_task(_poll())
        logger.debug("Subscribed to %s (every %.0fs)", path, self._poll_seconds)

        def _unsubscribe() -> None:
            task.cancel()
            logger.debug("Unsubscribed from %s", path)

        return _unsubscribe
