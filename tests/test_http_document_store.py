"""Tests for studyfit.adapters.http_document_store — httpx document service client."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from studyfit.adapters.http_document_store import HttpDocumentStore
from studyfit.ports.document_store_port import RemoteUnavailable

PATH = "users/u1/weeklyPlanner/current"


def _store(handler, token="secret"):
    return HttpDocumentStore(
        "https://docs.example.test/api/",
        token=token,
        poll_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestGet:
    @pytest.mark.asyncio
    async def test_returns_document(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"days": {"mon": []}})

        doc = await _store(handler).get(PATH)

        assert doc == {"days": {"mon": []}}
        assert seen["url"] == f"https://docs.example.test/api/{PATH}"
        assert seen["auth"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_404_is_absent(self):
        doc = await _store(lambda request: httpx.Response(404)).get(PATH)
        assert doc is None

    @pytest.mark.asyncio
    async def test_server_error_is_remote_unavailable(self):
        with pytest.raises(RemoteUnavailable):
            await _store(lambda request: httpx.Response(503)).get(PATH)

    @pytest.mark.asyncio
    async def test_connection_error_is_remote_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RemoteUnavailable):
            await _store(handler).get(PATH)

    @pytest.mark.asyncio
    async def test_non_json_is_remote_unavailable(self):
        with pytest.raises(RemoteUnavailable):
            await _store(lambda request: httpx.Response(200, text="<html>")).get(PATH)

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(404)

        await _store(handler, token="").get(PATH)
        assert seen["auth"] is None


class TestSet:
    @pytest.mark.asyncio
    async def test_merge_uses_patch(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={})

        await _store(handler).set(PATH, {"version": 1}, merge=True)

        assert seen == {"method": "PATCH", "body": {"version": 1}}

    @pytest.mark.asyncio
    async def test_replace_uses_put(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            return httpx.Response(204)

        await _store(handler).set(PATH, {"version": 1})
        assert seen["method"] == "PUT"

    @pytest.mark.asyncio
    async def test_failure_is_remote_unavailable(self):
        with pytest.raises(RemoteUnavailable):
            await _store(lambda request: httpx.Response(500)).set(PATH, {})


class TestPolling:
    @pytest.mark.asyncio
    async def test_poll_once_detects_change(self):
        store = _store(lambda request: httpx.Response(200, json={"v": 2}))
        changed, current = await store.poll_once(PATH, {"v": 1})
        assert changed is True
        assert current == {"v": 2}

        changed, _ = await store.poll_once(PATH, {"v": 2})
        assert changed is False

    @pytest.mark.asyncio
    async def test_on_change_skips_baseline_and_reports_changes(self):
        store = _store(lambda request: httpx.Response(404))
        snapshots = iter([(True, {"v": 1}), (True, {"v": 2}), (False, {"v": 2})])
        delivered = []
        stop = None

        async def callback(document):
            delivered.append(document)

        async def fake_poll(path, last):
            try:
                return next(snapshots)
            except StopIteration:
                stop()
                return False, last

        with patch.object(store, "poll_once", AsyncMock(side_effect=fake_poll)):
            stop = store.on_change(PATH, callback)
            for _ in range(10):
                await asyncio.sleep(0)

        assert delivered == [{"v": 2}]
