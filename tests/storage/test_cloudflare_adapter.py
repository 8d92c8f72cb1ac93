"""Tests for the Cloudflare Worker adapter against an in-process fake Worker."""
import asyncio
import json

import httpx
import pytest

from meownocode.storage import (
    CloudflareConfig,
    CloudflareStorageAdapter,
    StorageConnectionError,
    StorageNotFoundError,
    StorageUnavailableError,
)


class FakeWorker:
    """Minimal stand-in for the Worker REST API."""

    def __init__(self, *, healthy: bool = True, batch_endpoint: bool = False, batch_reply=None):
        self.healthy = healthy
        self.batch_endpoint = batch_endpoint
        self.batch_reply = batch_reply
        self.memos: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if path == "/api/v1/health":
            if not self.healthy:
                return httpx.Response(503, text="down")
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/v1/init":
            return httpx.Response(500, text="already initialized")
        if path == "/api/v1/memos/batch":
            if not self.batch_endpoint:
                return httpx.Response(404, text="no batch here")
            if self.batch_reply is not None:
                return httpx.Response(200, json=self.batch_reply)
            ops = json.loads(request.content)["operations"]
            return httpx.Response(200, json={"results": [{"success": True} for _ in ops]})
        if path == "/api/v1/memos" and method == "POST":
            memo = json.loads(request.content)
            self.memos[memo["id"]] = memo
            return httpx.Response(201, json={"memo": memo})
        if path == "/api/v1/memos" and method == "GET":
            memos = list(self.memos.values())
            pinned = request.url.params.get("pinned")
            if pinned is not None:
                memos = [m for m in memos if m["pinned"] == (pinned == "true")]
            return httpx.Response(200, json={"memos": memos})
        if path.startswith("/api/v1/memos/"):
            memo_id = path.rsplit("/", 1)[1]
            if memo_id not in self.memos:
                return httpx.Response(404, text="not found")
            if method == "DELETE":
                del self.memos[memo_id]
                return httpx.Response(200, json={"success": True})
            self.memos[memo_id].update(json.loads(request.content))
            return httpx.Response(200, json={"memo": self.memos[memo_id]})
        if path == "/api/v1/attachments/missing":
            return httpx.Response(404, text="not found")
        if path.startswith("/api/v1/attachments/"):
            return httpx.Response(200, content=b"blob", headers={"content-type": "image/png"})
        if path == "/api/v1/stats":
            return httpx.Response(200, json={"memos": len(self.memos)})
        return httpx.Response(404, text="unknown route")


def make_adapter(worker: FakeWorker, **config) -> CloudflareStorageAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(worker.handle))
    return CloudflareStorageAdapter(
        CloudflareConfig(base_url="https://worker.example.com", **config),
        client=client,
    )


def test_initialize_tolerates_failed_schema_init():
    worker = FakeWorker()
    adapter = make_adapter(worker)
    asyncio.run(adapter.initialize())
    assert adapter.initialized
    assert [r.url.path for r in worker.requests] == ["/api/v1/health", "/api/v1/init"]


def test_unhealthy_worker_is_unavailable():
    adapter = make_adapter(FakeWorker(healthy=False))
    with pytest.raises(StorageUnavailableError):
        asyncio.run(adapter.initialize())
    assert not adapter.initialized


def test_api_key_sent_as_bearer_token():
    worker = FakeWorker()
    adapter = make_adapter(worker, api_key="s3cret")
    asyncio.run(adapter.health_check())
    assert worker.requests[0].headers["Authorization"] == "Bearer s3cret"
    assert worker.requests[0].headers["Content-Type"] == "application/json"


def test_memo_crud_and_not_found_mapping():
    worker = FakeWorker()
    adapter = make_adapter(worker)

    async def run():
        await adapter.create_memo({"id": "a", "content": "remote"})
        await adapter.create_memo({"id": "b", "content": "pinned", "pinned": True})
        updated = await adapter.update_memo("a", {"content": "edited"})
        pinned = await adapter.get_pinned_memos()
        await adapter.delete_memo("a")
        with pytest.raises(StorageNotFoundError):
            await adapter.delete_memo("a")
        with pytest.raises(StorageNotFoundError):
            await adapter.update_memo("zzz", {"content": "x"})
        return updated, pinned

    updated, pinned = asyncio.run(run())
    assert updated.content == "edited"
    assert [m.id for m in pinned] == ["b"]
    assert list(worker.memos) == ["b"]


def test_batch_falls_back_to_sequential():
    worker = FakeWorker()
    adapter = make_adapter(worker)
    results = asyncio.run(adapter.batch_operation([
        {"type": "create", "data": {"id": "a", "content": "one"}},
        {"type": "delete", "id": "missing"},
    ]))
    assert [r.success for r in results] == [True, False]
    assert "a" in worker.memos


def test_batch_uses_server_endpoint_when_present():
    worker = FakeWorker(batch_endpoint=True)
    adapter = make_adapter(worker)
    results = asyncio.run(adapter.batch_operation([
        {"type": "create", "data": {"id": "a", "content": "one"}},
    ]))
    assert results[0].success
    # The server handled it, so no individual create request was made
    assert worker.memos == {}


@pytest.mark.parametrize("reply", [{"results": []}, {}, {"results": [{"success": True}]}])
def test_short_server_batch_reply_counts_missing_as_failed(reply):
    adapter = make_adapter(FakeWorker(batch_endpoint=True, batch_reply=reply))
    ops = [{"type": "create", "data": {"id": memo_id, "content": memo_id}} for memo_id in "abc"]

    async def run():
        return (
            await adapter.batch_operation(ops),
            await adapter.import_data([{"id": "d", "content": "d"}, {"id": "e", "content": "e"}]),
        )

    results, imported = asyncio.run(run())
    received = len(reply.get("results", []))
    assert len(results) == 3
    assert [r.success for r in results] == [True] * received + [False] * (3 - received)
    assert results[-1].error == "No result returned by server"
    assert imported.successful + imported.failed == 2


def test_attachment_download():
    adapter = make_adapter(FakeWorker())

    async def run():
        return (
            await adapter.download_attachment("abc"),
            await adapter.download_attachment("missing"),
        )

    assert asyncio.run(run()) == (b"blob", None)
    assert adapter.get_attachment_url("abc") == "https://worker.example.com/api/v1/attachments/abc"


def test_transport_failure_is_connection_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    adapter = CloudflareStorageAdapter(
        CloudflareConfig(base_url="https://worker.example.com"),
        client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
    )
    with pytest.raises(StorageConnectionError):
        asyncio.run(adapter.request("/api/v1/health"))
    assert asyncio.run(adapter.health_check()) is False
