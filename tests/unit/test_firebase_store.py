"""Firebase 远端存储单元测试（httpx.MockTransport 模拟 REST 接口）。

测试覆盖：
- fetch_once：正常读取、空文档、HTTP/网络/格式错误
- write_all：整体覆盖写入、状态码到异常的映射
- health_check：shallow 探测
- 推送流：SSE 解析、put/patch 合并、服务端取消与拒绝
"""

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from src.core.infrastructure.health import HealthStatus
from src.modules.catalog.domain.entities import Catalog, Category
from src.modules.catalog.domain.exceptions import (
    RemoteRejectedError,
    RemoteUnavailableError,
)
from src.modules.catalog.infrastructure.firebase_store import (
    FirebaseRemoteStore,
    apply_patch,
    apply_put,
    iter_sse_events,
)

pytestmark = pytest.mark.anyio

DOCUMENT_URL = "https://catalog-test.firebaseio.test/apps.json"


def _store(handler: Callable[[httpx.Request], httpx.Response]) -> FirebaseRemoteStore:
    return FirebaseRemoteStore(
        document_url=DOCUMENT_URL,
        timeout_sec=1.0,
        reconnect_base_sec=0.01,
        reconnect_max_sec=0.01,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def _wait_until_inactive(subscription, attempts: int = 200) -> None:
    for _ in range(attempts):
        if not subscription.active:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("subscription is still running")


def _sse(*events: tuple[str, object]) -> str:
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in events)


# ============================================
# fetch_once
# ============================================


class TestFetchOnce:
    async def test_reads_document(self, sample_catalog):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=sample_catalog.to_document())

        result = await _store(handler).fetch_once()

        assert result == sample_catalog
        assert requests[0].method == "GET"
        assert str(requests[0].url) == DOCUMENT_URL

    async def test_null_document_is_empty_catalog(self):
        result = await _store(lambda request: httpx.Response(200, text="null")).fetch_once()

        assert result.is_empty

    async def test_server_error(self):
        store = _store(lambda request: httpx.Response(503, json={"error": "busy"}))

        with pytest.raises(RemoteUnavailableError) as exc_info:
            await store.fetch_once()

        assert exc_info.value.status_code == 503
        assert "busy" in exc_info.value.message

    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteUnavailableError):
            await _store(handler).fetch_once()

    @pytest.mark.parametrize("body", ["<html>oops</html>", "[1, 2, 3]"])
    async def test_unusable_payload(self, body):
        store = _store(lambda request: httpx.Response(200, text=body))

        with pytest.raises(RemoteUnavailableError):
            await store.fetch_once()


# ============================================
# write_all
# ============================================


class TestWriteAll:
    async def test_puts_whole_document(self, sample_catalog):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=request.content)

        await _store(handler).write_all(sample_catalog)

        assert requests[0].method == "PUT"
        assert json.loads(requests[0].content) == sample_catalog.to_document()

    @pytest.mark.parametrize("status_code", [400, 401, 403, 413])
    async def test_rejections(self, sample_catalog, status_code):
        store = _store(
            lambda request: httpx.Response(status_code, json={"error": "Permission denied"})
        )

        with pytest.raises(RemoteRejectedError) as exc_info:
            await store.write_all(sample_catalog)

        assert exc_info.value.status_code == status_code
        assert exc_info.value.error_code == "REMOTE_REJECTED"

    @pytest.mark.parametrize("status_code", [408, 429, 500, 503])
    async def test_transient_failures(self, sample_catalog, status_code):
        store = _store(lambda request: httpx.Response(status_code, text="try later"))

        with pytest.raises(RemoteUnavailableError) as exc_info:
            await store.write_all(sample_catalog)

        assert exc_info.value.status_code == status_code

    async def test_network_error(self, sample_catalog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RemoteUnavailableError):
            await _store(handler).write_all(sample_catalog)


# ============================================
# health_check / probe
# ============================================


def test_explicit_zero_settings_are_kept():
    store = FirebaseRemoteStore(
        document_url=DOCUMENT_URL,
        timeout_sec=0.0,
        reconnect_base_sec=0.0,
        reconnect_max_sec=0.0,
    )

    assert store.timeout_sec == 0.0
    assert store.reconnect_base_sec == 0.0
    assert store.reconnect_max_sec == 0.0


class TestHealthCheck:
    async def test_shallow_probe(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"pc": True})

        store = _store(handler)
        result = await store.health_check()

        assert result.status == HealthStatus.OK
        assert result.reachable
        assert requests[0].url.params["shallow"] == "true"
        assert await store.probe()

    async def test_unreachable(self):
        store = _store(lambda request: httpx.Response(401, json={"error": "denied"}))

        result = await store.health_check()

        assert result.status == HealthStatus.ERROR
        assert not result.reachable
        assert not await store.probe()


# ============================================
# 推送流
# ============================================


class TestStream:
    async def test_put_and_patch_are_merged(self):
        body = _sse(
            ("put", {"path": "/", "data": {"pc": [{"id": "1", "title": "Alpha"}]}}),
            ("keep-alive", None),
            ("patch", {"path": "/game", "data": {"0": {"id": "2", "title": "Beta"}}}),
            ("put", {"path": "/pc/0/title", "data": "Alpha 2"}),
            ("cancel", "permission revoked"),
        )
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200, text=body, headers={"content-type": "text/event-stream"}
            )

        store = _store(handler)
        received: list[Catalog] = []

        subscription = await store.subscribe(received.append)
        await _wait_until_inactive(subscription)

        assert len(received) == 3
        assert received[0].section(Category.PC)[0].title == "Alpha"
        assert received[1].section(Category.GAME)[0].id == "2"
        assert received[1].section(Category.PC)[0].id == "1"
        assert received[2].section(Category.PC)[0].title == "Alpha 2"
        assert requests[0].headers["accept"] == "text/event-stream"
        assert len(requests) == 1

    async def test_refused_stream_gives_up(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, json={"error": "Permission denied"})

        store = _store(handler)
        subscription = await store.subscribe(lambda catalog: None)
        await _wait_until_inactive(subscription)

        assert calls == 1

    async def test_dropped_stream_reconnects(self):
        calls = 0
        body = _sse(("put", {"path": "/", "data": {"pc": [{"id": "1", "title": "A"}]}}))

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, text=body + _sse(("cancel", None)))

        store = _store(handler)
        received: list[Catalog] = []
        subscription = await store.subscribe(received.append)
        await _wait_until_inactive(subscription)

        assert calls == 2
        assert [catalog.app_count for catalog in received] == [1]

    async def test_handler_errors_do_not_stop_stream(self):
        body = _sse(
            ("put", {"path": "/", "data": {"pc": [{"id": "1", "title": "A"}]}}),
            ("put", {"path": "/game", "data": [{"id": "2", "title": "B"}]}),
            ("cancel", None),
        )
        store = _store(lambda request: httpx.Response(200, text=body))
        seen: list[int] = []

        def handler(catalog: Catalog) -> None:
            seen.append(catalog.app_count)
            if len(seen) == 1:
                raise RuntimeError("listener failed")

        subscription = await store.subscribe(handler)
        await _wait_until_inactive(subscription)

        assert seen == [1, 2]

    async def test_close_is_idempotent(self):
        store = _store(lambda request: httpx.Response(200, text=_sse(("keep-alive", None))))
        subscription = await store.subscribe(lambda catalog: None)

        await store.unsubscribe(subscription)
        await subscription.close()

        assert not subscription.active
        await store.aclose()


async def test_iter_sse_events_groups_lines():
    async def lines():
        for line in [
            ": comment",
            "event: put",
            'data: {"path": "/",',
            'data:  "data": null}',
            "",
            "event: keep-alive",
            "data: null",
            "",
            "data: trailing",
        ]:
            yield line

    events = [event async for event in iter_sse_events(lines())]

    assert events == [
        ("put", '{"path": "/",\n "data": null}'),
        ("keep-alive", "null"),
        ("message", "trailing"),
    ]


class TestTreeUpdates:
    def test_put_root_replaces_everything(self):
        assert apply_put({"pc": {"0": {"id": "1"}}}, "/", {"game": []}) == {"game": {}}

    def test_put_nested_path_creates_parents(self):
        assert apply_put(None, "/pc/0/title", "A") == {"pc": {"0": {"title": "A"}}}

    def test_put_null_removes_child(self):
        tree = {"pc": {"0": {"id": "1"}, "1": {"id": "2"}}}

        assert apply_put(tree, "/pc/0", None) == {"pc": {"1": {"id": "2"}}}
        # 原树保持不变
        assert "0" in tree["pc"]

    def test_lists_become_index_keyed(self):
        assert apply_put({}, "/", {"pc": [{"id": "1"}, None, {"id": "3"}]}) == {
            "pc": {"0": {"id": "1"}, "2": {"id": "3"}}
        }

    def test_patch_merges_children(self):
        tree = {"pc": {"0": {"id": "1", "title": "A"}}}

        patched = apply_patch(tree, "/pc/0", {"title": "B", "version": "2"})

        assert patched == {"pc": {"0": {"id": "1", "title": "B", "version": "2"}}}

    def test_patch_at_root(self):
        patched = apply_patch({"pc": {}}, "/", {"game": {"0": {"id": "9"}}})

        assert patched == {"pc": {}, "game": {"0": {"id": "9"}}}
