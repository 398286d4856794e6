"""Firebase Realtime Database adapter for the catalog document.

Reads and writes go through the REST API (``GET``/``PUT <path>.json``).
Push updates use the REST streaming protocol: the server keeps an
``text/event-stream`` response open and sends ``put``/``patch`` events whose
``path`` is relative to the subscribed location. A local mirror of the
document is patched with each event and the full catalog is handed to the
listener.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    wait_exponential,
)

from src.core.config import settings
from src.core.infrastructure.health import HealthStatus, RemoteStoreHealthResult
from src.modules.catalog.domain.entities import Catalog
from src.modules.catalog.domain.exceptions import (
    RemoteRejectedError,
    RemoteUnavailableError,
)
from src.modules.catalog.domain.ports import (
    RemoteChangeHandler,
    RemoteStore,
    RemoteSubscription,
)

# 这些状态码视为暂时性故障，而不是拒绝写入
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429})

STREAM_END_EVENTS: frozenset[str] = frozenset({"cancel", "auth_revoked"})


class StreamDroppedError(Exception):
    """Streaming connection ended without delivering anything."""


def _should_reconnect(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return status_code >= 500 or status_code in TRANSIENT_STATUS_CODES
    return isinstance(exc, (httpx.HTTPError, ValueError, StreamDroppedError))


def _log_reconnect(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(f"Catalog stream interrupted ({error}); reconnecting in {delay:.2f}s")


class FirebaseRemoteStore(RemoteStore):
    """Catalog document stored at one Firebase Realtime Database path."""

    def __init__(
        self,
        *,
        document_url: str | None = None,
        timeout_sec: float | None = None,
        reconnect_base_sec: float | None = None,
        reconnect_max_sec: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.document_url = document_url or settings.catalog_document_url
        self.timeout_sec = timeout_sec if timeout_sec is not None else settings.REMOTE_TIMEOUT_SEC
        self.reconnect_base_sec = (
            reconnect_base_sec
            if reconnect_base_sec is not None
            else settings.STREAM_RECONNECT_BASE_SEC
        )
        self.reconnect_max_sec = (
            reconnect_max_sec
            if reconnect_max_sec is not None
            else settings.STREAM_RECONNECT_MAX_SEC
        )
        self._client = client
        self._owns_client = client is None
        self._subscriptions: set[FirebaseStreamSubscription] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_sec,
                follow_redirects=True,
            )
        return self._client

    async def fetch_once(self) -> Catalog:
        try:
            response = await self.client.get(
                self.document_url, headers={"Accept": "application/json"}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            raise RemoteUnavailableError(
                f"Catalog fetch returned HTTP {status_code}: {_error_detail(exc.response)}",
                status_code=status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(
                f"Network error while fetching catalog: {exc}"
            ) from exc
        except ValueError as exc:
            raise RemoteUnavailableError(f"Catalog response is not JSON: {exc}") from exc

        try:
            return Catalog.from_document(payload)
        except ValueError as exc:
            raise RemoteUnavailableError(f"Catalog payload is malformed: {exc}") from exc

    async def write_all(self, document: Catalog) -> None:
        try:
            response = await self.client.put(
                self.document_url,
                json=document.to_document(),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(
                f"Network error while writing catalog: {exc}"
            ) from exc

        if response.is_success:
            return

        status_code = response.status_code
        detail = _error_detail(response)
        if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
            raise RemoteUnavailableError(
                f"Catalog write failed with HTTP {status_code}: {detail}",
                status_code=status_code,
            )
        raise RemoteRejectedError(
            f"Catalog write rejected with HTTP {status_code}: {detail}",
            status_code=status_code,
        )

    async def subscribe(self, on_change: RemoteChangeHandler) -> FirebaseStreamSubscription:
        subscription = FirebaseStreamSubscription(self, on_change)
        self._subscriptions.add(subscription)
        subscription.start()
        return subscription

    def _forget(self, subscription: FirebaseStreamSubscription) -> None:
        self._subscriptions.discard(subscription)

    async def health_check(self) -> RemoteStoreHealthResult:
        started = time.perf_counter()
        try:
            response = await self.client.get(
                self.document_url, params={"shallow": "true"}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            return RemoteStoreHealthResult(
                status=HealthStatus.ERROR,
                reachable=False,
                url=self.document_url,
                error=str(exc),
            )
        return RemoteStoreHealthResult(
            status=HealthStatus.OK,
            reachable=True,
            url=self.document_url,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

    async def aclose(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class FirebaseStreamSubscription(RemoteSubscription):
    """One streaming connection kept alive until ``close()``.

    Transport drops are retried with exponential backoff. The stream ends for
    good on ``cancel``/``auth_revoked`` events or a non-transient 4xx.
    """

    def __init__(self, store: FirebaseRemoteStore, on_change: RemoteChangeHandler) -> None:
        self._store = store
        self._on_change = on_change
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._tree: Any = None

    @property
    def active(self) -> bool:
        return not self._closed and self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="firebase-catalog-stream")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._forget(self)
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while not self._closed:
            finished = False
            try:
                # 每个健康会话结束后重新计算退避
                async for attempt in AsyncRetrying(
                    retry=retry_if_exception(_should_reconnect),
                    wait=wait_exponential(
                        multiplier=self._store.reconnect_base_sec,
                        max=self._store.reconnect_max_sec,
                    ),
                    before_sleep=_log_reconnect,
                    reraise=True,
                ):
                    with attempt:
                        finished = await self._consume()
            except httpx.HTTPStatusError as exc:
                logger.error(
                    f"Catalog stream refused with HTTP {exc.response.status_code}; giving up"
                )
                return
            if finished:
                return
            await asyncio.sleep(self._store.reconnect_base_sec)

    async def _consume(self) -> bool:
        """Read one connection; return True when the server ended the stream.

        Raises:
            StreamDroppedError: the connection closed before any event arrived.
        """
        received = False
        async with self._store.client.stream(
            "GET",
            self._store.document_url,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self._store.timeout_sec, read=None),
        ) as response:
            response.raise_for_status()
            async for event, data in iter_sse_events(response.aiter_lines()):
                received = True
                if event == "keep-alive":
                    continue
                if event in STREAM_END_EVENTS:
                    logger.warning(f"Catalog stream ended by server: {event} {data}")
                    return True
                if event not in ("put", "patch"):
                    logger.debug(f"Ignoring catalog stream event '{event}'")
                    continue

                message = json.loads(data)
                if not isinstance(message, dict):
                    raise ValueError(f"Unexpected '{event}' payload: {data[:200]}")
                path = message.get("path", "/")
                if event == "put":
                    self._tree = apply_put(self._tree, path, message.get("data"))
                else:
                    self._tree = apply_patch(self._tree, path, message.get("data") or {})
                await self._deliver(Catalog.from_document(self._tree))
        if not received:
            raise StreamDroppedError("Catalog stream closed before any event")
        return False

    async def _deliver(self, catalog: Catalog) -> None:
        try:
            result = self._on_change(catalog)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Catalog change handler failed: {e}")


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Group ``text/event-stream`` lines into ``(event, data)`` pairs."""
    event: str | None = None
    data_lines: list[str] = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if event is not None or data_lines:
                yield event or "message", "\n".join(data_lines)
            event = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
    if event is not None or data_lines:
        yield event or "message", "\n".join(data_lines)


def _to_tree(value: Any) -> Any:
    """Firebase has no arrays: store lists as index-keyed objects, drop nulls."""
    if isinstance(value, list):
        return {
            str(index): _to_tree(item) for index, item in enumerate(value) if item is not None
        }
    if isinstance(value, dict):
        return {str(key): _to_tree(item) for key, item in value.items() if item is not None}
    return value


def apply_put(tree: Any, path: str, data: Any) -> Any:
    """Return a copy of ``tree`` with ``data`` written at ``path``."""
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return _to_tree(data)

    root = dict(tree) if isinstance(tree, dict) else {}
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        child = dict(child) if isinstance(child, dict) else {}
        node[segment] = child
        node = child

    value = _to_tree(data)
    if value is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = value
    return root


def apply_patch(tree: Any, path: str, data: dict[str, Any]) -> Any:
    """Apply a multi-child update: each key of ``data`` is put below ``path``."""
    base = path.rstrip("/")
    for key, value in data.items():
        tree = apply_put(tree, f"{base}/{key}", value)
    return tree


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and "error" in payload:
        return str(payload["error"])
    return str(payload)[:200]
