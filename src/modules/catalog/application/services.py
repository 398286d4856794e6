"""Catalog read/write coordination.

CatalogService sits between the remote document store and the local cache
slot:

- ``read()`` is stale-while-revalidate and never raises.
- ``write()`` updates the cache optimistically, then overwrites the remote
  document once. A failed remote write is raised and the cache is NOT rolled
  back; the next refresh or push heals it.
- ``on_update()`` fans out background refresh results and remote pushes.

Cross-process writes are last-write-wins at whole-document granularity.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from src.core.config import settings
from src.core.domain.listeners import ListenerRegistry, Subscription
from src.core.infrastructure.logging import BusinessEvents
from src.modules.catalog.domain.entities import Catalog
from src.modules.catalog.domain.exceptions import (
    CatalogError,
    RemoteRejectedError,
    RemoteUnavailableError,
)
from src.modules.catalog.domain.ports import (
    CacheEntry,
    Clock,
    LocalCache,
    RemoteStore,
    RemoteSubscription,
    system_clock,
)

CatalogMutator = Callable[[Catalog], Catalog]
CatalogListener = Callable[[Catalog], Awaitable[None] | None]


class CatalogService:
    """Single entry point for reading and editing the shared catalog."""

    def __init__(
        self,
        remote: RemoteStore,
        cache: LocalCache,
        *,
        ttl_ms: int | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.remote = remote
        self.cache = cache
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.CATALOG_CACHE_TTL_MS
        self._clock = clock
        self._listeners: ListenerRegistry[Catalog] = ListenerRegistry(
            on_error=self._report_listener_error
        )
        self._remote_subscription: RemoteSubscription | None = None
        self._attach_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[None] | None = None
        self._write_generation = 0
        self._awaiting_confirmation = False
        self._pushed_during_write: Catalog | None = None
        self._last_published: Catalog | None = None

    async def __aenter__(self) -> CatalogService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ============ 读取 ============

    async def read(self) -> Catalog:
        """Return the best available catalog without ever raising."""
        entry = await self.cache.get()
        if entry is not None and self._usable(entry):
            if entry.is_fresh(self._clock(), self.ttl_ms):
                BusinessEvents.catalog_fetched(
                    source="cache", app_count=entry.document.app_count
                )
                return entry.document

            self._schedule_refresh()
            BusinessEvents.catalog_fetched(
                source="stale_cache",
                app_count=entry.document.app_count,
                age_ms=entry.age_ms(self._clock()),
            )
            return entry.document

        try:
            document = await self.remote.fetch_once()
        except CatalogError as exc:
            logger.warning(f"Catalog fetch failed, serving empty catalog: {exc}")
            return Catalog.empty()

        await self.cache.set(document)
        BusinessEvents.catalog_fetched(source="remote", app_count=document.app_count)
        return document

    async def refresh(self) -> Catalog:
        """Fetch from the remote store now, update the cache and notify listeners.

        Raises:
            RemoteUnavailableError: if the store cannot be read.
        """
        document = await self.remote.fetch_once()
        await self.cache.set(document)
        BusinessEvents.catalog_fetched(source="refresh", app_count=document.app_count)
        await self._publish(document)
        return document

    async def cached(self) -> Catalog:
        """Cached catalog regardless of age, or an empty one. No network."""
        entry = await self.cache.get()
        return entry.document if entry is not None else Catalog.empty()

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def wait_for_refresh(self) -> None:
        """Wait until the current background refresh (if any) has finished."""
        task = self._refresh_task
        if task is not None:
            await asyncio.shield(task)

    def _usable(self, entry: CacheEntry | None) -> bool:
        # An all-empty catalog looks the same as "never loaded"; do not let it
        # hide a real remote dataset.
        return entry is not None and not entry.document.is_empty

    def _schedule_refresh(self) -> None:
        if self.refresh_in_flight:
            return
        self._refresh_task = asyncio.create_task(
            self._background_refresh(), name="catalog-background-refresh"
        )

    async def _background_refresh(self) -> None:
        generation = self._write_generation
        try:
            document = await self.remote.fetch_once()
        except CatalogError as exc:
            BusinessEvents.background_refresh_failed(error=str(exc))
            return

        if generation != self._write_generation:
            logger.debug("Discarding background refresh that started before a local write")
            return

        await self.cache.set(document)
        BusinessEvents.catalog_fetched(source="background", app_count=document.app_count)
        await self._publish(document)

    # ============ 写入 ============

    async def write(self, mutate: CatalogMutator) -> Catalog:
        """Apply ``mutate`` to the current catalog and store the result.

        Writes issued from one process run one after another. Returns the
        written catalog.

        Raises:
            RemoteUnavailableError: the store could not be reached (also when
                there is nothing cached to build on).
            RemoteRejectedError: the store refused the write.
        """
        async with self._write_lock:
            base = await self._load_for_write()
            candidate = mutate(base)
            if not isinstance(candidate, Catalog):
                raise TypeError(
                    f"Catalog mutator must return a Catalog, got {type(candidate).__name__}"
                )

            self._write_generation += 1
            await self.cache.set(candidate)

            started = time.perf_counter()
            self._awaiting_confirmation = True
            try:
                await self.remote.write_all(candidate)
            except (RemoteUnavailableError, RemoteRejectedError) as exc:
                # The optimistic cache entry is kept on purpose.
                BusinessEvents.catalog_write_failed(
                    error_code=exc.error_code,
                    error=exc.message,
                    status_code=exc.status_code,
                )
                raise
            finally:
                await self._apply_pushed_during_write()

            BusinessEvents.catalog_written(
                app_count=candidate.app_count,
                duration_ms=int((time.perf_counter() - started) * 1000),
            )
            return candidate

    async def _load_for_write(self) -> Catalog:
        entry = await self.cache.get()
        usable = self._usable(entry)
        if usable and entry is not None and entry.is_fresh(self._clock(), self.ttl_ms):
            return entry.document

        try:
            document = await self.remote.fetch_once()
        except RemoteUnavailableError:
            if usable and entry is not None:
                logger.warning("Remote fetch failed; using stale cached catalog as write base")
                return entry.document
            raise

        await self.cache.set(document)
        return document

    async def _apply_pushed_during_write(self) -> None:
        self._awaiting_confirmation = False
        pushed, self._pushed_during_write = self._pushed_during_write, None
        if pushed is not None:
            # Pushes are delivered in server order, so the last one is the
            # remote state after this write landed.
            await self.cache.set(pushed)

    async def clear_cache(self) -> None:
        await self.cache.clear()

    # ============ 订阅 ============

    async def on_update(self, callback: CatalogListener) -> Subscription:
        """Register ``callback`` for catalog changes.

        The remote push subscription is attached on the first registration.
        """
        subscription = self._listeners.subscribe(callback)
        await self._ensure_remote_attached()
        return subscription

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def _ensure_remote_attached(self) -> None:
        async with self._attach_lock:
            if self._remote_subscription is not None:
                return
            try:
                self._remote_subscription = await self.remote.subscribe(
                    self._on_remote_change
                )
            except CatalogError as exc:
                logger.warning(f"Could not attach catalog push subscription: {exc}")

    async def _on_remote_change(self, document: Catalog) -> None:
        if self._awaiting_confirmation:
            # Keep the optimistic candidate until write_all returns, then
            # cache the newest pushed document.
            logger.debug("Remote change arrived during a local write; caching it afterwards")
            self._pushed_during_write = document
        else:
            await self.cache.set(document)

        BusinessEvents.remote_change_received(
            app_count=document.app_count,
            subscriber_count=len(self._listeners),
        )
        await self._publish(document)

    async def _publish(self, document: Catalog) -> None:
        if self._last_published is not None and self._last_published == document:
            return
        self._last_published = document
        await self._listeners.publish(document)

    def _report_listener_error(self, listener: Callable[..., Any], error: Exception) -> None:
        BusinessEvents.subscriber_failed(
            subscriber=getattr(listener, "__qualname__", repr(listener)),
            error=str(error),
        )

    # ============ 生命周期 ============

    async def aclose(self) -> None:
        """Detach the push subscription, stop background work, release backends."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None

        if self._remote_subscription is not None:
            await self.remote.unsubscribe(self._remote_subscription)
            self._remote_subscription = None

        await self.remote.aclose()
        await self.cache.aclose()
