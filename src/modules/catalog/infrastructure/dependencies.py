"""Catalog module infrastructure wiring."""

import asyncio

import httpx
from loguru import logger

from src.core.config import settings
from src.core.infrastructure.redis import RedisClient
from src.modules.catalog.application.services import CatalogService
from src.modules.catalog.domain.exceptions import RemoteUnavailableError
from src.modules.catalog.domain.ports import Clock, LocalCache, RemoteStore, system_clock
from src.modules.catalog.infrastructure.firebase_store import FirebaseRemoteStore
from src.modules.catalog.infrastructure.local_cache import FileLocalCache, RedisLocalCache


def build_remote_store(client: httpx.AsyncClient | None = None) -> FirebaseRemoteStore:
    return FirebaseRemoteStore(
        document_url=settings.catalog_document_url,
        timeout_sec=settings.REMOTE_TIMEOUT_SEC,
        reconnect_base_sec=settings.STREAM_RECONNECT_BASE_SEC,
        reconnect_max_sec=settings.STREAM_RECONNECT_MAX_SEC,
        client=client,
    )


def build_local_cache(clock: Clock = system_clock) -> LocalCache:
    if settings.CATALOG_CACHE_BACKEND == "redis":
        return RedisLocalCache(
            RedisClient(settings.REDIS_URL),
            settings.CATALOG_CACHE_KEY,
            clock=clock,
        )
    return FileLocalCache(settings.CATALOG_CACHE_DIR, settings.CATALOG_CACHE_KEY, clock=clock)


async def create_catalog_service(
    *,
    probe: bool = True,
    remote: RemoteStore | None = None,
    cache: LocalCache | None = None,
    clock: Clock = system_clock,
) -> CatalogService:
    """Build a ready-to-use CatalogService.

    With ``probe`` the remote store must answer within
    ``STARTUP_PROBE_TIMEOUT_SEC``.

    Raises:
        RemoteUnavailableError: the startup probe failed or timed out.
    """
    remote = remote or build_remote_store()
    cache = cache or build_local_cache(clock)

    if probe:
        try:
            reachable = await asyncio.wait_for(
                remote.probe(), timeout=settings.STARTUP_PROBE_TIMEOUT_SEC
            )
        except TimeoutError:
            reachable = False
        if not reachable:
            await remote.aclose()
            await cache.aclose()
            raise RemoteUnavailableError(
                f"Catalog store did not answer within {settings.STARTUP_PROBE_TIMEOUT_SEC}s"
            )

    logger.info(
        f"Catalog service ready (cache={settings.CATALOG_CACHE_BACKEND}, "
        f"ttl={settings.CATALOG_CACHE_TTL_MS}ms)"
    )
    return CatalogService(remote, cache, ttl_ms=settings.CATALOG_CACHE_TTL_MS, clock=clock)
