"""Local cache backends for the catalog document.

The persisted record is one JSON blob::

    {"apps": <catalog document>, "timestamp": <epoch ms>}

Both backends treat every storage failure as a cache miss.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger
from redis.exceptions import RedisError

from src.core.infrastructure.logging import BusinessEvents
from src.core.infrastructure.redis import RedisClient, RedisKeys
from src.modules.catalog.domain.entities import Catalog
from src.modules.catalog.domain.exceptions import CacheCorruptError
from src.modules.catalog.domain.ports import CacheEntry, Clock, LocalCache, system_clock


def encode_cache_record(document: Catalog, written_at: int) -> str:
    return json.dumps(
        {"apps": document.to_document(), "timestamp": written_at},
        ensure_ascii=False,
    )


def decode_cache_record(raw: str | bytes) -> CacheEntry:
    """Parse a persisted record.

    Raises:
        CacheCorruptError: on any structural problem.
    """
    try:
        payload: Any = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CacheCorruptError(f"Cache record is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise CacheCorruptError("Cache record must be a JSON object")

    timestamp = payload.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise CacheCorruptError("Cache record has no integer timestamp")

    try:
        document = Catalog.from_document(payload.get("apps"))
    except ValueError as exc:
        raise CacheCorruptError(f"Cache record holds an invalid catalog: {exc}") from exc

    return CacheEntry(document=document, written_at=timestamp)


class FileLocalCache(LocalCache):
    """Cache slot stored as a JSON file, replaced atomically on write.

    File access runs in a worker thread so the event loop is never blocked.
    """

    def __init__(
        self,
        directory: Path,
        key: str,
        *,
        clock: Clock = system_clock,
    ) -> None:
        self.directory = directory
        self.path = directory / f"{key}.json"
        self._clock = clock

    async def get(self) -> CacheEntry | None:
        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            BusinessEvents.cache_degraded(operation="get", reason=str(exc))
            return None

        try:
            return decode_cache_record(raw)
        except CacheCorruptError as exc:
            logger.warning(f"Discarding corrupt catalog cache {self.path}: {exc}")
            BusinessEvents.cache_degraded(operation="get", reason=exc.error_code)
            await self.clear()
            return None

    async def set(self, document: Catalog) -> None:
        record = encode_cache_record(document, self._clock())
        try:
            await asyncio.to_thread(self._replace_file, record)
        except OSError as exc:
            BusinessEvents.cache_degraded(operation="set", reason=str(exc))

    def _replace_file(self, record: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.directory,
                prefix=f".{self.path.stem}-",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(record)
            os.replace(tmp_name, self.path)
            tmp_name = None
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    async def clear(self) -> None:
        try:
            await asyncio.to_thread(self.path.unlink, missing_ok=True)
        except OSError as exc:
            BusinessEvents.cache_degraded(operation="clear", reason=str(exc))


class RedisLocalCache(LocalCache):
    """Cache slot stored under a single Redis key."""

    def __init__(
        self,
        redis_client: RedisClient,
        key: str,
        *,
        clock: Clock = system_clock,
    ) -> None:
        self.redis_client = redis_client
        self.redis_key = RedisKeys.catalog_cache(key)
        self._clock = clock

    async def get(self) -> CacheEntry | None:
        try:
            raw = await self.redis_client.get(self.redis_key)
        except (RedisError, OSError) as exc:
            BusinessEvents.cache_degraded(operation="get", reason=str(exc))
            return None
        if raw is None:
            return None

        try:
            return decode_cache_record(raw)
        except CacheCorruptError as exc:
            logger.warning(f"Discarding corrupt catalog cache {self.redis_key}: {exc}")
            BusinessEvents.cache_degraded(operation="get", reason=exc.error_code)
            await self.clear()
            return None

    async def set(self, document: Catalog) -> None:
        record = encode_cache_record(document, self._clock())
        try:
            await self.redis_client.set(self.redis_key, record)
        except (RedisError, OSError) as exc:
            BusinessEvents.cache_degraded(operation="set", reason=str(exc))

    async def clear(self) -> None:
        try:
            await self.redis_client.delete(self.redis_key)
        except (RedisError, OSError) as exc:
            BusinessEvents.cache_degraded(operation="clear", reason=str(exc))

    async def aclose(self) -> None:
        await self.redis_client.close()
