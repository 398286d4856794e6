"""Catalog domain ports: remote document store and local cache slot."""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.core.infrastructure.health import RemoteStoreHealthResult
from src.modules.catalog.domain.entities import Catalog

RemoteChangeHandler = Callable[[Catalog], Awaitable[None] | None]
Clock = Callable[[], int]


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class CacheEntry:
    """Last known catalog plus the epoch-ms time it was stored."""

    document: Catalog
    written_at: int

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.written_at

    def is_fresh(self, now_ms: int, ttl_ms: int) -> bool:
        return self.age_ms(now_ms) < ttl_ms


class RemoteSubscription(ABC):
    """Live push subscription handle."""

    @property
    @abstractmethod
    def active(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery and release the connection. Idempotent."""


class RemoteStore(ABC):
    """Port for the hosted document holding the whole catalog.

    ``fetch_once`` and ``write_all`` are single attempts; retry policy belongs
    to the caller.
    """

    @abstractmethod
    async def fetch_once(self) -> Catalog:
        """Read the full document.

        Raises:
            RemoteUnavailableError: transport failure or unusable payload.
        """

    @abstractmethod
    async def write_all(self, document: Catalog) -> None:
        """Overwrite the full document (last writer wins).

        Raises:
            RemoteUnavailableError: transport failure.
            RemoteRejectedError: the store refused the write.
        """

    @abstractmethod
    async def subscribe(self, on_change: RemoteChangeHandler) -> RemoteSubscription:
        """Attach a push listener.

        ``on_change`` receives the full document once on attach and again
        after every remote mutation from any client.
        """

    async def unsubscribe(self, subscription: RemoteSubscription) -> None:
        await subscription.close()

    @abstractmethod
    async def health_check(self) -> RemoteStoreHealthResult: ...

    async def probe(self) -> bool:
        result = await self.health_check()
        return result.reachable

    async def aclose(self) -> None:
        """Release transport resources."""


class LocalCache(ABC):
    """Single durable slot holding the last known catalog.

    Pure storage: no TTL policy. Storage failures degrade to a miss (``get``)
    or a no-op (``set`` / ``clear``) and are never raised.
    """

    @abstractmethod
    async def get(self) -> CacheEntry | None: ...

    @abstractmethod
    async def set(self, document: Catalog) -> None: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def aclose(self) -> None:
        """Release backend resources."""
