"""
pytest 配置和共享 fixtures。

测试分层：
- unit/: 单元测试（不依赖外部服务，远端与缓存均为内存实现）

使用方法：
    # 运行所有测试
    uv run pytest

    # 只运行单元测试
    uv run pytest tests/unit/

    # 运行带覆盖率
    uv run pytest --cov=src --cov-report=html
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.config import Settings
from src.modules.catalog.application.services import CatalogService
from src.modules.catalog.domain.entities import Catalog
from src.modules.catalog.domain.exceptions import (
    RemoteRejectedError,
    RemoteUnavailableError,
)
from tests.fakes import FakeClock, FakeRemoteStore, InMemoryLocalCache, make_app

# ============================================
# 配置 Fixtures
# ============================================


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """测试环境配置。"""
    return Settings(
        ENVIRONMENT="local",
        FIREBASE_DATABASE_URL="https://catalog-test.firebaseio.test",
        CATALOG_CACHE_DIR=tmp_path,
        REDIS_URL="redis://localhost:6379/1",  # 使用 DB 1 隔离测试
    )


# ============================================
# 时间控制 Fixtures
# ============================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock: FakeClock) -> InMemoryLocalCache:
    return InMemoryLocalCache(clock)


@pytest.fixture
def remote_store(sample_catalog: Catalog) -> FakeRemoteStore:
    return FakeRemoteStore(sample_catalog)


@pytest.fixture
def catalog_service(
    remote_store: FakeRemoteStore, memory_cache: InMemoryLocalCache, clock: FakeClock
) -> CatalogService:
    return CatalogService(remote_store, memory_cache, ttl_ms=300_000, clock=clock)


# ============================================
# Redis Fixtures
# ============================================


@pytest.fixture
def mock_redis_client() -> MagicMock:
    """Mock Redis 客户端。"""
    from src.core.infrastructure.redis.client import RedisClient

    client = MagicMock(spec=RedisClient)
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.close = AsyncMock(return_value=None)
    return client


# ============================================
# 测试数据 Fixtures
# ============================================


@pytest.fixture
def sample_catalog() -> Catalog:
    """示例目录：每个 pc/game 应用都在 latest 中有镜像。"""
    photo = make_app("1001", "Photo Studio", "editing", version="2.1", subtitle="Editor")
    racer = make_app("1002", "Night Racer", "game", description="Arcade racing game")
    office = make_app("1003", "Office Suite", "pc", version="10", createdAt=1_690_000_000_000)
    return Catalog(
        sections={
            "top-rated": (office,),
            "latest": (office, racer, photo),
            "pc": (office,),
            "game": (racer,),
            "editing": (photo,),
        }
    )


@pytest.fixture
def unavailable_error() -> RemoteUnavailableError:
    return RemoteUnavailableError("connection refused")


@pytest.fixture
def rejected_error() -> RemoteRejectedError:
    return RemoteRejectedError("Permission denied", status_code=401)
