"""Redis 客户端封装。"""

from src.core.infrastructure.redis.client import RedisClient
from src.core.infrastructure.redis.keys import RedisKeys

__all__ = [
    "RedisClient",
    "RedisKeys",
]
