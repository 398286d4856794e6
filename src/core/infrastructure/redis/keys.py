"""Redis Key 命名规范。

Redis 在本项目中用于：
- Catalog Cache: 目录文档的本地缓存槽（单键，整体替换）
"""


class RedisKeys:
    """Redis Key 命名空间管理。"""

    # 目录缓存
    # cache:catalog:{cache_key}
    CATALOG_CACHE_PREFIX = "cache:catalog"

    @classmethod
    def catalog_cache(cls, cache_key: str) -> str:
        """生成目录缓存 key。

        Args:
            cache_key: 缓存槽名称（如 firebase_apps_cache）

        Returns:
            格式化的 Redis key
        """
        return f"{cls.CATALOG_CACHE_PREFIX}:{cache_key}"
