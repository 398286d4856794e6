"""Logging configuration with structlog integration.

提供两种日志记录方式：
1. loguru: 用于一般调试日志
2. structlog: 用于关键业务事件的结构化日志
"""

import sys
from typing import Any

import structlog
from loguru import logger

from src.core.config import settings


def setup_logging() -> None:
    """Configure application logging with structlog and loguru."""
    # 配置 structlog
    _configure_structlog()

    # 配置 loguru
    _configure_loguru()

    logger.info(f"Logging configured with level: {settings.LOG_LEVEL}")


def _configure_structlog() -> None:
    """配置 structlog 处理器链。"""
    # 根据环境选择渲染器
    if settings.ENVIRONMENT == "local":
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            ),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _get_log_level_number(settings.LOG_LEVEL)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def _configure_loguru() -> None:
    """配置 loguru。"""
    logger.remove()

    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if settings.ENVIRONMENT != "local":
        logger.add(
            "logs/appshelf_{time:YYYY-MM-DD}.log",
            rotation="00:00",
            retention="30 days",
            level="INFO",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )


def _get_log_level_number(level: str) -> int:
    """将日志级别字符串转换为数字。"""
    levels = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }
    return levels.get(level.upper(), 20)


# ============================================================================
# 业务事件日志记录器
# ============================================================================


class BusinessEvents:
    """业务事件日志助手类。

    提供统一的业务事件日志记录接口，确保事件格式一致。

    Usage:
        from src.core.infrastructure.logging import BusinessEvents

        BusinessEvents.catalog_fetched(source="remote", app_count=42)
        BusinessEvents.catalog_write_failed(error_code="REMOTE_REJECTED", error="...")
    """

    _log = structlog.get_logger("business.events")

    @classmethod
    def catalog_fetched(
        cls,
        source: str,
        app_count: int,
        **extra: Any,
    ) -> None:
        """记录目录读取事件（cache / remote / background）。"""
        cls._log.info(
            "catalog_fetched",
            event_type="read",
            source=source,
            app_count=app_count,
            **extra,
        )

    @classmethod
    def catalog_written(
        cls,
        app_count: int,
        duration_ms: int,
        **extra: Any,
    ) -> None:
        """记录目录写入成功事件。"""
        cls._log.info(
            "catalog_written",
            event_type="write",
            app_count=app_count,
            duration_ms=duration_ms,
            **extra,
        )

    @classmethod
    def catalog_write_failed(
        cls,
        error_code: str,
        error: str,
        status_code: int | None = None,
        **extra: Any,
    ) -> None:
        """记录目录写入失败事件（本地缓存保持乐观写入结果）。"""
        cls._log.warning(
            "catalog_write_failed",
            event_type="write_error",
            error_code=error_code,
            error=error,
            status_code=status_code,
            **extra,
        )

    @classmethod
    def background_refresh_failed(
        cls,
        error: str,
        **extra: Any,
    ) -> None:
        """记录后台刷新失败事件（已返回旧数据，不向调用方抛出）。"""
        cls._log.warning(
            "background_refresh_failed",
            event_type="refresh_error",
            error=error,
            **extra,
        )

    @classmethod
    def remote_change_received(
        cls,
        app_count: int,
        subscriber_count: int,
        **extra: Any,
    ) -> None:
        """记录远端推送变更事件。"""
        cls._log.info(
            "remote_change_received",
            event_type="push",
            app_count=app_count,
            subscriber_count=subscriber_count,
            **extra,
        )

    @classmethod
    def subscriber_failed(
        cls,
        subscriber: str,
        error: str,
        **extra: Any,
    ) -> None:
        """记录订阅回调异常事件。"""
        cls._log.warning(
            "subscriber_failed",
            event_type="fanout_error",
            subscriber=subscriber,
            error=error,
            **extra,
        )

    @classmethod
    def cache_degraded(
        cls,
        operation: str,
        reason: str,
        **extra: Any,
    ) -> None:
        """记录本地缓存降级事件（读写失败按未命中处理）。"""
        cls._log.warning(
            "cache_degraded",
            event_type="degradation",
            operation=operation,
            reason=reason,
            **extra,
        )
