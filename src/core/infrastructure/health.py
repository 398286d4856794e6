"""统一的健康检查类型定义。"""

from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """健康检查状态枚举。"""

    OK = "ok"
    ERROR = "error"


class RemoteStoreHealthResult(BaseModel):
    """远端文档存储健康检查结果。"""

    status: HealthStatus = Field(..., description="健康状态")
    reachable: bool = Field(..., description="是否可访问")
    url: str = Field(..., description="文档地址")
    latency_ms: int | None = Field(None, description="探测耗时（毫秒）")
    error: str | None = Field(None, description="错误信息")
