"""
业务异常模块 (Business Exception Module)

定义 fleetwatch 的业务异常类。只有连通性失败和状态持久化失败属于子系统级错误；
单个检查项或单次修复的失败会被降级为检查结果 / 修复记录，不会以异常形式向上传播。

Defines fleetwatch business exceptions. Only connectivity and persistence
failures are subsystem-level; per-check failures are downgraded into results.
"""
from typing import Optional


class FleetwatchError(Exception):
    """业务异常基类 (Base Business Exception)"""
    error: str = "fleetwatch_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class ConfigError(FleetwatchError):
    """配置文件缺失或格式错误 (Invalid or missing configuration)"""
    error = "config_error"


class InstanceNotFoundError(FleetwatchError):
    """实例不存在于注册表 (Instance not registered)"""
    error = "instance_not_found"


class ChannelError(FleetwatchError):
    """远程执行通道不可用 (Remote execution channel failed)"""
    error = "channel_error"


class ChannelTimeoutError(ChannelError):
    """远程执行超时 (Remote execution timed out)"""
    error = "channel_timeout"


class PersistenceError(FleetwatchError):
    """状态文件写入失败 (State file could not be written)"""
    error = "persistence_error"
