"""
连接管理器的业务异常定义。

服务层与 PKI 引擎抛出这些异常，由调用方（API 层）负责映射为对应的响应。
公开接口：
- ConnectionManagerError: 所有业务异常的基类
- InvalidEntityError: CSR/证书内容无效（不可重试）
- ValidationError: 必要的前置校验失败（不可重试）
- NotFoundError: 引用的密钥/登记/CA 不存在
- ExternalProcessError: 密钥/PKI 后端调用失败（调用方可自行重试）
"""

from __future__ import annotations

from typing import Any, List


class ConnectionManagerError(Exception):
    """业务异常基类。"""

    def __init__(self, message: str = "", details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidEntityError(ConnectionManagerError):
    """实体（CSR、证书）格式错误或结构无效。"""


class ValidationError(ConnectionManagerError):
    """业务前置校验失败。"""


class NotFoundError(ConnectionManagerError):
    """资源不存在。"""


class ExternalProcessError(ConnectionManagerError):
    """外部服务（Vault）调用失败。"""

    def __init__(
        self,
        message: str = "",
        details: Any = None,
        status_code: int | None = None,
        errors: List[str] | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.errors = errors or []
