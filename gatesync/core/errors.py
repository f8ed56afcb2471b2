# -*- coding: utf-8 -*-
"""
统一错误处理模块
定义翻译、同步和启动阶段的异常体系，并为状态API提供一致的错误响应格式
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Union

import httpx
from fastapi import HTTPException
from pydantic import BaseModel


class GateSyncError(Exception):
    """所有业务异常的基类"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def reason(self) -> str:
        """用于状态展示的简短原因"""
        return f"{self.__class__.__name__}: {self.message}"


# ---------------------------------------------------------------------------
# 翻译错误: 仅影响单个owner的一次协调，不会应用任何变更
# ---------------------------------------------------------------------------


class TranslationError(GateSyncError):
    """
    资源翻译失败

    secret_ref / service_ref 记录失败时依赖的 "namespace/name"，
    依赖对象变更后据此重新触发owner。
    """

    secret_ref: Optional[str] = None
    service_ref: Optional[str] = None


class UnsupportedPredicateOperator(TranslationError):
    def __init__(self, operator: str):
        super().__init__(f"不支持的匹配操作符: {operator!r}")
        self.operator = operator


class SecretNotFound(TranslationError):
    def __init__(self, namespace: str, name: str):
        super().__init__(f"Secret不存在: {namespace}/{name}")
        self.namespace = namespace
        self.name = name
        self.secret_ref = f"{namespace}/{name}"


class MalformedSecret(TranslationError):
    """Secret缺少证书/私钥字段，或字段内容有歧义"""


class InvalidCertificateKeyPair(TranslationError):
    """证书或私钥无法解析，或私钥与证书公钥不匹配"""


class UnresolvableBackend(TranslationError):
    """后端引用无法解析（缺少服务名、服务不存在或端口名未知）"""

    def __init__(self, message: str, service_ref: Optional[str] = None):
        super().__init__(message)
        self.service_ref = service_ref


class InvalidRouteMatch(TranslationError):
    """路由匹配条件非法"""


class EmptySNIList(TranslationError):
    """TLS绑定没有任何主机名"""


# ---------------------------------------------------------------------------
# 同步错误: 针对单个网关对象，按指数退避重试
# ---------------------------------------------------------------------------


class SyncError(GateSyncError):
    """Admin API调用失败"""


class AdminAPIUnavailable(SyncError):
    """Admin API不可达、超时或返回5xx"""


class AdminAPIRejected(SyncError):
    def __init__(self, code: int, message: str = ""):
        super().__init__(f"Admin API拒绝请求 (状态码: {code}) {message}".strip())
        self.code = code


class Conflict(SyncError):
    """对象版本冲突"""


# ---------------------------------------------------------------------------
# 致命错误: 进程级，拒绝启动
# ---------------------------------------------------------------------------


class FatalError(GateSyncError):
    """启动失败（凭据错误、缓存无法就绪等）"""


class ErrorType(str, Enum):
    """错误类型枚举"""

    TRANSLATION_ERROR = "translation_error"
    SYNC_ERROR = "sync_error"
    CONNECTION_ERROR = "connection_error"
    AUTH_ERROR = "auth_error"
    NOT_FOUND = "not_found"
    TIMEOUT_ERROR = "timeout_error"
    FATAL_ERROR = "fatal_error"


class ErrorDetails(BaseModel):
    """错误详情模型"""

    kind: Optional[str] = None
    namespace: Optional[str] = None
    resource_name: Optional[str] = None
    object_id: Optional[str] = None
    operation: Optional[str] = None


class ErrorResponse(BaseModel):
    """统一错误响应模型"""

    code: int
    message: str
    error_type: ErrorType
    details: ErrorDetails


class SyncErrorHandler:
    """Admin API错误分类器"""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def from_http(
        self,
        exc_or_response: Union[httpx.Response, Exception],
        operation: str,
        object_id: str,
    ) -> Optional[SyncError]:
        """按参数类型分派到 from_response / from_exception"""
        if isinstance(exc_or_response, httpx.Response):
            return self.from_response(exc_or_response, operation, object_id)
        return self.from_exception(exc_or_response, operation, object_id)

    def from_response(
        self, response: httpx.Response, operation: str, object_id: str
    ) -> Optional[SyncError]:
        """
        把Admin API响应映射为同步错误

        Returns:
            Optional[SyncError]: 成功响应返回None
        """
        status = response.status_code
        if 200 <= status <= 299:
            return None

        message = _extract_error_message(response)
        log_prefix = f"[Admin API][{operation}][{object_id}]"

        if status == 409:
            self.logger.warning("%s版本冲突: %s", log_prefix, message)
            return Conflict(f"对象版本冲突: {message}")
        if status >= 500:
            self.logger.error("%s网关服务端错误 (状态码: %d): %s", log_prefix, status, message)
            return AdminAPIUnavailable(f"网关服务端错误 (状态码: {status}): {message}")

        self.logger.error("%s请求被拒绝 (状态码: %d): %s", log_prefix, status, message)
        return AdminAPIRejected(status, message)

    def from_exception(
        self, e: Exception, operation: str, object_id: str
    ) -> SyncError:
        """把传输层异常映射为同步错误"""
        log_prefix = f"[Admin API][{operation}][{object_id}]"

        if isinstance(e, SyncError):
            return e
        if isinstance(e, (httpx.TimeoutException, asyncio.TimeoutError)):
            self.logger.error("%s调用超时", log_prefix)
            return AdminAPIUnavailable("Admin API调用超时")
        if isinstance(e, (httpx.TransportError, ConnectionError)):
            self.logger.error("%s连接错误: %s", log_prefix, str(e))
            return AdminAPIUnavailable(f"连接失败: {str(e)}")

        self.logger.error("%s处理错误: %s", log_prefix, str(e))
        return AdminAPIUnavailable(f"处理失败: {str(e)}")

    def to_http_exception(
        self,
        e: Exception,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        resource_name: Optional[str] = None,
    ) -> HTTPException:
        """为状态API构建HTTP异常"""
        details = ErrorDetails(kind=kind, namespace=namespace, resource_name=resource_name)

        if isinstance(e, KeyError):
            error_type = ErrorType.NOT_FOUND
            message = f"资源不存在: {kind}/{namespace}/{resource_name}"
            status_code = 404
        elif isinstance(e, TranslationError):
            error_type = ErrorType.TRANSLATION_ERROR
            message = e.reason
            status_code = 422
        elif isinstance(e, SyncError):
            error_type = ErrorType.SYNC_ERROR
            message = e.reason
            status_code = 502
        else:
            error_type = ErrorType.FATAL_ERROR
            message = f"处理失败: {str(e)}"
            status_code = 500
            self.logger.error("[状态API]处理错误: %s", str(e))

        error_response = ErrorResponse(
            code=status_code, message=message, error_type=error_type, details=details
        )
        return HTTPException(status_code=status_code, detail=error_response.model_dump())


def _extract_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error_msg") or body.get("message") or body)
    return str(body)


def create_error_handler(logger: logging.Logger) -> SyncErrorHandler:
    """创建错误处理器实例"""
    return SyncErrorHandler(logger)
