# -*- coding: utf-8 -*-
"""
异步操作工具
提供超时、重试和性能监控功能
"""

import asyncio
import logging
import threading
import time
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple, Type


def async_timeout(timeout_seconds: float):
    """
    异步超时装饰器

    Args:
        timeout_seconds: 超时时间（秒）
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs), timeout=timeout_seconds
                )
            except asyncio.TimeoutError:
                raise TimeoutError(f"操作超时 ({timeout_seconds}秒)")

        return wrapper

    return decorator


def async_retry(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    logger: Optional[logging.Logger] = None,
):
    """
    异步重试装饰器

    Args:
        max_retries: 最大重试次数（不含首次调用）
        delay: 初始延迟时间（秒）
        backoff: 退避倍数
        retry_on: 需要重试的异常类型，其余异常直接抛出
        logger: 记录重试日志的logger
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_retries:
                        raise
                    if logger:
                        logger.warning(
                            "[重试]%s 第 %d 次失败，%.2f 秒后重试: %s",
                            func.__name__,
                            attempt + 1,
                            current_delay,
                            str(e),
                        )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


class PerformanceMonitor:
    """性能监控器"""

    def __init__(self, max_samples: int = 1000):
        self.metrics: Dict[str, List[float]] = {}
        self.max_samples = max_samples
        self.logger = logging.getLogger("gatesync.PerformanceMonitor")
        self._lock = threading.Lock()

    def record_execution_time(self, operation: str, execution_time: float):
        """
        记录执行时间

        Args:
            operation: 操作名称
            execution_time: 执行时间（秒）
        """
        with self._lock:
            samples = self.metrics.setdefault(operation, [])
            samples.append(execution_time)
            if len(samples) > self.max_samples:
                del samples[: len(samples) - self.max_samples]

    def get_stats(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """
        获取性能统计

        Args:
            operation: 操作名称，为None则返回所有操作的统计

        Returns:
            Dict[str, Any]: 性能统计信息
        """
        with self._lock:
            if operation:
                if operation not in self.metrics:
                    return {}
                return self._calculate_stats(self.metrics[operation])

            return {op: self._calculate_stats(times) for op, times in self.metrics.items()}

    @staticmethod
    def _calculate_stats(times: List[float]) -> Dict[str, Any]:
        """计算统计信息"""
        if not times:
            return {"count": 0}

        return {
            "count": len(times),
            "total_time": sum(times),
            "avg_time": sum(times) / len(times),
            "min_time": min(times),
            "max_time": max(times),
            "last_time": times[-1],
        }


def monitor_performance(
    operation_name: str, monitor: Optional[PerformanceMonitor] = None
):
    """
    性能监控装饰器

    Args:
        operation_name: 操作名称
        monitor: 性能监控器实例，为None时使用全局实例
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                execution_time = time.time() - start_time
                (monitor or get_performance_monitor()).record_execution_time(
                    operation_name, execution_time
                )

        return wrapper

    return decorator


# 全局实例
_global_performance_monitor: Optional[PerformanceMonitor] = None


def get_performance_monitor() -> PerformanceMonitor:
    """获取全局性能监控器"""
    global _global_performance_monitor
    if _global_performance_monitor is None:
        _global_performance_monitor = PerformanceMonitor()
    return _global_performance_monitor
