# -*- coding: utf-8 -*-
"""
异步工具测试
"""

import asyncio
import logging

import pytest

from gatesync.core.async_utils import (
    PerformanceMonitor,
    async_retry,
    async_timeout,
    get_performance_monitor,
    monitor_performance,
)
from gatesync.core.errors import AdminAPIRejected, AdminAPIUnavailable, SyncError


class TestAsyncRetry:
    """重试装饰器测试"""

    async def test_retry_until_success(self):
        """测试失败后重试直至成功"""
        calls = []

        @async_retry(max_retries=3, delay=0, retry_on=(SyncError,))
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise AdminAPIUnavailable("down")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    async def test_retries_exhausted(self):
        """测试超过重试次数后抛出最后一次异常"""
        calls = []

        @async_retry(max_retries=2, delay=0, retry_on=(SyncError,))
        async def always_fails():
            calls.append(1)
            raise AdminAPIRejected(400, "bad")

        with pytest.raises(AdminAPIRejected):
            await always_fails()
        assert len(calls) == 3

    async def test_non_retryable_error(self):
        """测试不在 retry_on 中的异常直接抛出"""
        calls = []

        @async_retry(max_retries=5, delay=0, retry_on=(SyncError,))
        async def broken():
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1

    async def test_backoff(self, monkeypatch):
        """测试退避延迟按倍数增长"""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)

        @async_retry(max_retries=3, delay=0.5, backoff=2.0, logger=logging.getLogger("test"))
        async def always_fails():
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            await always_fails()
        assert delays == [0.5, 1.0, 2.0]


class TestAsyncTimeout:
    """超时装饰器测试"""

    async def test_timeout(self):
        @async_timeout(0.05)
        async def slow_operation():
            await asyncio.sleep(1)

        with pytest.raises(TimeoutError):
            await slow_operation()

    async def test_no_timeout(self):
        @async_timeout(1)
        async def fast_operation():
            return "success"

        assert await fast_operation() == "success"


class TestPerformanceMonitor:
    """性能监控器测试"""

    def setup_method(self):
        self.monitor = PerformanceMonitor(max_samples=3)

    def test_record_and_stats(self):
        for value in (0.1, 0.2, 0.3):
            self.monitor.record_execution_time("reconcile", value)

        stats = self.monitor.get_stats("reconcile")

        assert stats["count"] == 3
        assert stats["min_time"] == 0.1
        assert stats["max_time"] == 0.3
        assert stats["last_time"] == 0.3
        assert abs(stats["avg_time"] - 0.2) < 1e-9

    def test_samples_bounded(self):
        for value in (1.0, 2.0, 3.0, 4.0):
            self.monitor.record_execution_time("reconcile", value)

        stats = self.monitor.get_stats("reconcile")
        assert stats["count"] == 3
        assert stats["min_time"] == 2.0

    def test_unknown_operation(self):
        assert self.monitor.get_stats("missing") == {}
        assert self.monitor.get_stats() == {}

    async def test_monitor_decorator(self):
        @monitor_performance("apply", self.monitor)
        async def operation():
            return 42

        assert await operation() == 42
        assert self.monitor.get_stats("apply")["count"] == 1

    async def test_monitor_decorator_records_failures(self):
        @monitor_performance("apply", self.monitor)
        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await failing()
        assert self.monitor.get_stats("apply")["count"] == 1

    def test_global_instance(self):
        assert get_performance_monitor() is get_performance_monitor()
