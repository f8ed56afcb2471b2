# -*- coding: utf-8 -*-
"""
工作队列
按key合并的异步队列: 同一个key在队列中只出现一次，且同一时间只会被一个worker处理
"""

import asyncio
import logging
from typing import Optional, Set


class WorkQueue:
    """
    单飞工作队列

    key处理期间再次加入时只打上dirty标记，处理结束（done）后重新入队，
    因此同一个key不会被并发处理，也不会丢失处理期间发生的变更。
    """

    def __init__(self, name: str = "reconcile"):
        self.name = name
        self.logger = logging.getLogger("gatesync.WorkQueue")
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._queued: Set[str] = set()
        self._processing: Set[str] = set()
        self._dirty: Set[str] = set()
        self._timers: Set[asyncio.TimerHandle] = set()
        self._shutdown = False

    def add(self, key: str):
        """加入key，已在队列中的key被合并"""
        if self._shutdown:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float):
        """延迟加入key，用于失败后的退避重试"""
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire():
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    async def get(self) -> Optional[str]:
        """
        取出下一个key并标记为处理中

        Returns:
            Optional[str]: 队列关闭后返回None
        """
        key = await self._queue.get()
        if key is None:
            # 唤醒其他等待中的worker
            self._queue.put_nowait(None)
            return None
        self._queued.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str):
        """处理结束；处理期间有新变更的key会重新入队"""
        self._processing.discard(key)
        if key in self._dirty:
            self._dirty.discard(key)
            self.add(key)

    def is_dirty(self, key: str) -> bool:
        """处理中的key是否已有更新的变更等待处理"""
        return key in self._dirty

    def shutdown(self):
        self._shutdown = True
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        self._queue.put_nowait(None)
        self.logger.info("[工作队列][%s]已关闭", self.name)

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def __len__(self) -> int:
        return len(self._queued)

    def get_stats(self):
        return {
            "queued": len(self._queued),
            "processing": len(self._processing),
            "dirty": len(self._dirty),
            "delayed": len(self._timers),
        }
