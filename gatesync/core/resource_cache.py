# -*- coding: utf-8 -*-
"""
资源缓存
集群对象的本地只读镜像，由watch通知持续更新

翻译器只通过 get/list 读取缓存，不会直接访问apiserver。
缓存尚未完成首次同步时，调用方应等待 wait_for_sync 而不是读取空数据。
"""

import asyncio
import copy
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

# 翻译器关心的资源类型
KIND_APISIX_ROUTE = "ApisixRoute"
KIND_APISIX_TLS = "ApisixTls"
KIND_APISIX_PLUGIN_CONFIG = "ApisixPluginConfig"
KIND_INGRESS = "Ingress"
KIND_SECRET = "Secret"
KIND_SERVICE = "Service"

# 会产生网关对象的资源类型（即owner）
OWNER_KINDS = (
    KIND_APISIX_ROUTE,
    KIND_APISIX_TLS,
    KIND_APISIX_PLUGIN_CONFIG,
    KIND_INGRESS,
)


class ChangeType(str, Enum):
    """变更类型"""

    ADD = "Add"
    UPDATE = "Update"
    DELETE = "Delete"


@dataclass(frozen=True)
class ChangeEvent:
    """资源变更通知"""

    kind: str
    namespace: str
    name: str
    change_type: ChangeType


class ResourceCache(Protocol):
    """翻译器和控制器依赖的缓存能力"""

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        ...

    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        ...

    def has_synced(self) -> bool:
        ...

    async def wait_for_sync(self, timeout: float) -> bool:
        ...


class InMemoryResourceCache:
    """
    线程安全的内存资源缓存

    watch线程通过 upsert/delete 写入，事件循环中的翻译器并发读取。
    读取返回深拷贝，调用方修改返回值不会影响缓存内容。
    """

    def __init__(self, required_sources: Optional[List[str]] = None):
        """
        初始化资源缓存

        Args:
            required_sources: 需要完成首次同步的数据源（如 "Secret/default"），
                为None时无需同步即视为就绪
        """
        self.logger = logging.getLogger("gatesync.ResourceCache")

        # {(kind, namespace, name): object}
        self._objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._lock = threading.RLock()

        self._required_sources: Set[str] = set(required_sources or [])
        self._synced_sources: Set[str] = set()
        self._synced_event = threading.Event()
        if not self._required_sources:
            self._synced_event.set()

    @staticmethod
    def _key(kind: str, obj: Dict[str, Any]) -> Tuple[str, str, str]:
        metadata = obj.get("metadata") or {}
        return (kind, metadata.get("namespace") or "", metadata.get("name") or "")

    def upsert(self, kind: str, obj: Dict[str, Any]) -> ChangeType:
        """写入或更新对象，返回变更类型"""
        key = self._key(kind, obj)
        with self._lock:
            change_type = ChangeType.UPDATE if key in self._objects else ChangeType.ADD
            self._objects[key] = copy.deepcopy(obj)
        return change_type

    def delete(self, kind: str, namespace: str, name: str) -> bool:
        """删除对象，返回对象是否存在"""
        with self._lock:
            return self._objects.pop((kind, namespace or "", name), None) is not None

    def replace(
        self,
        kind: str,
        objects: List[Dict[str, Any]],
        namespace: Optional[str] = None,
    ) -> List[ChangeEvent]:
        """
        用全量list结果替换某一类型（可限定命名空间）的全部对象

        Returns:
            List[ChangeEvent]: 与旧内容相比产生的变更事件
        """
        events = []
        with self._lock:
            old_keys = {
                key
                for key in self._objects
                if key[0] == kind and (namespace is None or key[1] == namespace)
            }
            new_keys = set()
            for obj in objects:
                key = self._key(kind, obj)
                new_keys.add(key)
                if self._objects.get(key) != obj:
                    change_type = (
                        ChangeType.UPDATE if key in old_keys else ChangeType.ADD
                    )
                    events.append(ChangeEvent(kind, key[1], key[2], change_type))
                self._objects[key] = copy.deepcopy(obj)

            for key in old_keys - new_keys:
                del self._objects[key]
                events.append(ChangeEvent(kind, key[1], key[2], ChangeType.DELETE))

        return events

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            obj = self._objects.get((kind, namespace or "", name))
            return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(obj)
                for (obj_kind, obj_ns, _), obj in sorted(self._objects.items())
                if obj_kind == kind and (namespace is None or obj_ns == namespace)
            ]

    def mark_synced(self, source: str):
        """标记某一数据源已完成首次同步"""
        with self._lock:
            self._synced_sources.add(source)
            if self._required_sources <= self._synced_sources:
                if not self._synced_event.is_set():
                    self.logger.info("[资源缓存]所有数据源已完成首次同步")
                self._synced_event.set()

    def has_synced(self) -> bool:
        return self._synced_event.is_set()

    async def wait_for_sync(self, timeout: float) -> bool:
        """
        等待缓存完成首次同步

        Args:
            timeout: 最长等待时间（秒）

        Returns:
            bool: 是否在超时前完成同步
        """
        if self._synced_event.is_set():
            return True
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._synced_event.wait, timeout)

    def get_stats(self) -> Dict[str, Any]:
        """获取缓存统计信息"""
        with self._lock:
            counts: Dict[str, int] = {}
            for kind, _, _ in self._objects:
                counts[kind] = counts.get(kind, 0) + 1
            return {
                "synced": self._synced_event.is_set(),
                "synced_sources": sorted(self._synced_sources),
                "objects": counts,
            }
