# -*- coding: utf-8 -*-
"""
本地状态存储
记录已确认写入网关的对象及其归属，作为差异计算的"当前状态"
"""

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from gatesync.translation.models import (
    APPLY_ORDER,
    GatewayObject,
    ObjectKind,
    OwnerRef,
    owner_from_labels,
)


@dataclass
class StoredObject:
    """已同步到网关的对象记录"""

    kind: ObjectKind
    id: str
    owner: OwnerRef
    content_hash: str
    version: Optional[str] = None
    # 从网关重建的记录没有本地对象
    object: Optional[GatewayObject] = None


class LocalStateStore:
    """
    本地状态存储

    同一个owner的协调由队列保证串行，不同owner的对象ID互不相交，
    锁只用于保护索引在状态API等其他线程读取时的一致性。
    """

    def __init__(self):
        self.logger = logging.getLogger("gatesync.LocalStateStore")
        self._entries: Dict[str, StoredObject] = {}
        # owner.key -> 对象ID集合
        self._owner_index: Dict[str, Set[str]] = {}
        self._owners: Dict[str, OwnerRef] = {}
        self._lock = threading.RLock()

    def put(self, entry: StoredObject):
        """写入或覆盖一条记录"""
        with self._lock:
            previous = self._entries.get(entry.id)
            if previous is not None and previous.owner != entry.owner:
                self._unindex(previous)
            self._entries[entry.id] = copy.deepcopy(entry)
            self._owner_index.setdefault(entry.owner.key, set()).add(entry.id)
            self._owners[entry.owner.key] = entry.owner

    def remove(self, object_id: str) -> Optional[StoredObject]:
        """删除一条记录，返回被删除的记录"""
        with self._lock:
            entry = self._entries.pop(object_id, None)
            if entry is not None:
                self._unindex(entry)
            return entry

    def _unindex(self, entry: StoredObject):
        ids = self._owner_index.get(entry.owner.key)
        if ids is None:
            return
        ids.discard(entry.id)
        if not ids:
            del self._owner_index[entry.owner.key]
            self._owners.pop(entry.owner.key, None)

    def get(self, object_id: str) -> Optional[StoredObject]:
        with self._lock:
            entry = self._entries.get(object_id)
            return copy.deepcopy(entry) if entry is not None else None

    def view(self, owners: Iterable[OwnerRef]) -> Dict[str, StoredObject]:
        """
        获取指定owner的记录快照

        Args:
            owners: 需要的owner集合

        Returns:
            Dict[str, StoredObject]: 对象ID -> 记录（深拷贝）
        """
        with self._lock:
            result = {}
            for owner in owners:
                for object_id in self._owner_index.get(owner.key, ()):
                    result[object_id] = copy.deepcopy(self._entries[object_id])
            return result

    def owners(self) -> List[OwnerRef]:
        """当前持有对象的所有owner"""
        with self._lock:
            return [self._owners[key] for key in sorted(self._owners)]

    def ids_for_owner(self, owner: OwnerRef) -> Set[str]:
        with self._lock:
            return set(self._owner_index.get(owner.key, ()))

    def snapshot(self) -> Dict[str, StoredObject]:
        """全部记录的快照"""
        with self._lock:
            return copy.deepcopy(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self):
        with self._lock:
            counts: Dict[str, int] = {}
            for entry in self._entries.values():
                counts[entry.kind.value] = counts.get(entry.kind.value, 0) + 1
            return {
                "objects": len(self._entries),
                "owners": len(self._owners),
                "by_kind": counts,
            }

    async def rebuild(self, admin_client) -> int:
        """
        从网关重建存储

        只记录带有本控制器标签的对象。内容指纹记为空字符串，
        使下一次协调对仍然需要的对象执行一次更新，对不再需要的对象执行删除。

        Args:
            admin_client: 网关Admin API客户端

        Returns:
            int: 恢复的记录数量
        """
        restored = 0
        for kind in APPLY_ORDER:
            for item in await admin_client.list(kind):
                value = item.get("value") or {}
                owner = owner_from_labels(value.get("labels"))
                object_id = value.get("id") or item.get("id")
                if owner is None or not object_id:
                    continue
                self.put(
                    StoredObject(
                        kind=kind,
                        id=str(object_id),
                        owner=owner,
                        content_hash="",
                        version=item.get("version"),
                    )
                )
                restored += 1

        self.logger.info(
            "[状态存储]已从网关重建 - 对象数量=%d, owner数量=%d",
            restored,
            len(self.owners()),
        )
        return restored
