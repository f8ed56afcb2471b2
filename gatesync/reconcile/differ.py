# -*- coding: utf-8 -*-
"""
差异计算
比较期望对象集合与本地状态，得出需要创建、更新和删除的对象
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from gatesync.reconcile.state_store import StoredObject
from gatesync.translation.models import (
    APPLY_ORDER,
    DELETE_ORDER,
    GatewayObject,
    ObjectKind,
    OwnerRef,
)

_APPLY_RANK = {kind: index for index, kind in enumerate(APPLY_ORDER)}
_DELETE_RANK = {kind: index for index, kind in enumerate(DELETE_ORDER)}


@dataclass(frozen=True)
class ObjectKey:
    """待删除对象的标识"""

    kind: ObjectKind
    id: str
    owner: OwnerRef


@dataclass
class ChangeSet:
    """一次协调需要执行的变更"""

    creates: List[GatewayObject] = field(default_factory=list)
    updates: List[Tuple[str, GatewayObject]] = field(default_factory=list)
    deletes: List[ObjectKey] = field(default_factory=list)
    owners: Set[OwnerRef] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    def summary(self) -> Dict[str, int]:
        return {
            "creates": len(self.creates),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
        }


def diff(
    desired: Iterable[GatewayObject],
    current_view: Dict[str, StoredObject],
    owners: Iterable[OwnerRef],
) -> ChangeSet:
    """
    计算变更集

    Args:
        desired: 期望存在的对象
        current_view: 本地状态中这些owner的记录（对象ID -> 记录）
        owners: 本次协调的owner，只会删除归属于它们的对象

    Returns:
        ChangeSet: 按对象类型依赖顺序、再按ID排序的变更集

    Raises:
        ValueError: 期望对象的owner不在本次协调范围内，或同一ID对应不同内容
    """
    owners = set(owners)
    change_set = ChangeSet(owners=owners)

    desired_by_id: Dict[str, GatewayObject] = {}
    for obj in desired:
        if obj.owner not in owners:
            raise ValueError(f"对象 {obj.id} 的owner {obj.owner.key} 不在本次协调范围内")
        existing = desired_by_id.get(obj.id)
        if existing is not None and existing.content_hash != obj.content_hash:
            raise ValueError(f"对象ID {obj.id} 对应了不同的内容")
        desired_by_id[obj.id] = obj

    for object_id, obj in desired_by_id.items():
        stored = current_view.get(object_id)
        if stored is None:
            change_set.creates.append(obj)
        elif stored.content_hash != obj.content_hash:
            change_set.updates.append((object_id, obj))

    for object_id, stored in current_view.items():
        if stored.owner in owners and object_id not in desired_by_id:
            change_set.deletes.append(ObjectKey(stored.kind, object_id, stored.owner))

    change_set.creates.sort(key=lambda obj: (_APPLY_RANK[obj.kind], obj.id))
    change_set.updates.sort(key=lambda item: (_APPLY_RANK[item[1].kind], item[0]))
    change_set.deletes.sort(key=lambda key: (_DELETE_RANK[key.kind], key.id))
    return change_set
