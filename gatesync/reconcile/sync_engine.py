# -*- coding: utf-8 -*-
"""
同步引擎
把变更集按依赖顺序应用到网关，成功后立即更新本地状态
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from gatesync.core.async_utils import async_retry
from gatesync.core.config import ControllerConfig
from gatesync.core.errors import GateSyncError, SyncError
from gatesync.reconcile.admin_client import GatewayAdminClient
from gatesync.reconcile.differ import ChangeSet
from gatesync.reconcile.state_store import LocalStateStore, StoredObject
from gatesync.translation.models import APPLY_ORDER, GatewayObject, ObjectKind, OwnerRef

_APPLY_RANK = {kind: index for index, kind in enumerate(APPLY_ORDER)}


class ItemState(str, Enum):
    """变更项状态"""

    PENDING = "Pending"
    APPLYING = "Applying"
    APPLIED = "Applied"
    FAILED = "Failed"


_TRANSITIONS = {
    ItemState.PENDING: {ItemState.APPLYING},
    ItemState.APPLYING: {ItemState.APPLIED, ItemState.FAILED},
    ItemState.APPLIED: set(),
    ItemState.FAILED: set(),
}


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class SyncItem:
    """单个网关对象的变更"""

    operation: Operation
    kind: ObjectKind
    id: str
    owner: OwnerRef
    obj: Optional[GatewayObject] = None
    state: ItemState = ItemState.PENDING
    attempts: int = 0
    error: Optional[str] = None

    def transition(self, state: ItemState):
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"变更项 {self.id} 不能从 {self.state.value} 变为 {state.value}")
        self.state = state


@dataclass
class SyncReport:
    """一次应用的结果"""

    items: List[SyncItem] = field(default_factory=list)
    aborted: bool = False

    def _with_state(self, state: ItemState) -> List[SyncItem]:
        return [item for item in self.items if item.state == state]

    @property
    def applied(self) -> List[SyncItem]:
        return self._with_state(ItemState.APPLIED)

    @property
    def failed(self) -> List[SyncItem]:
        return self._with_state(ItemState.FAILED)

    @property
    def pending(self) -> List[SyncItem]:
        return self._with_state(ItemState.PENDING)

    @property
    def succeeded(self) -> bool:
        return not self.aborted and all(
            item.state == ItemState.APPLIED for item in self.items
        )

    def for_owner(self, owner: OwnerRef) -> "SyncReport":
        return SyncReport(
            items=[item for item in self.items if item.owner == owner],
            aborted=self.aborted,
        )

    def first_error(self) -> Optional[str]:
        for item in self.failed:
            return f"{item.operation.value} {item.kind.value}/{item.id}: {item.error}"
        return None

    def summary(self) -> Dict[str, int]:
        return {
            "applied": len(self.applied),
            "failed": len(self.failed),
            "pending": len(self.pending),
        }


def build_items(change_set: ChangeSet) -> List[SyncItem]:
    """按变更集的顺序展开为变更项: 先创建/更新，后删除"""
    items = [
        SyncItem(Operation.CREATE, obj.kind, obj.id, obj.owner, obj)
        for obj in change_set.creates
    ]
    items += [
        SyncItem(Operation.UPDATE, obj.kind, object_id, obj.owner, obj)
        for object_id, obj in change_set.updates
    ]
    # 合并后重新按类型依赖顺序排列创建和更新
    items.sort(key=lambda item: (_APPLY_RANK[item.kind], item.id))
    items += [
        SyncItem(Operation.DELETE, key.kind, key.id, key.owner)
        for key in change_set.deletes
    ]
    return items


class SyncEngine:
    """同步引擎"""

    def __init__(
        self,
        admin_client: GatewayAdminClient,
        store: LocalStateStore,
        config: Optional[ControllerConfig] = None,
    ):
        """
        初始化同步引擎

        Args:
            admin_client: 网关Admin API客户端
            store: 本地状态存储
            config: 重试参数
        """
        self.admin_client = admin_client
        self.store = store
        self.config = config or ControllerConfig()
        self.logger = logging.getLogger("gatesync.SyncEngine")

        self._apply_with_retry = async_retry(
            max_retries=self.config.max_retries,
            delay=self.config.retry_delay,
            backoff=self.config.retry_backoff,
            retry_on=(SyncError,),
            logger=self.logger,
        )(self._apply_item)

    async def apply(
        self,
        change_set: ChangeSet,
        should_abort: Optional[Callable[[OwnerRef], bool]] = None,
    ) -> SyncReport:
        """
        应用变更集

        不同owner的变更并发执行，同一owner内按依赖顺序串行执行。

        Args:
            change_set: 变更集
            should_abort: 每个变更项执行前调用，返回True时停止该owner剩余的变更

        Returns:
            SyncReport: 每个变更项的最终状态
        """
        report = SyncReport(items=build_items(change_set))
        by_owner: Dict[OwnerRef, List[SyncItem]] = {}
        for item in report.items:
            by_owner.setdefault(item.owner, []).append(item)

        results = await asyncio.gather(
            *(
                self._apply_owner(owner, items, should_abort)
                for owner, items in sorted(by_owner.items(), key=lambda kv: kv[0].key)
            )
        )
        report.aborted = any(results)

        self.logger.info(
            "[同步引擎]应用完成 - 成功=%d, 失败=%d, 未执行=%d, 中止=%s",
            len(report.applied),
            len(report.failed),
            len(report.pending),
            report.aborted,
        )
        return report

    async def _apply_owner(
        self,
        owner: OwnerRef,
        items: List[SyncItem],
        should_abort: Optional[Callable[[OwnerRef], bool]],
    ) -> bool:
        """执行单个owner的变更，返回是否被中止"""
        upsert_failed = False
        for item in items:
            if should_abort is not None and should_abort(owner):
                self.logger.info("[同步引擎][%s]有更新的变更等待处理，中止本次应用", owner.key)
                return True

            if item.operation == Operation.DELETE and upsert_failed:
                # 创建/更新失败时保留旧对象
                self.logger.warning(
                    "[同步引擎][%s]存在失败的创建/更新，跳过删除 - 对象=%s/%s",
                    owner.key,
                    item.kind.value,
                    item.id,
                )
                continue

            item.transition(ItemState.APPLYING)
            try:
                await self._apply_with_retry(item)
            except GateSyncError as e:
                item.error = e.reason
                item.transition(ItemState.FAILED)
                if item.operation != Operation.DELETE:
                    upsert_failed = True
                self.logger.error(
                    "[同步引擎][%s]%s失败 - 对象=%s/%s, 尝试次数=%d, 原因=%s",
                    owner.key,
                    item.operation.value,
                    item.kind.value,
                    item.id,
                    item.attempts,
                    e.reason,
                )
                continue

            item.transition(ItemState.APPLIED)
        return False

    async def _apply_item(self, item: SyncItem):
        item.attempts += 1

        if item.operation == Operation.DELETE:
            await self.admin_client.delete(item.kind, item.id)
            self.store.remove(item.id)
            self.logger.debug("[同步引擎][%s]已删除 - 对象=%s/%s", item.owner.key, item.kind.value, item.id)
            return

        version = await self.admin_client.put(item.kind, item.id, item.obj.to_payload())
        self.store.put(
            StoredObject(
                kind=item.kind,
                id=item.id,
                owner=item.owner,
                content_hash=item.obj.content_hash,
                version=version,
                object=item.obj.clone(),
            )
        )
        self.logger.debug(
            "[同步引擎][%s]已%s - 对象=%s/%s, 版本=%s",
            item.owner.key,
            "创建" if item.operation == Operation.CREATE else "更新",
            item.kind.value,
            item.id,
            version,
        )
