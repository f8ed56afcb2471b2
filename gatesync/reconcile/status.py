# -*- coding: utf-8 -*-
"""
同步状态
记录每个owner最近一次协调的结果，可选回写到自定义资源的 status 子资源
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel

from gatesync.core.resource_cache import (
    KIND_APISIX_PLUGIN_CONFIG,
    KIND_APISIX_ROUTE,
    KIND_APISIX_TLS,
)
from gatesync.translation.models import OwnerRef


class SyncPhase(str, Enum):
    """同步阶段"""

    PENDING = "Pending"
    SYNCED = "Synced"
    SYNC_FAILED = "SyncFailed"


class OwnerStatus(BaseModel):
    """单个owner的同步状态"""

    owner: OwnerRef
    phase: SyncPhase
    reason: Optional[str] = None
    object_count: int = 0
    last_transition: datetime
    last_synced: Optional[datetime] = None


class StatusStore:
    """线程安全的状态存储，状态API在其他线程中读取"""

    def __init__(self):
        self._statuses: Dict[str, OwnerStatus] = {}
        self._lock = threading.RLock()

    def _set(
        self,
        owner: OwnerRef,
        phase: SyncPhase,
        reason: Optional[str] = None,
        object_count: Optional[int] = None,
    ) -> OwnerStatus:
        now = datetime.now(timezone.utc)
        with self._lock:
            previous = self._statuses.get(owner.key)
            status = OwnerStatus(
                owner=owner,
                phase=phase,
                reason=reason,
                object_count=(
                    object_count
                    if object_count is not None
                    else (previous.object_count if previous else 0)
                ),
                last_transition=(
                    previous.last_transition
                    if previous is not None and previous.phase == phase
                    else now
                ),
                last_synced=(
                    now
                    if phase == SyncPhase.SYNCED
                    else (previous.last_synced if previous else None)
                ),
            )
            self._statuses[owner.key] = status
            return status.model_copy()

    def set_pending(self, owner: OwnerRef, reason: Optional[str] = None) -> OwnerStatus:
        return self._set(owner, SyncPhase.PENDING, reason)

    def set_synced(self, owner: OwnerRef, object_count: int) -> OwnerStatus:
        return self._set(owner, SyncPhase.SYNCED, None, object_count)

    def set_failed(self, owner: OwnerRef, reason: str) -> OwnerStatus:
        return self._set(owner, SyncPhase.SYNC_FAILED, reason)

    def get(self, owner: OwnerRef) -> Optional[OwnerStatus]:
        with self._lock:
            status = self._statuses.get(owner.key)
            return status.model_copy() if status is not None else None

    def remove(self, owner: OwnerRef):
        with self._lock:
            self._statuses.pop(owner.key, None)

    def list(self, kind: Optional[str] = None) -> List[OwnerStatus]:
        with self._lock:
            return [
                self._statuses[key].model_copy()
                for key in sorted(self._statuses)
                if kind is None or self._statuses[key].owner.kind == kind
            ]

    def summary(self) -> Dict[str, int]:
        """各阶段的owner数量"""
        with self._lock:
            counts = {phase.value: 0 for phase in SyncPhase}
            for status in self._statuses.values():
                counts[status.phase.value] += 1
            return counts


# 支持 status 子资源的自定义资源
_CRD_PLURALS = {
    KIND_APISIX_ROUTE: "apisixroutes",
    KIND_APISIX_TLS: "apisixtlses",
    KIND_APISIX_PLUGIN_CONFIG: "apisixpluginconfigs",
}


class KubeStatusWriter:
    """把同步结果写回自定义资源的 status.conditions"""

    CONDITION_TYPE = "ResourcesAvailable"

    def __init__(
        self,
        api_client: client.ApiClient,
        group: str = "apisix.apache.org",
        version: str = "v2",
    ):
        self.custom_api = client.CustomObjectsApi(api_client)
        self.group = group
        self.version = version
        self.logger = logging.getLogger("gatesync.KubeStatusWriter")

    @staticmethod
    def supports(owner: OwnerRef) -> bool:
        return owner.kind in _CRD_PLURALS

    @classmethod
    def build_body(cls, status: OwnerStatus) -> Dict:
        synced = status.phase == SyncPhase.SYNCED
        return {
            "status": {
                "conditions": [
                    {
                        "type": cls.CONDITION_TYPE,
                        "status": "True" if synced else "False",
                        "reason": "ResourcesSynced" if synced else "ResourceSyncAborted",
                        "message": status.reason or "Sync Successfully",
                        "lastTransitionTime": status.last_transition.strftime(
                            "%Y-%m-%dT%H:%M:%SZ"
                        ),
                    }
                ]
            }
        }

    def write(self, status: OwnerStatus) -> bool:
        """
        回写状态（阻塞调用，应在线程池中执行）

        Returns:
            bool: 是否写入成功；资源已删除或写入失败时返回False
        """
        owner = status.owner
        if not self.supports(owner) or status.phase == SyncPhase.PENDING:
            return False

        try:
            self.custom_api.patch_namespaced_custom_object_status(
                group=self.group,
                version=self.version,
                namespace=owner.namespace,
                plural=_CRD_PLURALS[owner.kind],
                name=owner.name,
                body=self.build_body(status),
            )
        except ApiException as e:
            if e.status == 404:
                self.logger.debug("[状态回写][%s]资源已不存在", owner.key)
            else:
                self.logger.warning(
                    "[状态回写][%s]写入失败 (状态码: %s): %s", owner.key, e.status, e.reason
                )
            return False

        self.logger.debug("[状态回写][%s]已写入 - 阶段=%s", owner.key, status.phase.value)
        return True
