# -*- coding: utf-8 -*-
"""
Dry-run模式
对集群做一次全量list，翻译所有owner并与网关现有对象比较，输出变更集后退出，
不向网关写入任何内容
"""

import sys
from typing import Any, Dict, List, Optional, TextIO

import yaml

from gatesync.core.config import Settings
from gatesync.core.errors import SyncError, TranslationError
from gatesync.core.kube_informer import KubeInformer
from gatesync.core.resource_cache import OWNER_KINDS, ResourceCache
from gatesync.reconcile.admin_client import GatewayAdminClient
from gatesync.reconcile.differ import ChangeSet, diff
from gatesync.reconcile.state_store import LocalStateStore
from gatesync.translation.models import OwnerRef
from gatesync.translation.translator import Translator
from .base_mode import BaseMode


def change_set_to_dict(change_set: ChangeSet) -> Dict[str, Any]:
    """把变更集转换为便于阅读的字典"""
    return {
        "creates": [
            {"kind": obj.kind.value, "id": obj.id, "name": obj.name}
            for obj in change_set.creates
        ],
        "updates": [
            {"kind": obj.kind.value, "id": object_id, "name": obj.name}
            for object_id, obj in change_set.updates
        ],
        "deletes": [
            {"kind": key.kind.value, "id": key.id} for key in change_set.deletes
        ],
    }


class DryRunMode(BaseMode):
    """Dry-run模式实现"""

    def __init__(
        self,
        settings: Settings,
        cache: Optional[ResourceCache] = None,
        admin_client: Optional[GatewayAdminClient] = None,
        output: TextIO = sys.stdout,
    ):
        super().__init__(settings)
        self.cache = cache
        self.admin_client = admin_client
        self.output = output
        self.store = LocalStateStore()

    def _load_cache(self):
        self._init_k8s_client()
        informer = KubeInformer(
            self.dynamic_client, namespaces=self.settings.k8s.watch_namespaces
        )
        informer.list_once()
        self.cache = informer.cache

    def _owners(self) -> List[OwnerRef]:
        owners = {owner.key: owner for owner in self.store.owners()}
        for kind in OWNER_KINDS:
            for obj in self.cache.list(kind):
                metadata = obj.get("metadata") or {}
                owner = OwnerRef(
                    kind=kind,
                    namespace=metadata.get("namespace") or "",
                    name=metadata.get("name") or "",
                )
                owners[owner.key] = owner
        return [owners[key] for key in sorted(owners)]

    async def run(self) -> Dict[str, Any]:
        """
        计算所有owner的变更集

        Returns:
            Dict[str, Any]: {"gateway_reachable", "owners": {owner.key: 结果}}
        """
        if self.cache is None:
            self._load_cache()
        if self.admin_client is None:
            self.admin_client = GatewayAdminClient(self.settings.admin)

        reachable = True
        try:
            await self.store.rebuild(self.admin_client)
        except SyncError as e:
            reachable = False
            self.logger.warning("无法读取网关现有对象，按空状态比较: %s", e.message)

        translator = Translator(self.cache, self.settings.k8s.ingress_class)
        results: Dict[str, Any] = {}
        for owner in self._owners():
            resource = self.cache.get(owner.kind, owner.namespace, owner.name)
            desired = []
            if resource is not None:
                resource.setdefault("kind", owner.kind)
                try:
                    desired = translator.translate(resource).objects
                except TranslationError as e:
                    results[owner.key] = {"error": e.reason}
                    continue

            change_set = diff(desired, self.store.view([owner]), [owner])
            if not change_set.is_empty:
                results[owner.key] = change_set_to_dict(change_set)

        return {"gateway_reachable": reachable, "owners": results}

    async def start(self, host: str = "0.0.0.0", port: int = 8000):
        """执行一次dry-run并输出结果"""
        self.logger.info("正在执行dry-run...")
        self.settings.validate()
        try:
            report = await self.run()
        finally:
            await self.stop()

        yaml.safe_dump(
            report, self.output, allow_unicode=True, sort_keys=False, default_flow_style=False
        )
        self.logger.info("dry-run完成 - 有变更的owner数量=%d", len(report["owners"]))

    async def stop(self):
        if self.admin_client:
            await self.admin_client.close()
        if self.k8s_client:
            self.k8s_client.close()
