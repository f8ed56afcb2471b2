# -*- coding: utf-8 -*-
"""
协调控制器
把资源变更通知转换为按owner合并的协调任务，由固定数量的worker执行
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

from gatesync.core.async_utils import async_timeout, monitor_performance
from gatesync.core.config import ControllerConfig
from gatesync.core.errors import FatalError, TranslationError
from gatesync.core.resource_cache import (
    KIND_SECRET,
    KIND_SERVICE,
    OWNER_KINDS,
    ChangeEvent,
    ResourceCache,
)
from gatesync.reconcile.differ import diff
from gatesync.reconcile.state_store import LocalStateStore
from gatesync.reconcile.status import KubeStatusWriter, OwnerStatus, StatusStore
from gatesync.reconcile.sync_engine import SyncEngine, SyncReport
from gatesync.reconcile.work_queue import WorkQueue
from gatesync.translation.models import OwnerRef
from gatesync.translation.translator import Translator


class Controller:
    """协调控制器"""

    def __init__(
        self,
        cache: ResourceCache,
        translator: Translator,
        store: LocalStateStore,
        engine: SyncEngine,
        status_store: Optional[StatusStore] = None,
        config: Optional[ControllerConfig] = None,
        status_writer: Optional[KubeStatusWriter] = None,
    ):
        """
        初始化控制器

        Args:
            cache: 资源缓存
            translator: 翻译器
            store: 本地状态存储
            engine: 同步引擎
            status_store: 同步状态存储
            config: 控制器配置
            status_writer: 自定义资源状态回写器，为None时不回写
        """
        self.cache = cache
        self.translator = translator
        self.store = store
        self.engine = engine
        self.status_store = status_store or StatusStore()
        self.config = config or ControllerConfig()
        self.status_writer = status_writer
        self.logger = logging.getLogger("gatesync.Controller")

        self.queue = WorkQueue()
        # "namespace/name" -> 引用它的owner.key
        self._secret_index: Dict[str, Set[str]] = {}
        self._service_index: Dict[str, Set[str]] = {}
        # owner.key -> (引用的Secret, 引用的Service)
        self._owner_refs: Dict[str, Dict[str, Set[str]]] = {}
        self._failures: Dict[str, int] = {}
        self._tasks: List[asyncio.Task] = []
        self._resync_task: Optional[asyncio.Task] = None
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    # ------------------------------------------------------------------
    # 事件处理
    # ------------------------------------------------------------------

    def handle_event(self, event: ChangeEvent):
        """
        处理资源变更通知（在事件循环线程中调用）

        owner资源直接入队；Secret/Service变更触发引用它们的owner。
        """
        if event.kind in OWNER_KINDS:
            self.enqueue(OwnerRef(kind=event.kind, namespace=event.namespace, name=event.name))
            return

        ref = f"{event.namespace}/{event.name}"
        if event.kind == KIND_SECRET:
            owner_keys = self._secret_index.get(ref, set())
        elif event.kind == KIND_SERVICE:
            owner_keys = self._service_index.get(ref, set())
        else:
            self.logger.debug("[控制器]忽略未知类型的变更 - 类型=%s", event.kind)
            return

        for key in sorted(owner_keys):
            self.queue.add(key)
        if owner_keys:
            self.logger.debug(
                "[控制器]%s %s 变更，触发 %d 个owner", event.kind, ref, len(owner_keys)
            )

    def enqueue(self, owner: OwnerRef):
        self.queue.add(owner.key)

    def resync(self) -> int:
        """把缓存中的全部owner和本地状态中已知的owner加入队列"""
        keys = set()
        for kind in OWNER_KINDS:
            for obj in self.cache.list(kind):
                metadata = obj.get("metadata") or {}
                keys.add(
                    OwnerRef(
                        kind=kind,
                        namespace=metadata.get("namespace") or "",
                        name=metadata.get("name") or "",
                    ).key
                )
        # 已从集群中删除但网关上仍有对象的owner
        keys.update(owner.key for owner in self.store.owners())

        for key in sorted(keys):
            self.queue.add(key)
        self.logger.info("[控制器]全量同步 - owner数量=%d", len(keys))
        return len(keys)

    # ------------------------------------------------------------------
    # 引用索引
    # ------------------------------------------------------------------

    def _update_refs(
        self, owner: OwnerRef, secret_refs: Iterable[str], service_refs: Iterable[str]
    ):
        self._drop_refs(owner)
        refs = {"secrets": set(secret_refs), "services": set(service_refs)}
        self._owner_refs[owner.key] = refs
        for ref in refs["secrets"]:
            self._secret_index.setdefault(ref, set()).add(owner.key)
        for ref in refs["services"]:
            self._service_index.setdefault(ref, set()).add(owner.key)

    def _drop_refs(self, owner: OwnerRef):
        refs = self._owner_refs.pop(owner.key, None)
        if refs is None:
            return
        for index, names in (
            (self._secret_index, refs["secrets"]),
            (self._service_index, refs["services"]),
        ):
            for ref in names:
                owners = index.get(ref)
                if owners is None:
                    continue
                owners.discard(owner.key)
                if not owners:
                    del index[ref]

    def owners_referencing_secret(self, namespace: str, name: str) -> Set[str]:
        return set(self._secret_index.get(f"{namespace}/{name}", set()))

    # ------------------------------------------------------------------
    # 协调
    # ------------------------------------------------------------------

    @monitor_performance("reconcile")
    async def reconcile(self, owner: OwnerRef) -> Optional[SyncReport]:
        """
        协调单个owner: 翻译 -> 差异计算 -> 应用 -> 更新状态

        Args:
            owner: 需要协调的owner

        Returns:
            Optional[SyncReport]: 翻译失败时返回None
        """
        log_prefix = f"[控制器][{owner.key}]"
        resource = self.cache.get(owner.kind, owner.namespace, owner.name)

        if resource is None:
            self.logger.info("%s资源已删除，清理网关对象", log_prefix)
            desired = []
            self._drop_refs(owner)
        else:
            resource.setdefault("kind", owner.kind)
            try:
                result = self.translator.translate(resource)
            except TranslationError as e:
                previous = self._owner_refs.get(owner.key, {})
                secret_refs = set(previous.get("secrets", set()))
                service_refs = set(previous.get("services", set()))
                # 依赖对象创建或修复后重新触发
                if e.secret_ref:
                    secret_refs.add(e.secret_ref)
                if e.service_ref:
                    service_refs.add(e.service_ref)
                self._update_refs(owner, secret_refs, service_refs)

                status = self.status_store.set_failed(owner, e.reason)
                await self._write_status(status)
                return None

            self._update_refs(owner, result.secret_refs, result.service_refs)
            desired = result.objects

        change_set = diff(desired, self.store.view([owner]), [owner])
        if change_set.is_empty:
            report = SyncReport()
        else:
            self.logger.info("%s开始应用变更 - %s", log_prefix, change_set.summary())
            report = await self.engine.apply(
                change_set, should_abort=lambda o: self.queue.is_dirty(o.key)
            )

        if report.aborted:
            self.status_store.set_pending(owner, "有更新的变更等待处理")
            return report

        if report.failed:
            status = self.status_store.set_failed(owner, report.first_error())
        elif resource is None:
            self.status_store.remove(owner)
            return report
        else:
            status = self.status_store.set_synced(owner, len(desired))

        await self._write_status(status)
        return report

    async def _write_status(self, status: OwnerStatus):
        """在线程池中回写状态；超时只记录日志，不影响协调结果"""
        if self.status_writer is None:
            return

        @async_timeout(self.config.status_write_timeout)
        async def write():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self.status_writer.write, status)

        try:
            await write()
        except TimeoutError as e:
            self.logger.warning("[控制器][%s]状态回写超时: %s", status.owner.key, str(e))

    def requeue_delay(self, key: str) -> float:
        """按连续失败次数计算重新入队的延迟"""
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        delay = self.config.requeue_base_delay * (2 ** (failures - 1))
        return min(delay, self.config.requeue_max_delay)

    async def process(self, key: str):
        """处理一个队列key，失败时退避重新入队"""
        owner = OwnerRef.parse(key)
        try:
            report = await self.reconcile(owner)
        except Exception as e:
            self.logger.error("[控制器][%s]协调异常: %s", key, str(e))
            self.status_store.set_failed(owner, f"{e.__class__.__name__}: {e}")
            self.queue.add_after(key, self.requeue_delay(key))
            return

        if report is not None and report.failed:
            delay = self.requeue_delay(key)
            self.logger.warning(
                "[控制器][%s]同步失败，%.1f 秒后重试 - 连续失败次数=%d",
                key,
                delay,
                self._failures[key],
            )
            self.queue.add_after(key, delay)
        else:
            self._failures.pop(key, None)

    async def _worker(self, index: int):
        self.logger.debug("[控制器]worker %d 已启动", index)
        while True:
            key = await self.queue.get()
            if key is None:
                break
            try:
                await self.process(key)
            finally:
                self.queue.done(key)
        self.logger.debug("[控制器]worker %d 已退出", index)

    async def _resync_loop(self):
        while not self.queue.is_shutdown:
            await asyncio.sleep(self.config.resync_period)
            self.resync()

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def start(self):
        """
        等待缓存就绪后启动worker

        Raises:
            FatalError: 缓存在超时时间内没有完成首次同步
        """
        self.logger.info(
            "[控制器]等待资源缓存同步 - 超时=%.0f秒", self.config.cache_sync_timeout
        )
        if not await self.cache.wait_for_sync(self.config.cache_sync_timeout):
            raise FatalError(
                f"资源缓存在 {self.config.cache_sync_timeout} 秒内没有完成同步"
            )

        self._ready = True
        self.resync()
        self._tasks = [
            asyncio.create_task(self._worker(index))
            for index in range(self.config.workers)
        ]
        if self.config.resync_period > 0:
            self._resync_task = asyncio.create_task(self._resync_loop())
        self.logger.info("[控制器]已启动 - worker数量=%d", self.config.workers)

    async def stop(self):
        self._ready = False
        self.queue.shutdown()
        if self._resync_task is not None:
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
            self._resync_task = None
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.logger.info("[控制器]已停止")

    def get_stats(self):
        return {
            "ready": self._ready,
            "queue": self.queue.get_stats(),
            "failing_owners": len(self._failures),
            "secret_refs": len(self._secret_index),
            "service_refs": len(self._service_index),
        }
