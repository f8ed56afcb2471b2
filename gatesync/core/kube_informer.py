# -*- coding: utf-8 -*-
"""
K8s资源监听模块
通过 list + watch 维护资源缓存，并把变更通知投递到事件循环
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from kubernetes import watch
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient

from gatesync.core.resource_cache import (
    ChangeEvent,
    ChangeType,
    InMemoryResourceCache,
    KIND_APISIX_PLUGIN_CONFIG,
    KIND_APISIX_ROUTE,
    KIND_APISIX_TLS,
    KIND_INGRESS,
    KIND_SECRET,
    KIND_SERVICE,
)


@dataclass(frozen=True)
class WatchedResource:
    """被监听的资源类型"""

    kind: str
    api_version: str


WATCHED_RESOURCES = (
    WatchedResource(KIND_APISIX_ROUTE, "apisix.apache.org/v2"),
    WatchedResource(KIND_APISIX_TLS, "apisix.apache.org/v2"),
    WatchedResource(KIND_APISIX_PLUGIN_CONFIG, "apisix.apache.org/v2"),
    WatchedResource(KIND_INGRESS, "networking.k8s.io/v1"),
    WatchedResource(KIND_SECRET, "v1"),
    WatchedResource(KIND_SERVICE, "v1"),
)

_WATCH_EVENT_TYPES = {
    "ADDED": ChangeType.ADD,
    "MODIFIED": ChangeType.UPDATE,
    "DELETED": ChangeType.DELETE,
}


def source_name(kind: str, namespace: Optional[str]) -> str:
    """缓存同步屏障使用的数据源名称"""
    return f"{kind}/{namespace or '*'}"


class KubeInformer:
    """资源监听器，每个(资源类型, 命名空间)一个watch线程"""

    def __init__(
        self,
        dynamic_client: DynamicClient,
        namespaces: Optional[List[str]] = None,
        resources=WATCHED_RESOURCES,
        watch_timeout: int = 300,
    ):
        """
        初始化资源监听器

        Args:
            dynamic_client: Kubernetes动态客户端
            namespaces: 监听的命名空间，为空表示所有命名空间
            resources: 监听的资源类型
            watch_timeout: 单次watch请求的服务端超时（秒）
        """
        self.dynamic_client = dynamic_client
        self.namespaces: List[Optional[str]] = list(namespaces or []) or [None]
        self.resources = list(resources)
        self.watch_timeout = watch_timeout
        self.logger = logging.getLogger("gatesync.KubeInformer")

        self.cache = InMemoryResourceCache(
            required_sources=[
                source_name(res.kind, ns)
                for res in self.resources
                for ns in self.namespaces
            ]
        )

        self._stop = threading.Event()
        self._watchers: List[watch.Watch] = []
        self._executor = ThreadPoolExecutor(
            max_workers=len(self.resources) * len(self.namespaces),
            thread_name_prefix="informer",
        )
        self._futures = []

    def start(
        self, loop: asyncio.AbstractEventLoop, handler: Callable[[ChangeEvent], None]
    ):
        """
        启动所有watch线程

        Args:
            loop: 接收通知的事件循环
            handler: 变更通知回调，在事件循环线程中执行
        """

        def emit(event: ChangeEvent):
            loop.call_soon_threadsafe(handler, event)

        for res in self.resources:
            for namespace in self.namespaces:
                self._futures.append(
                    self._executor.submit(self._run, res, namespace, emit)
                )
        self.logger.info(
            "[资源监听]已启动 %d 个watch - 命名空间=%s",
            len(self._futures),
            ",".join(ns or "*" for ns in self.namespaces),
        )

    def stop(self):
        """停止所有watch线程"""
        self._stop.set()
        for watcher in list(self._watchers):
            watcher.stop()
        self._executor.shutdown(wait=False)
        self.logger.info("[资源监听]已停止")

    def list_once(self):
        """只做一次全量list填充缓存，不启动watch（用于dry-run）"""
        for res in self.resources:
            api = self.dynamic_client.resources.get(
                api_version=res.api_version, kind=res.kind
            )
            for namespace in self.namespaces:
                self._list(api, res.kind, namespace, lambda event: None)
                self.cache.mark_synced(source_name(res.kind, namespace))

    def _run(self, res: WatchedResource, namespace: Optional[str], emit):
        """list + watch 循环，出错后重新list"""
        api = self.dynamic_client.resources.get(
            api_version=res.api_version, kind=res.kind
        )
        source = source_name(res.kind, namespace)

        while not self._stop.is_set():
            try:
                resource_version = self._list(api, res.kind, namespace, emit)
                self.cache.mark_synced(source)
                self._watch(api, res.kind, namespace, resource_version, emit)
            except ApiException as e:
                if e.status == 410:
                    self.logger.info("[资源监听][%s]资源版本过期，重新list", source)
                    continue
                self.logger.error(
                    "[资源监听][%s]Kubernetes API错误 (状态码: %s): %s",
                    source,
                    e.status,
                    e.reason,
                )
                self._stop.wait(5)
            except Exception as e:
                self.logger.error("[资源监听][%s]watch异常: %s", source, str(e))
                self._stop.wait(5)

    def _list(self, api, kind: str, namespace: Optional[str], emit) -> str:
        listing = api.get(namespace=namespace).to_dict()
        items = [self._with_kind(kind, item) for item in listing.get("items") or []]
        for event in self.cache.replace(kind, items, namespace=namespace):
            emit(event)
        self.logger.debug(
            "[资源监听][%s]list完成 - 对象数量=%d",
            source_name(kind, namespace),
            len(items),
        )
        return (listing.get("metadata") or {}).get("resourceVersion", "")

    def _watch(
        self, api, kind: str, namespace: Optional[str], resource_version: str, emit
    ):
        watcher = watch.Watch()
        self._watchers.append(watcher)
        try:
            for event in api.watch(
                namespace=namespace,
                resource_version=resource_version,
                timeout=self.watch_timeout,
                watcher=watcher,
            ):
                if self._stop.is_set():
                    return
                event_type = event.get("type")
                raw = event.get("raw_object") or {}
                if event_type == "ERROR":
                    raise ApiException(
                        status=raw.get("code", 500), reason=raw.get("message")
                    )
                change_type = _WATCH_EVENT_TYPES.get(event_type)
                if change_type is None:
                    continue
                self._apply(kind, raw, change_type, emit)
        finally:
            self._watchers.remove(watcher)

    def _apply(
        self, kind: str, raw: Dict[str, Any], change_type: ChangeType, emit
    ):
        obj = self._with_kind(kind, raw)
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace") or ""
        name = metadata.get("name") or ""

        if change_type == ChangeType.DELETE:
            self.cache.delete(kind, namespace, name)
        else:
            change_type = self.cache.upsert(kind, obj)
        emit(ChangeEvent(kind, namespace, name, change_type))

    @staticmethod
    def _with_kind(kind: str, obj: Dict[str, Any]) -> Dict[str, Any]:
        # list结果中的条目不带kind字段
        obj = dict(obj)
        obj.setdefault("kind", kind)
        return obj
