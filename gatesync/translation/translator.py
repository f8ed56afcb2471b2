# -*- coding: utf-8 -*-
"""
翻译器
按资源类型把集群资源翻译为网关对象集合
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from gatesync.core.errors import TranslationError
from gatesync.core.resource_cache import (
    KIND_APISIX_PLUGIN_CONFIG,
    KIND_APISIX_ROUTE,
    KIND_APISIX_TLS,
    KIND_INGRESS,
    ResourceCache,
)
from gatesync.translation import tls
from gatesync.translation.ingress import translate_ingress
from gatesync.translation.models import (
    Certificate,
    OwnerRef,
    PluginConfig,
    TranslationResult,
)
from gatesync.translation.route import (
    plugin_config_id,
    translate_apisix_route,
    translate_plugins,
)


class Translator:
    """
    资源翻译器

    除读取缓存外没有副作用；输出对象都是独立副本，不与缓存数据共享引用。
    """

    def __init__(self, cache: ResourceCache, ingress_class: Optional[str] = None):
        """
        初始化翻译器

        Args:
            cache: 资源缓存
            ingress_class: 处理的Ingress类，为None时处理全部Ingress
        """
        self.cache = cache
        self.ingress_class = ingress_class
        self.logger = logging.getLogger("gatesync.Translator")
        self._handlers: Dict[str, Callable[[Dict[str, Any]], TranslationResult]] = {
            KIND_APISIX_ROUTE: self._translate_apisix_route,
            KIND_INGRESS: self._translate_ingress,
            KIND_APISIX_TLS: self._translate_apisix_tls,
            KIND_APISIX_PLUGIN_CONFIG: self._translate_apisix_plugin_config,
        }

    @property
    def supported_kinds(self) -> List[str]:
        return list(self._handlers)

    def translate(self, resource: Dict[str, Any]) -> TranslationResult:
        """
        翻译单个资源

        Args:
            resource: 带 kind 字段的资源对象

        Returns:
            TranslationResult: 网关对象及引用的Secret/Service

        Raises:
            TranslationError: 资源无法翻译
        """
        kind = resource.get("kind")
        handler = self._handlers.get(kind)
        if handler is None:
            raise TranslationError(f"不支持的资源类型: {kind!r}")

        metadata = resource.get("metadata") or {}
        log_prefix = f"[翻译器][{kind}/{metadata.get('namespace')}/{metadata.get('name')}]"
        try:
            result = handler(resource)
        except TranslationError as e:
            self.logger.warning("%s翻译失败: %s", log_prefix, e.reason)
            raise

        result.objects = [obj.clone() for obj in result.objects]
        result.secret_refs = tls.dedup(result.secret_refs)
        result.service_refs = tls.dedup(result.service_refs)
        self.logger.debug("%s翻译完成 - 对象数=%d", log_prefix, len(result.objects))
        return result

    def translate_ingress_tls(
        self,
        namespace: str,
        owner_name: str,
        secret_name: str,
        hosts: List[str],
    ) -> Certificate:
        """把Ingress的TLS绑定翻译为证书对象"""
        return tls.translate_ingress_tls(
            self.cache, namespace, owner_name, secret_name, hosts
        )

    def _translate_apisix_route(self, resource: Dict[str, Any]) -> TranslationResult:
        return translate_apisix_route(self.cache, resource)

    def _translate_ingress(self, resource: Dict[str, Any]) -> TranslationResult:
        return translate_ingress(self.cache, resource, self.ingress_class)

    def _translate_apisix_tls(self, resource: Dict[str, Any]) -> TranslationResult:
        metadata = resource.get("metadata") or {}
        namespace = metadata.get("namespace") or "default"
        name = metadata.get("name") or ""
        spec = resource.get("spec") or {}

        secret = spec.get("secret") or {}
        if not secret.get("name"):
            raise TranslationError(f"ApisixTls {namespace}/{name} 缺少 spec.secret.name")
        secret_namespace = secret.get("namespace") or namespace

        certificate = tls.translate_ingress_tls(
            self.cache,
            namespace,
            name,
            secret["name"],
            list(spec.get("hosts") or []),
            owner_kind=KIND_APISIX_TLS,
            secret_namespace=secret_namespace,
        )
        return TranslationResult(
            owner=certificate.owner,
            objects=[certificate],
            secret_refs=[f"{secret_namespace}/{secret['name']}"],
        )

    def _translate_apisix_plugin_config(
        self, resource: Dict[str, Any]
    ) -> TranslationResult:
        metadata = resource.get("metadata") or {}
        owner = OwnerRef(
            kind=KIND_APISIX_PLUGIN_CONFIG,
            namespace=metadata.get("namespace") or "default",
            name=metadata.get("name") or "",
        )
        plugin_config = PluginConfig(
            id=plugin_config_id(owner.namespace, owner.name),
            owner=owner,
            name=f"{owner.namespace}_{owner.name}",
            plugins=translate_plugins((resource.get("spec") or {}).get("plugins")),
        )
        return TranslationResult(owner=owner, objects=[plugin_config])
