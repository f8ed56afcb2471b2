# -*- coding: utf-8 -*-
"""
Ingress翻译
把 networking.k8s.io/v1 Ingress 的规则和TLS配置翻译为网关对象
"""

import logging
from typing import Any, Dict, List, Optional

from gatesync.core.errors import InvalidRouteMatch, UnresolvableBackend
from gatesync.core.resource_cache import KIND_INGRESS, ResourceCache
from gatesync.translation.backend import translate_upstream
from gatesync.translation.models import (
    GatewayObject,
    ObjectKind,
    OwnerRef,
    Route,
    TranslationResult,
    gen_id,
)
from gatesync.translation.tls import dedup, translate_ingress_tls

logger = logging.getLogger(__name__)

INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"


def ingress_class_of(ingress: Dict[str, Any]) -> Optional[str]:
    """读取Ingress类，annotation优先于 spec.ingressClassName"""
    annotations = (ingress.get("metadata") or {}).get("annotations") or {}
    if annotations.get(INGRESS_CLASS_ANNOTATION):
        return annotations[INGRESS_CLASS_ANNOTATION]
    return (ingress.get("spec") or {}).get("ingressClassName")


def translate_path(path: Optional[str], path_type: Optional[str]) -> List[str]:
    """
    按pathType生成网关URI列表

    Exact 精确匹配；Prefix 同时匹配路径本身和其子路径；
    ImplementationSpecific 原样传递。
    """
    path = path or "/"
    if not path.startswith("/"):
        raise InvalidRouteMatch(f"Ingress路径必须以/开头: {path!r}")

    if path_type == "Exact":
        return [path]
    if path_type in (None, "Prefix"):
        prefix = path.rstrip("/")
        if not prefix:
            return ["/*"]
        return [prefix, prefix + "/*"]
    if path_type == "ImplementationSpecific":
        return [path]
    raise InvalidRouteMatch(f"不支持的pathType: {path_type!r}")


def _service_backend(backend: Dict[str, Any]) -> Dict[str, Any]:
    service = backend.get("service") or {}
    if not service.get("name"):
        raise UnresolvableBackend("Ingress后端缺少service.name（不支持resource后端）")
    port = service.get("port") or {}
    return {
        "serviceName": service["name"],
        "servicePort": port.get("number") or port.get("name"),
    }


def translate_ingress(
    cache: ResourceCache,
    resource: Dict[str, Any],
    ingress_class: Optional[str] = None,
) -> TranslationResult:
    """
    翻译 Ingress

    Args:
        cache: 资源缓存
        resource: Ingress对象
        ingress_class: 本控制器负责的Ingress类，为None时不过滤

    Returns:
        TranslationResult: 不属于本控制器的Ingress返回空结果
    """
    metadata = resource.get("metadata") or {}
    owner = OwnerRef(
        kind=KIND_INGRESS,
        namespace=metadata.get("namespace") or "default",
        name=metadata.get("name") or "",
    )
    result = TranslationResult(owner=owner)

    if ingress_class is not None and ingress_class_of(resource) != ingress_class:
        logger.debug(
            "[Ingress翻译][%s]Ingress类不匹配，忽略 - 类=%s",
            owner.key,
            ingress_class_of(resource),
        )
        return result

    spec = resource.get("spec") or {}
    upstreams: Dict[str, GatewayObject] = {}
    routes: List[Route] = []

    rules = list(spec.get("rules") or [])
    if spec.get("defaultBackend"):
        rules.append(
            {
                "http": {
                    "paths": [
                        {
                            "path": "/",
                            "pathType": "Prefix",
                            "backend": spec["defaultBackend"],
                        }
                    ]
                }
            }
        )

    for rule_index, rule in enumerate(rules):
        host = rule.get("host")
        for path_index, path in enumerate((rule.get("http") or {}).get("paths") or []):
            upstream, uses_service = translate_upstream(
                cache, owner, _service_backend(path.get("backend") or {})
            )
            upstreams.setdefault(upstream.id, upstream)
            if uses_service:
                result.service_refs.append(
                    f"{owner.namespace}/{path['backend']['service']['name']}"
                )

            routes.append(
                Route(
                    id=gen_id(
                        ObjectKind.ROUTE.value,
                        owner.kind,
                        owner.namespace,
                        owner.name,
                        rule_index,
                        path_index,
                    ),
                    owner=owner,
                    name=f"ing_{owner.namespace}_{owner.name}_{rule_index}_{path_index}",
                    uris=translate_path(path.get("path"), path.get("pathType")),
                    hosts=[host] if host else [],
                    upstream_id=upstream.id,
                    # 精确匹配优先于前缀匹配
                    priority=1 if path.get("pathType") == "Exact" else 0,
                )
            )

    certificates = []
    for secret_name, hosts in _tls_bindings(spec.get("tls") or []).items():
        certificates.append(
            translate_ingress_tls(
                cache, owner.namespace, owner.name, secret_name, hosts
            )
        )
        result.secret_refs.append(f"{owner.namespace}/{secret_name}")

    result.objects = list(upstreams.values()) + certificates + routes
    logger.debug(
        "[Ingress翻译][%s]翻译完成 - 路由=%d, 上游=%d, 证书=%d",
        owner.key,
        len(routes),
        len(upstreams),
        len(certificates),
    )
    return result


def _tls_bindings(tls_entries: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """按Secret合并TLS条目，同一Secret的主机名合并去重"""
    bindings: Dict[str, List[str]] = {}
    for entry in tls_entries:
        secret_name = entry.get("secretName")
        if not secret_name:
            continue
        bindings[secret_name] = dedup(bindings.get(secret_name, []) + list(entry.get("hosts") or []))
    return bindings
