# -*- coding: utf-8 -*-
"""
后端翻译
服务引用原样传给网关的服务发现，这里不做任何端点解析
"""

from typing import Any, Dict, Tuple, Union

from gatesync.core.errors import UnresolvableBackend
from gatesync.core.resource_cache import KIND_SERVICE, ResourceCache
from gatesync.translation.models import ObjectKind, OwnerRef, Upstream, gen_id

GRANULARITY_ENDPOINT = "endpoint"
GRANULARITY_SERVICE = "service"

DEFAULT_WEIGHT = 100


def resolve_service_port(
    cache: ResourceCache,
    namespace: str,
    service_name: str,
    service_port: Union[int, str, None],
) -> Tuple[int, bool]:
    """
    确定服务端口号

    数字端口直接使用；端口名需要读取Service对象（只读取端口定义，不读取Endpoints）。

    Returns:
        Tuple[int, bool]: (端口号, 是否读取了Service)
    """
    if service_port is None or service_port == "":
        raise UnresolvableBackend(f"服务 {namespace}/{service_name} 未指定端口")

    if isinstance(service_port, int) or str(service_port).isdigit():
        port = int(service_port)
        if not 0 < port < 65536:
            raise UnresolvableBackend(f"服务 {namespace}/{service_name} 端口非法: {port}")
        return port, False

    service_ref = f"{namespace}/{service_name}"
    service = cache.get(KIND_SERVICE, namespace, service_name)
    if service is None:
        raise UnresolvableBackend(f"服务不存在: {service_ref}", service_ref=service_ref)

    for port_spec in (service.get("spec") or {}).get("ports") or []:
        if port_spec.get("name") == service_port:
            return int(port_spec["port"]), True

    raise UnresolvableBackend(
        f"服务 {service_ref} 没有名为 {service_port!r} 的端口", service_ref=service_ref
    )


def translate_upstream(
    cache: ResourceCache,
    owner: OwnerRef,
    backend: Dict[str, Any],
) -> Tuple[Upstream, bool]:
    """
    把后端引用翻译为上游对象

    同一个owner内服务、端口、解析粒度和协议都相同的规则共享同一个上游。

    Args:
        cache: 资源缓存
        owner: 所属资源
        backend: {serviceName, servicePort, resolveGranularity, weight, scheme}

    Returns:
        Tuple[Upstream, bool]: (上游对象, 是否依赖Service对象)
    """
    service_name = backend.get("serviceName")
    if not service_name:
        raise UnresolvableBackend(f"{owner.key} 的后端缺少serviceName")

    granularity = backend.get("resolveGranularity") or GRANULARITY_ENDPOINT
    if granularity not in (GRANULARITY_ENDPOINT, GRANULARITY_SERVICE):
        raise UnresolvableBackend(
            f"{owner.key} 的后端 {service_name} 解析粒度非法: {granularity!r}"
        )

    port, uses_service = resolve_service_port(
        cache, owner.namespace, service_name, backend.get("servicePort")
    )

    scheme = backend.get("scheme") or "http"
    upstream = Upstream(
        id=gen_id(
            ObjectKind.UPSTREAM.value,
            owner.kind,
            owner.namespace,
            owner.name,
            service_name,
            port,
            granularity,
            scheme,
        ),
        owner=owner,
        name=f"{owner.namespace}_{service_name}_{port}",
        scheme=scheme,
    )
    if granularity == GRANULARITY_ENDPOINT:
        upstream.discovery_type = "kubernetes"
        upstream.service_name = f"{owner.namespace}/{service_name}:{port}"
    else:
        upstream.nodes = [
            {
                "host": f"{service_name}.{owner.namespace}.svc.cluster.local",
                "port": port,
                "weight": DEFAULT_WEIGHT,
            }
        ]
    return upstream, uses_service


def backend_weight(backend: Dict[str, Any]) -> int:
    weight = backend.get("weight")
    if weight is None:
        return DEFAULT_WEIGHT
    try:
        weight = int(weight)
    except (TypeError, ValueError):
        raise UnresolvableBackend(f"后端 {backend.get('serviceName')} 权重非法: {weight!r}")
    if weight < 0:
        raise UnresolvableBackend(f"后端 {backend.get('serviceName')} 权重不能为负数")
    return weight
