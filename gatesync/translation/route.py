# -*- coding: utf-8 -*-
"""
路由翻译
把 ApisixRoute 的 http 规则翻译为网关路由、上游和插件配置
"""

import copy
import ipaddress
import re
import logging
from typing import Any, Dict, List, Optional

from gatesync.core.errors import (
    InvalidRouteMatch,
    TranslationError,
    UnresolvableBackend,
    UnsupportedPredicateOperator,
)
from gatesync.core.resource_cache import ResourceCache
from gatesync.translation.backend import backend_weight, translate_upstream
from gatesync.translation.models import (
    GatewayObject,
    ObjectKind,
    OwnerRef,
    Route,
    TranslationResult,
    gen_id,
)
from gatesync.translation.tls import dedup

logger = logging.getLogger(__name__)

# 操作符 -> (是否取反, 网关表达式操作符)
PREDICATE_OPERATORS = {
    "Equal": (False, "=="),
    "NotEqual": (False, "~="),
    "GreaterThan": (False, ">"),
    "LessThan": (False, "<"),
    "RegexMatch": (False, "~~"),
    "RegexMatchCaseInsensitive": (False, "~*"),
    "RegexNotMatch": (True, "~~"),
    "RegexNotMatchCaseInsensitive": (True, "~*"),
    "In": (False, "in"),
    "NotIn": (True, "in"),
    "IPMatch": (False, "ipmatch"),
}
SET_OPERATORS = ("In", "NotIn", "IPMatch")

SUBJECT_SCOPES = ("Header", "Query", "Cookie", "Path", "Variable")


def _subject_variable(subject: Dict[str, Any]) -> str:
    scope = subject.get("scope")
    name = subject.get("name") or ""

    if scope == "Path":
        return "uri"
    if scope not in SUBJECT_SCOPES:
        raise InvalidRouteMatch(f"不支持的匹配对象范围: {scope!r}")
    if not name:
        raise InvalidRouteMatch(f"匹配对象 {scope} 缺少name")

    if scope == "Header":
        return "http_" + name.lower().replace("-", "_")
    if scope == "Query":
        return "arg_" + name
    if scope == "Cookie":
        return "cookie_" + name
    return name


def translate_predicate(expr: Dict[str, Any]) -> List[Any]:
    """
    把单个请求属性匹配条件翻译为网关表达式

    Args:
        expr: {subject: {scope, name}, op, value | set, negate}

    Returns:
        List[Any]: [变量, ("!"), 操作符, 值]
    """
    op = expr.get("op")
    if op not in PREDICATE_OPERATORS:
        raise UnsupportedPredicateOperator(str(op))

    inherent_negation, gateway_op = PREDICATE_OPERATORS[op]
    negate = inherent_negation != bool(expr.get("negate", False))

    if op in SET_OPERATORS:
        value = expr.get("set")
        if value is None and op == "IPMatch" and expr.get("value") is not None:
            value = [expr["value"]]
        if not isinstance(value, list):
            raise InvalidRouteMatch(f"操作符 {op} 需要set列表")
        value = list(value)
    else:
        value = expr.get("value")
        if value is None:
            raise InvalidRouteMatch(f"操作符 {op} 缺少value")

    variable = _subject_variable(expr.get("subject") or {})
    if negate:
        return [variable, "!", gateway_op, value]
    return [variable, gateway_op, value]


def translate_methods(methods: Optional[List[str]]) -> List[str]:
    """请求方法统一大写并去重（保持首次出现顺序）"""
    return dedup(str(method).upper() for method in methods or [])


def validate_remote_addrs(remote_addrs: Optional[List[str]]) -> List[str]:
    for addr in remote_addrs or []:
        try:
            ipaddress.ip_network(addr, strict=False)
        except ValueError as e:
            raise InvalidRouteMatch(f"客户端地址非法: {addr!r}") from e
    return list(remote_addrs or [])


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: Any) -> float:
    """解析 "30s"、"1m30s"、"500ms" 形式的时长，数字视为秒"""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(num + unit for num, unit in parts) != text:
        raise InvalidRouteMatch(f"超时时长格式非法: {value!r}")
    return sum(float(num) * _DURATION_UNITS[unit] for num, unit in parts)


def translate_timeout(timeout: Optional[Dict[str, Any]]) -> Optional[Dict[str, float]]:
    """{connect, send, read} 时长转换为网关使用的秒数"""
    if not timeout:
        return None
    return {
        key: parse_duration(timeout[key])
        for key in ("connect", "send", "read")
        if timeout.get(key) is not None
    } or None


def translate_plugins(plugins: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    翻译插件列表，配置深拷贝，未启用的插件被忽略

    同名插件以后出现的为准。
    """
    result = {}
    for plugin in plugins or []:
        name = plugin.get("name")
        if not name:
            raise TranslationError("插件缺少name")
        if not plugin.get("enable", True):
            continue
        result[name] = copy.deepcopy(plugin.get("config") or {})
    return result


def translate_priority(value: Any, owner: OwnerRef, rule_name: str) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidRouteMatch(
            f"{owner.key} 规则 {rule_name} 优先级非法: {value!r}"
        ) from e


def plugin_config_id(namespace: str, name: str) -> str:
    """ApisixPluginConfig 对应的插件配置对象ID"""
    return gen_id(ObjectKind.PLUGIN_CONFIG.value, "ApisixPluginConfig", namespace, name)


def translate_apisix_route(
    cache: ResourceCache, resource: Dict[str, Any]
) -> TranslationResult:
    """
    翻译 ApisixRoute

    每条http规则生成一个路由；规则引用的每个不同后端生成一个上游；
    多个后端时通过 traffic-split 插件按权重分流。
    """
    metadata = resource.get("metadata") or {}
    owner = OwnerRef(
        kind="ApisixRoute",
        namespace=metadata.get("namespace") or "default",
        name=metadata.get("name") or "",
    )
    result = TranslationResult(owner=owner)
    upstreams: Dict[str, GatewayObject] = {}
    routes: List[Route] = []

    rules = (resource.get("spec") or {}).get("http") or []
    seen_rule_names = set()
    for index, rule in enumerate(rules):
        rule_name = rule.get("name") or str(index)
        if rule_name in seen_rule_names:
            raise InvalidRouteMatch(f"{owner.key} 存在重复的规则名: {rule_name}")
        seen_rule_names.add(rule_name)

        routes.append(
            _translate_rule(cache, owner, index, rule_name, rule, upstreams, result)
        )

    result.objects = list(upstreams.values()) + routes
    logger.debug(
        "[路由翻译][%s]翻译完成 - 路由=%d, 上游=%d",
        owner.key,
        len(routes),
        len(upstreams),
    )
    return result


def _translate_rule(
    cache: ResourceCache,
    owner: OwnerRef,
    index: int,
    rule_name: str,
    rule: Dict[str, Any],
    upstreams: Dict[str, GatewayObject],
    result: TranslationResult,
) -> Route:
    match = rule.get("match") or {}
    paths = list(match.get("paths") or [])
    if not paths:
        raise InvalidRouteMatch(f"{owner.key} 规则 {rule_name} 没有路径")

    backends = list(rule.get("backends") or [])
    if rule.get("backend"):
        backends.insert(0, rule["backend"])
    if not backends:
        raise UnresolvableBackend(f"{owner.key} 规则 {rule_name} 没有后端")

    timeout = translate_timeout(rule.get("timeout"))
    translated = []
    for backend in backends:
        upstream, uses_service = translate_upstream(cache, owner, backend)
        upstreams.setdefault(upstream.id, upstream)
        translated.append((upstream.id, backend_weight(backend)))
        if uses_service:
            result.service_refs.append(f"{owner.namespace}/{backend['serviceName']}")

    plugins = translate_plugins(rule.get("plugins"))
    if len(translated) > 1:
        primary_weight = translated[0][1]
        weighted = [
            {"upstream_id": upstream_id, "weight": weight}
            for upstream_id, weight in translated[1:]
        ]
        weighted.append({"weight": primary_weight})
        plugins["traffic-split"] = {"rules": [{"weighted_upstreams": weighted}]}

    route = Route(
        id=gen_id(
            ObjectKind.ROUTE.value, owner.kind, owner.namespace, owner.name, index
        ),
        owner=owner,
        name=f"{owner.namespace}_{owner.name}_{rule_name}",
        uris=paths,
        methods=translate_methods(match.get("methods")),
        hosts=list(match.get("hosts") or []),
        remote_addrs=validate_remote_addrs(match.get("remoteAddrs")),
        vars=[translate_predicate(expr) for expr in match.get("exprs") or []],
        priority=translate_priority(rule.get("priority"), owner, rule_name),
        upstream_id=translated[0][0],
        plugins=plugins,
        enable_websocket=rule.get("websocket"),
        timeout=dict(timeout) if timeout else None,
    )

    if rule.get("plugin_config_name"):
        route.plugin_config_id = plugin_config_id(
            owner.namespace, rule["plugin_config_name"]
        )

    logger.debug(
        "[路由翻译][%s]规则 %s (索引 %d) 已翻译 - 路由ID=%s",
        owner.key,
        rule_name,
        index,
        route.id,
    )
    return route
