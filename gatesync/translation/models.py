# -*- coding: utf-8 -*-
"""
网关对象模型
定义翻译器输出的网关原生对象（路由、上游、证书、插件配置）及其身份标识
"""

import copy
import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from pydantic import BaseModel, Field

MANAGED_BY = "gatesync"

LABEL_MANAGED_BY = "managed-by"
LABEL_OWNER_KIND = "owner-kind"
LABEL_OWNER_NAMESPACE = "owner-namespace"
LABEL_OWNER_NAME = "owner-name"


class ObjectKind(str, Enum):
    """网关对象类型，值为Admin API中的集合名称"""

    ROUTE = "routes"
    UPSTREAM = "upstreams"
    SSL = "ssls"
    PLUGIN_CONFIG = "plugin_configs"


# 创建/更新按依赖顺序，删除按相反顺序
APPLY_ORDER = [
    ObjectKind.UPSTREAM,
    ObjectKind.PLUGIN_CONFIG,
    ObjectKind.SSL,
    ObjectKind.ROUTE,
]
DELETE_ORDER = list(reversed(APPLY_ORDER))


class OwnerRef(BaseModel, frozen=True):
    """产生网关对象的集群资源"""

    kind: str
    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, key: str) -> "OwnerRef":
        kind, namespace, name = key.split("/", 2)
        return cls(kind=kind, namespace=namespace, name=name)

    def __str__(self) -> str:
        return self.key


def gen_id(*parts: Union[str, int]) -> str:
    """由owner身份和结构索引确定性地生成对象ID"""
    raw = "_".join(str(part) for part in parts)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def owner_labels(owner: OwnerRef) -> Dict[str, str]:
    return {
        LABEL_MANAGED_BY: MANAGED_BY,
        LABEL_OWNER_KIND: owner.kind,
        LABEL_OWNER_NAMESPACE: owner.namespace,
        LABEL_OWNER_NAME: owner.name,
    }


def owner_from_labels(labels: Optional[Dict[str, str]]) -> Optional[OwnerRef]:
    """从网关对象标签恢复owner，非本控制器管理的对象返回None"""
    labels = labels or {}
    if labels.get(LABEL_MANAGED_BY) != MANAGED_BY:
        return None
    try:
        return OwnerRef(
            kind=labels[LABEL_OWNER_KIND],
            namespace=labels[LABEL_OWNER_NAMESPACE],
            name=labels[LABEL_OWNER_NAME],
        )
    except KeyError:
        return None


def compute_content_hash(payload: Dict[str, Any]) -> str:
    """对象内容指纹，基于规范化JSON"""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


class GatewayObject(BaseModel):
    """网关对象基类"""

    object_kind: ClassVar[ObjectKind]

    id: str
    owner: OwnerRef
    name: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        """Admin API请求体中除 id/labels 外的字段"""
        raise NotImplementedError

    def to_payload(self) -> Dict[str, Any]:
        payload = {k: v for k, v in self.body().items() if v not in (None, [], {})}
        payload["id"] = self.id
        payload["labels"] = owner_labels(self.owner)
        return payload

    @property
    def kind(self) -> ObjectKind:
        return self.object_kind

    @property
    def content_hash(self) -> str:
        return compute_content_hash(self.to_payload())

    def clone(self) -> "GatewayObject":
        return self.model_copy(deep=True)


class Upstream(GatewayObject):
    """上游: 只携带服务引用，端点解析交给网关的服务发现"""

    object_kind: ClassVar[ObjectKind] = ObjectKind.UPSTREAM

    type: str = "roundrobin"
    discovery_type: Optional[str] = None
    service_name: Optional[str] = None
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    scheme: str = "http"

    def body(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "discovery_type": self.discovery_type,
            "service_name": self.service_name,
            "nodes": copy.deepcopy(self.nodes),
            "scheme": self.scheme,
        }


class Route(GatewayObject):
    """路由"""

    object_kind: ClassVar[ObjectKind] = ObjectKind.ROUTE

    uris: List[str] = Field(default_factory=list)
    methods: List[str] = Field(default_factory=list)
    hosts: List[str] = Field(default_factory=list)
    remote_addrs: List[str] = Field(default_factory=list)
    vars: List[List[Any]] = Field(default_factory=list)
    priority: int = 0
    upstream_id: Optional[str] = None
    plugins: Dict[str, Any] = Field(default_factory=dict)
    plugin_config_id: Optional[str] = None
    enable_websocket: Optional[bool] = None
    timeout: Optional[Dict[str, Any]] = None

    def body(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "uris": list(self.uris),
            "methods": list(self.methods),
            "hosts": list(self.hosts),
            "remote_addrs": list(self.remote_addrs),
            "vars": copy.deepcopy(self.vars),
            "priority": self.priority,
            "upstream_id": self.upstream_id,
            "plugins": copy.deepcopy(self.plugins),
            "plugin_config_id": self.plugin_config_id,
            "enable_websocket": self.enable_websocket,
            "timeout": copy.deepcopy(self.timeout),
        }


class Certificate(GatewayObject):
    """TLS证书（网关的ssl对象）"""

    object_kind: ClassVar[ObjectKind] = ObjectKind.SSL

    cert: str
    key: str
    snis: List[str]

    def body(self) -> Dict[str, Any]:
        return {"cert": self.cert, "key": self.key, "snis": list(self.snis)}


class PluginConfig(GatewayObject):
    """可被多个路由引用的插件配置"""

    object_kind: ClassVar[ObjectKind] = ObjectKind.PLUGIN_CONFIG

    plugins: Dict[str, Any] = Field(default_factory=dict)

    def body(self) -> Dict[str, Any]:
        return {"desc": self.name, "plugins": copy.deepcopy(self.plugins)}


@dataclass
class TranslationResult:
    """一次翻译的输出"""

    owner: OwnerRef
    objects: List[GatewayObject] = field(default_factory=list)
    # 翻译过程中引用的Secret/Service（"namespace/name"），用于依赖变更时重新触发
    secret_refs: List[str] = field(default_factory=list)
    service_refs: List[str] = field(default_factory=list)
