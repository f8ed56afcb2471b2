# -*- coding: utf-8 -*-
"""
网关Admin API客户端
对 routes / upstreams / ssls / plugin_configs 集合进行 PUT、DELETE、GET 操作
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from gatesync.core.config import AdminConfig
from gatesync.core.errors import AdminAPIUnavailable, FatalError, SyncErrorHandler
from gatesync.translation.models import ObjectKind


def extract_version(body: Any) -> Optional[str]:
    """
    从Admin API响应中读取版本标识

    优先使用 modifiedIndex，没有时退回到 value.update_time。
    """
    if not isinstance(body, dict):
        return None
    if body.get("modifiedIndex") is not None:
        return str(body["modifiedIndex"])
    value = body.get("value") or {}
    if isinstance(value, dict) and value.get("update_time") is not None:
        return str(value["update_time"])
    return None


def _list_items(body: Any) -> List[Dict[str, Any]]:
    # v3: {"total": n, "list": [...]}；v2: {"node": {"nodes": [...]}}
    if not isinstance(body, dict):
        return []
    if isinstance(body.get("list"), list):
        return body["list"]
    node = body.get("node") or {}
    if isinstance(node.get("nodes"), list):
        return node["nodes"]
    return []


class GatewayAdminClient:
    """网关Admin API客户端"""

    def __init__(
        self,
        config: AdminConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        初始化Admin API客户端

        Args:
            config: Admin API配置
            transport: 自定义传输层（测试时传入 httpx.MockTransport）
        """
        self.config = config
        self.logger = logging.getLogger("gatesync.AdminClient")
        self.error_handler = SyncErrorHandler(self.logger)

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["X-API-KEY"] = config.api_key

        self._client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(config.timeout),
            verify=config.verify_tls,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self) -> "GatewayAdminClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        object_id: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise self.error_handler.from_exception(e, operation, object_id) from e

    async def put(
        self, kind: ObjectKind, object_id: str, payload: Dict[str, Any]
    ) -> Optional[str]:
        """
        创建或替换对象

        Returns:
            Optional[str]: 网关返回的版本标识

        Raises:
            SyncError: 调用失败
        """
        response = await self._request(
            "PUT", f"/{kind.value}/{object_id}", "PUT", object_id, json=payload
        )
        error = self.error_handler.from_response(response, "PUT", object_id)
        if error is not None:
            raise error

        try:
            version = extract_version(response.json())
        except ValueError:
            version = None
        self.logger.debug(
            "[Admin API][PUT][%s]写入成功 - 类型=%s, 版本=%s",
            object_id,
            kind.value,
            version,
        )
        return version

    async def delete(self, kind: ObjectKind, object_id: str):
        """删除对象，对象不存在（404）视为成功"""
        response = await self._request(
            "DELETE", f"/{kind.value}/{object_id}", "DELETE", object_id
        )
        if response.status_code == 404:
            self.logger.debug("[Admin API][DELETE][%s]对象已不存在", object_id)
            return
        error = self.error_handler.from_response(response, "DELETE", object_id)
        if error is not None:
            raise error
        self.logger.debug("[Admin API][DELETE][%s]删除成功 - 类型=%s", object_id, kind.value)

    async def get(self, kind: ObjectKind, object_id: str) -> Optional[Dict[str, Any]]:
        """
        读取单个对象

        Returns:
            Optional[Dict[str, Any]]: {"id", "value", "version"}，对象不存在返回None
        """
        response = await self._request("GET", f"/{kind.value}/{object_id}", "GET", object_id)
        if response.status_code == 404:
            return None
        error = self.error_handler.from_response(response, "GET", object_id)
        if error is not None:
            raise error
        body = response.json()
        return {
            "id": object_id,
            "value": body.get("value") or {},
            "version": extract_version(body),
        }

    async def list(self, kind: ObjectKind) -> List[Dict[str, Any]]:
        """
        列出某一类型的全部对象

        Returns:
            List[Dict[str, Any]]: [{"id", "value", "version"}]
        """
        response = await self._request("GET", f"/{kind.value}", "LIST", kind.value)
        if response.status_code == 404:
            return []
        error = self.error_handler.from_response(response, "LIST", kind.value)
        if error is not None:
            raise error

        items = []
        for item in _list_items(response.json()):
            value = item.get("value") or {}
            items.append(
                {
                    "id": value.get("id") or str(item.get("key", "")).rsplit("/", 1)[-1],
                    "value": value,
                    "version": extract_version(item),
                }
            )
        return items

    async def probe(self) -> bool:
        """
        启动时检查Admin API可用性

        Returns:
            bool: Admin API是否可达

        Raises:
            FatalError: 凭据被拒绝（401/403）
        """
        try:
            response = await self._request("GET", f"/{ObjectKind.ROUTE.value}", "PROBE", "-")
        except AdminAPIUnavailable as e:
            self.logger.warning("[Admin API]启动检查失败，稍后重试: %s", e.message)
            return False

        if response.status_code in (401, 403):
            raise FatalError(
                f"Admin API拒绝了凭据 (状态码: {response.status_code})，请检查 GATEWAY_ADMIN_KEY"
            )
        error = self.error_handler.from_response(response, "PROBE", "-")
        if error is not None:
            self.logger.warning("[Admin API]启动检查返回异常: %s", error.message)
            return not isinstance(error, AdminAPIUnavailable)

        self.logger.info("[Admin API]启动检查通过 - 地址=%s", self.config.base_url)
        return True
