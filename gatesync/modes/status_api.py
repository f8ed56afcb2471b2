# -*- coding: utf-8 -*-
"""
状态API
提供健康检查、就绪检查、owner同步状态和运行统计
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from gatesync.core.async_utils import get_performance_monitor
from gatesync.core.errors import create_error_handler
from gatesync.translation.models import OwnerRef


class StatusResponse(BaseModel):
    """通用响应模型"""

    code: int = Field(..., description="响应码")
    message: Optional[str] = Field(None, description="响应消息")
    data: Optional[Dict[str, Any]] = Field(None, description="响应数据")


def _status_to_dict(status) -> Dict[str, Any]:
    data = status.model_dump(mode="json")
    data["owner"] = status.owner.key
    return data


def create_status_router(mode_instance) -> APIRouter:
    """
    创建状态API路由

    Args:
        mode_instance: 运行模式实例，需要提供 controller、store、status_store、cache
    """
    router = APIRouter(tags=["Sync Status"])
    logger = getattr(mode_instance, "logger", logging.getLogger("gatesync.StatusAPI"))
    error_handler = create_error_handler(logger)

    @router.get("/health", response_model=StatusResponse)
    async def health():
        """健康检查"""
        return {"code": 200, "data": {"status": "healthy", "mode": "controller"}}

    @router.get("/ready", response_model=StatusResponse)
    async def ready():
        """就绪检查: 缓存完成同步且worker已启动"""
        controller = mode_instance.controller
        if controller is None or not controller.ready:
            raise HTTPException(
                status_code=503,
                detail={"code": 503, "message": "控制器尚未就绪"},
            )
        return {"code": 200, "data": {"status": "ready"}}

    @router.get("/status", response_model=StatusResponse)
    async def list_status(
        kind: Optional[str] = Query(None, description="按owner类型过滤"),
    ):
        """所有owner的同步状态"""
        statuses = mode_instance.status_store.list(kind)
        return {
            "code": 200,
            "data": {
                "total": len(statuses),
                "summary": mode_instance.status_store.summary(),
                "items": [_status_to_dict(status) for status in statuses],
            },
        }

    @router.get("/status/{kind}/{namespace}/{name}", response_model=StatusResponse)
    async def get_status(kind: str, namespace: str, name: str):
        """单个owner的同步状态及其在网关上的对象"""
        owner = OwnerRef(kind=kind, namespace=namespace, name=name)
        status = mode_instance.status_store.get(owner)
        if status is None:
            raise error_handler.to_http_exception(KeyError(owner.key), kind, namespace, name)

        data = _status_to_dict(status)
        data["objects"] = [
            {
                "kind": entry.kind.value,
                "id": object_id,
                "content_hash": entry.content_hash,
                "version": entry.version,
            }
            for object_id, entry in sorted(mode_instance.store.view([owner]).items())
        ]
        return {"code": 200, "data": data}

    @router.get("/stats", response_model=StatusResponse)
    async def stats():
        """运行统计"""
        controller = mode_instance.controller
        return {
            "code": 200,
            "data": {
                "controller": controller.get_stats() if controller else None,
                "cache": mode_instance.cache.get_stats() if mode_instance.cache else None,
                "store": mode_instance.store.get_stats(),
                "status": mode_instance.status_store.summary(),
                "performance": get_performance_monitor().get_stats(),
            },
        }

    return router
