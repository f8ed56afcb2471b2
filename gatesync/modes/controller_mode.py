# -*- coding: utf-8 -*-
"""
控制器模式
长期运行: 监听集群资源并持续把网关配置与之对齐，同时提供状态API
"""

import asyncio

import uvicorn
from fastapi import FastAPI

from gatesync.core.config import Settings
from gatesync.core.kube_informer import KubeInformer
from gatesync.reconcile.admin_client import GatewayAdminClient
from gatesync.reconcile.controller import Controller
from gatesync.reconcile.state_store import LocalStateStore
from gatesync.reconcile.status import KubeStatusWriter, StatusStore
from gatesync.reconcile.sync_engine import SyncEngine
from gatesync.translation.translator import Translator
from .base_mode import BaseMode
from .status_api import create_status_router


class ControllerMode(BaseMode):
    """控制器模式实现"""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.app = None
        self.informer = None
        self.cache = None
        self.admin_client = None
        self.controller = None
        self.store = LocalStateStore()
        self.status_store = StatusStore()

    def _create_app(self) -> FastAPI:
        """创建FastAPI应用"""
        app = FastAPI(
            title=self.settings.app_name,
            version=self.settings.version,
            description="gatesync - 网关配置同步控制器",
        )

        @app.get("/")
        async def root():
            return {
                "code": 200,
                "data": {
                    "message": "gatesync",
                    "version": self.settings.version,
                    "mode": "controller",
                },
            }

        app.include_router(create_status_router(self))
        return app

    async def _init_components(self):
        self._init_k8s_client()

        self.informer = KubeInformer(
            self.dynamic_client, namespaces=self.settings.k8s.watch_namespaces
        )
        self.cache = self.informer.cache

        self.admin_client = GatewayAdminClient(self.settings.admin)
        reachable = await self.admin_client.probe()
        if self.settings.controller.rebuild_state_on_start:
            if reachable:
                await self.store.rebuild(self.admin_client)
            else:
                self.logger.warning("Admin API不可达，跳过状态重建")

        status_writer = None
        if self.settings.status.write_back:
            status_writer = KubeStatusWriter(self.k8s_client)

        self.controller = Controller(
            cache=self.cache,
            translator=Translator(self.cache, self.settings.k8s.ingress_class),
            store=self.store,
            engine=SyncEngine(self.admin_client, self.store, self.settings.controller),
            status_store=self.status_store,
            config=self.settings.controller,
            status_writer=status_writer,
        )

    async def start(self, host: str = "0.0.0.0", port: int = 8000):
        """启动控制器模式"""
        self.logger.info("正在启动控制器模式...")
        self.settings.validate()

        await self._init_components()
        self.informer.start(asyncio.get_running_loop(), self.controller.handle_event)

        self.app = self._create_app()
        server_config = uvicorn.Config(
            self.app, host=host, port=port, log_level=self.settings.log_level.lower()
        )
        server = uvicorn.Server(server_config)

        # 状态API先启动，缓存同步期间 /ready 返回503
        server_task = asyncio.create_task(server.serve())
        try:
            await self.controller.start()
            self.logger.info("控制器模式启动成功，监听 %s:%d", host, port)
            await server_task
        finally:
            server.should_exit = True
            await asyncio.gather(server_task, return_exceptions=True)
            await self.stop()

    async def stop(self):
        """停止服务"""
        self.logger.info("正在停止控制器模式...")
        if self.controller:
            await self.controller.stop()
        if self.informer:
            self.informer.stop()
        if self.admin_client:
            await self.admin_client.close()
        if self.k8s_client:
            self.k8s_client.close()
