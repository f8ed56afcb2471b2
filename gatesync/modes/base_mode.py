# -*- coding: utf-8 -*-
"""
基础模式类
定义通用的运行模式接口
"""

from abc import ABC, abstractmethod
import logging

from kubernetes import client, config
from kubernetes.dynamic import DynamicClient

from gatesync.core.config import Settings


class BaseMode(ABC):
    """基础模式抽象类"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.logger = logging.getLogger(f"gatesync.{self.__class__.__name__}")
        self.k8s_client = None
        self.dynamic_client = None

    def _init_k8s_client(self):
        """初始化Kubernetes客户端，集群内配置失败时退回本地kubeconfig"""
        if self.settings.k8s.in_cluster:
            try:
                config.load_incluster_config()
                self.logger.info("成功加载集群内Kubernetes配置")
            except config.ConfigException as e:
                self.logger.warning("加载集群内配置失败，尝试本地kubeconfig: %s", e)
                config.load_kube_config(config_file=self.settings.k8s.kubeconfig_path)
                self.logger.info("使用本地kubeconfig初始化成功")
        else:
            config.load_kube_config(config_file=self.settings.k8s.kubeconfig_path)
            self.logger.info("使用本地kubeconfig初始化成功")

        self.k8s_client = client.ApiClient()
        self.dynamic_client = DynamicClient(self.k8s_client)
        self.logger.info("Kubernetes动态客户端初始化成功")

    @abstractmethod
    async def start(self, host: str = "0.0.0.0", port: int = 8000):
        """启动"""
        pass

    @abstractmethod
    async def stop(self):
        """停止"""
        pass
