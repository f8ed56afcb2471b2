# -*- coding: utf-8 -*-
"""
配置管理模块
支持从环境变量、配置文件等多种方式加载配置
"""

import logging
import os
import yaml
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from gatesync.core.errors import FatalError


logger = logging.getLogger("gatesync.config")


@dataclass
class AdminConfig:
    """网关Admin API配置"""

    base_url: str = "http://127.0.0.1:9180/apisix/admin"
    api_key: Optional[str] = None
    timeout: float = 10.0  # 单次Admin API调用超时（秒）
    verify_tls: bool = True


@dataclass
class K8sConfig:
    """Kubernetes配置"""

    in_cluster: bool = True  # 是否在集群内运行
    kubeconfig_path: Optional[str] = None
    watch_namespaces: List[str] = field(default_factory=list)  # 为空表示所有命名空间
    ingress_class: str = "apisix"


@dataclass
class ControllerConfig:
    """协调控制器配置"""

    workers: int = 4
    max_retries: int = 3
    retry_delay: float = 0.5
    retry_backoff: float = 2.0
    requeue_base_delay: float = 5.0
    requeue_max_delay: float = 300.0
    resync_period: float = 600.0  # 0 表示关闭周期性全量同步
    cache_sync_timeout: float = 60.0
    status_write_timeout: float = 10.0  # 单次状态回写超时（秒）
    rebuild_state_on_start: bool = True


@dataclass
class StatusConfig:
    """状态回写配置"""

    write_back: bool = False


@dataclass
class Settings:
    """全局配置类"""

    # 基础配置
    app_name: str = "gatesync"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # 子配置
    admin: AdminConfig = field(default_factory=AdminConfig)
    k8s: K8sConfig = field(default_factory=K8sConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    status: StatusConfig = field(default_factory=StatusConfig)

    def __init__(self, config_file: Optional[str] = None):
        """初始化配置"""
        self.app_name = "gatesync"
        self.version = "0.1.0"
        self.debug = False
        self.log_level = "INFO"

        # 设置默认值
        self.admin = AdminConfig()
        self.k8s = K8sConfig()
        self.controller = ControllerConfig()
        self.status = StatusConfig()

        # 从环境变量加载
        self._load_from_env()

        # 从配置文件加载
        if config_file:
            self._load_from_file(config_file)

    def _load_from_env(self):
        """从环境变量加载配置"""
        # 基础配置
        self.debug = os.getenv("DEBUG", "false").lower() == "true"
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        # Admin API配置
        if base_url := os.getenv("GATEWAY_ADMIN_URL"):
            self.admin.base_url = base_url
        if api_key := os.getenv("GATEWAY_ADMIN_KEY"):
            self.admin.api_key = api_key
        if timeout := os.getenv("GATEWAY_ADMIN_TIMEOUT"):
            self.admin.timeout = _parse_env("GATEWAY_ADMIN_TIMEOUT", timeout, float)
        self.admin.verify_tls = (
            os.getenv("GATEWAY_ADMIN_VERIFY_TLS", "true").lower() == "true"
        )

        # K8s配置
        self.k8s.in_cluster = os.getenv("K8S_IN_CLUSTER", "true").lower() == "true"
        if kubeconfig := os.getenv("KUBECONFIG"):
            self.k8s.kubeconfig_path = kubeconfig
        if namespaces := os.getenv("WATCH_NAMESPACES"):
            self.k8s.watch_namespaces = [
                ns.strip() for ns in namespaces.split(",") if ns.strip()
            ]
        if ingress_class := os.getenv("INGRESS_CLASS"):
            self.k8s.ingress_class = ingress_class

        # 控制器配置
        if workers := os.getenv("SYNC_WORKERS"):
            self.controller.workers = _parse_env("SYNC_WORKERS", workers, int)
        if resync := os.getenv("RESYNC_PERIOD"):
            self.controller.resync_period = _parse_env("RESYNC_PERIOD", resync, float)

        # 状态回写
        self.status.write_back = os.getenv("STATUS_WRITE_BACK", "false").lower() == "true"

    def _load_from_file(self, config_file: str):
        """从配置文件加载配置"""
        config_path = Path(config_file)
        if not config_path.exists():
            logger.warning("[配置加载]配置文件不存在: %s", config_file)
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise FatalError(f"配置文件格式错误: {e}") from e

        # 更新配置
        self._update_from_dict(config_data)

    def _update_from_dict(self, config_data: Dict[str, Any]):
        """从字典更新配置"""
        if not config_data:
            return

        # 基础配置
        for key in ["app_name", "version", "debug", "log_level"]:
            if key in config_data:
                setattr(self, key, config_data[key])

        sections = {
            "admin": (self.admin, ["base_url", "api_key", "timeout", "verify_tls"]),
            "k8s": (
                self.k8s,
                ["in_cluster", "kubeconfig_path", "watch_namespaces", "ingress_class"],
            ),
            "controller": (
                self.controller,
                [
                    "workers",
                    "max_retries",
                    "retry_delay",
                    "retry_backoff",
                    "requeue_base_delay",
                    "requeue_max_delay",
                    "resync_period",
                    "cache_sync_timeout",
                    "status_write_timeout",
                    "rebuild_state_on_start",
                ],
            ),
            "status": (self.status, ["write_back"]),
        }
        for section, (target, keys) in sections.items():
            section_data = config_data.get(section) or {}
            for key in keys:
                if key in section_data:
                    setattr(target, key, section_data[key])

    def validate(self):
        """
        校验启动必需的配置

        Raises:
            FatalError: Admin API地址或凭据格式错误，或控制器参数非法
        """
        parsed = urlparse(self.admin.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise FatalError(f"Admin API地址无效: {self.admin.base_url!r}")

        if self.admin.api_key is not None:
            key = self.admin.api_key
            if not key.strip() or any(ch in key for ch in "\r\n"):
                raise FatalError("Admin API密钥格式错误")

        if self.admin.timeout <= 0:
            raise FatalError("Admin API超时时间必须大于0")
        if self.controller.workers < 1:
            raise FatalError("工作协程数量必须大于0")
        if self.controller.max_retries < 0:
            raise FatalError("最大重试次数不能为负数")


def _parse_env(name: str, value: str, cast):
    """转换数值型环境变量，格式错误时拒绝启动"""
    try:
        return cast(value)
    except ValueError as e:
        raise FatalError(f"环境变量 {name} 格式错误: {value!r}") from e
