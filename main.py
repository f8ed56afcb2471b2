#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
gatesync 主启动文件
支持两种运行模式：
1. 控制器模式 - 持续监听集群资源并同步网关配置
2. dry-run模式 - 计算一次变更集并输出，不修改网关
"""

import argparse
import asyncio
import sys
import urllib3

from gatesync.core.config import Settings
from gatesync.core.errors import FatalError
from gatesync.core.logger import setup_logger
from gatesync.modes.controller_mode import ControllerMode
from gatesync.modes.dry_run_mode import DryRunMode


async def main():
    """主启动函数"""
    parser = argparse.ArgumentParser(description="gatesync")
    parser.add_argument(
        "--mode",
        choices=["controller", "dry-run"],
        default="controller",
        help="运行模式: controller(控制器) 或 dry-run(只输出变更集)",
    )
    parser.add_argument("--port", type=int, default=8000, help="状态API端口 (默认: 8000)")
    parser.add_argument("--host", default="0.0.0.0", help="状态API地址 (默认: 0.0.0.0)")
    parser.add_argument("--config", help="配置文件路径")

    args = parser.parse_args()

    try:
        # 初始化配置
        settings = Settings(config_file=args.config)
    except FatalError as e:
        print(f"配置错误: {e.message}", file=sys.stderr)
        sys.exit(2)

    # 设置日志
    logger = setup_logger(settings.log_level)
    logger.info("启动 gatesync - 模式: %s", args.mode)

    try:
        if args.mode == "dry-run":
            await DryRunMode(settings).start()
        else:
            await ControllerMode(settings).start(host=args.host, port=args.port)

    except KeyboardInterrupt:
        logger.info("收到停止信号，正在关闭服务...")
    except FatalError as e:
        logger.error("启动失败: %s", e.message)
        sys.exit(2)
    except Exception as e:
        logger.error("运行失败: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    urllib3.disable_warnings()
    asyncio.run(main())
