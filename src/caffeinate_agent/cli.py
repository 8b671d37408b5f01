"""
Caffeinate Agent - CLI 命令行接口模块

本模块提供命令行界面。
主要命令:
    - run: 在保活保护下运行代理命令
    - hold: 保持唤醒直到 Ctrl+C
    - check: 显示当前平台使用的保活机制

使用示例:
    caf run -- claude -p "实现用户认证功能"
    caf hold
    caf check
    caf -C caffeinate.yaml -v run -- python long_job.py
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from caffeinate_agent import __version__
from caffeinate_agent.config import Config, ConfigError, get_config
from caffeinate_agent.core.host import build_controller, hold, run_agent
from caffeinate_agent.core.platform import resolve_inhibition_method
from caffeinate_agent.status import create_status


def _setup_logging(config: Config, verbose: bool) -> None:
    """按配置或 --verbose 初始化日志"""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_run(args, config: Config) -> int:
    """
    运行代理命令处理函数

    Args:
        args: argparse 解析后的参数对象
            - command: 代理命令及参数（"--" 之后的部分）
        config: 运行时配置

    Returns:
        int: 代理的退出码
    """
    command = list(args.command)
    # argparse.REMAINDER 会保留开头的 "--"
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        print("ERROR: no command given, usage: caf run -- <command> [args...]")
        return 2

    status = create_status(config, quiet=args.quiet)
    controller = build_controller(config, status=status)
    try:
        return run_agent(command, controller=controller)
    finally:
        # 等待最后的状态消息发出
        status.close()


def cmd_hold(args, config: Config) -> int:
    """
    保持唤醒命令处理函数

    阻塞直到 Ctrl+C 或 SIGTERM。

    Returns:
        int: 0 表示保活成功，1 表示平台不支持或辅助进程启动失败
    """
    status = create_status(config, quiet=args.quiet)
    controller = build_controller(config, status=status)
    if not controller.supported:
        print("Sleep inhibition is not supported on this platform (or disabled)")
        return 1

    print("Keeping the system awake, press Ctrl+C to stop...")
    try:
        engaged = hold(controller)
    finally:
        status.close()
    return 0 if engaged else 1


def cmd_check(args, config: Config) -> int:
    """
    显示保活机制命令处理函数

    以 JSON 格式输出，便于脚本解析。

    Returns:
        int: 0 表示支持，1 表示不支持或已禁用
    """
    if not config.enabled:
        print("Sleep inhibition disabled by configuration")
        return 1

    spec = resolve_inhibition_method(who=config.who, why=config.why)
    if spec is None:
        print("unsupported")
        return 1

    print(json.dumps({"kind": spec.kind.value, "argv": spec.argv}, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """创建命令行解析器"""
    parser = argparse.ArgumentParser(
        prog="caf",
        description="Keep the machine awake while an agent is working",
    )

    # 全局参数定义
    parser.add_argument(
        "--config", "-C",
        default=None,
        help="YAML config file path",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Do not print status changes to the console",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command_name", required=True)

    run_parser = subparsers.add_parser(
        "run",
        help="Run an agent command, keeping the machine awake until it exits",
    )
    run_parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="The command to run (put it after --)",
    )

    subparsers.add_parser(
        "hold",
        help="Keep the machine awake until interrupted",
    )

    subparsers.add_parser(
        "check",
        help="Show the inhibition mechanism for this platform",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI 主入口函数

    Args:
        argv: 命令行参数（默认读取 sys.argv）

    Returns:
        int: 程序退出码
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = get_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2

    _setup_logging(config, args.verbose)

    if args.command_name == "run":
        return cmd_run(args, config)
    elif args.command_name == "hold":
        return cmd_hold(args, config)
    elif args.command_name == "check":
        return cmd_check(args, config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
