"""
Caffeinate Agent - 宿主接线模块

把真实的代理进程转换为生命周期信号，驱动保活控制器。

执行流程 (run_agent):
    1. 创建事件总线与控制器，订阅信号，注册 atexit 兜底
    2. 发出 work-started
    3. 运行代理命令直到结束（继承终端的 stdin/stdout/stderr）
    4. 发出 work-ended 与 process-shutting-down
    5. 返回代理的退出码

支持的信号:
    - SIGINT: Ctrl+C
    - SIGTERM: 终止信号
    SIGINT 只交给代理处理（交互式代理用 Ctrl+C 取消单轮，仍在工作），保活不变；
    SIGTERM 先发出 process-shutting-down，再转发给代理进程。
"""

import logging
import signal
import subprocess
import threading
from typing import Callable, List, Optional, Sequence

from caffeinate_agent.config import Config, get_config
from caffeinate_agent.core.controller import KeepAwakeController
from caffeinate_agent.core.events import (
    PROCESS_SHUTTING_DOWN,
    WORK_ENDED,
    WORK_STARTED,
    EventBus,
)
from caffeinate_agent.core.platform import resolve_inhibition_method
from caffeinate_agent.core.supervisor import ProcessSupervisor
from caffeinate_agent.status.base import StatusSurface

logger = logging.getLogger(__name__)

# 与 shell 一致
EXIT_COMMAND_NOT_FOUND = 127
EXIT_PERMISSION_DENIED = 126

_HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_controller(
    config: Config,
    status: Optional[StatusSurface] = None,
    system: Optional[str] = None,
) -> KeepAwakeController:
    """
    根据配置创建控制器

    Args:
        config: 运行时配置
        status: 状态显示面（可选）
        system: 系统名称（测试时注入）

    Returns:
        KeepAwakeController: 未绑定信号的控制器
    """
    spec = None
    if config.enabled:
        spec = resolve_inhibition_method(system, who=config.who, why=config.why)
    supervisor = ProcessSupervisor(stop_timeout=config.stop_timeout, system=system)
    return KeepAwakeController(
        supervisor=supervisor,
        spec=spec,
        status=status,
        status_key=config.status_key,
    )


def _install_signal_handlers(on_signal: Callable[[int], None]) -> dict:
    """注册信号处理器，返回之前的处理器以便恢复；非主线程时不注册"""
    if threading.current_thread() is not threading.main_thread():
        return {}

    previous = {}

    def handler(sig, frame):
        on_signal(sig)

    for sig in _HANDLED_SIGNALS:
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        # None 表示之前的处理器不是从 Python 注册的
        signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def run_agent(
    argv: Sequence[str],
    controller: Optional[KeepAwakeController] = None,
    events: Optional[EventBus] = None,
    config: Optional[Config] = None,
    status: Optional[StatusSurface] = None,
    popen: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> int:
    """
    在保活保护下运行代理命令

    Args:
        argv: 代理命令及参数
        controller: 控制器（可选，默认按配置创建）
        events: 事件总线（可选）
        config: 运行时配置（可选，默认加载）
        status: 状态显示面（仅在创建控制器时使用）
        popen: 子进程工厂（测试时注入）

    Returns:
        int: 代理的退出码；被信号杀死时返回 128 + 信号值
    """
    command: List[str] = list(argv)
    if not command:
        raise ValueError("No agent command given")

    events = events or EventBus()
    if controller is None:
        controller = build_controller(config or get_config(), status=status)
    controller.bind(events)
    controller.install_exit_hook()

    agent: Optional[subprocess.Popen] = None

    def on_signal(sig: int) -> None:
        if sig == signal.SIGINT:
            # Ctrl+C 随前台进程组送达代理，由代理自行决定是否退出
            logger.debug("SIGINT left to the agent; still holding the system awake")
            return
        logger.info("Received signal %s, shutting down", sig)
        events.emit(PROCESS_SHUTTING_DOWN)
        if agent is not None and agent.poll() is None:
            agent.send_signal(sig)

    previous = _install_signal_handlers(on_signal)
    try:
        events.emit(WORK_STARTED)
        try:
            agent = popen(command)
        except FileNotFoundError:
            print(f"ERROR: command not found: {command[0]}")
            return EXIT_COMMAND_NOT_FOUND
        except PermissionError:
            print(f"ERROR: permission denied: {command[0]}")
            return EXIT_PERMISSION_DENIED

        while True:
            try:
                returncode = agent.wait()
                break
            except KeyboardInterrupt:
                # 未能注册信号处理器时的退路，同样交给代理处理
                logger.debug("KeyboardInterrupt left to the agent")

        logger.info("Agent exited with code %s", returncode)
        return 128 - returncode if returncode < 0 else returncode
    finally:
        events.emit(WORK_ENDED)
        events.emit(PROCESS_SHUTTING_DOWN)
        _restore_signal_handlers(previous)


def hold(
    controller: KeepAwakeController,
    events: Optional[EventBus] = None,
    stop_event: Optional[threading.Event] = None,
) -> bool:
    """
    保持唤醒直到收到 Ctrl+C / SIGTERM 或 stop_event 被设置

    Args:
        controller: 控制器
        events: 事件总线（可选）
        stop_event: 外部停止信号（测试时注入）

    Returns:
        bool: 保持期间是否真正处于保活状态
    """
    events = events or EventBus()
    stop_event = stop_event or threading.Event()
    controller.bind(events)
    controller.install_exit_hook()

    previous = _install_signal_handlers(lambda sig: stop_event.set())
    try:
        events.emit(WORK_STARTED)
        engaged = controller.is_active
        if not engaged:
            print("Warning: sleep inhibitor is not running; system may sleep")
        try:
            while not stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            pass
        return engaged
    finally:
        events.emit(PROCESS_SHUTTING_DOWN)
        _restore_signal_handlers(previous)
