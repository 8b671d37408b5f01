"""
Caffeinate Agent - 核心模块

本模块包含保活的核心组件：
    - KeepAwakeController: IDLE / ACTIVE 状态机控制器
    - ProcessSupervisor: 辅助进程启动与终止
    - resolve_inhibition_method: 平台保活命令解析
    - EventBus: 生命周期信号总线
    - run_agent / hold: 宿主接线

使用示例:
    from caffeinate_agent.core import EventBus, KeepAwakeController, WORK_STARTED, WORK_ENDED

    events = EventBus()
    controller = KeepAwakeController().bind(events)
    controller.install_exit_hook()

    events.emit(WORK_STARTED)
    ...  # 长时间运行的工作
    events.emit(WORK_ENDED)
"""

from caffeinate_agent.core.controller import ControllerState, KeepAwakeController
from caffeinate_agent.core.events import (
    PROCESS_SHUTTING_DOWN,
    WORK_ENDED,
    WORK_STARTED,
    EventBus,
)
from caffeinate_agent.core.host import build_controller, hold, run_agent
from caffeinate_agent.core.platform import (
    InhibitionSpec,
    PlatformKind,
    platform_kind,
    resolve_inhibition_method,
)
from caffeinate_agent.core.supervisor import InhibitorHandle, ProcessSupervisor

__all__ = [
    "ControllerState",
    "KeepAwakeController",
    "EventBus",
    "WORK_STARTED",
    "WORK_ENDED",
    "PROCESS_SHUTTING_DOWN",
    "build_controller",
    "hold",
    "run_agent",
    "InhibitionSpec",
    "PlatformKind",
    "platform_kind",
    "resolve_inhibition_method",
    "InhibitorHandle",
    "ProcessSupervisor",
]
