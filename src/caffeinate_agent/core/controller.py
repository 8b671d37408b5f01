"""
Caffeinate Agent - 保活控制器模块

本模块实现核心控制器：根据代理生命周期信号启动或停止保活辅助进程。

状态机流转:
    ┌────────┐  work-started   ┌──────────┐
    │  IDLE  │────────────────▶│  ACTIVE  │──┐ work-started (空操作)
    └────────┘                 └──────────┘◀─┘
        ▲  ▲                      │   │
        │  │  work-ended          │   │ 辅助进程自行退出
        │  └──────────────────────┘   │ (不自动重启)
        │     process-shutting-down   │
        │     宿主进程退出 (atexit)     │
        └─────────────────────────────┘

约束:
    - 任意时刻最多一个存活的辅助进程（无引用计数）
    - IDLE 状态下的 work-ended / process-shutting-down 为空操作
    - 启动失败时保持 IDLE，不报告虚假的保护状态
    - 所有异常在此吞掉并记录，绝不传播给宿主的事件分发器
"""

import atexit
import logging
import threading
from enum import Enum
from typing import Callable, Optional, Union

from caffeinate_agent.core.events import PROCESS_SHUTTING_DOWN, WORK_ENDED, WORK_STARTED
from caffeinate_agent.core.platform import InhibitionSpec, resolve_inhibition_method
from caffeinate_agent.core.supervisor import InhibitorHandle, ProcessSupervisor
from caffeinate_agent.status.base import AWAKE_TEXT, NoopStatus, StatusSurface

logger = logging.getLogger(__name__)


class _Default(Enum):
    """占位默认值：表示"按当前平台解析"，与显式传入的 None 区分"""
    RESOLVE = "resolve"


class ControllerState(Enum):
    """
    控制器状态

    - IDLE: 无存活的辅助进程，系统可正常空闲睡眠
    - ACTIVE: 辅助进程存活，空闲睡眠被阻止
    """
    IDLE = "idle"
    ACTIVE = "active"


class KeepAwakeController:
    """
    保活控制器

    每个宿主进程构造一次，独占唯一的 InhibitorHandle。

    Attributes:
        supervisor: 辅助进程监管器
        spec: 当前平台的保活命令，None 表示平台不支持（永久空操作）
        status: 状态显示面
        status_key: 状态显示键
    """

    def __init__(
        self,
        supervisor: Optional[ProcessSupervisor] = None,
        spec: Union[InhibitionSpec, None, _Default] = _Default.RESOLVE,
        status: Optional[StatusSurface] = None,
        status_key: str = "caffeinate",
    ):
        """
        初始化控制器

        Args:
            supervisor: 辅助进程监管器，默认新建
            spec: 保活命令描述；省略时按当前平台解析，显式传 None 表示禁用
            status: 状态显示面（可选）
            status_key: 状态显示键
        """
        self.supervisor = supervisor or ProcessSupervisor()
        self.spec: Optional[InhibitionSpec] = (
            resolve_inhibition_method() if spec is _Default.RESOLVE else spec
        )
        self.status = status or NoopStatus()
        self.status_key = status_key

        self._handle: Optional[InhibitorHandle] = None
        self._lock = threading.RLock()
        self._status_shown = False
        self._exit_hook_installed = False

        if self.spec is None:
            logger.info("Sleep inhibition unsupported or disabled; controller is a no-op")

    # ==================== 状态查询 ====================

    @property
    def supported(self) -> bool:
        return self.spec is not None

    @property
    def handle(self) -> Optional[InhibitorHandle]:
        return self._handle

    @property
    def is_active(self) -> bool:
        handle = self._handle
        return handle is not None and handle.live

    @property
    def state(self) -> ControllerState:
        return ControllerState.ACTIVE if self.is_active else ControllerState.IDLE

    # ==================== 状态转换 ====================

    def engage(self) -> bool:
        """
        进入 ACTIVE 状态

        已处于 ACTIVE 时为空操作；平台不支持时为空操作；
        辅助进程启动失败时保持 IDLE。

        Returns:
            bool: 调用后是否处于 ACTIVE
        """
        with self._lock:
            try:
                if self.spec is None:
                    return False
                if self.is_active:
                    return True

                handle = self.supervisor.start(self.spec, on_exit=self._on_helper_exit)
                if not handle.live:
                    self._handle = None
                    return False

                self._handle = handle
                logger.info("Idle sleep inhibited (%s, pid %s)", self.spec.command, handle.pid)
                self._publish(AWAKE_TEXT)
                return True
            except Exception:
                logger.exception("Failed to engage sleep inhibitor")
                return self.is_active

    def disengage(self) -> bool:
        """
        回到 IDLE 状态（幂等）

        Returns:
            bool: 是否实际终止了辅助进程
        """
        with self._lock:
            handle = self._handle
            self._handle = None
            stopped = False
            try:
                if handle is not None:
                    stopped = self.supervisor.stop(handle)
                    if stopped:
                        logger.info("Idle sleep allowed again (pid %s stopped)", handle.pid)
            except Exception:
                logger.exception("Failed to disengage sleep inhibitor")
            self._clear_status()
            return stopped

    def _on_helper_exit(self, handle: InhibitorHandle) -> None:
        """辅助进程自行退出：回到 IDLE，不重启"""
        with self._lock:
            if handle is not self._handle:
                # 已被 disengage() 或新的 engage() 替换
                return
            self._handle = None
            logger.warning("Sleep inhibitor exited unexpectedly; system is unprotected until next work-started")
            self._clear_status()

    # ==================== 状态显示 ====================

    def _publish(self, text: str) -> None:
        try:
            self.status.set_status(self.status_key, text)
            self._status_shown = True
        except Exception:
            logger.exception("Status surface failed")

    def _clear_status(self) -> None:
        if not self._status_shown:
            return
        self._status_shown = False
        try:
            self.status.set_status(self.status_key, None)
        except Exception:
            logger.exception("Status surface failed")

    # ==================== 生命周期信号 ====================

    def on_work_started(self) -> None:
        self.engage()

    def on_work_ended(self) -> None:
        self.disengage()

    def on_process_shutting_down(self) -> None:
        self.disengage()

    def bind(self, events) -> "KeepAwakeController":
        """
        订阅生命周期信号

        Args:
            events: 任何提供 on(name, handler) 的对象，如 EventBus

        Returns:
            KeepAwakeController: self，便于链式调用
        """
        events.on(WORK_STARTED, self.on_work_started)
        events.on(WORK_ENDED, self.on_work_ended)
        events.on(PROCESS_SHUTTING_DOWN, self.on_process_shutting_down)
        return self

    def install_exit_hook(self, register: Optional[Callable] = None) -> None:
        """
        注册宿主进程退出时的兜底释放

        生命周期信号在异常终止时不保证触发，atexit 钩子作为最后防线。
        SIGKILL 无法拦截，属于操作系统层面的限制。

        Args:
            register: 注册函数，默认 atexit.register（测试时注入）
        """
        with self._lock:
            if self._exit_hook_installed:
                return
            (register or atexit.register)(self._on_host_exit)
            self._exit_hook_installed = True

    def _on_host_exit(self) -> None:
        if self.disengage():
            logger.info("Released sleep inhibitor at host exit")
