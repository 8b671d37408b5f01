"""
Caffeinate Agent - 辅助进程监管模块

本模块负责启动、跟踪和终止持有保活状态的外部辅助进程。

执行流程:
    1. start(): 非阻塞启动辅助进程，输出全部丢弃
    2. 注册退出观察线程: 辅助进程以任何方式退出时清除存活标志
    3. stop(): 优雅终止 → 等待 → 强制终止

错误处理:
    - 辅助程序缺失或无权限: 记录警告，返回未存活的句柄，不抛出
    - 辅助进程自行退出: 观察线程清除存活标志，不自动重启
    - 重复 stop(): 空操作
"""

import logging
import platform
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from caffeinate_agent.core.platform import InhibitionSpec

logger = logging.getLogger(__name__)


@dataclass
class InhibitorHandle:
    """
    外部保活进程句柄

    Attributes:
        spec: 启动所用的命令描述
        process: 子进程对象（启动失败时为 None）
        pid: 进程 ID
        live: 辅助进程是否存活
        error: 启动失败时记录的异常
    """
    spec: InhibitionSpec
    process: Optional[subprocess.Popen] = None
    pid: Optional[int] = None
    live: bool = False
    error: Optional[BaseException] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def mark_dead(self) -> bool:
        """
        清除存活标志

        Returns:
            bool: 本次调用是否真正改变了状态
        """
        with self._lock:
            was_live = self.live
            self.live = False
            return was_live


ExitCallback = Callable[[InhibitorHandle], None]


class ProcessSupervisor:
    """
    辅助进程监管器

    Attributes:
        stop_timeout: 优雅终止后等待进程退出的秒数
        system: 系统名称，决定终止策略
    """

    def __init__(
        self,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        stop_timeout: float = 2.0,
        system: Optional[str] = None,
    ):
        self._popen = popen
        self.stop_timeout = stop_timeout
        self.system = system or platform.system()

    @property
    def is_windows(self) -> bool:
        return self.system.lower() == "windows"

    def _detach_kwargs(self) -> dict:
        """
        让辅助进程脱离终端的前台进程组

        终端里的 Ctrl+C 会发给整个前台进程组，辅助进程不能跟着代理一起收到。
        """
        if self.is_windows:
            # subprocess.CREATE_NEW_PROCESS_GROUP 只在 Windows 上定义
            return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0x00000200)}
        return {"start_new_session": True}

    def start(self, spec: InhibitionSpec, on_exit: Optional[ExitCallback] = None) -> InhibitorHandle:
        """
        启动辅助进程（非阻塞）

        Args:
            spec: 要执行的命令描述
            on_exit: 辅助进程退出时的回调，在观察线程中调用

        Returns:
            InhibitorHandle: 启动失败时 live=False 且 error 非空
        """
        handle = InhibitorHandle(spec=spec)
        try:
            process = self._popen(
                spec.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **self._detach_kwargs(),
            )
        except FileNotFoundError as e:
            handle.error = e
            logger.warning("Sleep inhibitor tool not found (tried: %s). System may sleep.", spec.command)
            return handle
        except (OSError, ValueError) as e:
            handle.error = e
            logger.warning("Could not start sleep inhibitor %s: %s", spec.command, e)
            return handle

        handle.process = process
        handle.pid = process.pid
        handle.live = True
        logger.debug("Started %s (pid %s)", spec.command, process.pid)

        watcher = threading.Thread(
            target=self._watch,
            args=(handle, on_exit),
            name=f"inhibitor-watch-{process.pid}",
            daemon=True,
        )
        watcher.start()
        return handle

    def _watch(self, handle: InhibitorHandle, on_exit: Optional[ExitCallback]) -> None:
        """退出观察线程：等待辅助进程结束并清除存活标志"""
        try:
            returncode = handle.process.wait()
        except Exception:
            logger.exception("Error while waiting for inhibitor pid %s", handle.pid)
            returncode = None

        if handle.mark_dead():
            logger.info("Sleep inhibitor pid %s exited on its own (code %s)", handle.pid, returncode)
        else:
            logger.debug("Sleep inhibitor pid %s exited (code %s)", handle.pid, returncode)

        if on_exit is not None:
            try:
                on_exit(handle)
            except Exception:
                logger.exception("Inhibitor exit callback failed")

    def stop(self, handle: Optional[InhibitorHandle]) -> bool:
        """
        终止辅助进程（幂等）

        非 Windows 平台先发送 SIGTERM，超时后 SIGKILL；
        Windows 不支持优雅信号，直接用 taskkill 强制结束整个进程树。

        Args:
            handle: 要终止的句柄，None 或未存活时为空操作

        Returns:
            bool: 是否发出了终止调用
        """
        if handle is None or not handle.mark_dead():
            return False

        process = handle.process
        try:
            if self.is_windows:
                self._kill_tree(process)
            else:
                process.terminate()
                try:
                    process.wait(timeout=self.stop_timeout)
                except subprocess.TimeoutExpired:
                    # 拒绝退出时强制杀死
                    logger.warning("Sleep inhibitor pid %s ignored SIGTERM, killing", handle.pid)
                    process.kill()
                    process.wait(timeout=self.stop_timeout)
        except ProcessLookupError:
            # 已经退出
            pass
        except Exception:
            logger.exception("Failed to stop sleep inhibitor pid %s", handle.pid)

        logger.debug("Stopped sleep inhibitor pid %s", handle.pid)
        return True

    def _kill_tree(self, process: subprocess.Popen) -> None:
        """Windows: 强制结束进程及其子进程"""
        try:
            subprocess.run(
                ["taskkill", "/PID", str(process.pid), "/T", "/F"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.stop_timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("taskkill unavailable (%s), falling back to Popen.kill()", e)
            process.kill()
