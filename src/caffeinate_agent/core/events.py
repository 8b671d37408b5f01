"""
Caffeinate Agent - 生命周期信号模块

宿主代理通过本模块的事件总线发出生命周期信号，控制器订阅这些信号。
控制器只依赖 on(name, handler) 接口，测试时可替换为任意同形对象。

信号:
    - work-started: 代理开始工作
    - work-ended: 代理工作结束
    - process-shutting-down: 宿主进程正在关闭
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

WORK_STARTED = "work-started"
WORK_ENDED = "work-ended"
PROCESS_SHUTTING_DOWN = "process-shutting-down"

LIFECYCLE_SIGNALS = (WORK_STARTED, WORK_ENDED, PROCESS_SHUTTING_DOWN)

Handler = Callable[[], None]


class EventBus:
    """
    串行分发的事件总线

    同一时刻只有一个信号在分发，处理函数抛出的异常被记录后吞掉，
    不影响其他处理函数，也不传播给发出信号的宿主。
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._dispatch_lock = threading.RLock()

    def on(self, name: str, handler: Handler) -> None:
        """订阅信号"""
        with self._dispatch_lock:
            self._handlers[name].append(handler)

    def off(self, name: str, handler: Handler) -> None:
        """取消订阅，未订阅时为空操作"""
        with self._dispatch_lock:
            try:
                self._handlers[name].remove(handler)
            except ValueError:
                pass

    def emit(self, name: str) -> int:
        """
        发出信号

        Args:
            name: 信号名称

        Returns:
            int: 成功执行的处理函数数量
        """
        with self._dispatch_lock:
            handlers = list(self._handlers.get(name, ()))
            delivered = 0
            for handler in handlers:
                try:
                    handler()
                    delivered += 1
                except Exception:
                    logger.exception("Handler for %s failed", name)
            return delivered
