"""
Caffeinate Agent - 状态显示接口模块

本模块定义了状态显示面的抽象接口和基础实现。

设计原则:
    1. 单向通信: Caffeinate Agent → 外部显示面（仅输出）
    2. 不影响状态机: 显示失败绝不能改变保活状态
    3. 异常安全: set_status() 必须捕获异常，永不抛出

接口:
    - set_status(key, text): text 为 None 表示清除
"""

import sys
from abc import ABC, abstractmethod
from typing import Optional, TextIO

AWAKE_TEXT = "☕ awake"


class StatusSurface(ABC):
    """
    状态显示面基类（抽象接口）

    重要约束:
        - 绝不影响保活决策
        - 绝不抛出异常（必须内部捕获）
    """

    @abstractmethod
    def set_status(self, key: str, text: Optional[str]) -> None:
        """
        更新状态显示

        Args:
            key: 状态项标识
            text: 显示文本，None 表示清除
        """
        pass

    def close(self) -> None:
        """释放资源；需要在退出前发送完剩余消息的实现覆盖此方法"""
        pass


class NoopStatus(StatusSurface):
    """空操作显示面，未配置显示或 --quiet 时使用"""

    def set_status(self, key: str, text: Optional[str]) -> None:
        pass


class ConsoleStatus(StatusSurface):
    """
    控制台显示面

    将状态变化写到 stderr，不干扰代理自身的 stdout。
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def set_status(self, key: str, text: Optional[str]) -> None:
        stream = self.stream or sys.stderr
        try:
            if text is None:
                print(f"[{key}] cleared", file=stream, flush=True)
            else:
                print(f"[{key}] {text}", file=stream, flush=True)
        except (OSError, ValueError) as e:
            # 流已关闭等情况
            print(f"[ConsoleStatus] Failed to write status: {e}", file=sys.__stderr__)
