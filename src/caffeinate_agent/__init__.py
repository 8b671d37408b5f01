"""
Caffeinate Agent - 代理工作期间阻止系统空闲睡眠

一个极简的生命周期守卫，在代理进程工作时保持主机唤醒，
工作结束或宿主进程退出时立即恢复正常的空闲睡眠行为。

主要特性:
    - 双状态机 (IDLE / ACTIVE) 驱动的保活控制器
    - macOS (caffeinate)、Linux (systemd-inhibit)、Windows (SetThreadExecutionState)
    - 辅助进程异常退出自动感知，宿主退出时兜底释放
    - 可选的状态栏 / Zulip 状态显示

版本: 1.0.0
许可: MIT
"""

__version__ = "1.0.0"
