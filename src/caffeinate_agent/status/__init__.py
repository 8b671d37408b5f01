"""
Caffeinate Agent - 状态显示模块

显示面类型:
    - StatusSurface: 抽象基类，定义 set_status(key, text) 接口
    - NoopStatus: 空操作显示面
    - ConsoleStatus: 写到 stderr
    - ZulipStatus: 推送到 Zulip 流

显示面只是展示保活状态，失败时静默降级，不影响状态机。
"""

from caffeinate_agent.config import Config
from caffeinate_agent.status.base import AWAKE_TEXT, ConsoleStatus, NoopStatus, StatusSurface
from caffeinate_agent.status.zulip_status import ZulipStatus


def create_status(config: Config, quiet: bool = False) -> StatusSurface:
    """
    根据配置创建显示面

    优先级:
        1. Zulip 配置完整有效 → ZulipStatus
        2. quiet → NoopStatus
        3. 否则 → ConsoleStatus

    Args:
        config: 运行时配置
        quiet: 是否关闭控制台输出

    Returns:
        StatusSurface: 显示面实例
    """
    zulip_config = config.zulip
    if zulip_config.is_valid():
        return ZulipStatus(
            site=zulip_config.site,
            email=zulip_config.email,
            api_key=zulip_config.api_key,
            stream=zulip_config.stream,
        )
    if zulip_config.enabled:
        print(f"Warning: ZULIP_ENABLED is set but missing {', '.join(zulip_config.missing())}")
    if quiet:
        return NoopStatus()
    return ConsoleStatus()


__all__ = [
    "AWAKE_TEXT",
    "StatusSurface",
    "NoopStatus",
    "ConsoleStatus",
    "ZulipStatus",
    "create_status",
]
