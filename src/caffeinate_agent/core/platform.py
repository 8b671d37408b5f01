"""
Caffeinate Agent - 平台解析模块

本模块根据当前操作系统选择阻止空闲睡眠的外部命令。
纯函数，无副作用；不支持的平台返回 None，控制器随之成为永久空操作。

支持的机制:
    - MACOS:   caffeinate -i
               创建 "prevent user idle system sleep" 断言
    - LINUX:   systemd-inhibit --what=idle ... sleep infinity
               通过 logind 持有 idle 抑制锁，不阻止挂起、关机或注销
    - WINDOWS: powershell.exe 调用 SetThreadExecutionState
               设置 ES_CONTINUOUS | ES_SYSTEM_REQUIRED 后无限休眠，
               进程以任何方式结束时由系统自动清除该标志

所有机制都只作用于空闲超时，绝不阻止屏幕睡眠或合盖睡眠。
"""

import platform as _platform
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple


class PlatformKind(Enum):
    """抑制机制的分派键"""
    MACOS = "macos"
    LINUX = "linux"
    WINDOWS = "windows"


@dataclass(frozen=True)
class InhibitionSpec:
    """
    外部保活命令描述

    Attributes:
        kind: 平台类型
        command: 可执行文件名
        args: 命令参数
    """
    kind: PlatformKind
    command: str
    args: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        """完整的命令行参数列表"""
        return [self.command, *self.args]


# ES_CONTINUOUS (0x80000000) | ES_SYSTEM_REQUIRED (0x00000001)
# 不包含 ES_DISPLAY_REQUIRED，屏幕仍可正常关闭
ES_SYSTEM_IDLE_FLAGS = 0x80000001

WINDOWS_HELPER_SCRIPT = (
    "$sig = '[DllImport(\"kernel32.dll\")] "
    "public static extern uint SetThreadExecutionState(uint esFlags);'; "
    "$t = Add-Type -MemberDefinition $sig -Name PowerState "
    "-Namespace CaffeinateAgent -PassThru; "
    f"[void]$t::SetThreadExecutionState([uint32]{ES_SYSTEM_IDLE_FLAGS}); "
    "while ($true) { Start-Sleep -Seconds 3600 }"
)

_SYSTEMS = {
    "darwin": PlatformKind.MACOS,
    "linux": PlatformKind.LINUX,
    "windows": PlatformKind.WINDOWS,
}


def platform_kind(system: Optional[str] = None) -> Optional[PlatformKind]:
    """
    将操作系统名称映射为平台类型

    Args:
        system: platform.system() 风格的系统名称，默认读取当前系统

    Returns:
        PlatformKind | None: 不支持的系统返回 None
    """
    if system is None:
        system = _platform.system()
    return _SYSTEMS.get(system.lower())


def resolve_inhibition_method(
    system: Optional[str] = None,
    *,
    who: str = "caffeinate-agent",
    why: str = "Agent is working",
) -> Optional[InhibitionSpec]:
    """
    解析当前平台的保活命令

    Args:
        system: 系统名称（测试时注入），默认读取当前系统
        who: systemd-inhibit 的 --who 参数
        why: systemd-inhibit 的 --why 参数

    Returns:
        InhibitionSpec | None: 不支持的平台返回 None
    """
    kind = platform_kind(system)

    if kind is PlatformKind.MACOS:
        return InhibitionSpec(kind, "caffeinate", ("-i",))

    if kind is PlatformKind.LINUX:
        # 包装 sleep infinity，锁一直持有到进程被杀死
        return InhibitionSpec(
            kind,
            "systemd-inhibit",
            (
                "--what=idle",
                f"--who={who}",
                f"--why={why}",
                "--mode=block",
                "sleep", "infinity",
            ),
        )

    if kind is PlatformKind.WINDOWS:
        return InhibitionSpec(
            kind,
            "powershell.exe",
            ("-NoProfile", "-NonInteractive", "-Command", WINDOWS_HELPER_SCRIPT),
        )

    return None
