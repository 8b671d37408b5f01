"""
Caffeinate Agent - 配置管理模块

本模块负责加载和管理应用程序配置。
配置优先级（从高到低）:
    1. 环境变量 (CAFFEINATE_*, ZULIP_*)
    2. YAML 配置文件
    3. 默认值

配置项说明:
    保活配置:
        - enabled: 是否启用保活（false 时控制器永久空操作）
        - who: systemd-inhibit 中显示的应用名称
        - why: systemd-inhibit 中显示的原因
        - stop_timeout: 优雅终止辅助进程的等待秒数
        - status_key: 状态栏显示使用的键
        - log_level: 日志级别

    Zulip 状态配置:
        - enabled: 是否启用 Zulip 状态推送
        - site: Zulip 服务器 URL
        - email: 机器人邮箱地址
        - api_key: API 密钥
        - stream: 目标流名称
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml


class CaffeinateError(Exception):
    """Caffeinate Agent 异常基类"""


class ConfigError(CaffeinateError):
    """配置文件或环境变量取值非法"""


def _parse_bool(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name}: expected a boolean, got {value!r}")


def _parse_float(value, name: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: expected a number, got {value!r}") from None
    if result <= 0:
        raise ConfigError(f"{name}: must be positive, got {value!r}")
    return result


@dataclass
class ZulipConfig:
    """
    保活状态推送到 Zulip 流时使用的连接参数

    只从 ZULIP_* 环境变量读取，避免把 API 密钥写进 YAML 文件。
    """
    enabled: bool
    site: Optional[str]
    email: Optional[str]
    api_key: Optional[str]
    stream: Optional[str]

    @classmethod
    def from_env(cls) -> "ZulipConfig":
        return cls(
            enabled=os.getenv("ZULIP_ENABLED", "").strip().lower() in ("1", "true", "yes", "on"),
            site=os.getenv("ZULIP_SITE"),
            email=os.getenv("ZULIP_EMAIL"),
            api_key=os.getenv("ZULIP_API_KEY"),
            stream=os.getenv("ZULIP_STREAM"),
        )

    def missing(self) -> List[str]:
        """返回未设置的 ZULIP_* 环境变量名"""
        fields = (
            ("ZULIP_SITE", self.site),
            ("ZULIP_EMAIL", self.email),
            ("ZULIP_API_KEY", self.api_key),
            ("ZULIP_STREAM", self.stream),
        )
        return [name for name, value in fields if not value]

    def is_valid(self) -> bool:
        return self.enabled and not self.missing()


@dataclass
class Config:
    """
    运行时配置数据类

    Attributes:
        enabled: 是否启用保活
        who: 抑制锁持有者名称
        why: 抑制锁原因
        stop_timeout: 终止辅助进程时的优雅等待秒数
        status_key: 状态显示键
        log_level: 日志级别名称
        zulip: Zulip 状态推送配置
    """
    enabled: bool
    who: str
    why: str
    stop_timeout: float
    status_key: str
    log_level: str
    zulip: ZulipConfig

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        加载配置（支持多来源合并）

        加载优先级（后加载的覆盖先加载的）:
            1. 默认值
            2. YAML 配置文件（如果提供且存在）
            3. 环境变量

        Args:
            config_path: YAML 配置文件路径（可选）

        Returns:
            Config: 加载的配置对象

        Raises:
            ConfigError: YAML 格式错误或取值非法

        示例 YAML 文件格式:
            enabled: true
            who: my-agent
            why: Refactoring the codebase
            stop_timeout: 2
        """
        # 1. 设置默认值
        enabled = True
        who = "caffeinate-agent"
        why = "Agent is working"
        stop_timeout = 2.0
        status_key = "caffeinate"
        log_level = "WARNING"

        # 2. 从配置文件加载（如果存在）
        if config_path and Path(config_path).exists():
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path}: top level must be a mapping")
            enabled = _parse_bool(data.get("enabled", enabled), "enabled")
            who = str(data.get("who", who))
            why = str(data.get("why", why))
            stop_timeout = _parse_float(data.get("stop_timeout", stop_timeout), "stop_timeout")
            status_key = str(data.get("status_key", status_key))
            log_level = str(data.get("log_level", log_level))

        # 3. 环境变量覆盖
        if env_enabled := os.getenv("CAFFEINATE_ENABLED"):
            enabled = _parse_bool(env_enabled, "CAFFEINATE_ENABLED")
        if env_who := os.getenv("CAFFEINATE_WHO"):
            who = env_who
        if env_why := os.getenv("CAFFEINATE_WHY"):
            why = env_why
        if env_timeout := os.getenv("CAFFEINATE_STOP_TIMEOUT"):
            stop_timeout = _parse_float(env_timeout, "CAFFEINATE_STOP_TIMEOUT")
        if env_key := os.getenv("CAFFEINATE_STATUS_KEY"):
            status_key = env_key
        if env_level := os.getenv("CAFFEINATE_LOG_LEVEL"):
            log_level = env_level

        # 4. 加载 Zulip 配置（仅从环境变量）
        zulip = ZulipConfig.from_env()

        return cls(
            enabled=enabled,
            who=who,
            why=why,
            stop_timeout=stop_timeout,
            status_key=status_key,
            log_level=log_level.upper(),
            zulip=zulip,
        )


def get_config(config_path: Optional[Path] = None) -> Config:
    """
    获取配置（便捷函数）

    Args:
        config_path: YAML 配置文件路径（可选）

    Returns:
        Config: 加载的配置对象
    """
    return Config.load(config_path)
