"""
看门狗配置加载模块。

看门狗运行在被监控主机上（cron 或 systemd timer 触发），配置来自 YAML 文件。
支持环境变量覆盖通知密钥（FLEETWATCH_TELEGRAM_TOKEN 等）和时间简写（如 '5s'、'2m'）。
"""
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import yaml

from fleetwatch.core.exceptions import ConfigError


@dataclass
class ServiceConfig:
    """被看护的服务。"""
    name: str = "openclaw-gateway"
    health_url: str = "http://127.0.0.1:18789/health"
    health_timeout: int = 5


@dataclass
class RecoveryConfig:
    """两阶段恢复参数。"""
    failure_threshold: int = 2  # 连续失败达到该次数才开始恢复
    settle_seconds: int = 5     # 重启后等待再复检
    restart_timeout: int = 60


@dataclass
class PathsConfig:
    """状态文件、身份账本、配置与备份路径。"""
    state_file: str = "/var/lib/fleetwatch/watchdog-state.json"
    identity_file: str = "/home/openclaw/.amcp/identity.json"
    config_path: str = "/home/openclaw/.amcp/config.json"
    backup_dir: str = "/home/openclaw/.amcp/backups"
    log_file: str = "/var/log/fleetwatch-watchdog.log"


@dataclass
class VacuumConfig:
    """磁盘告警时的就地清理。"""
    journal_retention: str = "3d"
    log_dirs: List[str] = field(default_factory=lambda: ["/var/log", "/home/openclaw/logs"])
    log_retention_days: int = 7


@dataclass
class NotifyConfig:
    """告警渠道；为空时回退到身份文件中的 parent_bot_token / parent_chat_id。"""
    telegram_token: str = ""
    telegram_chat_id: str = ""
    email: str = ""


@dataclass
class WatchdogConfig:
    """看门狗主配置，聚合所有子配置。"""
    instance: str = ""
    interval: int = 120  # 触发周期（秒），供生成 cron / timer 使用
    service: ServiceConfig = field(default_factory=ServiceConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    vacuum: VacuumConfig = field(default_factory=VacuumConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)


def _parse_interval(val) -> int:
    """解析时间间隔，支持 '15s'、'2m'、'1h' 等简写格式。"""
    if isinstance(val, int):
        return val
    s = str(val).strip().lower()
    if s.endswith("s"):
        return int(s[:-1])
    if s.endswith("m"):
        return int(s[:-1]) * 60
    if s.endswith("h"):
        return int(s[:-1]) * 3600
    return int(s)


def load_config(path: str) -> WatchdogConfig:
    """从 YAML 文件加载看门狗配置。

    Args:
        path: 配置文件路径。

    Returns:
        解析后的 WatchdogConfig 实例。

    Raises:
        FileNotFoundError: 配置文件不存在时抛出。
        ConfigError: YAML 或字段格式错误。
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(p) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}", str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")

    cfg = WatchdogConfig()
    try:
        cfg.instance = data.get("instance", "") or socket.gethostname()
        cfg.interval = _parse_interval(data.get("interval", cfg.interval))

        svc = data.get("service", {})
        cfg.service.name = svc.get("name", cfg.service.name)
        cfg.service.health_url = svc.get("health_url", cfg.service.health_url)
        cfg.service.health_timeout = _parse_interval(svc.get("health_timeout", cfg.service.health_timeout))

        rec = data.get("recovery", {})
        cfg.recovery.failure_threshold = int(rec.get("failure_threshold", cfg.recovery.failure_threshold))
        cfg.recovery.settle_seconds = _parse_interval(rec.get("settle_seconds", cfg.recovery.settle_seconds))
        cfg.recovery.restart_timeout = _parse_interval(rec.get("restart_timeout", cfg.recovery.restart_timeout))

        paths = data.get("paths", {})
        for name in ("state_file", "identity_file", "config_path", "backup_dir", "log_file"):
            setattr(cfg.paths, name, paths.get(name, getattr(cfg.paths, name)))

        vac = data.get("vacuum", {})
        cfg.vacuum.journal_retention = str(vac.get("journal_retention", cfg.vacuum.journal_retention))
        cfg.vacuum.log_dirs = list(vac.get("log_dirs", cfg.vacuum.log_dirs))
        cfg.vacuum.log_retention_days = int(vac.get("log_retention_days", cfg.vacuum.log_retention_days))
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid watchdog config in {path}", str(e)) from e

    # 通知密钥优先从环境变量读取
    notify = data.get("notify", {}) or {}
    cfg.notify.telegram_token = os.environ.get("FLEETWATCH_TELEGRAM_TOKEN", notify.get("telegram_token", ""))
    cfg.notify.telegram_chat_id = str(os.environ.get("FLEETWATCH_TELEGRAM_CHAT_ID", notify.get("telegram_chat_id", "")))
    cfg.notify.email = os.environ.get("FLEETWATCH_ALERT_EMAIL", notify.get("email", ""))

    if cfg.recovery.failure_threshold < 1:
        raise ConfigError("recovery.failure_threshold must be at least 1")
    return cfg
