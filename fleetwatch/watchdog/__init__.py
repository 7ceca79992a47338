"""
主机看门狗 (Per-host Watchdog)

部署在被监控主机上，由 cron 或 systemd timer 周期触发，每次执行一次 tick。
"""
from fleetwatch.watchdog.config import WatchdogConfig, load_config
from fleetwatch.watchdog.state import StateStore, WatchdogState, WatchdogStatus
from fleetwatch.watchdog.watchdog import Watchdog, WatchdogTickResult

__all__ = [
    "StateStore",
    "Watchdog",
    "WatchdogConfig",
    "WatchdogState",
    "WatchdogStatus",
    "WatchdogTickResult",
    "load_config",
]
