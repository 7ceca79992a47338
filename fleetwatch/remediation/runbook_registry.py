"""
Runbook 注册表：将失败的检查项匹配到静态 runbook 阶梯。

所有内置 runbook 在导入时注册。每个检查项有一条由轻到重的阶梯（LADDERS），
编排器每次尝试取阶梯上尚未失败过的下一级。没有阶梯的检查项按 detail 关键词回退。
"""
from __future__ import annotations

import logging

from .models import RunbookDefinition
from .runbooks import (
    config_restore,
    disk_cleanup,
    identity_regen,
    memory_pressure,
    service_restart,
    service_resuscitate,
)

logger = logging.getLogger(__name__)

_SERVICE_LADDER = ["service_restart", "service_resuscitate", "config_restore"]

LADDERS: dict[str, list[str]] = {
    "gateway_process": _SERVICE_LADDER,
    "health_endpoint": _SERVICE_LADDER,
    "disk": ["disk_temp_cleanup", "disk_log_vacuum", "disk_deep_clean"],
    "memory": ["memory_pressure", "service_restart", "service_resuscitate"],
    "config_valid": ["config_restore", "config_restore_previous"],
    "identity": ["identity_regen"],
}


class RunbookRegistry:
    """所有可用 runbook 的注册表。"""

    def __init__(self) -> None:
        self._runbooks: dict[str, RunbookDefinition] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        for runbook in [
            service_restart.RUNBOOK,
            service_resuscitate.RUNBOOK,
            disk_cleanup.TEMP_CLEANUP,
            disk_cleanup.LOG_VACUUM,
            disk_cleanup.DEEP_CLEAN,
            memory_pressure.RUNBOOK,
            config_restore.RUNBOOK,
            config_restore.PREVIOUS_RUNBOOK,
            identity_regen.RUNBOOK,
        ]:
            self.register(runbook)

    def register(self, runbook: RunbookDefinition) -> None:
        self._runbooks[runbook.name] = runbook
        logger.debug("Registered runbook: %s", runbook.name)

    def get(self, name: str) -> RunbookDefinition | None:
        return self._runbooks.get(name)

    def list_all(self) -> list[RunbookDefinition]:
        return list(self._runbooks.values())

    def match(self, check: str, detail: str = "") -> list[RunbookDefinition]:
        """返回检查项的 runbook 阶梯；没有阶梯时按 detail 关键词回退，按注册顺序返回。"""
        ladder = [rb for rb in map(self.get, LADDERS.get(check, [])) if rb is not None]
        if ladder:
            return ladder

        text = f"{check} {detail}".lower()
        by_keyword = [
            rb for rb in self._runbooks.values()
            if any(kw.lower() in text for kw in rb.match_keywords)
        ]
        if by_keyword:
            logger.info("Matched runbook '%s' for %s via keyword fallback", by_keyword[0].name, check)
        else:
            logger.info("No runbook for check %s", check)
        return by_keyword
