"""
看门狗主循环 (Watchdog Tick)

每次 tick 执行一轮本机存活检查并推进状态机：

    HEALTHY ──错误──▶ CHECKING ──达到阈值──▶ 阶段一：重启服务
                                              │ 失败
                                              ▼
                                        阶段二：恢复备份 + 重启
                                              │ 失败
                                              ▼
                                             DEAD

任一阶段复检通过即记一次"死亡"并通知，状态进入 RECOVERED。
状态在每次 tick 结束时原子写回状态文件；写失败不影响本次判定。
本机检查自身崩溃（psutil / OS 错误）按一条失败记录，照常持久化。
"""
from __future__ import annotations

import asyncio
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

import psutil
from pydantic import BaseModel

from fleetwatch.core.exceptions import PersistenceError
from fleetwatch.models import CheckStatus, utcnow
from fleetwatch.services.notifier import Notifier, dead_message, resurrection_message

from .checks import LocalActions, LocalLiveness
from .config import WatchdogConfig
from .state import StateStore, WatchdogState, WatchdogStatus, read_identity, record_death

logger = logging.getLogger(__name__)

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 3


class WatchdogTickResult(BaseModel):
    """一次 tick 的结果。"""
    state: WatchdogStatus
    consecutive_failures: int = 0
    errors: list[str] = []
    action: Optional[str] = None  # restart / restore / vacuum
    deaths: Optional[int] = None
    persisted: bool = True


def setup_file_logging(log_file: str) -> Optional[logging.Handler]:
    """给根 logger 加一个 10MB 轮转的文件 handler；目录不可写时只用控制台。"""
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
    except OSError as e:
        logger.warning("File logging disabled, cannot open %s: %s", log_file, e)
        return None
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logging.getLogger().addHandler(handler)
    return handler


def notifier_for(cfg: WatchdogConfig) -> Notifier:
    """通知渠道：配置优先，缺省时使用身份文件里的 parent_bot_token / parent_chat_id。"""
    identity = read_identity(cfg.paths.identity_file)
    return Notifier(
        telegram_token=cfg.notify.telegram_token or str(identity.get("parent_bot_token") or ""),
        telegram_chat_id=cfg.notify.telegram_chat_id or str(identity.get("parent_chat_id") or ""),
        email=cfg.notify.email or str(identity.get("parent_email") or ""),
    )


class Watchdog:
    """单机看门狗。"""

    def __init__(
        self,
        config: WatchdogConfig,
        store: Optional[StateStore] = None,
        notifier: Optional[Notifier] = None,
        liveness: Optional[LocalLiveness] = None,
        actions: Optional[LocalActions] = None,
    ) -> None:
        self.config = config
        self.store = store or StateStore(config.paths.state_file)
        self.notifier = notifier or notifier_for(config)
        self.liveness = liveness or LocalLiveness(config)
        self.actions = actions or LocalActions(config)

    @property
    def label(self) -> str:
        return self.config.instance or "instance"

    async def tick(self) -> WatchdogTickResult:
        """执行一轮检查、必要时恢复，并持久化状态。"""
        prior = self.store.load()
        action: Optional[str] = None

        try:
            checks = await self.liveness.check_all()
            disk = next((c for c in checks if c.name == "disk"), None)
            if disk is not None and disk.status != CheckStatus.OK:
                logger.warning("Disk %s (%s), vacuuming", disk.status.value, disk.detail)
                await self.actions.vacuum()
                action = "vacuum"
                checks = [self.liveness.disk() if c.name == "disk" else c for c in checks]
            errors = [c.error_line() for c in checks if c.failed]
        except (OSError, psutil.Error) as e:
            logger.error("Local checks crashed: %s", e)
            errors = [f"local_checks: {e}"]

        result = await self._decide(prior, errors, action)

        state = WatchdogState(
            consecutive_failures=result.consecutive_failures,
            state=result.state,
            last_checked_at=utcnow(),
        )
        try:
            self.store.save(state)
        except PersistenceError as e:
            logger.error("%s: %s", e.message, e.detail)
            result.persisted = False
        return result

    async def _decide(
        self, prior: WatchdogState, errors: list[str], action: Optional[str]
    ) -> WatchdogTickResult:
        if not errors:
            if prior.state in (WatchdogStatus.CHECKING, WatchdogStatus.DEAD):
                logger.info("%s recovered after %d failures", self.label, prior.consecutive_failures)
                return WatchdogTickResult(state=WatchdogStatus.RECOVERED, action=action)
            return WatchdogTickResult(state=WatchdogStatus.HEALTHY, action=action)

        failures = prior.consecutive_failures + 1
        for line in errors:
            logger.warning("Check failed (%d): %s", failures, line)

        if prior.state == WatchdogStatus.DEAD:
            # 已经通知过，等待人工处理
            return WatchdogTickResult(
                state=WatchdogStatus.DEAD, consecutive_failures=failures, errors=errors, action=action
            )
        if failures < self.config.recovery.failure_threshold:
            return WatchdogTickResult(
                state=WatchdogStatus.CHECKING, consecutive_failures=failures, errors=errors, action=action
            )

        logger.warning("Stage 1: restarting %s", self.config.service.name)
        if await self._restart_and_verify():
            return await self._resurrected(errors, "restart", "service restart")

        logger.warning("Stage 2: restoring config from backup")
        if self.actions.restore_backup() is not None and await self._restart_and_verify():
            return await self._resurrected(errors, "restore", "backup restore")

        logger.critical("%s is DEAD after %d consecutive failures", self.label, failures)
        await self.notifier.notify(
            dead_message(self.label, failures),
            subject=f"[fleetwatch] CRITICAL: {self.label} is dead",
        )
        return WatchdogTickResult(
            state=WatchdogStatus.DEAD, consecutive_failures=failures, errors=errors, action="restore"
        )

    async def _restart_and_verify(self) -> bool:
        if not await self.actions.restart_service():
            return False
        if self.config.recovery.settle_seconds:
            await asyncio.sleep(self.config.recovery.settle_seconds)
        return await self.liveness.check_service()

    async def _resurrected(self, errors: list[str], action: str, stage: str) -> WatchdogTickResult:
        deaths: Optional[int] = None
        try:
            deaths = record_death(self.config.paths.identity_file)
        except PersistenceError as e:
            logger.error("Death ledger not updated: %s (%s)", e.message, e.detail)
        logger.info("%s resurrected by %s (death #%s)", self.label, stage, deaths)
        await self.notifier.notify(
            resurrection_message(self.label, deaths or 0, stage),
            subject=f"[fleetwatch] {self.label} resurrected",
        )
        return WatchdogTickResult(
            state=WatchdogStatus.RECOVERED, errors=errors, action=action, deaths=deaths
        )

