"""
命令执行器，支持 dry-run 模式。

修复命令经远程执行通道在目标主机上执行。dry_run 默认取自
settings.remediation_dry_run，开启时只记录不执行。
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from fleetwatch.core.config import settings
from fleetwatch.core.exceptions import ChannelError
from fleetwatch.models import Host
from fleetwatch.probe.channel import RemoteChannel, channel_for

from .models import CommandResult, RunbookStep
from .safety import check_command_safety

logger = logging.getLogger(__name__)

MAX_CAPTURE = 4096


class CommandExecutor:
    """在目标主机上执行修复命令，带安全检查和 dry-run 支持。"""

    def __init__(
        self,
        channel: Optional[RemoteChannel] = None,
        dry_run: Optional[bool] = None,
    ) -> None:
        self._channel = channel
        self.dry_run = settings.remediation_dry_run if dry_run is None else dry_run
        self._execution_log: list[CommandResult] = []

    @property
    def execution_log(self) -> list[CommandResult]:
        return list(self._execution_log)

    def _record(self, result: CommandResult) -> CommandResult:
        self._execution_log.append(result)
        return result

    async def execute_step(
        self,
        host: Host,
        step: RunbookStep,
        extra_prefixes: Iterable[str] = (),
    ) -> CommandResult:
        """执行单条 runbook 步骤。"""
        is_safe, reason = check_command_safety(step.command, extra_prefixes, trusted=step.trusted)
        if not is_safe:
            logger.warning("Command blocked on %s: %s -- %s", host.name, step.command, reason)
            return self._record(CommandResult(
                command=step.command,
                exit_code=-1,
                stderr=f"BLOCKED by safety check: {reason}",
                executed=False,
            ))

        if self.dry_run:
            logger.info("[DRY RUN] %s on %s: %s", step.description, host.name, step.command)
            return self._record(CommandResult(
                command=step.command,
                exit_code=0,
                stdout=f"[DRY RUN] Would execute: {step.command}",
                executed=False,
            ))

        channel = self._channel or channel_for(host)
        try:
            result = await channel.exec(host, step.command, timeout=step.timeout_seconds)
        except ChannelError as e:
            return self._record(CommandResult(
                command=step.command,
                exit_code=-1,
                stderr=str(e),
                executed=True,
            ))
        return self._record(CommandResult(
            command=step.command,
            exit_code=result.exit_code,
            stdout=result.stdout[:MAX_CAPTURE],
            stderr=result.stderr[:MAX_CAPTURE],
            executed=True,
            duration_ms=result.duration_ms,
        ))

    async def execute_steps(
        self,
        host: Host,
        steps: list[RunbookStep],
        extra_prefixes: Iterable[str] = (),
    ) -> list[CommandResult]:
        """顺序执行多条步骤，遇到失败立即停止。"""
        extra = list(extra_prefixes)
        results: list[CommandResult] = []
        for step in steps:
            result = await self.execute_step(host, step, extra)
            results.append(result)
            if result.exit_code != 0:
                logger.warning(
                    "Step failed on %s (exit=%d), stopping: %s",
                    host.name,
                    result.exit_code,
                    step.command,
                )
                break
        return results
