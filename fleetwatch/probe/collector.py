"""
探测采集器 (Probe Collector)

对单个实例执行一次完整诊断：
1. 连通性预检（echo ok），失败则直接返回仅含 ssh 检查项的报告；
2. 一次远程调用执行全部检查（脚本经 stdin 交给 bash -s）；
3. 解码输出并交给聚合器生成 DiagnosisReport。

单个检查项的异常只会降级为该项的 error，不会中断整个诊断。
"""
from __future__ import annotations

import logging
from typing import Optional

from fleetwatch.core.config import settings
from fleetwatch.core.exceptions import ChannelError
from fleetwatch.diagnosis import aggregate, connectivity_failure
from fleetwatch.models import CheckResult, CheckStatus, DiagnosisReport, Host
from fleetwatch.probe.channel import RemoteChannel, channel_for
from fleetwatch.probe.protocol import CHECK_NAMES, failed_check, parse_probe_output
from fleetwatch.probe.script import build_probe_script

logger = logging.getLogger(__name__)

PRECHECK_COMMAND = "echo ok"
BATCH_COMMAND = "bash -s"


class ProbeCollector:
    """批量探测采集器。channel 为空时按主机自动选择 SSH 或本地通道。"""

    def __init__(
        self,
        channel: Optional[RemoteChannel] = None,
        connect_timeout: Optional[float] = None,
        probe_timeout: Optional[float] = None,
    ) -> None:
        self._channel = channel
        self.connect_timeout = connect_timeout or settings.ssh_connect_timeout
        self.probe_timeout = probe_timeout or settings.probe_timeout

    def channel(self, host: Host) -> RemoteChannel:
        return self._channel or channel_for(host)

    async def precheck(self, host: Host) -> Optional[CheckResult]:
        """连通性预检；不可达返回 None。"""
        timeout = host.connect_timeout or self.connect_timeout
        try:
            result = await self.channel(host).exec(host, PRECHECK_COMMAND, timeout=timeout)
        except ChannelError as e:
            logger.warning("Cannot reach %s (%s): %s", host.name, host.ip, e)
            return None
        if result.exit_code != 0:
            logger.warning("Pre-check on %s exited %d", host.name, result.exit_code)
            return None
        return CheckResult(
            name="ssh",
            status=CheckStatus.OK,
            detail=f"Connected ({host.ssh_user}, {result.duration_ms}ms)",
        )

    async def collect(self, host: Host) -> DiagnosisReport:
        """对 host 执行完整诊断。"""
        connectivity = await self.precheck(host)
        if connectivity is None:
            return connectivity_failure(host.name, host.ip)

        checks = await self._run_batch(host, CHECK_NAMES)
        report = aggregate([connectivity, *checks], host.name, host.ip)
        logger.info(
            "Diagnosed %s: %d ok, %d warn, %d error",
            host.name, report.passed_count, report.warned_count, report.failed_count,
        )
        return report

    async def run_check(self, host: Host, name: str) -> CheckResult:
        """只重新执行单个检查项（一次远程调用），用于修复后的验证。"""
        if name == "ssh":
            connectivity = await self.precheck(host)
            return connectivity or CheckResult(
                name="ssh", status=CheckStatus.ERROR, detail=f"Cannot reach {host.ip}"
            )
        results = await self._run_batch(host, [name])
        for result in results:
            if result.name == name:
                return result
        return failed_check(name)

    async def _run_batch(self, host: Host, names: list[str]) -> list[CheckResult]:
        script = build_probe_script(host.profile, names)
        try:
            result = await self.channel(host).exec(
                host, BATCH_COMMAND, timeout=self.probe_timeout, stdin=script
            )
        except ChannelError as e:
            logger.warning("Probe batch on %s failed: %s", host.name, e)
            return [failed_check(name) for name in names]
        if result.exit_code != 0:
            logger.debug("Probe batch on %s exited %d", host.name, result.exit_code)
        return parse_probe_output(result.stdout, expected=names)
