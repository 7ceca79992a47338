"""
批量巡检 (Fleet Sweep)

并发探测所有实例并归类为 HEALTHY / DEGRADED / OFFLINE / UNREACHABLE。
并发数由 asyncio.Semaphore 限制，每台主机有独立的总超时；
cancel 事件置位后不再启动新主机，已在探测中的主机照常完成。
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from fleetwatch.core.config import settings
from fleetwatch.models import CheckStatus, DiagnosisReport, FleetReport, Host, HostStatus, utcnow
from fleetwatch.probe.collector import ProbeCollector

logger = logging.getLogger(__name__)

_WARN_MATTERS = ("disk", "memory")


def classify_host(report: Optional[DiagnosisReport]) -> HostStatus:
    """报告为 None 表示探测超时。"""
    if report is None or not report.reachable:
        return HostStatus.UNREACHABLE
    if report.status_of("gateway_process") == CheckStatus.ERROR:
        return HostStatus.OFFLINE
    if report.failed_count > 0:
        return HostStatus.DEGRADED
    if any(report.status_of(name) == CheckStatus.WARN for name in _WARN_MATTERS):
        return HostStatus.DEGRADED
    return HostStatus.HEALTHY


class FleetSweeper:
    """有界并发的巡检器。"""

    def __init__(
        self,
        collector: Optional[ProbeCollector] = None,
        concurrency: Optional[int] = None,
        per_host_timeout: Optional[float] = None,
    ) -> None:
        self.collector = collector or ProbeCollector()
        self.concurrency = concurrency or settings.sweep_concurrency
        self.per_host_timeout = per_host_timeout or settings.sweep_host_timeout
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    async def _probe(self, host: Host) -> HostStatus:
        try:
            report = await asyncio.wait_for(self.collector.collect(host), timeout=self.per_host_timeout)
        except asyncio.TimeoutError:
            logger.warning("Sweep of %s timed out after %ss", host.name, self.per_host_timeout)
            return HostStatus.UNREACHABLE
        except Exception:
            logger.exception("Sweep of %s failed", host.name)
            return HostStatus.UNREACHABLE
        status = classify_host(report)
        logger.debug("%s: %s", host.name, status.value)
        return status

    async def sweep(self, hosts: list[Host], cancel: Optional[asyncio.Event] = None) -> FleetReport:
        """
        巡检一轮 (Sweep the fleet once)

        Args:
            hosts: 待巡检实例
            cancel: 置位后停止启动新的主机

        Returns:
            FleetReport: per_instance 按 hosts 顺序排列；未启动的实例列入 cancelled
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(host: Host) -> Optional[HostStatus]:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    return None
                return await self._probe(host)

        statuses = await asyncio.gather(*(guarded(h) for h in hosts))

        per_instance: dict[str, HostStatus] = {}
        cancelled: list[str] = []
        for host, status in zip(hosts, statuses):
            if status is None:
                cancelled.append(host.name)
            else:
                per_instance[host.name] = status

        report = FleetReport(per_instance=per_instance, generated_at=utcnow(), cancelled=cancelled)
        logger.info("Sweep finished: %s", report.summary())
        return report

    async def sweep_forever(
        self,
        hosts: list[Host],
        interval: float,
        cancel: Optional[asyncio.Event] = None,
        on_report: Optional[Callable[[FleetReport], Awaitable[None] | None]] = None,
    ) -> int:
        """按固定间隔重复巡检直到 cancel 置位，返回完成的轮数。"""
        cancel = cancel or asyncio.Event()
        rounds = 0
        while not cancel.is_set():
            report = await self.sweep(hosts, cancel)
            rounds += 1
            if on_report is not None:
                maybe = on_report(report)
                if asyncio.iscoroutine(maybe):
                    await maybe
            try:
                await asyncio.wait_for(cancel.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        return rounds
