"""
诊断聚合器 (Diagnosis Aggregator)

把探测得到的原始检查结果合并为一份 DiagnosisReport，并持有磁盘、内存、
checkpoint 的阈值策略。纯函数，无 I/O。

阈值边界：取值落在某个阈值上（等于）即归入该阈值对应的档位。
磁盘剩余 > 50% 为 ok，20% < 剩余 <= 50% 为 warn，<= 20% 为 error；
内存可用同理（20 / 10）；checkpoint 年龄严格大于 24 小时才算陈旧。
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from fleetwatch.models import CheckResult, CheckStatus, DiagnosisReport, utcnow

logger = logging.getLogger(__name__)

DISK_FREE_WARN_PCT = 50
DISK_FREE_ERROR_PCT = 20
MEMORY_FREE_WARN_PCT = 20
MEMORY_FREE_ERROR_PCT = 10
CHECKPOINT_STALE_HOURS = 24


def classify_disk(free_pct: float) -> CheckStatus:
    """根据磁盘剩余百分比分级。"""
    if free_pct <= DISK_FREE_ERROR_PCT:
        return CheckStatus.ERROR
    if free_pct <= DISK_FREE_WARN_PCT:
        return CheckStatus.WARN
    return CheckStatus.OK


def classify_memory(avail_pct: float) -> CheckStatus:
    """根据可用内存百分比分级。"""
    if avail_pct <= MEMORY_FREE_ERROR_PCT:
        return CheckStatus.ERROR
    if avail_pct <= MEMORY_FREE_WARN_PCT:
        return CheckStatus.WARN
    return CheckStatus.OK


def is_checkpoint_stale(hours: float) -> bool:
    return hours > CHECKPOINT_STALE_HOURS


def aggregate(
    raw: Iterable[CheckResult],
    instance: str,
    ip: str,
    timestamp: Optional[datetime] = None,
) -> DiagnosisReport:
    """
    聚合原始检查结果 (Aggregate raw check results)

    同名检查项以最后一次结果为准，但保留首次出现的位置。
    计数和 errors 都基于去重后的 checks 计算。

    Args:
        raw: 任意顺序的检查结果，可能含重复名称
        instance: 实例名
        ip: 实例地址
        timestamp: 报告时间，默认当前 UTC

    Returns:
        DiagnosisReport: 计数与 checks 一致的不可变报告
    """
    checks: dict[str, CheckResult] = {}
    for result in raw:
        if result.name in checks:
            logger.debug("Duplicate check %s on %s, keeping latest", result.name, instance)
        checks[result.name] = result

    passed = warned = failed = 0
    errors: list[str] = []
    for result in checks.values():
        if result.status == CheckStatus.OK:
            passed += 1
        elif result.status == CheckStatus.WARN:
            warned += 1
        else:
            failed += 1
            errors.append(result.error_line())

    return DiagnosisReport(
        instance=instance,
        ip=ip,
        timestamp=timestamp or utcnow(),
        checks=checks,
        passed_count=passed,
        warned_count=warned,
        failed_count=failed,
        errors=errors,
    )


def connectivity_failure(instance: str, ip: str, timestamp: Optional[datetime] = None) -> DiagnosisReport:
    """连通性预检失败时的报告：仅含一个 ssh error 检查项。"""
    return aggregate(
        [CheckResult(name="ssh", status=CheckStatus.ERROR, detail=f"Cannot reach {ip}")],
        instance,
        ip,
        timestamp,
    )
