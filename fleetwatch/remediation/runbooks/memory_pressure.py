"""
内存压力缓解 Runbook (Memory Pressure)

记录内存大户，刷盘后释放页面缓存。仍不足时由阶梯的下一级重启服务回收内存。
"""
from fleetwatch.models import ServiceProfile

from ..models import RunbookDefinition, RunbookStep


def _build(profile: ServiceProfile) -> list[RunbookStep]:
    return [
        RunbookStep(
            description="List top memory consumers",
            command="ps aux --sort=-%mem | head -10",
            timeout_seconds=10,
        ),
        RunbookStep(description="Sync filesystem buffers", command="sync", timeout_seconds=30),
        RunbookStep(
            description="Drop page cache (safe, recoverable)",
            command="sysctl -w vm.drop_caches=3",
            timeout_seconds=10,
        ),
        RunbookStep(description="Check memory after cleanup", command="free -m", timeout_seconds=10),
    ]


RUNBOOK = RunbookDefinition(
    name="memory_pressure",
    description="Relieve memory pressure by dropping page caches",
    match_keywords=["available (critical)", "out of memory", "oom"],
    build=_build,
)
