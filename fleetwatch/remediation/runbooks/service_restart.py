"""
服务重启 Runbook (Service Restart)

网关进程不在运行或健康端点无响应时重启被监控服务。
重启会中断现有会话，通常在 30 秒内恢复。
"""
import shlex

from fleetwatch.models import ServiceProfile

from ..models import RunbookDefinition, RunbookStep


def _build(profile: ServiceProfile) -> list[RunbookStep]:
    service = shlex.quote(profile.service_name)
    return [
        RunbookStep(
            description="Clear failed state of the service unit",
            command=f"systemctl reset-failed {service} 2>/dev/null || true",
            timeout_seconds=10,
        ),
        RunbookStep(
            description="Restart the service",
            command=f"systemctl restart {service}",
            timeout_seconds=60,
        ),
        RunbookStep(
            description="Verify service is active after restart",
            command=f"systemctl is-active {service}",
            timeout_seconds=10,
        ),
    ]


RUNBOOK = RunbookDefinition(
    name="service_restart",
    description="Restart the gateway service",
    match_keywords=["not running", "no health endpoint", "crashed", "unresponsive"],
    build=_build,
)
