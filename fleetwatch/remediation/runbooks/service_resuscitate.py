"""
服务强制复活 Runbook (Service Resuscitate)

普通重启无效时使用：停服务，杀掉残留进程，清理残留的锁文件和临时文件，再启动。
"""
import shlex

from fleetwatch.models import ServiceProfile

from ..models import RunbookDefinition, RunbookStep


def _build(profile: ServiceProfile) -> list[RunbookStep]:
    service = shlex.quote(profile.service_name)
    return [
        RunbookStep(description="Stop the service", command=f"systemctl stop {service}", timeout_seconds=60),
        RunbookStep(
            description="Kill stale service processes",
            command=f"pkill -9 -f {shlex.quote(profile.process_pattern)} || true",
            timeout_seconds=10,
        ),
        RunbookStep(
            description="Remove stale lock and temp files",
            command=(
                f"find {shlex.quote(profile.temp_dir)} -maxdepth 1 "
                f"-name {shlex.quote(profile.service_name + '-*')} -delete 2>/dev/null || true"
            ),
            timeout_seconds=10,
        ),
        RunbookStep(description="Start the service", command=f"systemctl start {service}", timeout_seconds=60),
        RunbookStep(
            description="Verify service is active",
            command=f"systemctl is-active {service}",
            timeout_seconds=10,
        ),
    ]


RUNBOOK = RunbookDefinition(
    name="service_resuscitate",
    description="Stop the service, kill stale processes and start it clean",
    build=_build,
)
