"""
身份文件重建 Runbook (Identity Regeneration)

身份文件缺失、伪造或校验失败时，备份旧文件并用身份工具重新生成。
"""
import shlex

from fleetwatch.models import ServiceProfile
from fleetwatch.probe.script import shell_path

from ..models import RunbookDefinition, RunbookStep


def _build(profile: ServiceProfile) -> list[RunbookStep]:
    identity = shell_path(profile.identity_path)
    backup = shell_path(profile.identity_path + ".bak")
    return [
        RunbookStep(
            description="Move the current identity file aside",
            command=f"mv -f {identity} {backup} 2>/dev/null || true",
            timeout_seconds=10,
        ),
        RunbookStep(
            description="Create a new identity",
            command=f"{shlex.quote(profile.identity_tool)} identity create --out {identity}",
            timeout_seconds=60,
        ),
        RunbookStep(
            description="Restart the service to load the new identity",
            command=f"systemctl restart {shlex.quote(profile.service_name)}",
            timeout_seconds=60,
        ),
    ]


RUNBOOK = RunbookDefinition(
    name="identity_regen",
    description="Regenerate the agent identity file",
    match_keywords=["fake identity", "invalid identity", "no identity"],
    build=_build,
)
