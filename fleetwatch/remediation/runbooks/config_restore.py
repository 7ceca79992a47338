"""
配置恢复 Runbook (Config Restore)

配置文件损坏或服务起不来时，保留当前副本，从备份目录取快照恢复，
经临时文件 + mv 完成替换后重启服务。

两级：先用最新快照；最新快照同样有问题时退回上一份快照。
"""
import shlex

from fleetwatch.models import ServiceProfile
from fleetwatch.probe.script import shell_path

from ..models import RunbookDefinition, RunbookStep


def _restore_steps(profile: ServiceProfile, position: int) -> list[RunbookStep]:
    """position 为快照按修改时间倒序的序号，1 为最新。"""
    config = shell_path(profile.config_path)
    staged = shell_path(profile.config_path + ".restore")
    broken = shell_path(profile.config_path + ".invalid")
    backups = shell_path(profile.backup_dir)
    snapshot = f"$(ls -1t {backups}/*.json | head -{position} | tail -1)"
    return [
        RunbookStep(description="Require a backup directory", command=f"test -d {backups}", timeout_seconds=5),
        RunbookStep(
            description=f"Require at least {position} snapshot(s)",
            command=f"test \"$(ls -1 {backups}/*.json | wc -l)\" -ge {position}",
            timeout_seconds=5,
            trusted=True,
        ),
        RunbookStep(
            description="Keep a copy of the current config",
            command=f"cp -f {config} {broken} 2>/dev/null || true",
            timeout_seconds=10,
        ),
        RunbookStep(
            description="Stage the config snapshot",
            command=f"cp \"{snapshot}\" {staged}",
            timeout_seconds=10,
            trusted=True,
        ),
        RunbookStep(description="Swap in the restored config", command=f"mv -f {staged} {config}", timeout_seconds=10),
        RunbookStep(
            description="Restart the service",
            command=f"systemctl restart {shlex.quote(profile.service_name)}",
            timeout_seconds=60,
        ),
    ]


RUNBOOK = RunbookDefinition(
    name="config_restore",
    description="Restore the newest config snapshot and restart the service",
    match_keywords=["invalid json"],
    build=lambda profile: _restore_steps(profile, 1),
)

PREVIOUS_RUNBOOK = RunbookDefinition(
    name="config_restore_previous",
    description="Restore the second newest config snapshot and restart the service",
    build=lambda profile: _restore_steps(profile, 2),
)
