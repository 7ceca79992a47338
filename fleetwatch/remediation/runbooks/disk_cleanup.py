"""
磁盘清理 Runbook (Disk Cleanup)

三级，由轻到重，清理目标都可以安全重建：

1. disk_temp_cleanup: 临时目录里的旧文件
2. disk_log_vacuum: journal 日志和轮转后的旧日志
3. disk_deep_clean: 包管理器缓存和长期不用的会话文件

单个目录清理失败不影响后续步骤。
"""
import shlex

from fleetwatch.models import ServiceProfile
from fleetwatch.probe.script import shell_path

from ..models import RunbookDefinition, RunbookStep

RETENTION_DAYS = 7
SESSION_RETENTION_DAYS = 30

_DF = RunbookStep(description="Check disk usage after cleanup", command="df -h /", timeout_seconds=10)


def _temp(profile: ServiceProfile) -> list[RunbookStep]:
    return [
        RunbookStep(
            description=f"Remove temp files older than {RETENTION_DAYS} days",
            command=f"find {shlex.quote(profile.temp_dir)} -xdev -type f -mtime +{RETENTION_DAYS} -delete 2>/dev/null || true",
            timeout_seconds=60,
        ),
        _DF,
    ]


def _logs(profile: ServiceProfile) -> list[RunbookStep]:
    steps = [
        RunbookStep(
            description="Clean old journal logs (keep last 3 days)",
            command="journalctl --vacuum-time=3d",
            timeout_seconds=60,
        ),
    ]
    for log_dir in profile.log_dirs:
        steps.append(RunbookStep(
            description=f"Remove rotated logs in {log_dir}",
            command=(
                f"find {shell_path(log_dir)} -type f \\( -name '*.gz' -o -name '*.log.[0-9]*' \\) "
                f"-mtime +{RETENTION_DAYS} -delete 2>/dev/null || true"
            ),
            timeout_seconds=60,
        ))
    return steps + [_DF]


def _deep(profile: ServiceProfile) -> list[RunbookStep]:
    return [
        RunbookStep(
            description="Clean package manager cache",
            command="apt-get clean 2>/dev/null || true",
            timeout_seconds=60,
        ),
        RunbookStep(
            description=f"Remove session files older than {SESSION_RETENTION_DAYS} days",
            command=(
                f"find {shell_path(profile.session_dir)} -type f "
                f"-mtime +{SESSION_RETENTION_DAYS} -delete 2>/dev/null || true"
            ),
            timeout_seconds=60,
        ),
        _DF,
    ]


TEMP_CLEANUP = RunbookDefinition(
    name="disk_temp_cleanup",
    description="Remove old temp files",
    match_keywords=["free (critical)", "disk", "no space"],
    build=_temp,
)

LOG_VACUUM = RunbookDefinition(
    name="disk_log_vacuum",
    description="Vacuum the journal and old rotated logs",
    build=_logs,
)

DEEP_CLEAN = RunbookDefinition(
    name="disk_deep_clean",
    description="Clear package caches and stale sessions",
    build=_deep,
)
