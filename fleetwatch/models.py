"""
共享数据模型 (Shared Data Models)

诊断、巡检和修复流程之间传递的值类型。诊断结果一经构造即不可变，
可以序列化为 JSON 供 --json 调用方使用。
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

UTC = timezone.utc

WIRE_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

CONNECTIVITY_CHECK = "ssh"


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def format_timestamp(ts: datetime) -> str:
    """UTC ISO-8601，秒级精度，Z 结尾。"""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime(WIRE_TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class CheckStatus(str, enum.Enum):
    """检查项三级状态。"""
    OK = "ok"
    WARN = "warn"
    ERROR = "error"


class CheckResult(BaseModel):
    """单个检查项的结果，生命周期为一次诊断。"""
    model_config = ConfigDict(frozen=True)

    name: str
    status: CheckStatus
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.status == CheckStatus.ERROR

    def error_line(self) -> str:
        return f"{self.name}: {self.detail}"


class DiagnosisReport(BaseModel):
    """一次诊断的完整报告。

    由 fleetwatch.diagnosis.aggregate 构造；计数与 checks 始终一致，
    errors 按检查顺序列出每个 error 状态检查项的 ``name: detail``。
    """
    model_config = ConfigDict(frozen=True)

    instance: str
    ip: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    checks: dict[str, CheckResult] = Field(default_factory=dict)
    passed_count: int = 0
    warned_count: int = 0
    failed_count: int = 0
    errors: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _counts_match_checks(self) -> "DiagnosisReport":
        total = self.passed_count + self.warned_count + self.failed_count
        if total != len(self.checks):
            raise ValueError(
                f"status counts ({total}) do not match number of checks ({len(self.checks)})"
            )
        if len(self.errors) != self.failed_count:
            raise ValueError(
                f"errors ({len(self.errors)}) do not match failed count ({self.failed_count})"
            )
        return self

    @property
    def reachable(self) -> bool:
        """连通性预检失败时报告只含一个 ssh error 检查项。"""
        ssh = self.checks.get(CONNECTIVITY_CHECK)
        return not (ssh is not None and ssh.failed and len(self.checks) == 1)

    @property
    def healthy(self) -> bool:
        return self.failed_count == 0

    def status_of(self, name: str) -> Optional[CheckStatus]:
        result = self.checks.get(name)
        return result.status if result else None

    def to_wire(self) -> dict[str, Any]:
        """序列化为 --json 输出格式。"""
        return {
            "instance": self.instance,
            "ip": self.ip,
            "timestamp": format_timestamp(self.timestamp),
            "checks_passed": self.passed_count,
            "checks_failed": self.failed_count,
            "checks_warned": self.warned_count,
            "checks": {
                name: {"status": result.status.value, "detail": result.detail}
                for name, result in self.checks.items()
            },
            "errors": list(self.errors),
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "DiagnosisReport":
        checks = {
            name: CheckResult(name=name, status=CheckStatus(body["status"]), detail=body.get("detail", ""))
            for name, body in data.get("checks", {}).items()
        }
        return cls(
            instance=data["instance"],
            ip=data.get("ip", ""),
            timestamp=parse_timestamp(data["timestamp"]),
            checks=checks,
            passed_count=data.get("checks_passed", 0),
            warned_count=data.get("checks_warned", 0),
            failed_count=data.get("checks_failed", 0),
            errors=list(data.get("errors", [])),
        )


class HostStatus(str, enum.Enum):
    """巡检时的主机级状态，优先级 UNREACHABLE > OFFLINE > DEGRADED > HEALTHY。"""
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    OFFLINE = "OFFLINE"
    UNREACHABLE = "UNREACHABLE"


class FleetReport(BaseModel):
    """一次巡检的完整快照，每次巡检全量重建。"""
    model_config = ConfigDict(frozen=True)

    per_instance: dict[str, HostStatus] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utcnow)
    cancelled: list[str] = Field(default_factory=list)

    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in HostStatus}
        for status in self.per_instance.values():
            counts[status.value] += 1
        counts["total"] = len(self.per_instance)
        return counts

    def to_wire(self) -> dict[str, Any]:
        return {
            "generated_at": format_timestamp(self.generated_at),
            "instances": [
                {"instance": name, "status": status.value}
                for name, status in self.per_instance.items()
            ],
            "cancelled": list(self.cancelled),
            "summary": self.summary(),
        }


class ServiceProfile(BaseModel):
    """被监控服务在主机上的布局。

    探测脚本和修复 runbook 都从这里取值，值经 shlex.quote 进入 shell，
    不做占位符替换。相对路径相对于远端用户的 $HOME。
    """
    model_config = ConfigDict(frozen=True)

    service_name: str = "openclaw-gateway"
    process_pattern: str = "openclaw-gateway|openclaw.*gateway"
    health_ports: list[int] = Field(default_factory=lambda: [18789, 3141, 8080])
    health_path: str = "/health"
    session_dir: str = ".openclaw/agents/main/sessions"
    auth_profile_path: str = ".openclaw/agents/main/agent/auth-profiles.json"
    config_path: str = ".amcp/config.json"
    identity_path: str = ".amcp/identity.json"
    checkpoint_path: str = ".amcp/last-checkpoint.json"
    backup_dir: str = ".amcp/backups"
    required_config_keys: list[str] = Field(
        default_factory=lambda: ["pinata_jwt", "solvr_api_key", "instance_name", "anthropic.apiKey"]
    )
    cli_tool: str = "claude"
    config_tool: str = "proactive-amcp"
    identity_tool: str = "amcp"
    upstream_api_url: str = "https://api.anthropic.com/v1/messages"
    upstream_model: str = "claude-haiku-4-5-20251001"
    api_key_config_path: str = "anthropic.apiKey"
    temp_dir: str = "/tmp"
    log_dirs: list[str] = Field(default_factory=lambda: ["logs", "/var/log"])


class Host(BaseModel):
    """注册表中的一个实例。"""
    name: str
    ip: str
    ssh_user: str = "root"
    ssh_key_path: Optional[str] = None
    ssh_port: int = 22
    connect_timeout: Optional[int] = None
    region: str = "unknown"
    parent_telegram_token: Optional[str] = None
    parent_chat_id: Optional[str] = None
    parent_email: Optional[str] = None
    profile: ServiceProfile = Field(default_factory=ServiceProfile)

    @property
    def is_local(self) -> bool:
        return self.name == "self"

    @property
    def target(self) -> str:
        return f"{self.ssh_user}@{self.ip}"


LOCAL_HOST = Host(name="self", ip="127.0.0.1")
