"""
修复模块的 Pydantic 数据模型。

用于修复流程内部数据传递：runbook 定义、命令执行结果、修复计划，
以及对外输出的修复会话结果（FixSessionResult）。
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fleetwatch.models import ServiceProfile, format_timestamp, utcnow


class RunbookStep(BaseModel):
    """Runbook 中的单条命令。"""
    description: str
    command: str
    timeout_seconds: int = 30
    trusted: bool = False  # 仅内置 runbook 可置 True：允许命令替换


class RunbookDefinition(BaseModel):
    """完整的 Runbook 定义；命令由 build 根据 ServiceProfile 生成。"""
    name: str
    description: str
    match_keywords: list[str] = Field(default_factory=list)
    build: Callable[[ServiceProfile], list[RunbookStep]]

    def steps(self, profile: ServiceProfile) -> list[RunbookStep]:
        return self.build(profile)


class CommandResult(BaseModel):
    """单条命令的执行结果。"""
    command: str
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    executed: bool = True
    duration_ms: int = 0


class RemediationPlan(BaseModel):
    """一次修复尝试的候选方案，由某个 RemediationStrategy 给出。"""
    strategy: str
    method_description: str
    steps: list[RunbookStep] = Field(default_factory=list)
    knowledge_ref_id: Optional[str] = None
    problem_id: Optional[str] = None

    @property
    def method_text(self) -> str:
        if self.steps:
            return "\n".join(step.command for step in self.steps)
        return self.method_description


class ApplyResult(BaseModel):
    """方案执行结果。ok 表示命令全部执行成功，不代表问题已解决。"""
    ok: bool
    output: str = ""
    method_description: Optional[str] = None


class FixOutcome(str, enum.Enum):
    FIXED = "fixed"
    FAILED = "failed"


class FixAttempt(BaseModel):
    """一次修复尝试的记录。"""
    model_config = ConfigDict(frozen=True)

    check_name: str
    attempt_number: int = Field(ge=1, le=3)
    knowledge_ref_id: Optional[str] = None
    method_description: str
    strategy: str
    outcome: FixOutcome
    output: str = ""

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"output"})


class EscalationRecord(BaseModel):
    """三次修复失败（或方案提前用尽）后升级给人工的记录。"""
    model_config = ConfigDict(frozen=True)

    check_name: str
    attempts_tried: list[FixAttempt]
    notified_channels: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _attempts_all_failed(self) -> "EscalationRecord":
        if not 1 <= len(self.attempts_tried) <= 3:
            raise ValueError("escalation requires 1 to 3 failed attempts")
        if any(a.outcome != FixOutcome.FAILED for a in self.attempts_tried):
            raise ValueError("escalation requires every attempt to have failed")
        return self

    @property
    def methods(self) -> list[str]:
        return [a.method_description for a in self.attempts_tried]

    def to_wire(self) -> dict[str, Any]:
        return {
            "check_name": self.check_name,
            "attempts_tried": [a.to_wire() for a in self.attempts_tried],
            "notified_channels": list(self.notified_channels),
        }


class FixSessionResult(BaseModel):
    """一次修复会话的结果。fixed + failed + escalated == total_errors。"""
    instance: str
    timestamp: datetime = Field(default_factory=utcnow)
    total_errors: int = 0
    fixed: int = 0
    failed: int = 0
    escalated: int = 0
    fixes: list[FixAttempt] = Field(default_factory=list)
    escalations: list[EscalationRecord] = Field(default_factory=list)
    raw_output: Optional[str] = None

    @model_validator(mode="after")
    def _counts_add_up(self) -> "FixSessionResult":
        if self.fixed + self.failed + self.escalated != self.total_errors:
            raise ValueError(
                f"fixed+failed+escalated ({self.fixed + self.failed + self.escalated}) "
                f"!= total_errors ({self.total_errors})"
            )
        return self

    @classmethod
    def envelope(cls, instance: str, raw_output: str) -> "FixSessionResult":
        """无法生成结构化结果时的原始输出封装，计数全为 0。"""
        return cls(instance=instance, raw_output=raw_output)

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "instance": self.instance,
            "timestamp": format_timestamp(self.timestamp),
            "total_errors": self.total_errors,
            "fixed": self.fixed,
            "failed": self.failed,
            "escalated": self.escalated,
            "fixes": [f.to_wire() for f in self.fixes],
            "escalations": [e.to_wire() for e in self.escalations],
        }
        if self.raw_output is not None:
            data["raw_output"] = self.raw_output
        return data
