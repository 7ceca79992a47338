"""
修复策略 (Remediation Strategies)

编排器只依赖 RemediationStrategy 接口：给出候选方案（plans），并执行某个方案（apply）。
内置三种实现，按优先级排列：

- KnowledgeBaseStrategy: 知识库中记录过、未标记为失败的方法
- StaticRunbookStrategy: 按检查项名称匹配的内置 runbook
- AgentStrategy: 在目标主机上调用编码 Agent，让其自行排查修复
"""
from __future__ import annotations

import abc
import logging
import shlex
from dataclasses import dataclass, field
from typing import Optional

from fleetwatch.core.config import settings
from fleetwatch.core.exceptions import ChannelError
from fleetwatch.models import Host, ServiceProfile
from fleetwatch.probe.channel import RemoteChannel, channel_for
from fleetwatch.probe.protocol import extract_json, strip_terminal_noise
from fleetwatch.services.knowledge_client import KnowledgeBaseClient

from .command_executor import CommandExecutor
from .models import ApplyResult, CommandResult, RemediationPlan, RunbookStep
from .runbook_registry import RunbookRegistry
from .safety import check_command_safety

logger = logging.getLogger(__name__)

MAX_OUTPUT = 2000


@dataclass
class FixContext:
    """单个检查项在一次修复会话中的上下文。"""
    check: str
    detail: str
    tried: list[str] = field(default_factory=list)

    @property
    def error_text(self) -> str:
        return f"{self.check}: {self.detail}"


def trusted_tools(profile: ServiceProfile) -> list[str]:
    """服务自带的命令行工具，允许出现在修复命令开头。"""
    return [profile.identity_tool, profile.config_tool]


def format_results(results: list[CommandResult]) -> str:
    lines = []
    for r in results:
        lines.append(f"$ {r.command} (exit={r.exit_code})")
        for text in (r.stdout.strip(), r.stderr.strip()):
            if text:
                lines.append(text)
    return "\n".join(lines)[-MAX_OUTPUT:]


async def _run_steps(executor: CommandExecutor, host: Host, steps: list[RunbookStep]) -> ApplyResult:
    if not steps:
        return ApplyResult(ok=False, output="no commands to run")
    results = await executor.execute_steps(host, steps, trusted_tools(host.profile))
    ok = len(results) == len(steps) and all(r.exit_code == 0 for r in results)
    return ApplyResult(ok=ok, output=format_results(results))


class RemediationStrategy(abc.ABC):
    """修复策略接口。"""

    name: str = "strategy"

    @abc.abstractmethod
    async def plans(self, host: Host, ctx: FixContext) -> list[RemediationPlan]:
        """返回该检查项的候选方案，优先级从高到低。"""

    @abc.abstractmethod
    async def apply(self, plan: RemediationPlan, host: Host, ctx: FixContext) -> ApplyResult:
        """在 host 上执行方案。ctx.tried 为本次会话中该检查项已尝试过的方法。"""


class KnowledgeBaseStrategy(RemediationStrategy):
    """复用知识库中记录的方法；方法文本每行一条命令。"""

    name = "knowledge_base"

    def __init__(self, client: KnowledgeBaseClient, executor: CommandExecutor) -> None:
        self.client = client
        self.executor = executor

    async def plans(self, host: Host, ctx: FixContext) -> list[RemediationPlan]:
        problems = await self.client.search(ctx.error_text)
        plans: list[RemediationPlan] = []
        for problem in problems:
            approaches = sorted(
                (a for a in problem.approaches if not a.failed),
                key=lambda a: a.status != "worked",
            )
            for approach in approaches:
                commands = [line.strip() for line in approach.method.splitlines() if line.strip()]
                plans.append(RemediationPlan(
                    strategy=self.name,
                    method_description=approach.angle or approach.method,
                    steps=[
                        RunbookStep(description=approach.angle or "knowledge base step", command=cmd)
                        for cmd in commands
                    ],
                    knowledge_ref_id=approach.id,
                    problem_id=problem.id,
                ))
        if plans:
            logger.info("Knowledge base offered %d approach(es) for %s", len(plans), ctx.check)
        return plans

    async def apply(self, plan: RemediationPlan, host: Host, ctx: FixContext) -> ApplyResult:
        return await _run_steps(self.executor, host, plan.steps)


class StaticRunbookStrategy(RemediationStrategy):
    """按检查项匹配内置 runbook。"""

    name = "runbook"

    def __init__(self, registry: RunbookRegistry, executor: CommandExecutor) -> None:
        self.registry = registry
        self.executor = executor

    async def plans(self, host: Host, ctx: FixContext) -> list[RemediationPlan]:
        return [
            RemediationPlan(
                strategy=self.name,
                method_description=f"{rb.name}: {rb.description}",
                steps=rb.steps(host.profile),
            )
            for rb in self.registry.match(ctx.check, ctx.detail)
        ]

    async def apply(self, plan: RemediationPlan, host: Host, ctx: FixContext) -> ApplyResult:
        return await _run_steps(self.executor, host, plan.steps)


AGENT_PROMPT = """\
You are repairing the service instance "{instance}".
The health check "{check}" is failing: {detail}
{tried_block}
Investigate on this host and fix the problem. Do not reboot the machine.
When you are done, reply with exactly one JSON object and nothing else:
{{"fixed": true or false, "method": "<one line describing what you did>"}}
"""


class AgentStrategy(RemediationStrategy):
    """
    在目标主机上运行编码 Agent（如 ``claude --print``）。

    Agent 输出可能混有 ANSI 转义和进度信息，从中提取第一个 JSON 对象；
    提取失败视为本次尝试失败，原始输出保留在记录中。
    """

    name = "agent"

    def __init__(
        self,
        command: Optional[str] = None,
        channel: Optional[RemoteChannel] = None,
        timeout: Optional[int] = None,
        dry_run: Optional[bool] = None,
    ) -> None:
        self.command = command if command is not None else settings.agent_command
        self._channel = channel
        self.timeout = timeout or settings.agent_timeout
        self.dry_run = settings.remediation_dry_run if dry_run is None else dry_run

    @property
    def enabled(self) -> bool:
        return bool(self.command.strip())

    async def plans(self, host: Host, ctx: FixContext) -> list[RemediationPlan]:
        if not self.enabled:
            return []
        return [RemediationPlan(strategy=self.name, method_description=f"agent session: {self.command}")]

    def build_prompt(self, host: Host, ctx: FixContext) -> str:
        tried_block = ""
        if ctx.tried:
            tried_block = "These approaches were already tried and did not work:\n" + "\n".join(
                f"- {m}" for m in ctx.tried
            ) + "\n"
        return AGENT_PROMPT.format(
            instance=host.name, check=ctx.check, detail=ctx.detail, tried_block=tried_block
        )

    async def apply(self, plan: RemediationPlan, host: Host, ctx: FixContext) -> ApplyResult:
        prompt = self.build_prompt(host, ctx)
        command = f"{self.command} {shlex.quote(prompt)}"

        is_safe, reason = check_command_safety(self.command, [self.command])
        if not is_safe:
            return ApplyResult(ok=False, output=f"BLOCKED by safety check: {reason}")
        if self.dry_run:
            logger.info("[DRY RUN] agent session on %s for %s", host.name, ctx.check)
            return ApplyResult(ok=True, output=f"[DRY RUN] Would execute: {self.command} <prompt>")

        channel = self._channel or channel_for(host)
        try:
            result = await channel.exec(host, command, timeout=self.timeout)
        except ChannelError as e:
            return ApplyResult(ok=False, output=str(e))

        raw = strip_terminal_noise(result.stdout)
        data = extract_json(raw)
        if data is None:
            logger.warning("Agent output on %s had no JSON result", host.name)
            return ApplyResult(ok=False, output=raw[-MAX_OUTPUT:])
        method = data.get("method")
        return ApplyResult(
            ok=bool(data.get("fixed")),
            output=raw[-MAX_OUTPUT:],
            method_description=str(method) if method else None,
        )
