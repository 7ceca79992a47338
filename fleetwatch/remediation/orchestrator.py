"""
修复编排器 (Fix Orchestrator)

对诊断报告中的每个 error 检查项，按策略优先级（知识库 → 内置 runbook → Agent）
选择方案、执行、只复检该检查项，并把结果回写知识库。每个检查项最多尝试 3 次，
失败过的方法不再重复；第 3 次失败或方案用尽后升级给人工，没有任何可用方案的检查项记为 failed。

每个检查项的处理是一个 CheckRemediation 状态机：
attempting → fixed | escalated | failed。单个检查项的异常不会中断其他检查项。
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

from fleetwatch.core.config import settings
from fleetwatch.models import DiagnosisReport, Host
from fleetwatch.probe.collector import ProbeCollector
from fleetwatch.services.knowledge_client import KnowledgeBaseClient, knowledge_client
from fleetwatch.services.notifier import (
    Notifier,
    calm_summary_message,
    escalation_message,
    notifier as default_notifier,
)

from .command_executor import CommandExecutor
from .models import (
    EscalationRecord,
    FixAttempt,
    FixOutcome,
    FixSessionResult,
    RemediationPlan,
)
from .runbook_registry import RunbookRegistry
from .strategies import (
    AgentStrategy,
    FixContext,
    KnowledgeBaseStrategy,
    RemediationStrategy,
    StaticRunbookStrategy,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
KB_TAGS = ["fleetwatch", "auto-fix"]


class RemediationState(str, enum.Enum):
    ATTEMPTING = "attempting"
    FIXED = "fixed"
    ESCALATED = "escalated"
    FAILED = "failed"


def _plan_key(plan: RemediationPlan) -> str:
    return plan.knowledge_ref_id or f"{plan.strategy}:{plan.method_description}"


class CheckRemediation:
    """单个检查项的三振状态机。"""

    def __init__(self, check: str, detail: str, max_attempts: int = MAX_ATTEMPTS) -> None:
        self.check = check
        self.detail = detail
        self.max_attempts = max_attempts
        self.state = RemediationState.ATTEMPTING
        self.attempts: list[FixAttempt] = []
        self._failed_plans: set[str] = set()

    @property
    def tried(self) -> list[str]:
        return [a.method_description for a in self.attempts]

    @property
    def next_attempt_number(self) -> int:
        return len(self.attempts) + 1

    def choose(self, plans: list[RemediationPlan]) -> Optional[RemediationPlan]:
        """按优先级返回第一个尚未失败过的方案；失败过的方法不再原样重试。"""
        if self.state != RemediationState.ATTEMPTING:
            return None
        for plan in plans:
            if _plan_key(plan) not in self._failed_plans:
                return plan
        return None

    def exhaust(self) -> RemediationState:
        """没有可选方案：一次都没试过记为 failed，试过但方案用尽则升级。"""
        if self.state == RemediationState.ATTEMPTING:
            self.state = RemediationState.ESCALATED if self.attempts else RemediationState.FAILED
        return self.state

    def record(self, attempt: FixAttempt, plan: RemediationPlan) -> RemediationState:
        if self.state != RemediationState.ATTEMPTING:
            raise RuntimeError(f"{self.check} is already {self.state.value}")
        self.attempts.append(attempt)
        if attempt.outcome == FixOutcome.FIXED:
            self.state = RemediationState.FIXED
        else:
            self._failed_plans.add(_plan_key(plan))
            if len(self.attempts) >= self.max_attempts:
                self.state = RemediationState.ESCALATED
        return self.state


def default_strategies(
    knowledge: KnowledgeBaseClient,
    executor: CommandExecutor,
) -> list[RemediationStrategy]:
    strategies: list[RemediationStrategy] = [
        KnowledgeBaseStrategy(knowledge, executor),
        StaticRunbookStrategy(RunbookRegistry(), executor),
    ]
    agent = AgentStrategy(dry_run=executor.dry_run)
    if agent.enabled:
        strategies.append(agent)
    return strategies


class FixOrchestrator:
    """修复编排器。"""

    def __init__(
        self,
        collector: ProbeCollector,
        knowledge: Optional[KnowledgeBaseClient] = None,
        notifier: Optional[Notifier] = None,
        strategies: Optional[list[RemediationStrategy]] = None,
        executor: Optional[CommandExecutor] = None,
        settle_seconds: Optional[float] = None,
    ) -> None:
        self.collector = collector
        self.knowledge = knowledge or knowledge_client
        self.notifier = notifier or default_notifier
        self.executor = executor or CommandExecutor()
        self.strategies = strategies if strategies is not None else default_strategies(
            self.knowledge, self.executor
        )
        self._by_name = {s.name: s for s in self.strategies}
        self.settle_seconds = settings.fix_settle_seconds if settle_seconds is None else settle_seconds

    async def fix(self, report: DiagnosisReport, host: Host) -> FixSessionResult:
        """
        修复报告中的全部 error 检查项 (Fix every error in the report)

        Returns:
            FixSessionResult: fixed + failed + escalated == len(report.errors)
        """
        if not report.errors:
            return FixSessionResult(instance=report.instance)

        fixes: list[FixAttempt] = []
        escalations: list[EscalationRecord] = []
        fixed_checks: list[str] = []
        failed = 0

        for line in report.errors:
            check, _, detail = line.partition(": ")
            rem = CheckRemediation(check, detail)
            try:
                await self._remediate(host, rem)
            except Exception:
                logger.exception("Remediation of %s on %s aborted", check, host.name)
            fixes.extend(rem.attempts)

            if rem.state == RemediationState.FIXED:
                fixed_checks.append(check)
            elif rem.state == RemediationState.ESCALATED:
                escalations.append(await self._escalate(host, rem))
            else:
                failed += 1

        result = FixSessionResult(
            instance=report.instance,
            total_errors=len(report.errors),
            fixed=len(fixed_checks),
            failed=failed,
            escalated=len(escalations),
            fixes=fixes,
            escalations=escalations,
        )
        logger.info(
            "Fix session on %s: %d fixed, %d failed, %d escalated",
            host.name, result.fixed, result.failed, result.escalated,
        )

        if result.escalated == 0 and result.fixed > 0:
            await self.notifier.notify(
                calm_summary_message(report.instance, result.fixed, fixed_checks),
                subject=f"[fleetwatch] {report.instance}: issues fixed automatically",
                host=host,
            )
        return result

    async def _gather_plans(self, host: Host, ctx: FixContext) -> list[RemediationPlan]:
        plans: list[RemediationPlan] = []
        for strategy in self.strategies:
            plans.extend(await strategy.plans(host, ctx))
        return plans

    async def _remediate(self, host: Host, rem: CheckRemediation) -> None:
        ctx = FixContext(check=rem.check, detail=rem.detail)
        plans = await self._gather_plans(host, ctx)
        problem_id: Optional[str] = None

        while rem.state == RemediationState.ATTEMPTING:
            plan = rem.choose(plans)
            if plan is None:
                if rem.exhaust() == RemediationState.FAILED:
                    logger.info("No remedy available for %s on %s", rem.check, host.name)
                else:
                    logger.info(
                        "All %d known method(s) for %s on %s failed", len(rem.attempts), rem.check, host.name
                    )
                return

            ctx.tried = rem.tried
            logger.info(
                "Attempt %d/%d for %s on %s: %s",
                rem.next_attempt_number, rem.max_attempts, rem.check, host.name, plan.method_description,
            )
            applied = await self._by_name[plan.strategy].apply(plan, host, ctx)
            if self.settle_seconds:
                await asyncio.sleep(self.settle_seconds)
            verified = await self.collector.run_check(host, rem.check)
            resolved = not verified.failed
            method = applied.method_description or plan.method_description

            ref_id, problem_id = await self._write_back(host, ctx, plan, method, resolved, problem_id)
            attempt = FixAttempt(
                check_name=rem.check,
                attempt_number=rem.next_attempt_number,
                knowledge_ref_id=ref_id,
                method_description=method,
                strategy=plan.strategy,
                outcome=FixOutcome.FIXED if resolved else FixOutcome.FAILED,
                output=applied.output,
            )
            rem.record(attempt, plan)

    async def _write_back(
        self,
        host: Host,
        ctx: FixContext,
        plan: RemediationPlan,
        method: str,
        resolved: bool,
        problem_id: Optional[str],
    ) -> tuple[Optional[str], Optional[str]]:
        """知识库回写。返回 (approach_id, problem_id)。"""
        status = "worked" if resolved else "failed"
        if plan.knowledge_ref_id:
            await self.knowledge.update_approach_status(plan.knowledge_ref_id, status)
            return plan.knowledge_ref_id, problem_id

        if problem_id is None:
            problem_id = await self.knowledge.post_problem(
                title=ctx.error_text,
                description=f"Instance {host.name}: health check {ctx.check} failed with: {ctx.detail}",
                tags=[KB_TAGS[0], ctx.check, KB_TAGS[1]],
            )
        if problem_id is None:
            return None, None
        approach_id = await self.knowledge.post_approach(
            problem_id, angle=method, method=plan.method_text, status=status
        )
        return approach_id, problem_id

    async def _escalate(self, host: Host, rem: CheckRemediation) -> EscalationRecord:
        channels = await self.notifier.notify(
            escalation_message(host.name, rem.check, rem.tried),
            subject=f"[fleetwatch] {host.name}: {rem.check} needs manual attention",
            host=host,
        )
        logger.warning("Escalated %s on %s after %d attempts", rem.check, host.name, len(rem.attempts))
        return EscalationRecord(
            check_name=rem.check,
            attempts_tried=list(rem.attempts),
            notified_channels=channels,
        )


async def diagnose_and_fix(
    host: Host,
    collector: Optional[ProbeCollector] = None,
    orchestrator: Optional[FixOrchestrator] = None,
    dry_run: Optional[bool] = None,
) -> tuple[DiagnosisReport, FixSessionResult]:
    """诊断并修复；实例不可达时返回原始输出封装。dry_run 为 None 时沿用配置。"""
    collector = collector or ProbeCollector()
    report = await collector.collect(host)
    if not report.reachable:
        return report, FixSessionResult.envelope(host.name, "; ".join(report.errors))
    orchestrator = orchestrator or FixOrchestrator(collector, executor=CommandExecutor(dry_run=dry_run))
    return report, await orchestrator.fix(report, host)
