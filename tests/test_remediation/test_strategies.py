"""修复策略测试：知识库方案排序、Agent 输出解析。"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from fleetwatch.core.exceptions import ChannelTimeoutError
from fleetwatch.probe.channel import ExecResult
from fleetwatch.remediation.command_executor import CommandExecutor
from fleetwatch.remediation.models import RemediationPlan
from fleetwatch.remediation.runbook_registry import RunbookRegistry
from fleetwatch.remediation.strategies import (
    AgentStrategy,
    FixContext,
    KnowledgeBaseStrategy,
    StaticRunbookStrategy,
)
from fleetwatch.services.knowledge_client import Approach, Problem

from conftest import FakeChannel


@pytest.fixture
def ctx():
    return FixContext(check="gateway_process", detail="Not running")


@pytest.mark.asyncio
async def test_knowledge_plans_skip_failed_and_prefer_worked(host, ctx):
    kb = MagicMock()
    kb.search = AsyncMock(return_value=[
        Problem(id="p1", approaches=[
            Approach(id="a1", angle="try pkill", method="pkill -f gateway", status="tried"),
            Approach(id="a2", angle="bad idea", method="rm -rf /tmp/x", status="failed"),
            Approach(id="a3", angle="restart", method="systemctl restart openclaw-gateway\nsleep 2", status="worked"),
        ]),
    ])
    strategy = KnowledgeBaseStrategy(kb, CommandExecutor(channel=FakeChannel(), dry_run=True))
    plans = await strategy.plans(host, ctx)

    assert [p.knowledge_ref_id for p in plans] == ["a3", "a1"]
    assert [s.command for s in plans[0].steps] == ["systemctl restart openclaw-gateway", "sleep 2"]
    assert not any(s.trusted for s in plans[0].steps)
    assert plans[0].problem_id == "p1"
    kb.search.assert_awaited_once_with("gateway_process: Not running")


@pytest.mark.asyncio
async def test_runbook_plans(host, ctx):
    strategy = StaticRunbookStrategy(RunbookRegistry(), CommandExecutor(channel=FakeChannel(), dry_run=True))
    plans = await strategy.plans(host, ctx)
    assert [p.method_description.split(":")[0] for p in plans] == [
        "service_restart", "service_resuscitate", "config_restore",
    ]
    assert len({p.method_description for p in plans}) == 3
    assert all(p.steps for p in plans)


@pytest.mark.asyncio
async def test_empty_plan_is_failed_apply(host, ctx):
    strategy = StaticRunbookStrategy(RunbookRegistry(), CommandExecutor(channel=FakeChannel(), dry_run=False))
    result = await strategy.apply(RemediationPlan(strategy="runbook", method_description="noop"), host, ctx)
    assert result.ok is False


class TestAgentStrategy:
    def test_disabled_without_command(self):
        assert AgentStrategy(command="").enabled is False

    @pytest.mark.asyncio
    async def test_disabled_has_no_plans(self, host, ctx):
        assert await AgentStrategy(command="").plans(host, ctx) == []

    def test_prompt_lists_tried_methods(self, host):
        ctx = FixContext(check="disk", detail="5% free", tried=["disk_cleanup: Free disk space"])
        prompt = AgentStrategy(command="claude --print").build_prompt(host, ctx)
        assert "alpha" in prompt
        assert "disk_cleanup: Free disk space" in prompt
        assert '"fixed"' in prompt

    @pytest.mark.asyncio
    async def test_parses_json_from_noisy_output(self, host, ctx):
        noisy = "\x1b[2K\rworking...\r\n{\"fixed\": true, \"method\": \"restarted the gateway\"}\n"
        channel = FakeChannel(lambda command, stdin: ExecResult(stdout=noisy))
        strategy = AgentStrategy(command="claude --print", channel=channel, dry_run=False)
        plan = (await strategy.plans(host, ctx))[0]

        result = await strategy.apply(plan, host, ctx)

        assert result.ok is True
        assert result.method_description == "restarted the gateway"
        command = channel.calls[0][0]
        assert command.startswith("claude --print '")

    @pytest.mark.asyncio
    async def test_unparseable_output_keeps_raw_text(self, host, ctx):
        channel = FakeChannel(lambda command, stdin: ExecResult(stdout="I could not finish\n"))
        strategy = AgentStrategy(command="claude --print", channel=channel, dry_run=False)
        plan = (await strategy.plans(host, ctx))[0]

        result = await strategy.apply(plan, host, ctx)

        assert result.ok is False
        assert "I could not finish" in result.output

    @pytest.mark.asyncio
    async def test_timeout_is_failed_attempt(self, host, ctx):
        def handler(command, stdin):
            raise ChannelTimeoutError("Timed out after 600s on alpha")

        strategy = AgentStrategy(command="claude --print", channel=FakeChannel(handler), dry_run=False)
        plan = (await strategy.plans(host, ctx))[0]
        result = await strategy.apply(plan, host, ctx)
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_dry_run(self, host, ctx):
        channel = FakeChannel()
        strategy = AgentStrategy(command="claude --print", channel=channel, dry_run=True)
        plan = (await strategy.plans(host, ctx))[0]
        result = await strategy.apply(plan, host, ctx)
        assert result.ok is True
        assert channel.calls == []
