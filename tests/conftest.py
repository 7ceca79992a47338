"""
fleetwatch 测试基础配置

提供模拟远程主机的 FakeChannel、健康主机的探测输出以及常用 fixture。
所有测试不依赖真实 SSH、知识库或通知渠道。
"""
import os
import re

# 必须在导入 fleetwatch 之前设置环境变量，避免读取本地 .env 中的真实配置
os.environ["KB_API_KEY"] = ""
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_CHAT_ID"] = ""
os.environ["ALERT_EMAIL"] = ""
os.environ["SMTP_HOST"] = ""
os.environ["AGENT_COMMAND"] = ""
os.environ["FIX_SETTLE_SECONDS"] = "0"
os.environ["REMEDIATION_DRY_RUN"] = "false"

from typing import Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from fleetwatch.core.exceptions import ChannelError
from fleetwatch.models import Host
from fleetwatch.probe.channel import ExecResult, RemoteChannel
from fleetwatch.probe.protocol import SENTINEL

HEALTHY_PAYLOADS = {
    "gateway_process": "ok:18789",
    "health_endpoint": "ok:port=18789:12ms",
    "sessions": "ok:3_sessions",
    "config_valid": "ok:valid",
    "disk": "72",
    "memory": "45:55",
    "cli_tool": "ok:1.0.3",
    "delegated_auth": "ok:active:openclaw",
    "api_key": "200:sk-ant-api03",
    "user_mismatch": "openclaw:openclaw",
    "identity": "ok:BAbc1234567890",
    "declared_config": "ok:all_present",
    "last_checkpoint": "bafybeigdyrzt5sfp7:3h",
}

_REQUESTED_RE = re.compile(r'echo "\$\{SEP\}(\w+)"')


def probe_output(payloads: dict, noise: str = "") -> str:
    """按探测协议拼出脚本输出。"""
    parts = [noise] if noise else []
    for name, payload in payloads.items():
        parts.append(f"{SENTINEL}{name}\n{payload}\n")
    return "".join(parts)


def requested_checks(script: str) -> list[str]:
    return _REQUESTED_RE.findall(script or "")


class FakeChannel(RemoteChannel):
    """按命令脚本化返回结果的通道，记录每次调用。"""

    def __init__(self, handler: Optional[Callable[[str, Optional[str]], ExecResult]] = None):
        self.calls: list[tuple[str, Optional[str]]] = []
        self.handler = handler or (lambda command, stdin: ExecResult(stdout="ok\n"))

    async def exec(self, host, command, timeout, stdin=None):
        self.calls.append((command, stdin))
        return self.handler(command, stdin)


class SimulatedHost(FakeChannel):
    """
    模拟一台被监控主机。

    payloads 决定探测结果；修复命令命中 on_command 中的片段时修改 payloads，
    用于模拟"修复后复检通过"。
    """

    def __init__(self, payloads: Optional[dict] = None, reachable: bool = True):
        super().__init__(self._handle)
        self.payloads = dict(HEALTHY_PAYLOADS if payloads is None else payloads)
        self.reachable = reachable
        self.on_command: dict[str, dict] = {}
        self.command_exit_code = 0

    @property
    def remote_commands(self) -> list[str]:
        return [c for c, _ in self.calls if c not in ("echo ok", "bash -s")]

    def _handle(self, command, stdin):
        if not self.reachable:
            raise ChannelError("SSH to host failed", "Connection refused")
        if command == "echo ok":
            return ExecResult(stdout="ok\n", duration_ms=42)
        if command == "bash -s":
            wanted = requested_checks(stdin)
            return ExecResult(stdout=probe_output({n: self.payloads[n] for n in wanted if n in self.payloads}))
        for fragment, changes in self.on_command.items():
            if fragment in command:
                self.payloads.update(changes)
        return ExecResult(stdout="done\n", exit_code=self.command_exit_code)


@pytest.fixture
def host():
    return Host(name="alpha", ip="10.0.0.5", ssh_user="openclaw")


@pytest.fixture
def healthy_host_channel():
    return SimulatedHost()


@pytest.fixture
def mock_notifier():
    notifier = MagicMock()
    notifier.notify = AsyncMock(return_value=["telegram"])
    return notifier


@pytest.fixture
def mock_knowledge():
    """禁用状态的知识库：没有检索结果，回写全部失败。"""
    kb = MagicMock()
    kb.search = AsyncMock(return_value=[])
    kb.post_problem = AsyncMock(return_value=None)
    kb.post_approach = AsyncMock(return_value=None)
    kb.update_approach_status = AsyncMock(return_value=False)
    return kb
