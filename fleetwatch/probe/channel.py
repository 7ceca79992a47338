"""
远程执行通道 (Remote Probe Channel)

在目标主机上执行 shell 命令并返回输出。SSHChannel 调用系统 ssh 客户端，
LocalChannel 用于 ``diagnose self``，在本机 bash 中执行。

超时与连接失败抛出 ChannelError / ChannelTimeoutError；命令本身的非零退出码
不是异常，由调用方按 exit_code 判断。
"""
from __future__ import annotations

import abc
import asyncio
import logging
import time
from typing import Optional

from pydantic import BaseModel

from fleetwatch.core.config import settings
from fleetwatch.core.exceptions import ChannelError, ChannelTimeoutError
from fleetwatch.models import Host

logger = logging.getLogger(__name__)

# ssh 自身出错（连接、认证）时的退出码
SSH_ERROR_EXIT_CODE = 255

MAX_OUTPUT_BYTES = 1024 * 1024


class ExecResult(BaseModel):
    """一次远程执行的结果。"""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteChannel(abc.ABC):
    """远程执行通道接口。"""

    @abc.abstractmethod
    async def exec(
        self,
        host: Host,
        command: str,
        timeout: float,
        stdin: Optional[str] = None,
    ) -> ExecResult:
        """在 host 上执行 command，stdin 可选。"""

    async def _run(
        self,
        argv: list[str],
        timeout: float,
        stdin: Optional[str],
        label: str,
    ) -> ExecResult:
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ChannelError(f"Cannot start {argv[0]}", str(e)) from e

        payload = stdin.encode() if stdin is not None else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(payload), timeout=timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            logger.warning("Command on %s timed out after %ss", label, timeout)
            raise ChannelTimeoutError(f"Timed out after {timeout}s on {label}")

        elapsed = int((time.monotonic() - start) * 1000)
        return ExecResult(
            stdout=stdout_bytes[:MAX_OUTPUT_BYTES].decode(errors="replace"),
            stderr=stderr_bytes[:MAX_OUTPUT_BYTES].decode(errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else -1,
            duration_ms=elapsed,
        )


class SSHChannel(RemoteChannel):
    """通过系统 ssh 客户端执行命令（BatchMode，不交互）。"""

    def __init__(self, ssh_binary: Optional[str] = None, connect_timeout: Optional[int] = None) -> None:
        self.ssh_binary = ssh_binary or settings.ssh_binary
        self.connect_timeout = connect_timeout or settings.ssh_connect_timeout

    def build_argv(self, host: Host, command: str) -> list[str]:
        argv = [
            self.ssh_binary,
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={host.connect_timeout or self.connect_timeout}",
            "-o", "StrictHostKeyChecking=accept-new",
            "-p", str(host.ssh_port),
        ]
        if host.ssh_key_path:
            argv += ["-i", host.ssh_key_path]
        argv += [host.target, command]
        return argv

    async def exec(
        self,
        host: Host,
        command: str,
        timeout: float,
        stdin: Optional[str] = None,
    ) -> ExecResult:
        result = await self._run(self.build_argv(host, command), timeout, stdin, host.name)
        if result.exit_code == SSH_ERROR_EXIT_CODE:
            raise ChannelError(f"SSH to {host.ip} failed", result.stderr.strip()[:200] or None)
        return result


class LocalChannel(RemoteChannel):
    """在本机 bash 中执行，用于诊断运行 fleetwatch 的主机自身。"""

    def __init__(self, shell: str = "bash") -> None:
        self.shell = shell

    async def exec(
        self,
        host: Host,
        command: str,
        timeout: float,
        stdin: Optional[str] = None,
    ) -> ExecResult:
        return await self._run([self.shell, "-c", command], timeout, stdin, host.name)


def channel_for(host: Host) -> RemoteChannel:
    """按主机选择通道：self 走本地 shell，其余走 SSH。"""
    if host.is_local:
        return LocalChannel()
    return SSHChannel()
