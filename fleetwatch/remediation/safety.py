"""
修复命令安全校验 (Remediation Command Safety)

每条修复命令（runbook 步骤、知识库方案、Agent 启动命令）在远端执行前都要经过这里。
禁令表写死在代码里，不读配置；白名单可由调用方追加该服务自带的 CLI 工具。

命令按 shell 控制符（; && || | & 换行）拆成若干段，每一段都必须以白名单前缀开头。
命令替换（$(...)、反引号）和子 shell 括号一律拒绝，只有内置 runbook 中
显式标记为 trusted 的步骤例外；知识库来源的命令永远不是 trusted。
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

# 按类别分组的禁止模式：(类别, 正则)
_FORBIDDEN: list[tuple[str, str]] = [
    ("wipe", r"rm\s+-rf\s+/(?!\S)"),
    ("wipe", r"rm\s+-rf\s+/\*"),
    ("wipe", r"rm\s+-rf\s+~(?!\S)"),
    ("wipe", r"rm\s+-rf\s+\"?\$HOME\"?(?!\S)"),
    ("wipe", r"mkfs\."),
    ("wipe", r"dd\s+.*of=/dev/[sh]d"),
    ("wipe", r">\s*/dev/[sh]d"),
    ("privilege", r"chmod\s+.*777\s+/"),
    ("privilege", r"chown\s+.*root\s+/"),
    ("privilege", r"\b(passwd|useradd|userdel|usermod)\s"),
    ("privilege", r"visudo"),
    ("remote-code", r"(curl|wget)\s+.*\|\s*(sh|bash)\b"),
    ("remote-code", r"\s-exec(dir)?\s"),
    ("host-control", r"\b(shutdown|halt|poweroff)\b"),
    ("host-control", r"reboot\b"),
    ("host-control", r"init\s+[06]"),
    ("host-control", r"systemctl\s+(disable|mask)\s"),
    ("firewall", r"iptables\s+-[FX]"),
    ("mining", r"xmrig|minerd|cryptonight"),
]

FORBIDDEN_PATTERNS: list[tuple[str, re.Pattern]] = [
    (category, re.compile(pattern, re.IGNORECASE)) for category, pattern in _FORBIDDEN
]

# 允许的命令前缀，按整词匹配（"df" 不放行 "dfx"）
ALLOWED_COMMAND_PREFIXES: tuple[str, ...] = (
    # 只读排查
    "df", "du", "find", "ls", "cat", "head", "tail", "grep", "test",
    "free", "ps", "vmstat", "ss", "lsof",
    # 文件整理
    "rm", "cp", "mv", "mkdir", "touch", "truncate", "logrotate",
    # 服务管理
    "systemctl restart", "systemctl start", "systemctl stop", "systemctl status",
    "systemctl is-active", "systemctl reset-failed", "systemctl daemon-reload",
    "journalctl",
    # 进程与内核
    "kill", "pkill", "sync", "sysctl",
    "echo", "sleep", "true",
    "apt clean", "apt-get clean",
)

_CONTROL_CHARS = ";|&\n"


def split_command_chain(cmd: str) -> tuple[list[str], Optional[str]]:
    """
    按 shell 控制符拆分命令链。

    引号内和反斜杠转义的字符不参与拆分；``2>&1``、``&>`` 中的 & 属于重定向。

    Returns:
        (segments, problem): problem 非空表示出现了命令替换、子 shell 或未闭合的引号
    """
    segments: list[str] = []
    current: list[str] = []
    quote: Optional[str] = None
    problem: Optional[str] = None
    i = 0
    while i < len(cmd):
        ch = cmd[i]
        if ch == "\\" and quote != "'":
            current.append(cmd[i:i + 2])
            i += 2
            continue
        if quote:
            if ch == quote:
                quote = None
            elif quote == '"' and (ch == "`" or cmd.startswith("$(", i)):
                problem = "command substitution"
            current.append(ch)
        elif ch in "'\"":
            quote = ch
            current.append(ch)
        elif ch == "`" or cmd.startswith("$(", i):
            problem = "command substitution"
            current.append(ch)
        elif ch in "()":
            problem = problem or "subshell"
            current.append(ch)
        elif ch in _CONTROL_CHARS and not _is_redirect(cmd, i):
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    segments.append("".join(current))
    if quote:
        problem = "unbalanced quotes"
    return [s.strip() for s in segments if s.strip()], problem


def _is_redirect(cmd: str, i: int) -> bool:
    return cmd[i] == "&" and (cmd[i - 1:i] in ("<", ">") or cmd[i + 1:i + 2] == ">")


def _prefix_matches(cmd_lower: str, prefix: str) -> bool:
    return cmd_lower == prefix or cmd_lower.startswith(prefix + " ")


def check_command_safety(
    cmd: str,
    extra_prefixes: Iterable[str] = (),
    trusted: bool = False,
) -> tuple[bool, str]:
    """
    检查一条命令能否在远端执行。

    先查禁令，再逐段查白名单；extra_prefixes 追加服务自带工具（如 ServiceProfile.cli_tool）。
    trusted 只用于内置 runbook 步骤：允许命令替换，白名单只看命令开头。
    返回 (is_safe, reason)。
    """
    command = cmd.strip()
    if not command:
        return False, "Empty command"

    for category, pattern in FORBIDDEN_PATTERNS:
        if pattern.search(command):
            return False, f"Forbidden ({category}): matches {pattern.pattern}"

    if trusted:
        segments = [command]
    else:
        segments, problem = split_command_chain(command)
        if problem:
            return False, f"Forbidden ({problem}) in untrusted command"

    prefixes = (*ALLOWED_COMMAND_PREFIXES, *(p.strip().lower() for p in extra_prefixes if p and p.strip()))
    for segment in segments:
        if not any(_prefix_matches(segment.lower(), p) for p in prefixes):
            return False, f"Command not in allowed prefix list: {segment.split()[0]}"

    return True, "OK"
