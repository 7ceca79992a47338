"""
探测协议解码 (Probe Wire Protocol)

批量探测脚本的输出格式::

    stream   := noise* section*
    section  := header NL body
    header   := SENTINEL name          ; SENTINEL = "---FLEETWATCH_CHECK---"
    body     := line*                  ; 直到下一个 header 为止
    payload  := body 中第一个非空行（去除首尾空白）

第一个 header 之前的内容（登录横幅、motd 等）视为噪声丢弃。
每个 section 按名称交给对应的解析器；缺失或格式不符的 section
降级为 ``error / check failed``，不会中断整个诊断。

Decoding of the batched probe output and the per-check payload parsers,
plus ``extract_json`` for pulling a JSON object out of noisy agent output.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from fleetwatch.diagnosis import (
    classify_disk,
    classify_memory,
    is_checkpoint_stale,
)
from fleetwatch.models import CheckResult, CheckStatus

logger = logging.getLogger(__name__)

SENTINEL = "---FLEETWATCH_CHECK---"

CHECK_FAILED = "check failed"

# 探测脚本输出顺序即报告顺序
CHECK_NAMES: list[str] = [
    "gateway_process",
    "health_endpoint",
    "sessions",
    "config_valid",
    "disk",
    "memory",
    "cli_tool",
    "delegated_auth",
    "api_key",
    "user_mismatch",
    "identity",
    "declared_config",
    "last_checkpoint",
]

IDENTITY_PREFIX = "B"


class MalformedPayload(ValueError):
    """单个检查项的输出无法解析。"""


def decode_probe_output(text: str) -> list[tuple[str, str]]:
    """
    按 sentinel 切分探测输出 (Split probe output into sections)

    Returns:
        [(name, payload), ...]，顺序与出现顺序一致，保留重复名称。
        body 全空的 section payload 为空字符串。
    """
    sections: list[tuple[str, str]] = []
    name: Optional[str] = None
    payload: Optional[str] = None

    for line in text.splitlines():
        if line.startswith(SENTINEL):
            if name is not None:
                sections.append((name, payload or ""))
            name = line[len(SENTINEL):].strip()
            payload = None
            continue
        if name is None:
            continue
        if payload is None and line.strip():
            payload = line.strip()

    if name is not None:
        sections.append((name, payload or ""))
    return [(n, p) for n, p in sections if n]


def _ok(name: str, detail: str) -> CheckResult:
    return CheckResult(name=name, status=CheckStatus.OK, detail=detail)


def _warn(name: str, detail: str) -> CheckResult:
    return CheckResult(name=name, status=CheckStatus.WARN, detail=detail)


def _error(name: str, detail: str) -> CheckResult:
    return CheckResult(name=name, status=CheckStatus.ERROR, detail=detail)


def failed_check(name: str) -> CheckResult:
    return _error(name, CHECK_FAILED)


def _int_payload(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as e:
        raise MalformedPayload(value) from e


# --- 各检查项解析器 (per-check parsers) ---

def parse_gateway_process(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        return _ok("gateway_process", f"Port {payload[3:]}")
    if payload.startswith("error:"):
        return _error("gateway_process", "Not running")
    raise MalformedPayload(payload)


def parse_health_endpoint(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        return _ok("health_endpoint", payload[3:])
    if payload.startswith("error:"):
        return _error("health_endpoint", "No health endpoint responding")
    raise MalformedPayload(payload)


def parse_sessions(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        return _ok("sessions", payload[3:])
    if payload.startswith("warn:"):
        return _warn("sessions", payload[5:])
    raise MalformedPayload(payload)


def parse_config_valid(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        return _ok("config_valid", "Valid JSON")
    if payload.startswith("warn:"):
        return _warn("config_valid", "No config file")
    if payload.startswith("error:"):
        return _error("config_valid", "Invalid JSON")
    raise MalformedPayload(payload)


def parse_disk(payload: str) -> CheckResult:
    free = _int_payload(payload)
    status = classify_disk(free)
    detail = f"{free}% free"
    if status == CheckStatus.ERROR:
        detail += " (critical)"
    return CheckResult(name="disk", status=status, detail=detail)


def parse_memory(payload: str) -> CheckResult:
    avail_raw, _, used = payload.partition(":")
    avail = _int_payload(avail_raw)
    status = classify_memory(avail)
    detail = f"{avail}% available"
    if status == CheckStatus.ERROR:
        detail += " (critical)"
    if used and used != "unknown":
        detail += f", {used}% used"
    return CheckResult(name="memory", status=status, detail=detail)


def parse_cli_tool(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        return _ok("cli_tool", f"Installed ({payload[3:]})")
    return _warn("cli_tool", "Not installed")


def parse_delegated_auth(payload: str) -> CheckResult:
    user = payload.rsplit(":", 1)[-1]
    if payload.startswith("ok:active:"):
        return _ok("delegated_auth", f"Delegated auth active ({user} user)")
    if payload.startswith("warn:expired:"):
        return _warn("delegated_auth", f"Delegated auth expired ({user} user)")
    if payload.startswith("warn:no_credentials:"):
        return _warn("delegated_auth", f"No credentials ({user} user)")
    if not payload:
        raise MalformedPayload(payload)
    return _warn("delegated_auth", payload)


def parse_api_key(payload: str) -> CheckResult:
    if ":" not in payload:
        raise MalformedPayload(payload)
    status, _, detail = payload.partition(":")
    if status == "200":
        return _ok("api_key", f"Valid ({detail})")
    if status == "401":
        return _error("api_key", f"Invalid key ({detail})")
    if status == "402":
        return _error("api_key", f"No credits ({detail})")
    if status == "429":
        return _warn("api_key", f"Rate limited ({detail})")
    if status == "missing":
        return _error("api_key", "No API key found")
    return _warn("api_key", f"HTTP {status} ({detail})")


def parse_user_mismatch(payload: str) -> CheckResult:
    if ":" not in payload:
        raise MalformedPayload(payload)
    login_user, _, service_user = payload.partition(":")
    if not service_user or login_user == service_user:
        return _ok("user_mismatch", f"Login={login_user}, Service={service_user}")
    return _warn("user_mismatch", f"Login={login_user} but service runs as {service_user}")


def parse_identity(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        aid = payload[3:].split(":", 1)[0]
        if aid.startswith(IDENTITY_PREFIX):
            return _ok("identity", f"{aid[:8]}... (valid)")
        return _error("identity", f"Fake identity ({aid})")
    if payload.startswith("error:fake:"):
        return _error("identity", f"Fake identity ({payload.rsplit(':', 1)[-1]})")
    if payload.startswith("error:invalid:"):
        return _error("identity", "Invalid identity")
    if payload == "error:no_aid":
        return _error("identity", "Identity file has no AID")
    if payload == "error:no_identity":
        return _error("identity", "No identity file")
    if not payload:
        raise MalformedPayload(payload)
    return _error("identity", "Identity check failed")


def parse_declared_config(payload: str) -> CheckResult:
    if payload.startswith("ok:"):
        return _ok("declared_config", "All keys present")
    if payload.startswith("warn:missing:"):
        return _warn("declared_config", f"Missing: {payload[len('warn:missing:'):]}")
    if not payload:
        raise MalformedPayload(payload)
    return _warn("declared_config", "Cannot check (no config tool or config)")


def parse_last_checkpoint(payload: str) -> CheckResult:
    if payload.startswith("none:"):
        return _warn("last_checkpoint", "No checkpoint found")
    if payload.startswith("error:"):
        return _warn("last_checkpoint", "Cannot read checkpoint file")
    if ":" not in payload:
        raise MalformedPayload(payload)
    cid, _, age = payload.partition(":")
    short = f"{cid[:12]}..."
    hours_raw = age[:-1] if age.endswith("h") else ""
    if hours_raw.isdigit() and is_checkpoint_stale(int(hours_raw)):
        return _warn("last_checkpoint", f"{short} ({age}, stale)")
    return _ok("last_checkpoint", f"{short} ({age})")


PARSERS: dict[str, Callable[[str], CheckResult]] = {
    "gateway_process": parse_gateway_process,
    "health_endpoint": parse_health_endpoint,
    "sessions": parse_sessions,
    "config_valid": parse_config_valid,
    "disk": parse_disk,
    "memory": parse_memory,
    "cli_tool": parse_cli_tool,
    "delegated_auth": parse_delegated_auth,
    "api_key": parse_api_key,
    "user_mismatch": parse_user_mismatch,
    "identity": parse_identity,
    "declared_config": parse_declared_config,
    "last_checkpoint": parse_last_checkpoint,
}


def parse_section(name: str, payload: str) -> Optional[CheckResult]:
    """解析单个 section；未知名称返回 None，格式错误降级为 check failed。"""
    parser = PARSERS.get(name)
    if parser is None:
        logger.debug("Ignoring unknown probe section: %s", name)
        return None
    try:
        return parser(payload)
    except MalformedPayload:
        logger.debug("Malformed payload for %s: %r", name, payload)
        return failed_check(name)


def parse_probe_output(text: str, expected: Optional[list[str]] = None) -> list[CheckResult]:
    """
    解码并解析探测输出 (Decode and parse probe output)

    Args:
        text: 探测脚本的 stdout
        expected: 本次应出现的检查项，默认全部；缺失的补为 check failed

    Returns:
        按 expected 顺序排列的检查结果；同名 section 以最后一次为准
    """
    expected = expected if expected is not None else CHECK_NAMES
    parsed: dict[str, CheckResult] = {}
    for name, payload in decode_probe_output(text):
        result = parse_section(name, payload)
        if result is not None:
            parsed[name] = result

    results: list[CheckResult] = []
    for name in expected:
        result = parsed.pop(name, None)
        if result is None:
            logger.debug("Probe section missing: %s", name)
            result = failed_check(name)
        results.append(result)
    # 未请求但已知的检查项也保留
    results.extend(parsed.values())
    return results


# --- Agent 输出中的 JSON 提取 (JSON extraction from agent output) ---

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


def strip_terminal_noise(text: str) -> str:
    """去掉 ANSI 转义序列和回车。"""
    return _ANSI_RE.sub("", text).replace("\r", "")


def extract_json(text: str) -> Optional[dict[str, Any]]:
    """从混杂输出中提取第一个完整的 JSON 对象，找不到返回 None。"""
    cleaned = strip_terminal_noise(text)
    decoder = json.JSONDecoder()
    idx = cleaned.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(cleaned, idx)
        except json.JSONDecodeError:
            idx = cleaned.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            return obj
        idx = cleaned.find("{", idx + 1)
    return None
