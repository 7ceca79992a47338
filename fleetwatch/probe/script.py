"""
探测脚本生成 (Probe Script Builder)

根据 ServiceProfile 生成批量探测用的 bash 脚本。每个检查项是一段独立子 shell：
先由 Python 生成经 shlex.quote 处理的变量赋值，再接一段固定的 bash 正文。
正文只引用变量，不做任何字符串模板替换。
"""
from __future__ import annotations

import shlex
from typing import Callable, Iterable, Optional

from fleetwatch.models import ServiceProfile
from fleetwatch.probe.protocol import CHECK_NAMES, IDENTITY_PREFIX, SENTINEL

HEADER = "#!/usr/bin/env bash\nset -uo pipefail\nSEP=" + shlex.quote(SENTINEL) + "\n"


def shell_path(path: str) -> str:
    """相对路径展开为远端 $HOME 下的路径，值本身经过引用。"""
    if path.startswith("/"):
        return shlex.quote(path)
    return '"$HOME"/' + shlex.quote(path)


def _assign(**values: str) -> str:
    return "".join(f"{name}={value}\n" for name, value in values.items())


def _array(items: Iterable[str]) -> str:
    return "(" + " ".join(shlex.quote(str(i)) for i in items) + ")"


_DETECT_SERVICE_USER = """\
SVC_USER=$(systemctl show -p User "$SERVICE_NAME" 2>/dev/null | cut -d= -f2)
[[ -z "$SVC_USER" ]] && SVC_USER=$(ps -eo user=,args= 2>/dev/null | grep -E "$PROCESS_PATTERN" | grep -v grep | awk '{print $1}' | head -1)
[[ -z "$SVC_USER" ]] && SVC_USER=root
"""

_GATEWAY_PROCESS = """\
if pgrep -f "$PROCESS_PATTERN" >/dev/null 2>&1; then
  PORT=""
  for p in "${HEALTH_PORTS[@]}"; do
    if ss -tln 2>/dev/null | awk '{print $4}' | grep -qE ":${p}$"; then PORT=$p; break; fi
  done
  echo "ok:${PORT:-unknown}"
else
  echo "error:not_running"
fi
"""

_HEALTH_ENDPOINT = """\
HEALTH=""
for p in "${HEALTH_PORTS[@]}"; do
  OUT=$(curl -s -o /dev/null -w '%{http_code} %{time_total}' --connect-timeout 3 --max-time 5 "http://127.0.0.1:${p}${HEALTH_PATH}" 2>/dev/null || true)
  if [[ "${OUT%% *}" == "200" ]]; then
    MS=$(echo "${OUT##* }" | awk '{printf "%.0f", $1 * 1000}')
    HEALTH="ok:port=${p}:${MS}ms"
    break
  fi
done
echo "${HEALTH:-error:no_health_endpoint}"
"""

_SESSIONS = """\
if [[ -d "$SESSION_DIR" ]]; then
  TOTAL=0
  CORRUPT=0
  for f in "$SESSION_DIR"/*.jsonl; do
    [[ -f "$f" ]] || continue
    TOTAL=$((TOTAL + 1))
    if ! tail -n 5 "$f" | python3 -c 'import json, sys
for line in sys.stdin:
    if line.strip():
        json.loads(line)' >/dev/null 2>&1; then
      CORRUPT=$((CORRUPT + 1))
    fi
  done
  if [[ $CORRUPT -gt 0 ]]; then
    echo "warn:${CORRUPT}/${TOTAL}_corrupt"
  else
    echo "ok:${TOTAL}_sessions"
  fi
else
  echo "ok:no_sessions_dir"
fi
"""

_CONFIG_VALID = """\
if [[ -f "$CONFIG_PATH" ]]; then
  if python3 -c 'import json, sys; json.load(open(sys.argv[1]))' "$CONFIG_PATH" 2>/dev/null; then
    echo "ok:valid"
  else
    echo "error:invalid_json"
  fi
else
  echo "warn:no_config"
fi
"""

_DISK = """\
DISK_USED=$(df -P / 2>/dev/null | tail -1 | awk '{print $5}' | tr -d '%')
if [[ "$DISK_USED" =~ ^[0-9]+$ ]]; then
  echo "$((100 - DISK_USED))"
else
  echo "unknown"
fi
"""

_MEMORY = """\
MEM_USED=$(free 2>/dev/null | awk '/^Mem:/ {printf "%.0f", $3/$2 * 100}')
if [[ "$MEM_USED" =~ ^[0-9]+$ ]]; then
  echo "$((100 - MEM_USED)):${MEM_USED}"
else
  echo "unknown:unknown"
fi
"""

_CLI_TOOL = """\
if command -v "$CLI_TOOL" >/dev/null 2>&1; then
  VER=$("$CLI_TOOL" --version 2>/dev/null | head -1)
  echo "ok:${VER:-installed}"
else
  echo "warn:not_installed"
fi
"""

_DELEGATED_AUTH = _DETECT_SERVICE_USER + """\
SVC_HOME=$(getent passwd "$SVC_USER" 2>/dev/null | cut -d: -f6)
CRED_PATH="${SVC_HOME:-/root}/.${CLI_TOOL}/.credentials.json"
if [[ -f "$CRED_PATH" ]]; then
  TEST_CMD="$(printf '%q' "$CLI_TOOL") --print 'respond with just: ok' 2>&1 | head -5"
  TEST=$(timeout 15 su - "$SVC_USER" -s /bin/bash -c "$TEST_CMD" 2>/dev/null || echo "TIMEOUT_OR_ERROR")
  if echo "$TEST" | grep -qiE "error|expired|unauthorized|TIMEOUT"; then
    echo "warn:expired:${SVC_USER}"
  elif echo "$TEST" | grep -qi "ok"; then
    echo "ok:active:${SVC_USER}"
  else
    echo "warn:unknown:$(echo "$TEST" | head -1 | tr -d ':'):${SVC_USER}"
  fi
else
  echo "warn:no_credentials:${SVC_USER}"
fi
"""

_API_KEY = """\
API_KEY=""
if command -v "$CONFIG_TOOL" >/dev/null 2>&1; then
  API_KEY=$("$CONFIG_TOOL" config get "$API_KEY_CONFIG_PATH" 2>/dev/null || true)
fi
if [[ -z "$API_KEY" || "$API_KEY" == "null" ]] && [[ -f "$AUTH_PROFILE" ]]; then
  API_KEY=$(python3 -c 'import json, sys
data = json.load(open(sys.argv[1]))
for p in data if isinstance(data, list) else [data]:
    k = p.get("apiKey", p.get("api_key", ""))
    if k:
        print(k)
        break' "$AUTH_PROFILE" 2>/dev/null || true)
fi
if [[ -n "$API_KEY" && "$API_KEY" != "null" ]]; then
  BODY=$(printf '{"model":"%s","max_tokens":1,"messages":[{"role":"user","content":"ok"}]}' "$UPSTREAM_MODEL")
  HTTP_STATUS=$(curl -s -o /dev/null -w '%{http_code}' \\
    -H "x-api-key: ${API_KEY}" \\
    -H "anthropic-version: 2023-06-01" \\
    -H "content-type: application/json" \\
    -d "$BODY" --connect-timeout 5 --max-time 10 \\
    "$UPSTREAM_API_URL" 2>/dev/null || true)
  echo "${HTTP_STATUS:-000}:${API_KEY:0:10}***"
else
  echo "missing:"
fi
"""

_USER_MISMATCH = _DETECT_SERVICE_USER + """\
echo "$(whoami):${SVC_USER}"
"""

_IDENTITY = """\
if [[ -f "$IDENTITY_PATH" ]]; then
  AID=$(python3 -c 'import json, sys; print(json.load(open(sys.argv[1])).get("aid", ""))' "$IDENTITY_PATH" 2>/dev/null || true)
  if [[ -n "$AID" && "$AID" == "$IDENTITY_PREFIX"* ]]; then
    if command -v "$IDENTITY_TOOL" >/dev/null 2>&1; then
      if "$IDENTITY_TOOL" identity validate --path "$IDENTITY_PATH" >/dev/null 2>&1; then
        echo "ok:${AID}"
      else
        echo "error:invalid:${AID}"
      fi
    else
      echo "ok:${AID}:no_cli_validation"
    fi
  elif [[ -n "$AID" ]]; then
    echo "error:fake:${AID}"
  else
    echo "error:no_aid"
  fi
else
  echo "error:no_identity"
fi
"""

_DECLARED_CONFIG = """\
if command -v "$CONFIG_TOOL" >/dev/null 2>&1 && [[ -f "$CONFIG_PATH" ]]; then
  MISSING=""
  for key in "${REQUIRED_KEYS[@]}"; do
    VAL=$("$CONFIG_TOOL" config get "$key" 2>/dev/null || true)
    if [[ -z "$VAL" || "$VAL" == "null" ]]; then
      MISSING="${MISSING}${key},"
    fi
  done
  MISSING="${MISSING%,}"
  if [[ -z "$MISSING" ]]; then
    echo "ok:all_present"
  else
    echo "warn:missing:${MISSING}"
  fi
else
  echo "warn:no_config_tool_or_config"
fi
"""

_LAST_CHECKPOINT = """\
if [[ -f "$CHECKPOINT_PATH" ]]; then
  python3 -c 'import datetime, json, sys, time
data = json.load(open(sys.argv[1]))
cid = data.get("cid", data.get("localPath", "unknown"))
ts = data.get("timestamp", "")
if not ts:
    print(f"{cid}:no_timestamp")
else:
    try:
        dt = datetime.datetime.fromisoformat(ts.replace("Z", "+00:00"))
        print(f"{cid}:{int((time.time() - dt.timestamp()) / 3600)}h")
    except ValueError:
        print(f"{cid}:unknown_age")' "$CHECKPOINT_PATH" 2>/dev/null || echo "error:parse_failed"
else
  echo "none:"
fi
"""


def _service_vars(p: ServiceProfile) -> str:
    return _assign(
        SERVICE_NAME=shlex.quote(p.service_name),
        PROCESS_PATTERN=shlex.quote(p.process_pattern),
    )


_FRAGMENTS: dict[str, Callable[[ServiceProfile], str]] = {
    "gateway_process": lambda p: _assign(
        PROCESS_PATTERN=shlex.quote(p.process_pattern),
        HEALTH_PORTS=_array(p.health_ports),
    ) + _GATEWAY_PROCESS,
    "health_endpoint": lambda p: _assign(
        HEALTH_PORTS=_array(p.health_ports),
        HEALTH_PATH=shlex.quote(p.health_path),
    ) + _HEALTH_ENDPOINT,
    "sessions": lambda p: _assign(SESSION_DIR=shell_path(p.session_dir)) + _SESSIONS,
    "config_valid": lambda p: _assign(CONFIG_PATH=shell_path(p.config_path)) + _CONFIG_VALID,
    "disk": lambda p: _DISK,
    "memory": lambda p: _MEMORY,
    "cli_tool": lambda p: _assign(CLI_TOOL=shlex.quote(p.cli_tool)) + _CLI_TOOL,
    "delegated_auth": lambda p: _service_vars(p)
    + _assign(CLI_TOOL=shlex.quote(p.cli_tool)) + _DELEGATED_AUTH,
    "api_key": lambda p: _assign(
        CONFIG_TOOL=shlex.quote(p.config_tool),
        API_KEY_CONFIG_PATH=shlex.quote(p.api_key_config_path),
        AUTH_PROFILE=shell_path(p.auth_profile_path),
        UPSTREAM_API_URL=shlex.quote(p.upstream_api_url),
        UPSTREAM_MODEL=shlex.quote(p.upstream_model),
    ) + _API_KEY,
    "user_mismatch": lambda p: _service_vars(p) + _USER_MISMATCH,
    "identity": lambda p: _assign(
        IDENTITY_PATH=shell_path(p.identity_path),
        IDENTITY_TOOL=shlex.quote(p.identity_tool),
        IDENTITY_PREFIX=shlex.quote(IDENTITY_PREFIX),
    ) + _IDENTITY,
    "declared_config": lambda p: _assign(
        CONFIG_TOOL=shlex.quote(p.config_tool),
        CONFIG_PATH=shell_path(p.config_path),
        REQUIRED_KEYS=_array(p.required_config_keys),
    ) + _DECLARED_CONFIG,
    "last_checkpoint": lambda p: _assign(CHECKPOINT_PATH=shell_path(p.checkpoint_path)) + _LAST_CHECKPOINT,
}


def build_probe_script(profile: ServiceProfile, checks: Optional[list[str]] = None) -> str:
    """
    生成探测脚本 (Build the probe script)

    Args:
        profile: 被监控服务的布局
        checks: 只包含这些检查项（用于单项复检），默认全部

    Returns:
        可通过 stdin 交给 ``bash -s`` 的脚本文本
    """
    names = checks if checks is not None else CHECK_NAMES
    parts = [HEADER]
    for name in names:
        fragment = _FRAGMENTS.get(name)
        if fragment is None:
            raise ValueError(f"Unknown check: {name}")
        parts.append(f'\necho "${{SEP}}{name}"\n(\n{fragment(profile)})\n')
    return "".join(parts)
