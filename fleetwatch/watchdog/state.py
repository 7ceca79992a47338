"""
看门狗状态持久化 (Watchdog State Store)

WatchdogState 每次 tick 后整体写入 JSON 文件：先写同目录临时文件、fsync，
再 os.replace 原子替换，进程中途崩溃也不会留下半截文件。
状态文件无法解析时记录警告并回到默认状态（HEALTHY, 0）。
写入失败时旧文件已经过期：先删掉它，删不掉就在旁边留一个 .dirty 标记，
标记存在期间 load 一律返回默认状态，下一次成功写入后清除标记。
"""
from __future__ import annotations

import enum
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from fleetwatch.core.exceptions import PersistenceError
from fleetwatch.models import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class WatchdogStatus(str, enum.Enum):
    HEALTHY = "HEALTHY"
    CHECKING = "CHECKING"
    RECOVERED = "RECOVERED"
    DEAD = "DEAD"


class WatchdogState(BaseModel):
    """看门狗在本机的持久状态。"""
    consecutive_failures: int = Field(default=0, ge=0)
    state: WatchdogStatus = WatchdogStatus.HEALTHY
    last_checked_at: Optional[datetime] = None


def atomic_write_json(path: Path, data: Any) -> None:
    """写临时文件 + fsync + os.replace。失败抛 PersistenceError，原文件保持不变。"""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise PersistenceError(f"Cannot write {path}", str(e)) from e
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise PersistenceError(f"Cannot write {path}", str(e)) from e


class StateStore:
    """单文件状态存储。"""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.dirty_marker = self.path.with_name(self.path.name + ".dirty")

    def load(self) -> WatchdogState:
        if self.dirty_marker.exists():
            logger.warning("Watchdog state %s is marked stale, resetting", self.path)
            return WatchdogState()
        if not self.path.exists():
            return WatchdogState()
        try:
            return WatchdogState.model_validate(json.loads(self.path.read_text()))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Unreadable watchdog state %s, resetting: %s", self.path, e)
            return WatchdogState()

    def save(self, state: WatchdogState) -> None:
        payload = state.model_dump(mode="json")
        if state.last_checked_at is not None:
            payload["last_checked_at"] = format_timestamp(state.last_checked_at)
        try:
            atomic_write_json(self.path, payload)
        except PersistenceError:
            self._invalidate()
            raise
        try:
            self.dirty_marker.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Cannot clear stale marker %s: %s", self.dirty_marker, e)

    def _invalidate(self) -> None:
        """上一次写入失败：旧状态不可信。"""
        try:
            self.path.unlink(missing_ok=True)
            return
        except OSError as e:
            logger.warning("Cannot remove stale state %s: %s", self.path, e)
        try:
            self.dirty_marker.touch()
        except OSError as e:
            logger.error("Cannot mark state %s as stale: %s", self.path, e)


def record_death(identity_file: str) -> int:
    """
    身份账本记一次"死亡"：deaths + 1，last_death 为当前 UTC 时间。

    身份文件的其他字段原样保留。文件不存在或损坏时从空对象开始。

    Returns:
        int: 更新后的 deaths

    Raises:
        PersistenceError: 写入失败
    """
    path = Path(identity_file)
    ledger: dict[str, Any] = {}
    if path.exists():
        try:
            loaded = json.loads(path.read_text())
            if isinstance(loaded, dict):
                ledger = loaded
            else:
                logger.warning("Identity file %s is not an object, starting a new ledger", path)
        except (OSError, ValueError) as e:
            logger.warning("Unreadable identity file %s, starting a new ledger: %s", path, e)
    try:
        deaths = int(ledger.get("deaths") or 0) + 1
    except (TypeError, ValueError):
        deaths = 1
    ledger["deaths"] = deaths
    ledger["last_death"] = format_timestamp(utcnow())
    atomic_write_json(path, ledger)
    return deaths


def read_identity(identity_file: str) -> dict[str, Any]:
    """读取身份文件，失败返回空字典。"""
    try:
        data = json.loads(Path(identity_file).read_text())
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}
