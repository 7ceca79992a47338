"""
看门狗本机检查与恢复动作。

检查集合比远程诊断小，只覆盖存活相关的四项：服务是否 active、健康端点、
磁盘、内存。磁盘和内存沿用诊断聚合器的阈值策略。
恢复动作：重启服务、清理日志、从备份恢复配置。
"""
import asyncio
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

import httpx
import psutil

from fleetwatch.diagnosis import classify_disk, classify_memory
from fleetwatch.models import CheckResult, CheckStatus
from fleetwatch.watchdog.config import WatchdogConfig

logger = logging.getLogger(__name__)


async def _run(argv: list[str], timeout: float) -> tuple[int, str]:
    """执行本机命令，返回 (exit_code, 输出)。超时视为失败。"""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        return -1, str(e)
    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.communicate()
        return -1, f"timed out after {timeout}s"
    return proc.returncode or 0, out.decode(errors="replace").strip()


class LocalLiveness:
    """本机存活检查。"""

    def __init__(self, cfg: WatchdogConfig) -> None:
        self.cfg = cfg

    async def service_active(self) -> CheckResult:
        code, out = await _run(["systemctl", "is-active", self.cfg.service.name], timeout=10)
        if code == 0:
            return CheckResult(name="gateway_process", status=CheckStatus.OK, detail="active")
        return CheckResult(
            name="gateway_process", status=CheckStatus.ERROR, detail=out or "not active"
        )

    async def health(self) -> CheckResult:
        """执行 HTTP 健康检查，2xx 视为正常。"""
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.cfg.service.health_timeout) as client:
                resp = await client.get(self.cfg.service.health_url)
        except httpx.HTTPError as e:
            return CheckResult(name="health_endpoint", status=CheckStatus.ERROR, detail=str(e)[:200] or "unreachable")
        elapsed_ms = round((time.monotonic() - start) * 1000)
        if 200 <= resp.status_code < 300:
            return CheckResult(name="health_endpoint", status=CheckStatus.OK, detail=f"{elapsed_ms}ms")
        return CheckResult(name="health_endpoint", status=CheckStatus.ERROR, detail=f"HTTP {resp.status_code}")

    def disk(self) -> CheckResult:
        free = round(100 - psutil.disk_usage("/").percent)
        return CheckResult(name="disk", status=classify_disk(free), detail=f"{free}% free")

    def memory(self) -> CheckResult:
        vm = psutil.virtual_memory()
        avail = round(vm.available / vm.total * 100) if vm.total else 0
        return CheckResult(name="memory", status=classify_memory(avail), detail=f"{avail}% available")

    async def check_service(self) -> bool:
        """恢复后的复检：服务 active 且健康端点正常。"""
        service = await self.service_active()
        if service.failed:
            return False
        return not (await self.health()).failed

    async def check_all(self) -> list[CheckResult]:
        return [await self.service_active(), await self.health(), self.disk(), self.memory()]


class LocalActions:
    """本机恢复动作。"""

    def __init__(self, cfg: WatchdogConfig) -> None:
        self.cfg = cfg

    async def restart_service(self) -> bool:
        code, out = await _run(
            ["systemctl", "restart", self.cfg.service.name],
            timeout=self.cfg.recovery.restart_timeout,
        )
        if code != 0:
            logger.error("Restart of %s failed: %s", self.cfg.service.name, out)
        return code == 0

    async def vacuum(self) -> int:
        """清理 journal 和过期的轮转日志，返回删除的文件数。"""
        code, out = await _run(
            ["journalctl", f"--vacuum-time={self.cfg.vacuum.journal_retention}"], timeout=60
        )
        if code != 0:
            logger.warning("journalctl vacuum failed: %s", out)
        cutoff = time.time() - self.cfg.vacuum.log_retention_days * 86400
        removed = 0
        for log_dir in self.cfg.vacuum.log_dirs:
            root = Path(log_dir)
            if not root.is_dir():
                continue
            for path in root.rglob("*"):
                if not _is_rotated_log(path.name):
                    continue
                try:
                    if path.is_file() and path.stat().st_mtime < cutoff:
                        path.unlink()
                        removed += 1
                except OSError as e:
                    logger.debug("Cannot remove %s: %s", path, e)
        logger.info("Vacuum removed %d rotated log file(s)", removed)
        return removed

    def restore_backup(self) -> Optional[Path]:
        """把 backup_dir 中最新的快照原子地复制到 config_path，返回所用快照。"""
        backups = Path(self.cfg.paths.backup_dir)
        if not backups.is_dir():
            logger.error("No backup directory at %s", backups)
            return None
        snapshots = sorted(
            (p for p in backups.iterdir() if p.is_file()),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        if not snapshots:
            logger.error("No snapshots in %s", backups)
            return None

        latest = snapshots[0]
        target = Path(self.cfg.paths.config_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".restore", dir=target.parent)
        os.close(fd)
        try:
            shutil.copy2(latest, tmp_name)
            os.replace(tmp_name, target)
        except OSError as e:
            logger.error("Restore of %s failed: %s", latest, e)
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            return None
        logger.info("Restored %s from %s", target, latest)
        return latest


def _is_rotated_log(name: str) -> bool:
    if name.endswith(".gz") or name.endswith(".old"):
        return True
    stem, _, suffix = name.rpartition(".")
    return bool(stem) and suffix.isdigit() and ".log" in stem
