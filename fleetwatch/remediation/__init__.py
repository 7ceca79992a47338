"""
自动修复模块 (Auto-Remediation Package)

修复编排器、修复策略、内置 runbook、命令安全校验与执行器。
"""
from fleetwatch.remediation.orchestrator import FixOrchestrator, diagnose_and_fix

__all__ = ["FixOrchestrator", "diagnose_and_fix"]
