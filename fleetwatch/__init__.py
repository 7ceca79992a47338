"""
fleetwatch: 远程实例群的诊断、自愈与升级告警。
fleetwatch - diagnosis, self-healing and escalation for a fleet of remote instances.
"""

__version__ = "0.1.0"
