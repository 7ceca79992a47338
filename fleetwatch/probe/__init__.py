"""
批量探测模块 (Batched Probe Package)

远程执行通道、探测脚本生成、输出协议解码与采集器。
"""
from fleetwatch.probe.channel import ExecResult, LocalChannel, RemoteChannel, SSHChannel
from fleetwatch.probe.collector import ProbeCollector

__all__ = ["ExecResult", "LocalChannel", "ProbeCollector", "RemoteChannel", "SSHChannel"]
