"""批量巡检测试：主机分级、单机超时隔离、取消。"""
import asyncio
import time

import pytest

from fleetwatch.diagnosis import aggregate, connectivity_failure
from fleetwatch.fleet import FleetSweeper, classify_host
from fleetwatch.models import CheckResult, CheckStatus, Host, HostStatus
from fleetwatch.probe.channel import RemoteChannel
from fleetwatch.probe.collector import ProbeCollector

from conftest import HEALTHY_PAYLOADS, SimulatedHost


class RoutingChannel(RemoteChannel):
    """按主机名分发到各自的 SimulatedHost；slow 中的主机永远不返回。"""

    def __init__(self, hosts, slow=()):
        self.hosts = hosts
        self.slow = set(slow)

    async def exec(self, host, command, timeout, stdin=None):
        if host.name in self.slow:
            await asyncio.sleep(30)
        return await self.hosts[host.name].exec(host, command, timeout, stdin)


def _hosts(*names):
    return [Host(name=n, ip=f"10.0.0.{i + 1}") for i, n in enumerate(names)]


def _report(*checks):
    return aggregate([CheckResult(name=n, status=s, detail="") for n, s in checks], "x", "1.2.3.4")


class TestClassifyHost:
    def test_timeout(self):
        assert classify_host(None) == HostStatus.UNREACHABLE

    def test_unreachable(self):
        assert classify_host(connectivity_failure("x", "1.2.3.4")) == HostStatus.UNREACHABLE

    def test_offline_beats_degraded(self):
        report = _report(("gateway_process", CheckStatus.ERROR), ("disk", CheckStatus.ERROR))
        assert classify_host(report) == HostStatus.OFFLINE

    def test_degraded_on_error(self):
        assert classify_host(_report(("api_key", CheckStatus.ERROR))) == HostStatus.DEGRADED

    def test_degraded_on_resource_warning(self):
        assert classify_host(_report(("memory", CheckStatus.WARN))) == HostStatus.DEGRADED

    def test_other_warnings_stay_healthy(self):
        assert classify_host(_report(("cli_tool", CheckStatus.WARN))) == HostStatus.HEALTHY


@pytest.mark.asyncio
async def test_one_slow_host_does_not_hold_back_the_fleet():
    hosts = _hosts("a", "b", "c", "d", "e")
    sims = {
        "a": SimulatedHost(),
        "b": SimulatedHost(dict(HEALTHY_PAYLOADS, gateway_process="error:not_running")),
        "c": SimulatedHost(),
        "d": SimulatedHost(dict(HEALTHY_PAYLOADS, api_key="401:sk-bad")),
        "e": SimulatedHost(),
    }
    collector = ProbeCollector(channel=RoutingChannel(sims, slow={"c"}))
    sweeper = FleetSweeper(collector, concurrency=5, per_host_timeout=0.5)

    start = time.monotonic()
    report = await sweeper.sweep(hosts)
    elapsed = time.monotonic() - start

    assert report.per_instance == {
        "a": HostStatus.HEALTHY,
        "b": HostStatus.OFFLINE,
        "c": HostStatus.UNREACHABLE,
        "d": HostStatus.DEGRADED,
        "e": HostStatus.HEALTHY,
    }
    assert report.cancelled == []
    assert elapsed < 5
    assert report.summary()["UNREACHABLE"] == 1


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    active = 0
    peak = 0

    class CountingCollector:
        async def collect(self, host):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return _report(("gateway_process", CheckStatus.OK))

    report = await FleetSweeper(CountingCollector(), concurrency=2, per_host_timeout=5).sweep(
        _hosts("a", "b", "c", "d", "e", "f")
    )
    assert peak <= 2
    assert len(report.per_instance) == 6


@pytest.mark.asyncio
async def test_cancel_stops_launching_new_hosts():
    cancel = asyncio.Event()

    class CancellingCollector:
        async def collect(self, host):
            cancel.set()
            return _report(("gateway_process", CheckStatus.OK))

    report = await FleetSweeper(CancellingCollector(), concurrency=1, per_host_timeout=5).sweep(
        _hosts("a", "b", "c"), cancel
    )
    assert report.per_instance == {"a": HostStatus.HEALTHY}
    assert report.cancelled == ["b", "c"]


@pytest.mark.asyncio
async def test_collector_crash_is_unreachable():
    class BrokenCollector:
        async def collect(self, host):
            raise RuntimeError("boom")

    report = await FleetSweeper(BrokenCollector(), concurrency=2, per_host_timeout=5).sweep(_hosts("a"))
    assert report.per_instance == {"a": HostStatus.UNREACHABLE}


@pytest.mark.asyncio
async def test_sweep_forever_until_cancelled():
    cancel = asyncio.Event()
    seen = []

    class OkCollector:
        async def collect(self, host):
            return _report(("gateway_process", CheckStatus.OK))

    async def on_report(report):
        seen.append(report)
        if len(seen) == 2:
            cancel.set()

    rounds = await FleetSweeper(OkCollector(), concurrency=2, per_host_timeout=5).sweep_forever(
        _hosts("a", "b"), interval=0.01, cancel=cancel, on_report=on_report
    )
    assert rounds == 2
    assert all(r.per_instance == {"a": HostStatus.HEALTHY, "b": HostStatus.HEALTHY} for r in seen)


def test_invalid_concurrency():
    with pytest.raises(ValueError):
        FleetSweeper(ProbeCollector(), concurrency=-1)
