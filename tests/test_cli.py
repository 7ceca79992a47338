"""CLI 测试：输出格式与退出码。"""
import json

import pytest
from click.testing import CliRunner
from unittest.mock import AsyncMock, patch

from fleetwatch.cli import cli
from fleetwatch.core.exceptions import InstanceNotFoundError
from fleetwatch.diagnosis import aggregate, connectivity_failure
from fleetwatch.models import CheckResult, CheckStatus, FleetReport, Host, HostStatus
from fleetwatch.remediation.models import FixSessionResult
from fleetwatch.watchdog import WatchdogStatus, WatchdogTickResult

HOST = Host(name="alpha", ip="10.0.0.5")


@pytest.fixture
def runner():
    return CliRunner()


def _degraded_report():
    return aggregate([
        CheckResult(name="ssh", status=CheckStatus.OK, detail="Connected (root, 40ms)"),
        CheckResult(name="gateway_process", status=CheckStatus.OK, detail="Port 18789"),
        CheckResult(name="disk", status=CheckStatus.ERROR, detail="12% free (critical)"),
        CheckResult(name="cli_tool", status=CheckStatus.WARN, detail="Not installed"),
    ], "alpha", "10.0.0.5")


def test_diagnose_human_report(runner):
    with patch("fleetwatch.services.registry.load_instance", return_value=HOST), \
            patch("fleetwatch.probe.collector.ProbeCollector.collect", new=AsyncMock(return_value=_degraded_report())):
        result = runner.invoke(cli, ["diagnose", "alpha"])

    assert result.exit_code == 0
    assert "Diagnosing: alpha (10.0.0.5)" in result.output
    assert "Connectivity:" in result.output
    assert "12% free (critical)" in result.output
    assert "1 errors" in result.output


def test_diagnose_json(runner):
    with patch("fleetwatch.services.registry.load_instance", return_value=HOST), \
            patch("fleetwatch.probe.collector.ProbeCollector.collect", new=AsyncMock(return_value=_degraded_report())):
        result = runner.invoke(cli, ["diagnose", "alpha", "--json"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["checks_failed"] == 1
    assert data["errors"] == ["disk: 12% free (critical)"]


def test_diagnose_unreachable_exits_1(runner):
    report = connectivity_failure("alpha", "10.0.0.5")
    with patch("fleetwatch.services.registry.load_instance", return_value=HOST), \
            patch("fleetwatch.probe.collector.ProbeCollector.collect", new=AsyncMock(return_value=report)):
        result = runner.invoke(cli, ["diagnose", "alpha", "--json"])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["errors"] == ["ssh: Cannot reach 10.0.0.5"]


def test_diagnose_unknown_instance(runner):
    with patch("fleetwatch.services.registry.load_instance",
               side_effect=InstanceNotFoundError("Instance 'ghost' not found")):
        result = runner.invoke(cli, ["diagnose", "ghost"])

    assert result.exit_code == 1
    assert "Instance 'ghost' not found" in result.output


def test_fix_prints_session_json(runner):
    session = FixSessionResult(instance="alpha", total_errors=1, fixed=1)
    fake = AsyncMock(return_value=(_degraded_report(), session))
    with patch("fleetwatch.services.registry.load_instance", return_value=HOST), \
            patch("fleetwatch.remediation.diagnose_and_fix", new=fake):
        result = runner.invoke(cli, ["fix", "alpha"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["fixed"] == 1
    assert "raw_output" not in data
    fake.assert_awaited_once_with(HOST, dry_run=None)


def test_fix_dry_run_flag(runner):
    session = FixSessionResult(instance="alpha", total_errors=1)
    fake = AsyncMock(return_value=(_degraded_report(), session))
    with patch("fleetwatch.services.registry.load_instance", return_value=HOST), \
            patch("fleetwatch.remediation.diagnose_and_fix", new=fake):
        result = runner.invoke(cli, ["fix", "alpha", "--dry-run"])

    assert result.exit_code == 0
    fake.assert_awaited_once_with(HOST, dry_run=True)


def test_fix_unreachable_prints_envelope(runner):
    report = connectivity_failure("alpha", "10.0.0.5")
    session = FixSessionResult.envelope("alpha", "ssh: Cannot reach 10.0.0.5")
    with patch("fleetwatch.services.registry.load_instance", return_value=HOST), \
            patch("fleetwatch.remediation.diagnose_and_fix", new=AsyncMock(return_value=(report, session))):
        result = runner.invoke(cli, ["fix", "alpha"])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["raw_output"] == "ssh: Cannot reach 10.0.0.5"


def test_sweep_json(runner):
    fleet = FleetReport(per_instance={"alpha": HostStatus.HEALTHY, "bravo": HostStatus.OFFLINE})
    with patch("fleetwatch.services.registry.list_instances", return_value=[HOST]), \
            patch("fleetwatch.fleet.FleetSweeper.sweep", new=AsyncMock(return_value=fleet)):
        result = runner.invoke(cli, ["sweep", "--json", "--concurrency", "3"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["summary"]["OFFLINE"] == 1
    assert data["instances"][0] == {"instance": "alpha", "status": "HEALTHY"}


def test_sweep_human_summary(runner):
    fleet = FleetReport(per_instance={"alpha": HostStatus.DEGRADED})
    with patch("fleetwatch.services.registry.list_instances", return_value=[HOST]), \
            patch("fleetwatch.fleet.FleetSweeper.sweep", new=AsyncMock(return_value=fleet)):
        result = runner.invoke(cli, ["sweep"])

    assert result.exit_code == 0
    assert "MONITORING SUMMARY" in result.output
    assert "Some instances are degraded" in result.output
    assert "Troubleshooting:" in result.output


def test_watchdog_missing_config(runner, tmp_path):
    result = runner.invoke(cli, ["watchdog", "--config", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_watchdog_runs_one_tick(runner, tmp_path):
    config = tmp_path / "watchdog.yaml"
    config.write_text(f"instance: alpha\npaths:\n  log_file: {tmp_path / 'watchdog.log'}\n")
    tick = WatchdogTickResult(state=WatchdogStatus.DEAD, consecutive_failures=2, errors=["gateway_process: inactive"])
    with patch("fleetwatch.watchdog.watchdog.Watchdog.tick", new=AsyncMock(return_value=tick)):
        result = runner.invoke(cli, ["watchdog", "--config", str(config)])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["state"] == "DEAD"
