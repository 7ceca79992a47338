"""诊断聚合器、阈值策略与报告序列化测试。"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fleetwatch.diagnosis import (
    aggregate,
    classify_disk,
    classify_memory,
    connectivity_failure,
    is_checkpoint_stale,
)
from fleetwatch.models import CheckResult, CheckStatus, DiagnosisReport, FleetReport, HostStatus
from fleetwatch.probe.protocol import parse_probe_output

from conftest import HEALTHY_PAYLOADS, probe_output

TS = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _check(name, status, detail=""):
    return CheckResult(name=name, status=status, detail=detail)


class TestThresholds:
    @pytest.mark.parametrize("free,expected", [
        (100, CheckStatus.OK),
        (51, CheckStatus.OK),
        (50, CheckStatus.WARN),
        (21, CheckStatus.WARN),
        (20, CheckStatus.ERROR),
        (0, CheckStatus.ERROR),
    ])
    def test_disk(self, free, expected):
        assert classify_disk(free) == expected

    @pytest.mark.parametrize("avail,expected", [
        (21, CheckStatus.OK),
        (20, CheckStatus.WARN),
        (11, CheckStatus.WARN),
        (10, CheckStatus.ERROR),
    ])
    def test_memory(self, avail, expected):
        assert classify_memory(avail) == expected

    def test_checkpoint(self):
        assert not is_checkpoint_stale(24)
        assert is_checkpoint_stale(25)


class TestAggregate:
    def test_scenario_all_ok(self):
        raw = parse_probe_output(probe_output(HEALTHY_PAYLOADS))
        report = aggregate(raw, "alpha", "10.0.0.5", TS)
        assert report.failed_count == 0
        assert report.errors == []
        assert report.passed_count == len(HEALTHY_PAYLOADS)

    def test_scenario_gateway_down(self):
        raw = [
            _check("gateway_process", CheckStatus.ERROR, "Not running"),
            _check("health_endpoint", CheckStatus.ERROR, "No health endpoint responding"),
            _check("disk", CheckStatus.OK, "72% free"),
        ]
        report = aggregate(raw, "alpha", "10.0.0.5", TS)
        assert report.failed_count == 2
        assert report.errors == [
            "gateway_process: Not running",
            "health_endpoint: No health endpoint responding",
        ]

    def test_duplicates_last_wins_first_position(self):
        raw = [
            _check("disk", CheckStatus.OK),
            _check("memory", CheckStatus.OK),
            _check("disk", CheckStatus.ERROR, "10% free"),
        ]
        report = aggregate(raw, "alpha", "10.0.0.5", TS)
        assert list(report.checks) == ["disk", "memory"]
        assert report.checks["disk"].status == CheckStatus.ERROR
        assert report.passed_count + report.warned_count + report.failed_count == len(report.checks)
        assert report.errors == ["disk: 10% free"]

    def test_empty(self):
        report = aggregate([], "alpha", "10.0.0.5")
        assert report.checks == {}
        assert report.healthy

    def test_connectivity_failure(self):
        report = connectivity_failure("alpha", "10.0.0.5")
        assert not report.reachable
        assert report.failed_count == 1
        assert report.errors == ["ssh: Cannot reach 10.0.0.5"]

    def test_ssh_error_with_other_checks_is_reachable(self):
        report = aggregate(
            [_check("ssh", CheckStatus.ERROR, "x"), _check("disk", CheckStatus.OK)], "a", "1.1.1.1"
        )
        assert report.reachable


class TestReportInvariants:
    def test_counts_must_match(self):
        with pytest.raises(ValidationError):
            DiagnosisReport(
                instance="alpha",
                checks={"disk": _check("disk", CheckStatus.OK)},
                passed_count=2,
            )

    def test_errors_must_match_failed(self):
        with pytest.raises(ValidationError):
            DiagnosisReport(
                instance="alpha",
                checks={"disk": _check("disk", CheckStatus.ERROR, "5% free")},
                failed_count=1,
                errors=[],
            )

    def test_wire_round_trip(self):
        payloads = dict(HEALTHY_PAYLOADS, disk="30", api_key="401:sk-bad")
        report = aggregate(parse_probe_output(probe_output(payloads)), "alpha", "10.0.0.5", TS)
        wire = report.to_wire()
        assert wire["timestamp"] == "2026-03-01T12:00:00Z"
        assert wire["checks_failed"] == 1
        assert wire["checks_warned"] == 1

        back = DiagnosisReport.from_wire(wire)
        assert back == report
        assert {n: c.status for n, c in back.checks.items()} == {n: c.status for n, c in report.checks.items()}


def test_fleet_report_summary():
    report = FleetReport(per_instance={
        "a": HostStatus.HEALTHY,
        "b": HostStatus.HEALTHY,
        "c": HostStatus.UNREACHABLE,
    })
    summary = report.summary()
    assert summary["HEALTHY"] == 2
    assert summary["UNREACHABLE"] == 1
    assert summary["DEGRADED"] == 0
    assert summary["total"] == 3
    assert report.to_wire()["instances"][2] == {"instance": "c", "status": "UNREACHABLE"}
