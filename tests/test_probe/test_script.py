"""探测脚本生成测试。"""
import pytest

from fleetwatch.models import ServiceProfile
from fleetwatch.probe.protocol import CHECK_NAMES
from fleetwatch.probe.script import HEADER, build_probe_script, shell_path

from conftest import requested_checks


def test_full_script_contains_every_check_in_order():
    script = build_probe_script(ServiceProfile())
    assert script.startswith(HEADER)
    assert requested_checks(script) == CHECK_NAMES


def test_restricted_script():
    script = build_probe_script(ServiceProfile(), ["disk"])
    assert requested_checks(script) == ["disk"]
    assert "pgrep" not in script


def test_unknown_check_rejected():
    with pytest.raises(ValueError):
        build_probe_script(ServiceProfile(), ["uptime"])


def test_shell_path_relative_and_absolute():
    assert shell_path(".amcp/config.json") == '"$HOME"/.amcp/config.json'
    assert shell_path("/etc/app config.json") == "'/etc/app config.json'"


def test_profile_values_are_quoted():
    profile = ServiceProfile(service_name="gw; rm -rf /", cli_tool="$(whoami)")
    script = build_probe_script(profile, ["user_mismatch", "cli_tool"])
    assert "SERVICE_NAME='gw; rm -rf /'" in script
    assert "CLI_TOOL='$(whoami)'" in script


def test_each_check_runs_in_subshell():
    script = build_probe_script(ServiceProfile(), ["disk", "memory"])
    assert script.count("\n(\n") == 2
