"""看门狗 YAML 配置加载测试。"""
import pytest

from fleetwatch.core.exceptions import ConfigError
from fleetwatch.watchdog.config import _parse_interval, load_config


def test_parse_interval():
    assert _parse_interval(30) == 30
    assert _parse_interval("15s") == 15
    assert _parse_interval("2m") == 120
    assert _parse_interval("1h") == 3600
    assert _parse_interval("45") == 45


def test_load_config(tmp_path, monkeypatch):
    monkeypatch.delenv("FLEETWATCH_TELEGRAM_TOKEN", raising=False)
    monkeypatch.setenv("FLEETWATCH_TELEGRAM_CHAT_ID", "999")
    path = tmp_path / "watchdog.yaml"
    path.write_text(
        "instance: alpha\n"
        "interval: 2m\n"
        "service:\n"
        "  name: gw\n"
        "  health_url: http://127.0.0.1:3141/health\n"
        "recovery:\n"
        "  failure_threshold: 3\n"
        "  settle_seconds: 10s\n"
        "paths:\n"
        "  state_file: /tmp/state.json\n"
        "vacuum:\n"
        "  log_dirs: [/opt/logs]\n"
        "notify:\n"
        "  telegram_token: from-yaml\n"
        "  telegram_chat_id: 1\n"
    )
    cfg = load_config(str(path))

    assert cfg.instance == "alpha"
    assert cfg.interval == 120
    assert cfg.service.name == "gw"
    assert cfg.service.health_url == "http://127.0.0.1:3141/health"
    assert cfg.recovery.failure_threshold == 3
    assert cfg.recovery.settle_seconds == 10
    assert cfg.paths.state_file == "/tmp/state.json"
    assert cfg.paths.backup_dir.endswith("backups")
    assert cfg.vacuum.log_dirs == ["/opt/logs"]
    assert cfg.notify.telegram_token == "from-yaml"
    assert cfg.notify.telegram_chat_id == "999"


def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "watchdog.yaml"
    path.write_text("")
    cfg = load_config(str(path))
    assert cfg.instance
    assert cfg.recovery.failure_threshold == 2
    assert cfg.interval == 120


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


@pytest.mark.parametrize("content", [
    "service: [unclosed",
    "- just\n- a list\n",
    "recovery:\n  failure_threshold: many\n",
    "recovery:\n  failure_threshold: 0\n",
])
def test_invalid_config(tmp_path, content):
    path = tmp_path / "watchdog.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(str(path))
