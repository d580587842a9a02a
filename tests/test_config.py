from __future__ import annotations

from pathlib import Path

import pytest

from statusdeck.config import StatusDeckConfig, load_config


def test_defaults() -> None:
    cfg = StatusDeckConfig()
    assert cfg.port == 8080
    assert cfg.polling.status_interval_seconds == 30.0
    assert cfg.polling.metric_interval_seconds == 60.0
    assert cfg.notifications.retry_delays_seconds == [1.0, 3.0, 9.0]
    assert cfg.notifications.max_attempts == 3
    assert cfg.notifications.aggregation_enabled is True


def test_yaml_file_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "statusdeck.yaml"
    path.write_text(
        "log_level: DEBUG\n"
        "port: 9000\n"
        "polling:\n"
        "  metric_interval_seconds: 120\n"
        "notifications:\n"
        "  aggregation_window_seconds: 30\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("STATUSDECK_PORT", "9100")
    monkeypatch.setenv("STATUSDECK_SECRET", "s3cret")
    monkeypatch.setenv("STATUSDECK_AGGREGATION_ENABLED", "off")
    monkeypatch.setenv("STATUSDECK_REQUEST_TIMEOUT", "2.5")

    cfg = load_config(str(path))
    assert cfg.log_level == "DEBUG"
    assert cfg.port == 9100
    assert cfg.secret == "s3cret"
    assert cfg.polling.metric_interval_seconds == 120
    assert cfg.polling.request_timeout_seconds == 2.5
    assert cfg.notifications.aggregation_window_seconds == 30
    assert cfg.notifications.aggregation_enabled is False


def test_missing_file_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("STATUSDECK_PORT", "STATUSDECK_SECRET", "STATUSDECK_AGGREGATION_ENABLED", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    cfg = load_config(str(tmp_path / "missing.yaml"))
    assert cfg.log_level == "INFO"
    assert cfg.secret == ""
