from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config


def _write_config(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body.strip(), encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
  prefix: "?"
database:
  url: "sqlite:///./data/test.db"
""",
    )

    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)

    assert cfg.discord.token == "test-token"
    assert cfg.discord.prefix == "?"
    assert cfg.database.url.startswith("sqlite:///")
    assert cfg.reminder.poll_interval_seconds == 20
    assert cfg.reminder.initial_delay_seconds == 5
    assert cfg.reminder.notification_channel_id is None
    assert cfg.service_hours.enabled is True
    assert cfg.service_hours.timezone == "UTC"
    assert cfg.service_hours.match_window_seconds == 60


def test_env_overrides_token(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: yaml-token
""",
    )
    monkeypatch.setenv("DISCORD_TOKEN", "env-token")
    cfg = load_config(config_path)
    assert cfg.discord.token == "env-token"


def test_missing_token_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: ${DISCORD_TOKEN}
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_reminder_and_service_hours_sections(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
reminder:
  poll_interval_seconds: 30
  initial_delay_seconds: 0
  notification_channel_id: "987654321"
  staff_role_names: [helpdesk]
service_hours:
  enabled: false
  timezone: Asia/Taipei
  respect_holidays: true
  workdays: [1, 2, 3, 4, 5]
  work_hours_start: 9
  work_hours_end: 18
  default_hours:
    - cron: "0 9-17 * * 1-5"
      description: Weekdays
    - description: missing cron is ignored
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("REMINDER_NOTIFICATION_CHANNEL_ID", raising=False)
    monkeypatch.delenv("SERVICE_HOURS_ENABLED", raising=False)
    monkeypatch.delenv("SERVICE_HOURS_TIMEZONE", raising=False)
    monkeypatch.delenv("REMINDER_POLL_SECONDS", raising=False)
    cfg = load_config(config_path)

    assert cfg.reminder.poll_interval_seconds == 30
    assert cfg.reminder.initial_delay_seconds == 0
    assert cfg.reminder.notification_channel_id == 987654321
    assert cfg.reminder.staff_role_names == ["helpdesk"]
    assert cfg.service_hours.enabled is False
    assert cfg.service_hours.timezone == "Asia/Taipei"
    assert cfg.service_hours.respect_holidays is True
    assert cfg.service_hours.workdays == [1, 2, 3, 4, 5]
    assert (cfg.service_hours.work_hours_start, cfg.service_hours.work_hours_end) == (9, 18)
    assert cfg.service_hours.default_hours == [{"cron": "0 9-17 * * 1-5", "description": "Weekdays"}]


def test_non_positive_poll_interval_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
reminder:
  poll_interval_seconds: 0
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("REMINDER_POLL_SECONDS", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_unknown_timezone_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
service_hours:
  timezone: Mars/Olympus_Mons
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("SERVICE_HOURS_TIMEZONE", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_database_section_is_validated(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
database:
  url: "mysql://localhost/tickets"
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ConfigError):
        load_config(config_path)


def test_default_extensions_and_reminder_log(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
logging:
  reminder_log_file: ""
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)
    assert cfg.enabled_extensions == ["cogs.events", "cogs.reminders", "cogs.service_hours"]
    assert cfg.logging.reminder_log_file == ""
