from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from utils.constants import DEFAULT_STAFF_ROLE_NAMES

DEFAULT_EXTENSIONS = ("cogs.events", "cogs.reminders", "cogs.service_hours")


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "Watching ticket response times"
    activity_type: str = "watching"
    allowed_mentions_everyone: bool = False


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/reminders.db"
    pool_min_size: int = 2
    pool_max_size: int = 10
    timeout_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    default_ttl: int = 120


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False
    # Reminder deliveries and tick summaries are also written here; empty disables it.
    reminder_log_file: str = "reminders.log"


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


@dataclass(slots=True)
class ReminderConfig:
    poll_interval_seconds: float = 20.0
    initial_delay_seconds: float = 5.0
    notification_channel_id: int | None = None
    staff_role_names: list[str] = field(default_factory=lambda: list(DEFAULT_STAFF_ROLE_NAMES))


@dataclass(slots=True)
class ServiceHoursConfig:
    enabled: bool = True
    timezone: str = "UTC"
    match_window_seconds: int = 60
    respect_holidays: bool = False
    # Optional fixed window checked before the cron schedules. Days use cron numbering, 0 = Sunday.
    workdays: list[int] | None = None
    work_hours_start: int | None = None
    work_hours_end: int | None = None
    # Seeded for a guild that has no schedules yet: [{"cron": ..., "description": ...}].
    default_hours: list[dict[str, str]] = field(default_factory=list)


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    reminder: ReminderConfig = field(default_factory=ReminderConfig)
    service_hours: ServiceHoursConfig = field(default_factory=ServiceHoursConfig)
    enabled_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _load_reminder_config(raw: dict[str, Any]) -> ReminderConfig:
    poll_interval = _as_float(
        _get_env_str("REMINDER_POLL_SECONDS"),
        _as_float(_deep_get(raw, "reminder", "poll_interval_seconds"), 20.0),
    )
    if poll_interval <= 0:
        raise ConfigError("reminder.poll_interval_seconds must be positive")
    return ReminderConfig(
        poll_interval_seconds=poll_interval,
        initial_delay_seconds=max(_as_float(_deep_get(raw, "reminder", "initial_delay_seconds"), 5.0), 0.0),
        notification_channel_id=_as_optional_int(
            _get_env_str("REMINDER_NOTIFICATION_CHANNEL_ID", _deep_get(raw, "reminder", "notification_channel_id"))
        ),
        staff_role_names=[
            str(name)
            for name in list(_deep_get(raw, "reminder", "staff_role_names", default=DEFAULT_STAFF_ROLE_NAMES))
        ],
    )


def _load_service_hours_config(raw: dict[str, Any]) -> ServiceHoursConfig:
    workdays = _deep_get(raw, "service_hours", "workdays")
    start = _as_optional_int(_deep_get(raw, "service_hours", "work_hours_start"))
    end = _as_optional_int(_deep_get(raw, "service_hours", "work_hours_end"))
    if start is not None and not 0 <= start <= 24:
        raise ConfigError("service_hours.work_hours_start must be between 0 and 24")
    if end is not None and not 0 <= end <= 24:
        raise ConfigError("service_hours.work_hours_end must be between 0 and 24")
    timezone = str(_get_env_str("SERVICE_HOURS_TIMEZONE", _deep_get(raw, "service_hours", "timezone", default="UTC")))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown service_hours.timezone: {timezone}") from exc
    return ServiceHoursConfig(
        enabled=_as_bool(
            _get_env_str("SERVICE_HOURS_ENABLED"),
            _as_bool(_deep_get(raw, "service_hours", "enabled"), True),
        ),
        timezone=timezone,
        match_window_seconds=_as_int(_deep_get(raw, "service_hours", "match_window_seconds"), 60),
        respect_holidays=_as_bool(_deep_get(raw, "service_hours", "respect_holidays"), False),
        workdays=[int(day) for day in workdays] if workdays is not None else None,
        work_hours_start=start,
        work_hours_end=end,
        default_hours=[
            {"cron": str(row["cron"]), "description": str(row.get("description", ""))}
            for row in list(_deep_get(raw, "service_hours", "default_hours", default=[]))
            if isinstance(row, dict) and row.get("cron")
        ],
    )


def _load_discord_config(raw: dict[str, Any]) -> DiscordConfig:
    token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not token or "${" in token:
        raise ConfigError("DISCORD_TOKEN is required")
    return DiscordConfig(
        token=token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="!"))),
        application_id=_as_optional_int(
            _get_env_str("DISCORD_APPLICATION_ID", _deep_get(raw, "discord", "application_id"))
        ),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
        status_text=str(_deep_get(raw, "discord", "status_text", default="Watching ticket response times")),
        activity_type=str(_deep_get(raw, "discord", "activity_type", default="watching")),
        allowed_mentions_everyone=_as_bool(_deep_get(raw, "discord", "allowed_mentions_everyone"), False),
    )


def _load_database_config(raw: dict[str, Any]) -> DatabaseConfig:
    url = str(_get_env_str("DATABASE_URL", _deep_get(raw, "database", "url", default="sqlite:///./data/reminders.db")))
    if not url.startswith(("sqlite:///", "postgresql://", "postgres://")):
        raise ConfigError("database.url must start with sqlite:/// or postgresql://")
    pool_min = _as_int(_get_env_str("DB_POOL_MIN"), _as_int(_deep_get(raw, "database", "pool_min_size"), 2))
    pool_max = _as_int(_get_env_str("DB_POOL_MAX"), _as_int(_deep_get(raw, "database", "pool_max_size"), 10))
    if pool_max < pool_min:
        raise ConfigError("database.pool_max_size must not be smaller than pool_min_size")
    return DatabaseConfig(
        url=url,
        pool_min_size=pool_min,
        pool_max_size=pool_max,
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS"),
            _as_int(_deep_get(raw, "database", "timeout_seconds"), 30),
        ),
    )


def _load_logging_config(raw: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="bot.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
        reminder_log_file=str(_deep_get(raw, "logging", "reminder_log_file", default="reminders.log") or ""),
    )


def load_config(config_path: Path) -> AppConfig:
    load_dotenv(config_path.parent.parent / ".env")
    raw = _load_yaml(config_path)

    redis_cfg = RedisConfig(
        enabled=_as_bool(_get_env_str("REDIS_ENABLED"), _as_bool(_deep_get(raw, "redis", "enabled"), False)),
        url=str(_get_env_str("REDIS_URL", _deep_get(raw, "redis", "url", default="redis://localhost:6379/0"))),
        default_ttl=_as_int(_get_env_str("REDIS_DEFAULT_TTL"), _as_int(_deep_get(raw, "redis", "default_ttl"), 120)),
    )
    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_deep_get(raw, "fastapi", "port"), 8000),
        api_key=str(_get_env_str("DASHBOARD_API_KEY", _deep_get(raw, "fastapi", "api_key", default=""))),
    )
    extensions = _deep_get(raw, "enabled_extensions")

    return AppConfig(
        discord=_load_discord_config(raw),
        database=_load_database_config(raw),
        redis=redis_cfg,
        logging=_load_logging_config(raw),
        fastapi=fastapi_cfg,
        reminder=_load_reminder_config(raw),
        service_hours=_load_service_hours_config(raw),
        enabled_extensions=[str(ext) for ext in extensions] if extensions else list(DEFAULT_EXTENSIONS),
    )
