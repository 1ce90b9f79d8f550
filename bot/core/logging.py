from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from core.config import LoggingConfig

# Attributes passed through ``extra=`` by the reminder pipeline.
CONTEXT_FIELDS = ("guild_id", "ticket_id")

# Loggers whose records also go to the dedicated reminder log.
REMINDER_LOGGERS = (
    "services.reminder_scheduler",
    "services.reminder_service",
    "services.response_tracker",
)


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update({key: str(value) for key, value in _context(record).items()})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


class ContextFormatter(logging.Formatter):
    """Plain formatter that appends guild/ticket context when a record carries it."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        suffix = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head} [{suffix}]{sep}{tail}"


class PrefixFilter(logging.Filter):
    def __init__(self, names: tuple[str, ...]) -> None:
        super().__init__()
        self.names = names

    def filter(self, record: logging.LogRecord) -> bool:
        return any(record.name == name or record.name.startswith(name + ".") for name in self.names)


def _rotating(path: Path, config: LoggingConfig) -> RotatingFileHandler:
    return RotatingFileHandler(
        filename=path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )


def configure_logging(config: LoggingConfig) -> None:
    log_dir = Path(config.directory)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()

    plain = ContextFormatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setFormatter(JsonFormatter() if config.json_console else plain)
    root_logger.addHandler(console)

    main_file = _rotating(log_dir / config.file_name, config)
    main_file.setFormatter(plain)
    root_logger.addHandler(main_file)

    if config.reminder_log_file:
        reminder_file = _rotating(log_dir / config.reminder_log_file, config)
        reminder_file.setFormatter(JsonFormatter())
        reminder_file.addFilter(PrefixFilter(REMINDER_LOGGERS))
        root_logger.addHandler(reminder_file)

    for noisy, level in (("discord", logging.INFO), ("aiohttp", logging.WARNING), ("uvicorn.access", logging.WARNING)):
        logging.getLogger(noisy).setLevel(level)
