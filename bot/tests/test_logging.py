from __future__ import annotations

import json
import logging
from pathlib import Path

from core.config import LoggingConfig
from core.logging import ContextFormatter, JsonFormatter, PrefixFilter, configure_logging


def _record(name: str = "services.reminder_scheduler", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(name, logging.INFO, __file__, 1, "Reminder sent", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatters_carry_ticket_context() -> None:
    record = _record(guild_id=1, ticket_id="t-1")

    assert ContextFormatter("%(message)s").format(record) == "Reminder sent [guild_id=1 ticket_id=t-1]"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["ticket_id"] == "t-1"
    assert payload["guild_id"] == "1"


def test_plain_record_has_no_context_suffix() -> None:
    assert ContextFormatter("%(message)s").format(_record()) == "Reminder sent"


def test_prefix_filter_matches_reminder_loggers() -> None:
    flt = PrefixFilter(("services.reminder_scheduler",))
    assert flt.filter(_record("services.reminder_scheduler"))
    assert not flt.filter(_record("services.reminder_service"))
    assert not flt.filter(_record("discord.gateway"))


def test_configure_logging_adds_reminder_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    previous = list(root.handlers)
    previous_level = root.level
    try:
        configure_logging(LoggingConfig(directory=str(tmp_path), reminder_log_file="reminders.log"))
        assert len(root.handlers) == 3
        configure_logging(LoggingConfig(directory=str(tmp_path), reminder_log_file=""))
        assert len(root.handlers) == 2
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = previous
        root.setLevel(previous_level)
