from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from utils.constants import (
    DEFAULT_REMINDER_INTERVAL_SECONDS,
    DEFAULT_REMINDER_MAX_COUNT,
    DEFAULT_REMINDER_TIMEOUT_SECONDS,
    TICKET_STATUS_OPEN,
)


class ReminderMode(StrEnum):
    ONCE = "once"
    CONTINUOUS = "continuous"
    LIMITED = "limited"


@dataclass(slots=True)
class Ticket:
    id: str
    guild_id: int
    channel_id: int
    opener_id: int
    status: str = TICKET_STATUS_OPEN
    human_handled: bool = False
    assigned_staff_id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class ResponseTracking:
    ticket_id: str
    last_customer_message_at: datetime | None = None
    last_staff_response_at: datetime | None = None
    reminder_sent: bool = False
    reminder_sent_at: datetime | None = None
    reminder_count: int = 0
    last_reminder_at: datetime | None = None
    no_response_needed: bool = False
    last_reminder_message_ref: str | None = None


@dataclass(slots=True)
class ReminderSettings:
    guild_id: int
    enabled: bool = False
    reminder_timeout_seconds: int = DEFAULT_REMINDER_TIMEOUT_SECONDS
    reminder_role_id: int | None = None
    reminder_mode: ReminderMode = ReminderMode.ONCE
    reminder_interval_seconds: int = DEFAULT_REMINDER_INTERVAL_SECONDS
    reminder_max_count: int = DEFAULT_REMINDER_MAX_COUNT

    def as_dict(self) -> dict[str, object]:
        return {
            "enabled": self.enabled,
            "reminderTimeoutSeconds": self.reminder_timeout_seconds,
            "reminderRoleRef": str(self.reminder_role_id) if self.reminder_role_id is not None else None,
            "reminderMode": self.reminder_mode.value,
            "reminderIntervalSeconds": self.reminder_interval_seconds,
            "reminderMaxCount": self.reminder_max_count,
        }


@dataclass(slots=True)
class ReminderCandidate:
    ticket: Ticket
    tracking: ResponseTracking


@dataclass(slots=True)
class ServiceHoursSchedule:
    id: int
    guild_id: int
    cron_expression: str
    description: str = ""
    enabled: bool = True


@dataclass(slots=True)
class Holiday:
    id: int
    guild_id: int
    name: str
    created_by: int
    reason: str | None = None
    cron_expression: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_recurring: bool = False
    enabled: bool = True
