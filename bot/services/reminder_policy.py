from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from database.models import ReminderMode, ReminderSettings, ResponseTracking
from utils.time import seconds_between


@dataclass(slots=True, frozen=True)
class ReminderDecision:
    eligible: bool
    next_state: ResponseTracking | None = None
    reason: str = ""


def _skip(reason: str) -> ReminderDecision:
    return ReminderDecision(eligible=False, reason=reason)


def awaiting_staff(tracking: ResponseTracking) -> bool:
    """The most recent relevant event is a customer message nobody has answered."""
    if tracking.last_customer_message_at is None or tracking.no_response_needed:
        return False
    if tracking.last_staff_response_at is None:
        return True
    return tracking.last_customer_message_at > tracking.last_staff_response_at


def evaluate(tracking: ResponseTracking, settings: ReminderSettings, now: datetime) -> ReminderDecision:
    """Decide whether a reminder is due and compute the state to persist after sending it.

    The input record is never mutated. A record that was never reminded is always judged
    by the timeout rule and starts a new escalation cycle.
    """
    if tracking.last_customer_message_at is None:
        return _skip("no customer message")
    if tracking.no_response_needed:
        return _skip("marked as not needing a response")
    if not awaiting_staff(tracking):
        return _skip("staff already responded")

    if not tracking.reminder_sent:
        waited = seconds_between(now, tracking.last_customer_message_at)
        if waited < settings.reminder_timeout_seconds:
            return _skip("timeout not reached")
        return ReminderDecision(
            eligible=True,
            next_state=replace(
                tracking,
                reminder_sent=True,
                reminder_sent_at=now,
                reminder_count=1,
                last_reminder_at=now,
            ),
            reason="first reminder",
        )

    mode = ReminderMode(settings.reminder_mode)
    if mode is ReminderMode.ONCE:
        return _skip("already reminded")
    if mode is ReminderMode.LIMITED and tracking.reminder_count >= settings.reminder_max_count:
        return _skip("reminder limit reached")

    last_reminder = tracking.last_reminder_at or tracking.reminder_sent_at
    if last_reminder is not None and seconds_between(now, last_reminder) < settings.reminder_interval_seconds:
        return _skip("interval not reached")

    return ReminderDecision(
        eligible=True,
        next_state=replace(
            tracking,
            reminder_sent=True,
            reminder_count=tracking.reminder_count + 1,
            last_reminder_at=now,
        ),
        reason="repeat reminder",
    )
