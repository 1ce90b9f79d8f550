from __future__ import annotations

TICKET_STATUS_OPEN = "open"
TICKET_STATUS_WAITING_STAFF = "waitingStaff"
TICKET_STATUS_CLOSED = "closed"

REMINDABLE_STATUSES = (TICKET_STATUS_OPEN, TICKET_STATUS_WAITING_STAFF)

DEFAULT_REMINDER_TIMEOUT_SECONDS = 600
DEFAULT_REMINDER_INTERVAL_SECONDS = 60
DEFAULT_REMINDER_MAX_COUNT = 3

# Bounds enforced by the administrative surface only.
TIMEOUT_MINUTES_RANGE = (1, 60)
INTERVAL_SECONDS_RANGE = (30, 600)
MAX_COUNT_RANGE = (1, 10)

MODE_LABELS = {
    "once": "Remind once",
    "continuous": "Remind continuously",
    "limited": "Remind a limited number of times",
}

NO_RESPONSE_CUSTOM_ID_PREFIX = "reminder:no_response:"

DEFAULT_STAFF_ROLE_NAMES = ("support", "staff", "moderator", "admin")
