from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from database.base import Database
from database.models import (
    Holiday,
    ReminderCandidate,
    ReminderMode,
    ReminderSettings,
    ResponseTracking,
    ServiceHoursSchedule,
    Ticket,
)
from utils.constants import (
    DEFAULT_REMINDER_INTERVAL_SECONDS,
    DEFAULT_REMINDER_MAX_COUNT,
    DEFAULT_REMINDER_TIMEOUT_SECONDS,
    REMINDABLE_STATUSES,
)
from utils.time import parse_timestamp, to_iso, utc_now

LOGGER = logging.getLogger(__name__)

# Column whitelist for partial tracking upserts. Values are always bound as parameters.
TRACKING_COLUMNS = (
    "last_customer_message_at",
    "last_staff_response_at",
    "reminder_sent",
    "reminder_sent_at",
    "reminder_count",
    "last_reminder_at",
    "no_response_needed",
    "last_reminder_message_ref",
)
_TIMESTAMP_COLUMNS = {
    "last_customer_message_at",
    "last_staff_response_at",
    "reminder_sent_at",
    "last_reminder_at",
}
_BOOL_COLUMNS = {"reminder_sent", "no_response_needed"}


def _now_iso() -> str:
    return utc_now().isoformat()


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _parse_mode(value: Any, guild_id: int) -> ReminderMode:
    try:
        return ReminderMode(str(value or ReminderMode.ONCE.value))
    except ValueError:
        LOGGER.warning("Unknown reminder mode %r stored for guild %s; using once", value, guild_id)
        return ReminderMode.ONCE


def _row_to_ticket(row: dict[str, Any]) -> Ticket:
    return Ticket(
        id=row["id"],
        guild_id=int(row["guild_id"]),
        channel_id=int(row["channel_id"]),
        opener_id=int(row["opener_id"]),
        status=row["status"],
        human_handled=bool(row["human_handled"]),
        assigned_staff_id=_optional_int(row.get("assigned_staff_id")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_tracking(row: dict[str, Any]) -> ResponseTracking:
    return ResponseTracking(
        ticket_id=row["ticket_id"],
        last_customer_message_at=parse_timestamp(row.get("last_customer_message_at")),
        last_staff_response_at=parse_timestamp(row.get("last_staff_response_at")),
        reminder_sent=bool(row.get("reminder_sent")),
        reminder_sent_at=parse_timestamp(row.get("reminder_sent_at")),
        reminder_count=int(row.get("reminder_count") or 0),
        last_reminder_at=parse_timestamp(row.get("last_reminder_at")),
        no_response_needed=bool(row.get("no_response_needed")),
        last_reminder_message_ref=row.get("last_reminder_message_ref"),
    )


def _row_to_settings(row: dict[str, Any]) -> ReminderSettings:
    guild_id = int(row["guild_id"])
    return ReminderSettings(
        guild_id=guild_id,
        enabled=bool(row["enabled"]),
        reminder_timeout_seconds=int(row.get("reminder_timeout") or DEFAULT_REMINDER_TIMEOUT_SECONDS),
        reminder_role_id=_optional_int(row.get("reminder_role_id")),
        reminder_mode=_parse_mode(row.get("reminder_mode"), guild_id),
        reminder_interval_seconds=int(row.get("reminder_interval") or DEFAULT_REMINDER_INTERVAL_SECONDS),
        reminder_max_count=int(row.get("reminder_max_count") or DEFAULT_REMINDER_MAX_COUNT),
    )


def _row_to_schedule(row: dict[str, Any]) -> ServiceHoursSchedule:
    return ServiceHoursSchedule(
        id=int(row["id"]),
        guild_id=int(row["guild_id"]),
        cron_expression=row["cron_expression"],
        description=row.get("description") or "",
        enabled=bool(row["enabled"]),
    )


def _row_to_holiday(row: dict[str, Any]) -> Holiday:
    return Holiday(
        id=int(row["id"]),
        guild_id=int(row["guild_id"]),
        name=row["name"],
        created_by=int(row["created_by"]),
        reason=row.get("reason"),
        cron_expression=row.get("cron_expression"),
        start_date=parse_timestamp(row.get("start_date")),
        end_date=parse_timestamp(row.get("end_date")),
        is_recurring=bool(row["is_recurring"]),
        enabled=bool(row["enabled"]),
    )


def _serialize_tracking_value(column: str, value: Any) -> Any:
    if column in _TIMESTAMP_COLUMNS:
        return to_iso(value) if isinstance(value, datetime) else value
    if column in _BOOL_COLUMNS:
        return bool(value)
    if column == "reminder_count":
        return int(value)
    return value


class TicketRepository:
    """Read/write access to the ticket rows the reminder core depends on."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(self, ticket: Ticket) -> None:
        now = _now_iso()
        await self.db.execute(
            """
            INSERT INTO tickets (
                id, guild_id, channel_id, opener_id, status, human_handled,
                assigned_staff_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                channel_id = excluded.channel_id,
                status = excluded.status,
                human_handled = excluded.human_handled,
                assigned_staff_id = excluded.assigned_staff_id,
                updated_at = excluded.updated_at;
            """,
            [
                ticket.id,
                ticket.guild_id,
                ticket.channel_id,
                ticket.opener_id,
                ticket.status,
                ticket.human_handled,
                ticket.assigned_staff_id,
                ticket.created_at or now,
                now,
            ],
        )

    async def get(self, ticket_id: str) -> Ticket | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE id = ?;", [ticket_id])
        return _row_to_ticket(row) if row else None

    async def get_by_channel(self, guild_id: int, channel_id: int) -> Ticket | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM tickets
            WHERE guild_id = ? AND channel_id = ? AND status <> 'closed'
            ORDER BY created_at DESC
            LIMIT 1;
            """,
            [guild_id, channel_id],
        )
        return _row_to_ticket(row) if row else None

    async def set_status(self, ticket_id: str, status: str) -> bool:
        changed = await self.db.execute(
            "UPDATE tickets SET status = ?, updated_at = ? WHERE id = ?;",
            [status, _now_iso(), ticket_id],
        )
        return changed > 0

    async def mark_human_handled(self, ticket_id: str, handled: bool = True) -> bool:
        changed = await self.db.execute(
            "UPDATE tickets SET human_handled = ?, updated_at = ? WHERE id = ?;",
            [handled, _now_iso(), ticket_id],
        )
        return changed > 0

    async def assign_staff(self, ticket_id: str, staff_id: int | None) -> bool:
        changed = await self.db.execute(
            "UPDATE tickets SET assigned_staff_id = ?, updated_at = ? WHERE id = ?;",
            [staff_id, _now_iso(), ticket_id],
        )
        return changed > 0


class ServiceHoursRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_guild_flag(self, guild_id: int) -> bool | None:
        """Return the guild-level switch, or ``None`` when the guild has no settings row."""
        row = await self.db.fetchone(
            "SELECT service_hours_enabled FROM service_hours_settings WHERE guild_id = ?;",
            [guild_id],
        )
        if row is None:
            return None
        return bool(row["service_hours_enabled"])

    async def set_guild_flag(self, guild_id: int, enabled: bool) -> None:
        await self.db.execute(
            """
            INSERT INTO service_hours_settings (guild_id, service_hours_enabled, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                service_hours_enabled = excluded.service_hours_enabled,
                updated_at = excluded.updated_at;
            """,
            [guild_id, enabled, _now_iso()],
        )

    async def get_active_hours(self, guild_id: int) -> list[ServiceHoursSchedule]:
        rows = await self.db.fetchall(
            "SELECT * FROM service_hours WHERE guild_id = ? AND enabled = ? ORDER BY id;",
            [guild_id, True],
        )
        return [_row_to_schedule(row) for row in rows]

    async def list_hours(self, guild_id: int) -> list[ServiceHoursSchedule]:
        rows = await self.db.fetchall(
            "SELECT * FROM service_hours WHERE guild_id = ? ORDER BY id;",
            [guild_id],
        )
        return [_row_to_schedule(row) for row in rows]

    async def add_hours(self, guild_id: int, cron_expression: str, description: str) -> ServiceHoursSchedule:
        row = await self.db.insert_returning(
            """
            INSERT INTO service_hours (guild_id, cron_expression, description, enabled, created_at)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *;
            """,
            [guild_id, cron_expression, description, True, _now_iso()],
        )
        return _row_to_schedule(row)

    async def delete_hours(self, guild_id: int, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        return await self.db.execute(
            f"DELETE FROM service_hours WHERE guild_id = ? AND id IN ({placeholders});",
            [guild_id, *ids],
        )

    async def toggle_hours(self, guild_id: int, schedule_id: int, enabled: bool) -> bool:
        changed = await self.db.execute(
            "UPDATE service_hours SET enabled = ? WHERE guild_id = ? AND id = ?;",
            [enabled, guild_id, schedule_id],
        )
        return changed > 0


class HolidayRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_holidays(self, guild_id: int) -> list[Holiday]:
        rows = await self.db.fetchall(
            "SELECT * FROM holidays WHERE guild_id = ? ORDER BY id;",
            [guild_id],
        )
        return [_row_to_holiday(row) for row in rows]

    async def get_active_holidays(self, guild_id: int) -> list[Holiday]:
        rows = await self.db.fetchall(
            "SELECT * FROM holidays WHERE guild_id = ? AND enabled = ? ORDER BY id;",
            [guild_id, True],
        )
        return [_row_to_holiday(row) for row in rows]

    async def add_holiday(
        self,
        guild_id: int,
        name: str,
        created_by: int,
        *,
        reason: str | None = None,
        cron_expression: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Holiday:
        now = _now_iso()
        row = await self.db.insert_returning(
            """
            INSERT INTO holidays (
                guild_id, name, reason, cron_expression, start_date, end_date,
                is_recurring, enabled, created_by, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING *;
            """,
            [
                guild_id,
                name,
                reason,
                cron_expression,
                to_iso(start_date),
                to_iso(end_date),
                cron_expression is not None,
                True,
                created_by,
                now,
                now,
            ],
        )
        return _row_to_holiday(row)

    async def toggle_holiday(self, guild_id: int, holiday_id: int, enabled: bool) -> bool:
        changed = await self.db.execute(
            "UPDATE holidays SET enabled = ?, updated_at = ? WHERE guild_id = ? AND id = ?;",
            [enabled, _now_iso(), guild_id, holiday_id],
        )
        return changed > 0

    async def delete_holiday(self, guild_id: int, holiday_id: int) -> bool:
        changed = await self.db.execute(
            "DELETE FROM holidays WHERE guild_id = ? AND id = ?;",
            [guild_id, holiday_id],
        )
        return changed > 0


class ReminderRepository:
    """Persistence surface of the reminder core: settings, tracking rows, candidates, preferences."""

    def __init__(self, db: Database, service_hours: ServiceHoursRepository | None = None) -> None:
        self.db = db
        self.service_hours = service_hours or ServiceHoursRepository(db)

    async def get_reminder_settings(self, guild_id: int) -> ReminderSettings:
        row = await self.db.fetchone(
            "SELECT * FROM ticket_reminder_settings WHERE guild_id = ?;",
            [guild_id],
        )
        if row is None:
            return ReminderSettings(guild_id=guild_id)
        return _row_to_settings(row)

    async def save_reminder_settings(self, guild_id: int, settings: ReminderSettings) -> None:
        now = _now_iso()
        await self.db.execute(
            """
            INSERT INTO ticket_reminder_settings (
                guild_id, enabled, reminder_timeout, reminder_role_id, reminder_mode,
                reminder_interval, reminder_max_count, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                enabled = excluded.enabled,
                reminder_timeout = excluded.reminder_timeout,
                reminder_role_id = excluded.reminder_role_id,
                reminder_mode = excluded.reminder_mode,
                reminder_interval = excluded.reminder_interval,
                reminder_max_count = excluded.reminder_max_count,
                updated_at = excluded.updated_at;
            """,
            [
                guild_id,
                settings.enabled,
                settings.reminder_timeout_seconds,
                settings.reminder_role_id,
                ReminderMode(settings.reminder_mode).value,
                settings.reminder_interval_seconds,
                settings.reminder_max_count,
                now,
                now,
            ],
        )

    async def list_reminder_settings(self, enabled_only: bool = True) -> list[ReminderSettings]:
        if enabled_only:
            rows = await self.db.fetchall(
                "SELECT * FROM ticket_reminder_settings WHERE enabled = ? ORDER BY guild_id;",
                [True],
            )
        else:
            rows = await self.db.fetchall("SELECT * FROM ticket_reminder_settings ORDER BY guild_id;")
        return [_row_to_settings(row) for row in rows]

    async def get_response_tracking(self, ticket_id: str) -> ResponseTracking | None:
        row = await self.db.fetchone(
            "SELECT * FROM ticket_response_tracking WHERE ticket_id = ?;",
            [ticket_id],
        )
        return _row_to_tracking(row) if row else None

    async def upsert_response_tracking(self, ticket_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(TRACKING_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown tracking fields: {sorted(unknown)}")
        columns = [column for column in TRACKING_COLUMNS if column in fields]
        values = [_serialize_tracking_value(column, fields[column]) for column in columns]
        insert_columns = ["ticket_id", *columns, "updated_at"]
        assignments = [f"{column} = excluded.{column}" for column in [*columns, "updated_at"]]
        await self.db.execute(
            f"""
            INSERT INTO ticket_response_tracking ({", ".join(insert_columns)})
            VALUES ({", ".join("?" for _ in insert_columns)})
            ON CONFLICT(ticket_id) DO UPDATE SET {", ".join(assignments)};
            """,
            [ticket_id, *values, _now_iso()],
        )

    async def update_response_tracking_if_unchanged(
        self, expected: ResponseTracking, **fields: Any
    ) -> bool:
        """Write ``fields`` only while the activity columns still match ``expected``.

        Returns False when a customer message, staff response or dismissal landed in between.
        """
        unknown = set(fields) - set(TRACKING_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown tracking fields: {sorted(unknown)}")
        columns = [column for column in TRACKING_COLUMNS if column in fields]
        if not columns:
            return False
        same = "IS NOT DISTINCT FROM" if self.db.driver == "postgresql" else "IS"
        guards = {
            "last_customer_message_at": expected.last_customer_message_at,
            "last_staff_response_at": expected.last_staff_response_at,
            "no_response_needed": expected.no_response_needed,
        }
        assignments = [f"{column} = ?" for column in [*columns, "updated_at"]]
        conditions = [f"{column} {same} ?" for column in guards]
        changed = await self.db.execute(
            f"""
            UPDATE ticket_response_tracking
            SET {", ".join(assignments)}
            WHERE ticket_id = ? AND {" AND ".join(conditions)};
            """,
            [
                *(_serialize_tracking_value(column, fields[column]) for column in columns),
                _now_iso(),
                expected.ticket_id,
                *(_serialize_tracking_value(column, value) for column, value in guards.items()),
            ],
        )
        return changed > 0

    async def set_last_reminder_message_ref(self, ticket_id: str, message_ref: str | None) -> bool:
        changed = await self.db.execute(
            "UPDATE ticket_response_tracking SET last_reminder_message_ref = ?, updated_at = ? WHERE ticket_id = ?;",
            [message_ref, _now_iso(), ticket_id],
        )
        return changed > 0

    async def delete_response_tracking(self, ticket_id: str) -> bool:
        changed = await self.db.execute(
            "DELETE FROM ticket_response_tracking WHERE ticket_id = ?;",
            [ticket_id],
        )
        return changed > 0

    async def get_eligible_ticket_candidates(
        self, guild_id: int, must_be_human_handled: bool = True
    ) -> list[ReminderCandidate]:
        """Open tickets with a tracking row. Reminder eligibility itself is decided in application code."""
        query = """
            SELECT
                t.id, t.guild_id, t.channel_id, t.opener_id, t.status, t.human_handled,
                t.assigned_staff_id, t.created_at, t.updated_at,
                r.ticket_id, r.last_customer_message_at, r.last_staff_response_at,
                r.reminder_sent, r.reminder_sent_at, r.reminder_count, r.last_reminder_at,
                r.no_response_needed, r.last_reminder_message_ref
            FROM tickets t
            JOIN ticket_response_tracking r ON r.ticket_id = t.id
            WHERE t.guild_id = ? AND t.status IN (?, ?)
        """
        params: list[Any] = [guild_id, *REMINDABLE_STATUSES]
        if must_be_human_handled:
            query += " AND t.human_handled = ?"
            params.append(True)
        query += " ORDER BY t.created_at ASC, t.id ASC;"
        rows = await self.db.fetchall(query, params)
        return [ReminderCandidate(ticket=_row_to_ticket(row), tracking=_row_to_tracking(row)) for row in rows]

    async def get_active_service_hours(self, guild_id: int) -> list[ServiceHoursSchedule]:
        return await self.service_hours.get_active_hours(guild_id)

    async def get_staff_preference(self, user_id: int) -> bool:
        row = await self.db.fetchone(
            "SELECT receive_reminders FROM staff_reminder_preferences WHERE user_id = ?;",
            [user_id],
        )
        return bool(row["receive_reminders"]) if row else True

    async def set_staff_preference(self, user_id: int, receive_reminders: bool) -> None:
        await self.db.execute(
            """
            INSERT INTO staff_reminder_preferences (user_id, receive_reminders, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                receive_reminders = excluded.receive_reminders,
                updated_at = excluded.updated_at;
            """,
            [user_id, receive_reminders, _now_iso()],
        )
