from __future__ import annotations

from datetime import UTC, datetime

import pytest

from database.base import Database
from database.models import ReminderMode, ReminderSettings, Ticket
from database.repositories import (
    HolidayRepository,
    ReminderRepository,
    ServiceHoursRepository,
    TicketRepository,
)

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_reminder_settings_defaults_and_round_trip(db: Database) -> None:
    repo = ReminderRepository(db)

    defaults = await repo.get_reminder_settings(10)
    assert defaults == ReminderSettings(guild_id=10)
    assert defaults.reminder_timeout_seconds == 600
    assert defaults.reminder_mode is ReminderMode.ONCE

    saved = ReminderSettings(
        guild_id=10,
        enabled=True,
        reminder_timeout_seconds=900,
        reminder_role_id=123456789012345678,
        reminder_mode=ReminderMode.LIMITED,
        reminder_interval_seconds=120,
        reminder_max_count=5,
    )
    await repo.save_reminder_settings(10, saved)
    assert await repo.get_reminder_settings(10) == saved

    await repo.save_reminder_settings(11, ReminderSettings(guild_id=11))
    enabled = await repo.list_reminder_settings()
    assert [row.guild_id for row in enabled] == [10]
    assert len(await repo.list_reminder_settings(enabled_only=False)) == 2


def test_settings_as_dict_uses_persisted_shape() -> None:
    settings = ReminderSettings(guild_id=1, reminder_role_id=5, reminder_mode=ReminderMode.CONTINUOUS)
    assert settings.as_dict() == {
        "enabled": False,
        "reminderTimeoutSeconds": 600,
        "reminderRoleRef": "5",
        "reminderMode": "continuous",
        "reminderIntervalSeconds": 60,
        "reminderMaxCount": 3,
    }


@pytest.mark.asyncio
async def test_upsert_rejects_unknown_columns(db: Database) -> None:
    with pytest.raises(ValueError):
        await ReminderRepository(db).upsert_response_tracking("t-1", status="open")


@pytest.mark.asyncio
async def test_candidates_filter_status_handoff_and_tracking(db: Database) -> None:
    tickets = TicketRepository(db)
    repo = ReminderRepository(db)
    await tickets.upsert(Ticket(id="open", guild_id=1, channel_id=11, opener_id=5, human_handled=True))
    await tickets.upsert(
        Ticket(id="waiting", guild_id=1, channel_id=12, opener_id=5, status="waitingStaff", human_handled=True)
    )
    await tickets.upsert(Ticket(id="bot-only", guild_id=1, channel_id=13, opener_id=5, human_handled=False))
    await tickets.upsert(Ticket(id="closed", guild_id=1, channel_id=14, opener_id=5, status="closed", human_handled=True))
    await tickets.upsert(Ticket(id="untracked", guild_id=1, channel_id=15, opener_id=5, human_handled=True))
    await tickets.upsert(Ticket(id="other-guild", guild_id=2, channel_id=16, opener_id=5, human_handled=True))
    for ticket_id in ("open", "waiting", "bot-only", "closed", "other-guild"):
        await repo.upsert_response_tracking(ticket_id, last_customer_message_at=T0)

    candidates = await repo.get_eligible_ticket_candidates(1)
    assert sorted(c.ticket.id for c in candidates) == ["open", "waiting"]
    assert all(c.tracking.last_customer_message_at == T0 for c in candidates)

    everything = await repo.get_eligible_ticket_candidates(1, must_be_human_handled=False)
    assert sorted(c.ticket.id for c in everything) == ["bot-only", "open", "waiting"]


@pytest.mark.asyncio
async def test_ticket_updates(db: Database) -> None:
    tickets = TicketRepository(db)
    await tickets.upsert(Ticket(id="t-1", guild_id=1, channel_id=11, opener_id=5))

    assert await tickets.mark_human_handled("t-1") is True
    assert await tickets.assign_staff("t-1", 99) is True
    ticket = await tickets.get_by_channel(1, 11)
    assert ticket is not None
    assert ticket.human_handled is True
    assert ticket.assigned_staff_id == 99

    assert await tickets.set_status("t-1", "closed") is True
    assert await tickets.get_by_channel(1, 11) is None
    assert await tickets.set_status("missing", "closed") is False


@pytest.mark.asyncio
async def test_staff_preference_defaults_to_receiving(db: Database) -> None:
    repo = ReminderRepository(db)
    assert await repo.get_staff_preference(7) is True
    await repo.set_staff_preference(7, False)
    assert await repo.get_staff_preference(7) is False
    await repo.set_staff_preference(7, True)
    assert await repo.get_staff_preference(7) is True


@pytest.mark.asyncio
async def test_service_hours_crud(db: Database) -> None:
    hours = ServiceHoursRepository(db)
    assert await hours.get_guild_flag(1) is None
    await hours.set_guild_flag(1, True)
    assert await hours.get_guild_flag(1) is True

    first = await hours.add_hours(1, "0 9-17 * * 1-5", "Weekdays")
    second = await hours.add_hours(1, "0 10-14 * * 6", "Saturday")
    assert first.id != second.id
    assert await hours.toggle_hours(1, second.id, False) is True
    active = await ReminderRepository(db, hours).get_active_service_hours(1)
    assert [row.id for row in active] == [first.id]

    assert await hours.delete_hours(1, [first.id, second.id]) == 2
    assert await hours.list_hours(1) == []


@pytest.mark.asyncio
async def test_holiday_crud(db: Database) -> None:
    holidays = HolidayRepository(db)
    fixed = await holidays.add_holiday(
        1, "New Year", 7, start_date=T0, end_date=T0.replace(day=5), reason="Office closed"
    )
    recurring = await holidays.add_holiday(1, "Christmas", 7, cron_expression="* * 25 12 *")

    assert fixed.is_recurring is False
    assert fixed.start_date == T0
    assert recurring.is_recurring is True

    assert await holidays.toggle_holiday(1, fixed.id, False) is True
    assert [row.id for row in await holidays.get_active_holidays(1)] == [recurring.id]
    assert await holidays.delete_holiday(1, recurring.id) is True
    assert [row.name for row in await holidays.list_holidays(1)] == ["New Year"]
