from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from conftest import FixedClock

from core.errors import TicketNotFoundError, ValidationError
from database.base import Database
from database.models import ReminderMode, Ticket
from database.repositories import ReminderRepository, TicketRepository
from services.cache import MemoryCache
from services.reminder_service import ReminderService
from services.response_tracker import ResponseTracker

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)


def _service(db: Database, notifier: AsyncMock | None = None) -> tuple[ReminderService, MemoryCache]:
    repo = ReminderRepository(db)
    cache = MemoryCache()
    service = ReminderService(
        repo,
        ResponseTracker(repo),
        TicketRepository(db),
        cache,
        notifier=notifier,
        clock=FixedClock(T0),
    )
    return service, cache


@pytest.mark.asyncio
async def test_enable_requires_role(db: Database) -> None:
    service, _ = _service(db)
    with pytest.raises(ValidationError):
        await service.enable(1)

    await service.set_role(1, 42)
    settings = await service.enable(1)
    assert settings.enabled is True
    assert (await service.get_settings(1)).reminder_role_id == 42


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("method", "value"),
    [
        ("set_timeout_minutes", 0),
        ("set_timeout_minutes", 61),
        ("set_interval", 29),
        ("set_interval", 601),
        ("set_max_count", 0),
        ("set_max_count", 11),
        ("set_mode", "weekly"),
    ],
)
async def test_out_of_range_values_are_rejected(db: Database, method: str, value) -> None:
    service, _ = _service(db)
    with pytest.raises(ValidationError):
        await getattr(service, method)(1, value)


@pytest.mark.asyncio
async def test_boundary_values_are_accepted(db: Database) -> None:
    service, _ = _service(db)
    assert (await service.set_timeout_minutes(1, 1)).reminder_timeout_seconds == 60
    assert (await service.set_timeout_minutes(1, 60)).reminder_timeout_seconds == 3600
    assert (await service.set_interval(1, 30)).reminder_interval_seconds == 30
    assert (await service.set_interval(1, 600)).reminder_interval_seconds == 600
    assert (await service.set_max_count(1, 1)).reminder_max_count == 1
    assert (await service.set_max_count(1, 10)).reminder_max_count == 10
    assert (await service.set_mode(1, "LIMITED")).reminder_mode is ReminderMode.LIMITED


@pytest.mark.asyncio
async def test_settings_cache_is_invalidated_on_write(db: Database) -> None:
    service, cache = _service(db)
    key = "reminder:settings:1"

    first = await service.get_settings(1)
    assert first.reminder_mode is ReminderMode.ONCE
    assert await cache.get(key) is not None

    await service.set_mode(1, ReminderMode.CONTINUOUS)
    assert await cache.get(key) is None
    assert (await service.get_settings(1)).reminder_mode is ReminderMode.CONTINUOUS


@pytest.mark.asyncio
async def test_update_settings_payload(db: Database) -> None:
    service, _ = _service(db)
    settings = await service.update_settings(
        1,
        {
            "enabled": True,
            "reminderRoleRef": "42",
            "reminderTimeoutSeconds": 900,
            "reminderMode": "limited",
            "reminderMaxCount": 4,
        },
    )
    assert settings.as_dict()["reminderRoleRef"] == "42"
    assert settings.reminder_timeout_seconds == 900
    assert settings.reminder_max_count == 4

    with pytest.raises(ValidationError):
        await service.update_settings(1, {"reminderTimeoutSeconds": 90})
    with pytest.raises(ValidationError):
        await service.update_settings(1, {"reminderRoleRef": None})


@pytest.mark.asyncio
async def test_message_routing_and_handoff(db: Database) -> None:
    service, _ = _service(db)
    tickets = TicketRepository(db)
    ticket = Ticket(id="t-1", guild_id=1, channel_id=11, opener_id=5)
    await tickets.upsert(ticket)

    assert await service.handle_customer_message(ticket, T0) is False
    assert await service.tracker.get("t-1") is None

    handed = await service.handle_human_handoff("t-1")
    assert handed.human_handled is True
    row = await service.tracker.get("t-1")
    assert row is not None and row.last_customer_message_at == T0

    assert await service.handle_staff_message(handed, 99, T0) is True
    await service.handle_no_response_needed("t-1", 99)
    row = await service.tracker.get("t-1")
    assert row is not None and row.no_response_needed is True

    await service.handle_ticket_closed("t-1")
    assert await service.tracker.get("t-1") is None
    closed = await tickets.get("t-1")
    assert closed is not None and closed.status == "closed"

    with pytest.raises(TicketNotFoundError):
        await service.handle_human_handoff("missing")


@pytest.mark.asyncio
async def test_debug_snapshot_counts_opted_in_staff(db: Database) -> None:
    notifier = AsyncMock()
    notifier.resolve_role_members.return_value = [1, 2, 3]
    service, _ = _service(db, notifier)
    await service.set_role(1, 42)
    await service.set_staff_preference(2, False)

    snapshot = await service.debug_snapshot(1)
    assert snapshot["roleMemberCount"] == 3
    assert snapshot["optedInCount"] == 2
    assert snapshot["trackedTickets"] == 0
    assert snapshot["settings"]["reminderRoleRef"] == "42"
    assert await service.staff_to_remind(1) == [1, 3]

    status = await service.status(1, 2)
    assert status.receive_reminders is False


@pytest.mark.asyncio
async def test_unreadable_cache_entry_falls_back_to_repository(db: Database) -> None:
    service, cache = _service(db)
    await cache.set("reminder:settings:1", "{not json")

    settings = await service.get_settings(1)

    assert settings.guild_id == 1
    assert settings.enabled is False
    assert await cache.get("reminder:settings:1") is not None


@pytest.mark.asyncio
async def test_update_settings_requires_real_boolean_for_enabled(db: Database) -> None:
    service, _ = _service(db)
    await service.update_settings(1, {"reminderRoleRef": "42"})

    for value in ("false", "true", 1, None):
        with pytest.raises(ValidationError):
            await service.update_settings(1, {"enabled": value})
    assert (await service.get_settings(1)).enabled is False

    assert (await service.update_settings(1, {"enabled": True})).enabled is True
