from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FixedClock

from core.config import ReminderConfig
from core.errors import PersistenceError, TransientDeliveryError
from database.base import Database
from database.models import ReminderMode, ReminderSettings, Ticket
from database.repositories import ReminderRepository, TicketRepository
from services.reminder_policy import evaluate
from services.reminder_scheduler import ReminderScheduler
from services.response_tracker import ResponseTracker

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=UTC)
ROLE_ID = 42


class Harness:
    def __init__(self, db: Database, *, config: ReminderConfig | None = None, in_hours: bool = True) -> None:
        self.tickets = TicketRepository(db)
        self.repo = ReminderRepository(db)
        self.tracker = ResponseTracker(self.repo)
        self.clock = FixedClock(T0)
        self.business_hours = MagicMock()
        self.business_hours.is_within_service_hours = AsyncMock(return_value=in_hours)
        self.notifier = AsyncMock()
        self.sent = 0
        self.notifier.send_reminder.side_effect = self._send
        self.scheduler = ReminderScheduler(
            self.repo,
            self.tracker,
            self.notifier,
            self.business_hours,
            clock=self.clock,
            config=config or ReminderConfig(initial_delay_seconds=0),
        )

    async def _send(self, channel_id: int, role_id: int, text: str, escalation_count=None, *, ticket_id: str) -> str:
        self.sent += 1
        return f"{channel_id}:{self.sent}"

    async def configure(self, mode: ReminderMode = ReminderMode.CONTINUOUS, **overrides) -> None:
        settings = ReminderSettings(
            guild_id=1,
            enabled=True,
            reminder_timeout_seconds=600,
            reminder_role_id=ROLE_ID,
            reminder_mode=mode,
            reminder_interval_seconds=60,
            reminder_max_count=3,
        )
        for key, value in overrides.items():
            setattr(settings, key, value)
        await self.repo.save_reminder_settings(1, settings)

    async def open_ticket(self, ticket_id: str, channel_id: int) -> None:
        await self.tickets.upsert(
            Ticket(id=ticket_id, guild_id=1, channel_id=channel_id, opener_id=5, human_handled=True)
        )
        await self.tracker.record_customer_message(ticket_id, T0)

    async def tick(self, seconds: int):
        self.clock.current = T0 + timedelta(seconds=seconds)
        return await self.scheduler.run_once()


@pytest.mark.asyncio
async def test_continuous_mode_escalates_every_interval(db: Database) -> None:
    h = Harness(db)
    await h.configure()
    await h.open_ticket("t-1", 11)

    assert (await h.tick(599)).reminders_sent == 0
    h.notifier.send_reminder.assert_not_awaited()

    report = await h.tick(600)
    assert report.reminders_sent == 1
    args, kwargs = h.notifier.send_reminder.await_args
    assert args[0] == 11
    assert args[1] == ROLE_ID
    assert "<@&42>" in args[2]
    assert "10 minutes" in args[2]
    assert "(reminder #1)" in args[2]
    assert args[3] == 1
    assert kwargs["ticket_id"] == "t-1"
    h.notifier.suppress_controls.assert_not_awaited()

    assert (await h.tick(630)).reminders_sent == 0

    assert (await h.tick(660)).reminders_sent == 1
    h.notifier.suppress_controls.assert_awaited_once_with("11:1")
    row = await h.tracker.get("t-1")
    assert row is not None
    assert row.reminder_count == 2
    assert row.reminder_sent_at == T0 + timedelta(seconds=600)
    assert row.last_reminder_at == T0 + timedelta(seconds=660)
    assert row.last_reminder_message_ref == "11:2"


@pytest.mark.asyncio
async def test_once_mode_sends_a_single_plain_reminder(db: Database) -> None:
    h = Harness(db)
    await h.configure(ReminderMode.ONCE)
    await h.open_ticket("t-1", 11)

    assert (await h.tick(600)).reminders_sent == 1
    args, _ = h.notifier.send_reminder.await_args
    assert "(reminder" not in args[2]
    assert args[3] is None

    assert (await h.tick(3600)).reminders_sent == 0
    assert h.notifier.send_reminder.await_count == 1


@pytest.mark.asyncio
async def test_limited_mode_mentions_cap_and_stops(db: Database) -> None:
    h = Harness(db)
    await h.configure(ReminderMode.LIMITED, reminder_max_count=2)
    await h.open_ticket("t-1", 11)

    await h.tick(600)
    args, _ = h.notifier.send_reminder.await_args
    assert "(reminder #1 of max 2)" in args[2]
    await h.tick(660)
    assert (await h.tick(720)).reminders_sent == 0
    assert (await h.tick(7200)).reminders_sent == 0
    assert h.notifier.send_reminder.await_count == 2


@pytest.mark.asyncio
async def test_staff_response_stops_escalation(db: Database) -> None:
    h = Harness(db)
    await h.configure()
    await h.open_ticket("t-1", 11)
    await h.tick(600)

    await h.tracker.record_staff_response("t-1", T0 + timedelta(seconds=620))
    assert (await h.tick(700)).reminders_sent == 0
    assert (await h.tick(5000)).reminders_sent == 0


@pytest.mark.asyncio
async def test_delivery_failure_is_isolated_per_ticket(db: Database) -> None:
    h = Harness(db)
    await h.configure()
    await h.open_ticket("t-a", 11)
    await h.open_ticket("t-b", 12)

    async def flaky(channel_id: int, role_id: int, text: str, escalation_count=None, *, ticket_id: str) -> str:
        if channel_id == 11:
            raise TransientDeliveryError("channel gone")
        return f"{channel_id}:1"

    h.notifier.send_reminder.side_effect = flaky
    report = await h.tick(600)

    assert report.reminders_sent == 1
    assert report.failures == 1
    failed = await h.tracker.get("t-a")
    delivered = await h.tracker.get("t-b")
    assert failed is not None and delivered is not None
    assert failed.reminder_sent is False
    assert failed.last_reminder_message_ref is None
    assert delivered.reminder_sent is True
    assert delivered.last_reminder_message_ref == "12:1"


@pytest.mark.asyncio
async def test_unexpected_error_does_not_abort_tick(db: Database) -> None:
    h = Harness(db)
    await h.configure()
    await h.open_ticket("t-a", 11)
    await h.open_ticket("t-b", 12)
    h.notifier.send_reminder.side_effect = [RuntimeError("boom"), "12:1"]

    report = await h.tick(600)
    assert report.failures == 1
    assert report.reminders_sent == 1


@pytest.mark.asyncio
async def test_suppress_failure_does_not_block_new_reminder(db: Database) -> None:
    h = Harness(db)
    await h.configure()
    await h.open_ticket("t-1", 11)
    await h.tick(600)
    h.notifier.suppress_controls.side_effect = TransientDeliveryError("message deleted")

    report = await h.tick(660)
    assert report.reminders_sent == 1
    assert report.failures == 0
    row = await h.tracker.get("t-1")
    assert row is not None and row.reminder_count == 2


@pytest.mark.asyncio
async def test_out_of_hours_guild_is_skipped(db: Database) -> None:
    h = Harness(db, in_hours=False)
    await h.configure()
    await h.open_ticket("t-1", 11)

    report = await h.tick(600)
    assert report.guilds_checked == 1
    assert report.guilds_skipped == 1
    h.notifier.send_reminder.assert_not_awaited()
    row = await h.tracker.get("t-1")
    assert row is not None and row.reminder_sent is False


@pytest.mark.asyncio
async def test_holiday_gate_skips_guild(db: Database) -> None:
    h = Harness(db)
    holidays = MagicMock()
    holidays.is_holiday = AsyncMock(return_value=True)
    h.scheduler.holidays = holidays
    await h.configure()
    await h.open_ticket("t-1", 11)

    report = await h.tick(600)
    assert report.guilds_skipped == 1
    h.notifier.send_reminder.assert_not_awaited()


@pytest.mark.asyncio
async def test_enabled_guild_without_role_is_skipped(db: Database) -> None:
    h = Harness(db)
    await h.configure(reminder_role_id=None)
    await h.open_ticket("t-1", 11)

    report = await h.tick(600)
    assert report.guilds_skipped == 1
    assert report.failures == 0
    h.business_hours.is_within_service_hours.assert_not_awaited()
    h.notifier.send_reminder.assert_not_awaited()


@pytest.mark.asyncio
async def test_notification_channel_with_fallback(db: Database) -> None:
    h = Harness(db, config=ReminderConfig(initial_delay_seconds=0, notification_channel_id=999))
    await h.configure()
    await h.open_ticket("t-1", 11)

    await h.tick(600)
    args, _ = h.notifier.send_reminder.await_args
    assert args[0] == 999
    assert "<#11>" in args[2]

    calls: list[int] = []

    async def notification_channel_down(
        channel_id: int, role_id: int, text: str, escalation_count=None, *, ticket_id: str
    ) -> str:
        calls.append(channel_id)
        if channel_id == 999:
            raise TransientDeliveryError("missing access")
        return f"{channel_id}:2"

    h.notifier.send_reminder.side_effect = notification_channel_down
    assert (await h.tick(660)).reminders_sent == 1
    assert calls == [999, 11]
    row = await h.tracker.get("t-1")
    assert row is not None and row.last_reminder_message_ref == "11:2"


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(db: Database) -> None:
    h = Harness(db)
    await h.configure()
    await h.open_ticket("t-1", 11)
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow_send(*args, **kwargs) -> str:
        entered.set()
        await release.wait()
        return "11:1"

    h.notifier.send_reminder.side_effect = slow_send
    h.clock.current = T0 + timedelta(seconds=600)
    first = asyncio.create_task(h.scheduler.run_once())
    await entered.wait()

    overlap = await h.scheduler.run_once()
    assert overlap.skipped_overlap is True
    assert overlap.reminders_sent == 0

    release.set()
    report = await first
    assert report.reminders_sent == 1
    assert h.notifier.send_reminder.await_count == 1


@pytest.mark.asyncio
async def test_start_and_stop_background_loop(db: Database) -> None:
    h = Harness(db, config=ReminderConfig(poll_interval_seconds=0.05, initial_delay_seconds=0))
    await h.configure(ReminderMode.ONCE)
    await h.open_ticket("t-1", 11)
    h.clock.current = T0 + timedelta(seconds=600)

    h.scheduler.start()
    assert h.scheduler.is_running
    for _ in range(100):
        if h.notifier.send_reminder.await_count:
            break
        await asyncio.sleep(0.02)
    assert h.notifier.send_reminder.await_count == 1

    h.scheduler.stop()
    for _ in range(100):
        if not h.scheduler.is_running:
            break
        await asyncio.sleep(0.02)
    assert not h.scheduler.is_running
    assert h.scheduler.last_report is not None


@pytest.mark.asyncio
async def test_service_hours_lookup_failure_still_reminds(db: Database) -> None:
    h = Harness(db)
    h.business_hours.is_within_service_hours.side_effect = PersistenceError("settings table locked")
    holidays = MagicMock()
    holidays.is_holiday = AsyncMock(side_effect=PersistenceError("holidays unavailable"))
    h.scheduler.holidays = holidays
    await h.configure(ReminderMode.ONCE)
    await h.open_ticket("t-1", 11)

    report = await h.tick(600)
    assert report.reminders_sent == 1
    assert report.failures == 0
    assert report.guilds_skipped == 0


@pytest.mark.asyncio
async def test_staff_reply_during_delivery_is_not_overwritten(db: Database) -> None:
    h = Harness(db)
    await h.configure(ReminderMode.ONCE)
    await h.open_ticket("t-1", 11)

    async def send_while_staff_replies(channel_id, role_id, text, escalation_count=None, *, ticket_id):
        await h.tracker.record_staff_response(ticket_id, T0 + timedelta(seconds=601))
        return f"{channel_id}:900"

    h.notifier.send_reminder.side_effect = send_while_staff_replies
    assert (await h.tick(600)).reminders_sent == 1

    row = await h.tracker.get("t-1")
    assert row is not None
    assert row.reminder_sent is False
    assert row.reminder_count == 0
    assert row.last_staff_response_at == T0 + timedelta(seconds=601)
    assert row.last_reminder_message_ref == "11:900"

    later = T0 + timedelta(hours=1)
    await h.tracker.record_customer_message("t-1", later)
    settings = await h.repo.get_reminder_settings(1)
    decision = evaluate(await h.tracker.get("t-1"), settings, later + timedelta(seconds=600))
    assert decision.eligible is True
