from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, cast

from discord.ext import tasks

from core.config import ReminderConfig
from core.errors import ConfigurationError, ReminderError, TransientDeliveryError
from database.models import ReminderCandidate, ReminderMode, ReminderSettings, ResponseTracking
from database.repositories import ReminderRepository
from services.business_hours import BusinessHoursEvaluator, HolidayEvaluator
from services.notifier import Notifier
from services.reminder_policy import evaluate
from services.response_tracker import ResponseTracker
from utils.embeds import build_reminder_text
from utils.time import Clock, SystemClock, ensure_utc, to_iso

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TickReport:
    started_at: datetime
    guilds_checked: int = 0
    guilds_skipped: int = 0
    reminders_sent: int = 0
    failures: int = 0
    skipped_overlap: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "startedAt": to_iso(self.started_at),
            "guildsChecked": self.guilds_checked,
            "guildsSkipped": self.guilds_skipped,
            "remindersSent": self.reminders_sent,
            "failures": self.failures,
            "skippedOverlap": self.skipped_overlap,
        }


class ReminderScheduler:
    """Periodic driver of staff reminders.

    Each tick walks every guild with reminders enabled, gates it on service hours
    (and holidays when a :class:`HolidayEvaluator` is supplied), asks the policy
    which tickets are due and then sends, suppresses and persists through the
    injected collaborators. Failures are contained per guild and per ticket.
    """

    def __init__(
        self,
        repository: ReminderRepository,
        tracker: ResponseTracker,
        notifier: Notifier,
        business_hours: BusinessHoursEvaluator,
        *,
        clock: Clock | None = None,
        config: ReminderConfig | None = None,
        holidays: HolidayEvaluator | None = None,
    ) -> None:
        self.repository = repository
        self.tracker = tracker
        self.notifier = notifier
        self.business_hours = business_hours
        self.holidays = holidays
        self.clock = clock or SystemClock()
        self.config = config or ReminderConfig()
        self.last_report: TickReport | None = None
        self._lock = asyncio.Lock()
        self._loop = tasks.loop(seconds=self.config.poll_interval_seconds)(self._tick)
        self._loop.before_loop(self._before_first_tick)

    @property
    def is_running(self) -> bool:
        return self._loop.is_running()

    @property
    def next_iteration(self) -> datetime | None:
        return self._loop.next_iteration

    def start(self) -> None:
        if self._loop.is_running():
            return
        LOGGER.info(
            "Starting reminder scheduler (every %ss, first tick after %ss)",
            self.config.poll_interval_seconds,
            self.config.initial_delay_seconds,
        )
        self._loop.start()

    def stop(self) -> None:
        if self._loop.is_running():
            LOGGER.info("Stopping reminder scheduler")
            self._loop.stop()

    def state(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "nextIteration": to_iso(self.next_iteration),
            "pollIntervalSeconds": self.config.poll_interval_seconds,
            "tickInProgress": self._lock.locked(),
            "lastTick": self.last_report.as_dict() if self.last_report else None,
        }

    async def _before_first_tick(self) -> None:
        if self.config.initial_delay_seconds > 0:
            await asyncio.sleep(self.config.initial_delay_seconds)

    async def _tick(self) -> None:
        try:
            await self.run_once()
        except Exception:
            LOGGER.exception("Reminder tick crashed")

    async def run_once(self, now: datetime | None = None) -> TickReport:
        now = ensure_utc(now or self.clock.now())
        if self._lock.locked():
            LOGGER.warning("Reminder tick already in progress; skipping overlapping run")
            return TickReport(started_at=now, skipped_overlap=True)

        async with self._lock:
            report = TickReport(started_at=now)
            try:
                guild_settings = await self.repository.list_reminder_settings()
            except ReminderError as exc:
                LOGGER.warning("Could not load reminder settings: %s", exc)
                report.failures += 1
                self.last_report = report
                return report

            for settings in guild_settings:
                report.guilds_checked += 1
                try:
                    await self._process_guild(settings, now, report)
                except ConfigurationError as exc:
                    report.guilds_skipped += 1
                    LOGGER.warning("Skipping guild: %s", exc, extra={"guild_id": settings.guild_id})
                except ReminderError as exc:
                    report.failures += 1
                    LOGGER.warning("Reminder pass failed: %s", exc, extra={"guild_id": settings.guild_id})
                except Exception:
                    report.failures += 1
                    LOGGER.exception("Unexpected error during reminder pass", extra={"guild_id": settings.guild_id})

            self.last_report = report
            LOGGER.debug(
                "Reminder tick done: guilds=%s skipped=%s sent=%s failures=%s",
                report.guilds_checked,
                report.guilds_skipped,
                report.reminders_sent,
                report.failures,
            )
            return report

    async def _process_guild(self, settings: ReminderSettings, now: datetime, report: TickReport) -> None:
        guild_id = settings.guild_id
        if settings.reminder_role_id is None:
            raise ConfigurationError(f"Guild {guild_id} has reminders enabled but no reminder role")

        if not await self._in_service(guild_id, now):
            report.guilds_skipped += 1
            return

        candidates = await self.repository.get_eligible_ticket_candidates(guild_id)
        for candidate in candidates:
            ticket_id = candidate.ticket.id
            try:
                sent = await self._process_candidate(settings, candidate, now)
            except TransientDeliveryError as exc:
                report.failures += 1
                LOGGER.warning(
                    "Reminder delivery failed, will retry next tick: %s",
                    exc,
                    extra={"guild_id": guild_id, "ticket_id": ticket_id},
                )
            except ReminderError as exc:
                report.failures += 1
                LOGGER.warning("Reminder failed: %s", exc, extra={"guild_id": guild_id, "ticket_id": ticket_id})
            except Exception:
                report.failures += 1
                LOGGER.exception("Unexpected reminder failure", extra={"guild_id": guild_id, "ticket_id": ticket_id})
            else:
                if sent:
                    report.reminders_sent += 1

    async def _in_service(self, guild_id: int, now: datetime) -> bool:
        """Service-hours and holiday gate. A failed lookup counts as in service."""
        try:
            if not await self.business_hours.is_within_service_hours(guild_id, now):
                LOGGER.debug("Outside service hours", extra={"guild_id": guild_id})
                return False
        except ReminderError as exc:
            LOGGER.warning("Service hours check failed, reminding anyway: %s", exc, extra={"guild_id": guild_id})
        if self.holidays is None:
            return True
        try:
            if await self.holidays.is_holiday(guild_id, now):
                LOGGER.debug("Holiday in effect", extra={"guild_id": guild_id})
                return False
        except ReminderError as exc:
            LOGGER.warning("Holiday check failed, reminding anyway: %s", exc, extra={"guild_id": guild_id})
        return True

    async def _process_candidate(self, settings: ReminderSettings, candidate: ReminderCandidate, now: datetime) -> bool:
        decision = evaluate(candidate.tracking, settings, now)
        if not decision.eligible or decision.next_state is None:
            return False

        ticket = candidate.ticket
        previous_ref = candidate.tracking.last_reminder_message_ref
        if previous_ref:
            try:
                await self.notifier.suppress_controls(previous_ref)
            except ReminderError as exc:
                LOGGER.warning(
                    "Could not clear previous reminder controls: %s",
                    exc,
                    extra={"guild_id": ticket.guild_id, "ticket_id": ticket.id},
                )

        message_ref = await self._deliver(settings, candidate, decision.next_state, now)
        await self.tracker.apply_reminder(decision.next_state, message_ref)
        LOGGER.info(
            "Reminder %s sent (%s)",
            decision.next_state.reminder_count,
            decision.reason,
            extra={"guild_id": ticket.guild_id, "ticket_id": ticket.id},
        )
        return True

    async def _deliver(
        self,
        settings: ReminderSettings,
        candidate: ReminderCandidate,
        next_state: ResponseTracking,
        now: datetime,
    ) -> str:
        ticket = candidate.ticket
        role_id = cast(int, settings.reminder_role_id)
        escalation = next_state.reminder_count if settings.reminder_mode != ReminderMode.ONCE else None
        notification_channel_id = self.config.notification_channel_id

        if notification_channel_id and notification_channel_id != ticket.channel_id:
            text = build_reminder_text(settings, ticket.channel_id, next_state, now, mention_channel=True)
            try:
                return await self.notifier.send_reminder(
                    notification_channel_id, role_id, text, escalation, ticket_id=ticket.id
                )
            except TransientDeliveryError as exc:
                LOGGER.warning(
                    "Notification channel %s unavailable, falling back to ticket channel: %s",
                    notification_channel_id,
                    exc,
                    extra={"guild_id": ticket.guild_id, "ticket_id": ticket.id},
                )

        text = build_reminder_text(settings, ticket.channel_id, next_state, now, mention_channel=False)
        return await self.notifier.send_reminder(ticket.channel_id, role_id, text, escalation, ticket_id=ticket.id)
