from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any

from core.errors import ReminderError, TicketNotFoundError, ValidationError
from database.models import ReminderMode, ReminderSettings, Ticket
from database.repositories import ReminderRepository, TicketRepository
from services.cache import CacheBackend, get_json, set_json
from services.notifier import Notifier
from services.reminder_scheduler import ReminderScheduler, TickReport
from services.response_tracker import ResponseTracker
from utils.constants import (
    INTERVAL_SECONDS_RANGE,
    MAX_COUNT_RANGE,
    TICKET_STATUS_CLOSED,
    TIMEOUT_MINUTES_RANGE,
)
from utils.time import Clock, SystemClock

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ReminderStatus:
    settings: ReminderSettings
    receive_reminders: bool


def _check_range(value: int, bounds: tuple[int, int], label: str) -> int:
    low, high = bounds
    if not low <= value <= high:
        raise ValidationError(f"{label} must be between {low} and {high}.")
    return value


def _parse_mode(value: str | ReminderMode) -> ReminderMode:
    try:
        return ReminderMode(str(value).lower())
    except ValueError as exc:
        allowed = ", ".join(mode.value for mode in ReminderMode)
        raise ValidationError(f"Reminder mode must be one of: {allowed}.") from exc


class ReminderService:
    """Administrative and event-facing surface of the reminder subsystem.

    Range limits for timeouts, intervals and counts are enforced here; the
    scheduler and policy accept any positive value.
    """

    def __init__(
        self,
        repository: ReminderRepository,
        tracker: ResponseTracker,
        ticket_repo: TicketRepository,
        cache: CacheBackend,
        *,
        notifier: Notifier | None = None,
        scheduler: ReminderScheduler | None = None,
        cache_ttl: int = 120,
        clock: Clock | None = None,
    ) -> None:
        self.repository = repository
        self.tracker = tracker
        self.ticket_repo = ticket_repo
        self.cache = cache
        self.notifier = notifier
        self.scheduler = scheduler
        self.cache_ttl = cache_ttl
        self.clock = clock or SystemClock()

    @staticmethod
    def _cache_key(guild_id: int) -> str:
        return f"reminder:settings:{guild_id}"

    async def get_settings(self, guild_id: int) -> ReminderSettings:
        data = await get_json(self.cache, self._cache_key(guild_id))
        if data is not None:
            data["reminder_mode"] = ReminderMode(data["reminder_mode"])
            return ReminderSettings(**data)
        settings = await self.repository.get_reminder_settings(guild_id)
        payload = asdict(settings)
        payload["reminder_mode"] = settings.reminder_mode.value
        await set_json(self.cache, self._cache_key(guild_id), payload, ttl=self.cache_ttl)
        return settings

    async def _save(self, settings: ReminderSettings) -> ReminderSettings:
        await self.repository.save_reminder_settings(settings.guild_id, settings)
        await self.cache.delete(self._cache_key(settings.guild_id))
        LOGGER.info("Reminder settings updated: %s", settings.as_dict(), extra={"guild_id": settings.guild_id})
        return settings

    async def enable(self, guild_id: int) -> ReminderSettings:
        settings = await self.get_settings(guild_id)
        if settings.reminder_role_id is None:
            raise ValidationError("Set a reminder role with `reminder setrole` before enabling reminders.")
        return await self._save(replace(settings, enabled=True))

    async def disable(self, guild_id: int) -> ReminderSettings:
        settings = await self.get_settings(guild_id)
        return await self._save(replace(settings, enabled=False))

    async def set_role(self, guild_id: int, role_id: int) -> ReminderSettings:
        settings = await self.get_settings(guild_id)
        return await self._save(replace(settings, reminder_role_id=role_id))

    async def set_timeout_minutes(self, guild_id: int, minutes: int) -> ReminderSettings:
        _check_range(minutes, TIMEOUT_MINUTES_RANGE, "Reminder timeout (minutes)")
        settings = await self.get_settings(guild_id)
        return await self._save(replace(settings, reminder_timeout_seconds=minutes * 60))

    async def set_mode(self, guild_id: int, mode: str | ReminderMode) -> ReminderSettings:
        parsed = _parse_mode(mode)
        settings = await self.get_settings(guild_id)
        return await self._save(replace(settings, reminder_mode=parsed))

    async def set_interval(self, guild_id: int, seconds: int) -> ReminderSettings:
        _check_range(seconds, INTERVAL_SECONDS_RANGE, "Reminder interval (seconds)")
        settings = await self.get_settings(guild_id)
        return await self._save(replace(settings, reminder_interval_seconds=seconds))

    async def set_max_count(self, guild_id: int, count: int) -> ReminderSettings:
        _check_range(count, MAX_COUNT_RANGE, "Maximum reminder count")
        settings = await self.get_settings(guild_id)
        return await self._save(replace(settings, reminder_max_count=count))

    async def update_settings(self, guild_id: int, payload: dict[str, Any]) -> ReminderSettings:
        """Apply a partial camelCase settings document, validating every field before saving."""
        settings = await self.get_settings(guild_id)
        changes: dict[str, Any] = {}
        if "reminderRoleRef" in payload:
            role = payload["reminderRoleRef"]
            try:
                changes["reminder_role_id"] = int(role) if role not in (None, "") else None
            except (TypeError, ValueError) as exc:
                raise ValidationError("reminderRoleRef must be a role id.") from exc
        if "reminderTimeoutSeconds" in payload:
            seconds = _as_int(payload["reminderTimeoutSeconds"], "reminderTimeoutSeconds")
            if seconds % 60:
                raise ValidationError("reminderTimeoutSeconds must be a whole number of minutes.")
            _check_range(seconds // 60, TIMEOUT_MINUTES_RANGE, "Reminder timeout (minutes)")
            changes["reminder_timeout_seconds"] = seconds
        if "reminderMode" in payload:
            changes["reminder_mode"] = _parse_mode(payload["reminderMode"])
        if "reminderIntervalSeconds" in payload:
            changes["reminder_interval_seconds"] = _check_range(
                _as_int(payload["reminderIntervalSeconds"], "reminderIntervalSeconds"),
                INTERVAL_SECONDS_RANGE,
                "Reminder interval (seconds)",
            )
        if "reminderMaxCount" in payload:
            changes["reminder_max_count"] = _check_range(
                _as_int(payload["reminderMaxCount"], "reminderMaxCount"),
                MAX_COUNT_RANGE,
                "Maximum reminder count",
            )
        if "enabled" in payload:
            if not isinstance(payload["enabled"], bool):
                raise ValidationError("enabled must be true or false.")
            changes["enabled"] = payload["enabled"]

        updated = replace(settings, **changes)
        if updated.enabled and updated.reminder_role_id is None:
            raise ValidationError("A reminder role is required while reminders are enabled.")
        return await self._save(updated)

    async def get_staff_preference(self, user_id: int) -> bool:
        return await self.repository.get_staff_preference(user_id)

    async def set_staff_preference(self, user_id: int, receive_reminders: bool) -> None:
        await self.repository.set_staff_preference(user_id, receive_reminders)
        LOGGER.info("Staff %s reminder preference set to %s", user_id, receive_reminders)

    async def status(self, guild_id: int, user_id: int) -> ReminderStatus:
        return ReminderStatus(
            settings=await self.get_settings(guild_id),
            receive_reminders=await self.get_staff_preference(user_id),
        )

    async def staff_to_remind(self, guild_id: int, settings: ReminderSettings | None = None) -> list[int]:
        """Reminder-role members who have not opted out."""
        settings = settings or await self.get_settings(guild_id)
        if settings.reminder_role_id is None or self.notifier is None:
            return []
        members = await self.notifier.resolve_role_members(guild_id, settings.reminder_role_id)
        return [member_id for member_id in members if await self.repository.get_staff_preference(member_id)]

    async def debug_snapshot(self, guild_id: int) -> dict[str, Any]:
        settings = await self.get_settings(guild_id)
        snapshot: dict[str, Any] = {
            "guildId": str(guild_id),
            "settings": settings.as_dict(),
            "roleMemberCount": None,
            "optedInCount": None,
            "roleError": None,
            "trackedTickets": len(await self.repository.get_eligible_ticket_candidates(guild_id)),
            "scheduler": self.scheduler.state() if self.scheduler else None,
        }
        if settings.reminder_role_id is not None and self.notifier is not None:
            try:
                members = await self.notifier.resolve_role_members(guild_id, settings.reminder_role_id)
                snapshot["roleMemberCount"] = len(members)
                snapshot["optedInCount"] = len(await self.staff_to_remind(guild_id, settings))
            except ReminderError as exc:
                snapshot["roleError"] = str(exc)
        return snapshot

    async def run_now(self) -> TickReport:
        if self.scheduler is None:
            raise ValidationError("The reminder scheduler is not running.")
        return await self.scheduler.run_once()

    async def handle_customer_message(self, ticket: Ticket, at: datetime | None = None) -> bool:
        if ticket.status == TICKET_STATUS_CLOSED or not ticket.human_handled:
            return False
        await self.tracker.record_customer_message(ticket.id, at or self.clock.now())
        return True

    async def handle_staff_message(self, ticket: Ticket, staff_id: int, at: datetime | None = None) -> bool:
        if ticket.status == TICKET_STATUS_CLOSED or not ticket.human_handled:
            return False
        await self.tracker.record_staff_response(ticket.id, at or self.clock.now())
        LOGGER.debug("Staff %s answered", staff_id, extra={"ticket_id": ticket.id, "guild_id": ticket.guild_id})
        return True

    async def handle_human_handoff(self, ticket_id: str, at: datetime | None = None) -> Ticket:
        """Hand a ticket to human staff; the handoff moment starts the response clock."""
        ticket = await self.ticket_repo.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError()
        await self.ticket_repo.mark_human_handled(ticket_id)
        ticket.human_handled = True
        await self.tracker.record_customer_message(ticket_id, at or self.clock.now())
        LOGGER.info("Ticket handed off to staff", extra={"ticket_id": ticket_id, "guild_id": ticket.guild_id})
        return ticket

    async def handle_no_response_needed(self, ticket_id: str, actor_id: int) -> None:
        await self.tracker.mark_no_response_needed(ticket_id)
        LOGGER.info("Reminders silenced by %s", actor_id, extra={"ticket_id": ticket_id})

    async def handle_ticket_closed(self, ticket_id: str) -> None:
        await self.ticket_repo.set_status(ticket_id, TICKET_STATUS_CLOSED)
        await self.tracker.clear(ticket_id)
        LOGGER.info("Tracking cleared for closed ticket", extra={"ticket_id": ticket_id})


def _as_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be an integer.") from exc
