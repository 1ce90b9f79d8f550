from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from croniter import croniter

from core.config import ServiceHoursConfig
from database.models import Holiday, ServiceHoursSchedule
from database.repositories import HolidayRepository, ServiceHoursRepository
from utils.time import ensure_utc

LOGGER = logging.getLogger(__name__)


def cron_weekday(moment: datetime) -> int:
    """Day of week in cron numbering (0 = Sunday)."""
    return moment.isoweekday() % 7


def is_valid_cron(expression: str) -> bool:
    return bool(expression) and croniter.is_valid(expression)


def near_fire_instant(expression: str, now: datetime, window_seconds: int) -> bool:
    """True when ``now`` sits in a fire minute of ``expression`` or within ``window_seconds`` of one.

    This is a point-in-time match: ``0 9-17 * * 1-5`` matches at 10:00:30 but not at 10:30.
    """
    if croniter.match(expression, now):
        return True
    previous = croniter(expression, now).get_prev(datetime)
    upcoming = croniter(expression, now).get_next(datetime)
    since_previous = (now - previous).total_seconds()
    until_next = (upcoming - now).total_seconds()
    LOGGER.debug(
        "Cron check expr=%s now=%s prev=%s next=%s",
        expression,
        now.isoformat(),
        previous.isoformat(),
        upcoming.isoformat(),
    )
    return since_previous < window_seconds or until_next < window_seconds


class BusinessHoursEvaluator:
    """Decides whether a moment counts as in service for a guild."""

    def __init__(self, repository: ServiceHoursRepository, config: ServiceHoursConfig) -> None:
        self.repository = repository
        self.config = config
        self.timezone: tzinfo = ZoneInfo(config.timezone)

    def localize(self, now: datetime) -> datetime:
        return ensure_utc(now).astimezone(self.timezone)

    def within_fixed_window(self, local_now: datetime) -> bool:
        workdays = self.config.workdays
        start = self.config.work_hours_start
        end = self.config.work_hours_end
        if not workdays or start is None or end is None:
            return False
        return cron_weekday(local_now) in workdays and start <= local_now.hour < end

    def matches_schedules(self, schedules: Sequence[ServiceHoursSchedule], local_now: datetime) -> bool:
        for schedule in schedules:
            if not is_valid_cron(schedule.cron_expression):
                LOGGER.warning(
                    "Invalid service hours cron expression %r (schedule %s, guild %s)",
                    schedule.cron_expression,
                    schedule.id,
                    schedule.guild_id,
                )
                continue
            if near_fire_instant(schedule.cron_expression, local_now, self.config.match_window_seconds):
                return True
        return False

    async def is_within_service_hours(self, guild_id: int, now: datetime) -> bool:
        if not self.config.enabled:
            return True

        guild_flag = await self.repository.get_guild_flag(guild_id)
        if not guild_flag:
            return True

        schedules = await self.repository.get_active_hours(guild_id)
        if not schedules:
            LOGGER.debug("Guild %s has service hours enabled but no schedules", guild_id)
            return False

        local_now = self.localize(now)
        if self.within_fixed_window(local_now):
            return True
        return self.matches_schedules(schedules, local_now)


class HolidayEvaluator:
    """Independent holiday gate; callers compose it with :class:`BusinessHoursEvaluator`."""

    def __init__(self, repository: HolidayRepository, timezone: str = "UTC") -> None:
        self.repository = repository
        self.timezone: tzinfo = ZoneInfo(timezone)

    def matches(self, holiday: Holiday, now: datetime) -> bool:
        if holiday.is_recurring:
            expression = holiday.cron_expression or ""
            if not is_valid_cron(expression):
                LOGGER.warning("Invalid holiday cron expression %r (holiday %s)", expression, holiday.id)
                return False
            return croniter.match(expression, ensure_utc(now).astimezone(self.timezone))
        if holiday.start_date is None:
            return False
        end = holiday.end_date or holiday.start_date + timedelta(days=1)
        return holiday.start_date <= ensure_utc(now) < end

    async def is_holiday(self, guild_id: int, now: datetime) -> bool:
        holidays = await self.repository.get_active_holidays(guild_id)
        for holiday in holidays:
            if self.matches(holiday, now):
                LOGGER.debug("Guild %s is on holiday %s (%s)", guild_id, holiday.id, holiday.name)
                return True
        return False
