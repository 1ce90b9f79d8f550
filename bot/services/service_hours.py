from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from core.config import ServiceHoursConfig
from core.errors import ValidationError
from database.models import Holiday, ServiceHoursSchedule
from database.repositories import HolidayRepository, ServiceHoursRepository
from services.business_hours import BusinessHoursEvaluator, HolidayEvaluator, is_valid_cron
from utils.time import Clock, SystemClock

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceHoursCheck:
    guild_enabled: bool
    within_hours: bool
    on_holiday: bool
    checked_at: datetime


def parse_id_list(raw: str) -> list[int]:
    """Parse ``"1, 2,3"`` into ``[1, 2, 3]``."""
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValidationError(f"`{part}` is not a valid schedule id.")
        ids.append(int(part))
    if not ids:
        raise ValidationError("Provide at least one schedule id.")
    return ids


class ServiceHoursService:
    """Admin operations for service-hour schedules and holidays."""

    def __init__(
        self,
        hours_repo: ServiceHoursRepository,
        holiday_repo: HolidayRepository,
        evaluator: BusinessHoursEvaluator,
        holidays: HolidayEvaluator,
        config: ServiceHoursConfig,
        clock: Clock | None = None,
    ) -> None:
        self.hours_repo = hours_repo
        self.holiday_repo = holiday_repo
        self.evaluator = evaluator
        self.holidays = holidays
        self.config = config
        self.clock = clock or SystemClock()

    async def seed_defaults(self, guild_id: int) -> bool:
        """Install configured default schedules for a guild that has none."""
        if not self.config.default_hours:
            return False
        if await self.hours_repo.list_hours(guild_id):
            return False
        for row in self.config.default_hours:
            if not is_valid_cron(row["cron"]):
                LOGGER.warning("Skipping invalid default service hours %r", row["cron"])
                continue
            await self.hours_repo.add_hours(guild_id, row["cron"], row.get("description", ""))
        if await self.hours_repo.get_guild_flag(guild_id) is None:
            await self.hours_repo.set_guild_flag(guild_id, self.config.enabled)
        LOGGER.info("Seeded default service hours", extra={"guild_id": guild_id})
        return True

    async def set_enabled(self, guild_id: int, enabled: bool) -> None:
        await self.hours_repo.set_guild_flag(guild_id, enabled)

    async def is_enabled(self, guild_id: int) -> bool:
        return bool(await self.hours_repo.get_guild_flag(guild_id))

    async def add_hours(self, guild_id: int, cron_expression: str, description: str) -> ServiceHoursSchedule:
        cron_expression = " ".join(cron_expression.split())
        if not is_valid_cron(cron_expression):
            raise ValidationError(f"`{cron_expression}` is not a valid cron expression.")
        return await self.hours_repo.add_hours(guild_id, cron_expression, description.strip()[:200])

    async def list_hours(self, guild_id: int) -> list[ServiceHoursSchedule]:
        return await self.hours_repo.list_hours(guild_id)

    async def remove_hours(self, guild_id: int, raw_ids: str) -> int:
        return await self.hours_repo.delete_hours(guild_id, parse_id_list(raw_ids))

    async def toggle_hours(self, guild_id: int, schedule_id: int, enabled: bool) -> None:
        if not await self.hours_repo.toggle_hours(guild_id, schedule_id, enabled):
            raise ValidationError(f"Service hours #{schedule_id} was not found.")

    async def check(self, guild_id: int, now: datetime | None = None) -> ServiceHoursCheck:
        now = now or self.clock.now()
        return ServiceHoursCheck(
            guild_enabled=await self.is_enabled(guild_id),
            within_hours=await self.evaluator.is_within_service_hours(guild_id, now),
            on_holiday=await self.holidays.is_holiday(guild_id, now),
            checked_at=now,
        )

    def _parse_date(self, value: str) -> datetime:
        try:
            day = datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError as exc:
            raise ValidationError(f"`{value}` is not a date in YYYY-MM-DD format.") from exc
        return datetime.combine(day, time.min, tzinfo=self.holidays.timezone)

    async def add_holiday(
        self,
        guild_id: int,
        name: str,
        created_by: int,
        *,
        start: str | None = None,
        end: str | None = None,
        cron_expression: str | None = None,
        reason: str | None = None,
    ) -> Holiday:
        name = name.strip()[:100]
        if not name:
            raise ValidationError("A holiday needs a name.")
        if cron_expression:
            cron_expression = " ".join(cron_expression.split())
            if not is_valid_cron(cron_expression):
                raise ValidationError(f"`{cron_expression}` is not a valid cron expression.")
            return await self.holiday_repo.add_holiday(
                guild_id, name, created_by, reason=reason, cron_expression=cron_expression
            )
        if not start:
            raise ValidationError("Provide either a start date or a cron expression.")
        start_date = self._parse_date(start)
        # End dates are inclusive for admins; stored ranges are half-open.
        end_date = self._parse_date(end) + timedelta(days=1) if end else start_date + timedelta(days=1)
        if end_date <= start_date:
            raise ValidationError("The end date must not be before the start date.")
        return await self.holiday_repo.add_holiday(
            guild_id, name, created_by, reason=reason, start_date=start_date, end_date=end_date
        )

    async def list_holidays(self, guild_id: int) -> list[Holiday]:
        return await self.holiday_repo.list_holidays(guild_id)

    async def toggle_holiday(self, guild_id: int, holiday_id: int, enabled: bool) -> None:
        if not await self.holiday_repo.toggle_holiday(guild_id, holiday_id, enabled):
            raise ValidationError(f"Holiday #{holiday_id} was not found.")

    async def delete_holiday(self, guild_id: int, holiday_id: int) -> None:
        if not await self.holiday_repo.delete_holiday(guild_id, holiday_id):
            raise ValidationError(f"Holiday #{holiday_id} was not found.")
