from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import (
    HolidayRepository,
    ReminderRepository,
    ServiceHoursRepository,
    TicketRepository,
)
from services.business_hours import BusinessHoursEvaluator, HolidayEvaluator
from services.cache import CacheBackend, build_cache
from services.notifier import DiscordNotifier
from services.reminder_scheduler import ReminderScheduler
from services.reminder_service import ReminderService
from services.response_tracker import ResponseTracker
from services.service_hours import ServiceHoursService
from views.reminder_controls import register_reminder_controls

LOGGER = logging.getLogger(__name__)


class ReminderBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(
                everyone=config.discord.allowed_mentions_everyone,
                roles=True,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None

        # Repositories and services are initialized during setup_hook.
        self.ticket_repo: TicketRepository
        self.service_hours_repo: ServiceHoursRepository
        self.holiday_repo: HolidayRepository
        self.reminder_repo: ReminderRepository

        self.business_hours: BusinessHoursEvaluator
        self.holiday_evaluator: HolidayEvaluator
        self.tracker: ResponseTracker
        self.notifier: DiscordNotifier
        self.scheduler: ReminderScheduler
        self.reminder_service: ReminderService
        self.service_hours_service: ServiceHoursService

    async def setup_hook(self) -> None:
        await self.database.connect()
        await run_migrations(self.database, self.root_dir / "database" / "migrations")
        self.cache = build_cache(self.config.redis)

        self.ticket_repo = TicketRepository(self.database)
        self.service_hours_repo = ServiceHoursRepository(self.database)
        self.holiday_repo = HolidayRepository(self.database)
        self.reminder_repo = ReminderRepository(self.database, self.service_hours_repo)

        self.business_hours = BusinessHoursEvaluator(self.service_hours_repo, self.config.service_hours)
        self.holiday_evaluator = HolidayEvaluator(self.holiday_repo, self.config.service_hours.timezone)
        self.tracker = ResponseTracker(self.reminder_repo)
        self.notifier = DiscordNotifier(self)
        self.scheduler = ReminderScheduler(
            self.reminder_repo,
            self.tracker,
            self.notifier,
            self.business_hours,
            config=self.config.reminder,
            holidays=self.holiday_evaluator if self.config.service_hours.respect_holidays else None,
        )
        self.reminder_service = ReminderService(
            self.reminder_repo,
            self.tracker,
            self.ticket_repo,
            self.cache,
            notifier=self.notifier,
            scheduler=self.scheduler,
            cache_ttl=self.config.redis.default_ttl,
        )
        self.service_hours_service = ServiceHoursService(
            self.service_hours_repo,
            self.holiday_repo,
            self.business_hours,
            self.holiday_evaluator,
            self.config.service_hours,
        )

        register_reminder_controls(self)
        for ext in self.config.enabled_extensions:
            try:
                await self.load_extension(ext)
                LOGGER.info("Loaded extension: %s", ext)
            except commands.ExtensionAlreadyLoaded:
                LOGGER.warning("Extension already loaded: %s", ext)
            except commands.ExtensionError:
                LOGGER.exception("Failed to load extension: %s", ext)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)
        self.scheduler.start()

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        if hasattr(self, "scheduler"):
            self.scheduler.stop()
        await super().close()
        await self.database.close()
        if self.cache:
            await self.cache.close()
