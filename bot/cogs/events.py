from __future__ import annotations

import logging
from datetime import datetime

import discord
from discord.ext import commands

from core.bot import ReminderBot
from database.models import Ticket

LOGGER = logging.getLogger(__name__)


def is_staff_member(
    member: discord.Member,
    ticket: Ticket,
    reminder_role_id: int | None,
    staff_role_names: list[str],
) -> bool:
    if ticket.assigned_staff_id is not None and member.id == ticket.assigned_staff_id:
        return True
    if member.guild_permissions.administrator or member.guild_permissions.manage_channels:
        return True
    names = {name.lower() for name in staff_role_names}
    return any(role.id == reminder_role_id or role.name.lower() in names for role in member.roles)


class EventsCog(commands.Cog):
    """Feeds ticket activity into response tracking.

    The ticket subsystem announces lifecycle changes through custom events:
    ``bot.dispatch("ticket_open", ticket)``, ``bot.dispatch("ticket_handoff", ticket_id)``
    and ``bot.dispatch("ticket_close", ticket_id)``.
    """

    def __init__(self, bot: ReminderBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        for guild in self.bot.guilds:
            await self.bot.service_hours_service.seed_defaults(guild.id)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        if await self.bot.service_hours_service.seed_defaults(guild.id):
            LOGGER.info("Bootstrapped service hours for new guild %s", guild.id)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or not message.guild or not isinstance(message.channel, discord.TextChannel):
            return

        ticket = await self.bot.ticket_repo.get_by_channel(message.guild.id, message.channel.id)
        if not ticket or not ticket.human_handled:
            return
        member = message.author if isinstance(message.author, discord.Member) else None
        if not member:
            return

        if member.id == ticket.opener_id:
            await self.bot.reminder_service.handle_customer_message(ticket, message.created_at)
            return
        settings = await self.bot.reminder_service.get_settings(message.guild.id)
        if is_staff_member(member, ticket, settings.reminder_role_id, self.bot.config.reminder.staff_role_names):
            await self.bot.reminder_service.handle_staff_message(ticket, member.id, message.created_at)

    @commands.Cog.listener()
    async def on_ticket_open(self, ticket: Ticket) -> None:
        await self.bot.ticket_repo.upsert(ticket)
        LOGGER.debug("Ticket registered", extra={"guild_id": ticket.guild_id, "ticket_id": ticket.id})

    @commands.Cog.listener()
    async def on_ticket_handoff(self, ticket_id: str, at: datetime | None = None) -> None:
        await self.bot.reminder_service.handle_human_handoff(ticket_id, at)

    @commands.Cog.listener()
    async def on_ticket_close(self, ticket_id: str) -> None:
        await self.bot.reminder_service.handle_ticket_closed(ticket_id)


async def setup(bot: ReminderBot) -> None:
    await bot.add_cog(EventsCog(bot))
