from __future__ import annotations

import logging
from typing import Literal

import discord
from discord.ext import commands

from core.bot import ReminderBot
from core.errors import ValidationError
from utils.embeds import make_embed, reminder_debug_embed, reminder_settings_embed, success_embed

LOGGER = logging.getLogger(__name__)


def _is_admin(member: discord.Member) -> bool:
    return member.guild_permissions.administrator


class RemindersCog(commands.Cog):
    def __init__(self, bot: ReminderBot) -> None:
        self.bot = bot

    async def _assert_admin(self, ctx: commands.Context[ReminderBot]) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member) or not _is_admin(ctx.author):
            raise commands.CheckFailure("Administrator permission required.")

    async def _sync_reminder_role(self, member: discord.Member, role_id: int, receive: bool) -> str:
        role = member.guild.get_role(role_id)
        if role is None:
            return " The reminder role no longer exists."
        has_role = role in member.roles
        try:
            if receive and not has_role:
                await member.add_roles(role, reason="Opted in to ticket reminders")
                return f" Added {role.mention}."
            if not receive and has_role:
                await member.remove_roles(role, reason="Opted out of ticket reminders")
                return f" Removed {role.mention}."
        except discord.HTTPException as exc:
            LOGGER.warning("Could not update reminder role for %s: %s", member.id, exc)
            return " The reminder role could not be updated automatically."
        return ""

    @commands.hybrid_group(name="reminder", with_app_command=True, description="Ticket response reminders.")
    async def reminder(self, ctx: commands.Context[ReminderBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Reminder Commands",
                    "`/reminder enable` / `/reminder disable`\n"
                    "`/reminder setrole`\n"
                    "`/reminder settimeout`\n"
                    "`/reminder setmode`\n"
                    "`/reminder setinterval`\n"
                    "`/reminder setmaxcount`\n"
                    "`/reminder preference`\n"
                    "`/reminder setstaff`\n"
                    "`/reminder status`\n"
                    "`/reminder debug`",
                ),
                mention_author=False,
            )

    @reminder.command(name="enable", description="Enable response reminders for this server.")
    async def reminder_enable(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        settings = await self.bot.reminder_service.enable(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(
            embed=success_embed(
                f"Reminders enabled. Staff are pinged after {settings.reminder_timeout_seconds // 60} minutes without a response."
            ),
            mention_author=False,
        )

    @reminder.command(name="disable", description="Disable response reminders for this server.")
    async def reminder_disable(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        await self.bot.reminder_service.disable(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed("Reminders disabled."), mention_author=False)

    @reminder.command(name="setrole", description="Set the role mentioned by reminders.")
    async def reminder_setrole(self, ctx: commands.Context[ReminderBot], role: discord.Role) -> None:
        await self._assert_admin(ctx)
        await self.bot.reminder_service.set_role(ctx.guild.id, role.id)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"Reminder role set to {role.mention}."), mention_author=False)

    @reminder.command(name="settimeout", description="Minutes without a staff response before the first reminder.")
    async def reminder_settimeout(self, ctx: commands.Context[ReminderBot], minutes: int) -> None:
        await self._assert_admin(ctx)
        await self.bot.reminder_service.set_timeout_minutes(ctx.guild.id, minutes)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"First reminder after {minutes} minutes."), mention_author=False)

    @reminder.command(name="setmode", description="Choose how often staff are reminded.")
    async def reminder_setmode(
        self,
        ctx: commands.Context[ReminderBot],
        mode: Literal["once", "continuous", "limited"],
    ) -> None:
        await self._assert_admin(ctx)
        settings = await self.bot.reminder_service.set_mode(ctx.guild.id, mode)  # type: ignore[union-attr]
        await ctx.reply(embed=reminder_settings_embed(settings), mention_author=False)

    @reminder.command(name="setinterval", description="Seconds between repeated reminders.")
    async def reminder_setinterval(self, ctx: commands.Context[ReminderBot], seconds: int) -> None:
        await self._assert_admin(ctx)
        await self.bot.reminder_service.set_interval(ctx.guild.id, seconds)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"Repeat reminders every {seconds} seconds."), mention_author=False)

    @reminder.command(name="setmaxcount", description="Maximum reminders per ticket in limited mode.")
    async def reminder_setmaxcount(self, ctx: commands.Context[ReminderBot], count: int) -> None:
        await self._assert_admin(ctx)
        await self.bot.reminder_service.set_max_count(ctx.guild.id, count)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"At most {count} reminders per ticket."), mention_author=False)

    @reminder.command(name="preference", description="Choose whether you receive ticket reminders.")
    async def reminder_preference(self, ctx: commands.Context[ReminderBot], receive: bool) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise commands.NoPrivateMessage()
        settings = await self.bot.reminder_service.get_settings(ctx.guild.id)
        if settings.reminder_role_id is None:
            raise ValidationError("No reminder role is configured yet. Ask an administrator to run `reminder setrole`.")
        await self.bot.reminder_service.set_staff_preference(ctx.author.id, receive)
        note = await self._sync_reminder_role(ctx.author, settings.reminder_role_id, receive)
        state = "now receive" if receive else "no longer receive"
        await ctx.reply(embed=success_embed(f"You will {state} ticket reminders.{note}"), mention_author=False, ephemeral=True)

    @reminder.command(name="setstaff", description="Set the reminder preference of a staff member.")
    async def reminder_setstaff(
        self, ctx: commands.Context[ReminderBot], member: discord.Member, receive: bool
    ) -> None:
        await self._assert_admin(ctx)
        settings = await self.bot.reminder_service.get_settings(ctx.guild.id)  # type: ignore[union-attr]
        if settings.reminder_role_id is None:
            raise ValidationError("No reminder role is configured yet. Ask an administrator to run `reminder setrole`.")
        await self.bot.reminder_service.set_staff_preference(member.id, receive)
        note = await self._sync_reminder_role(member, settings.reminder_role_id, receive)
        state = "will receive" if receive else "will not receive"
        await ctx.reply(embed=success_embed(f"{member.mention} {state} ticket reminders.{note}"), mention_author=False)

    @reminder.command(name="status", description="Show reminder settings and your preference.")
    async def reminder_status(self, ctx: commands.Context[ReminderBot]) -> None:
        if not ctx.guild:
            raise commands.NoPrivateMessage()
        status = await self.bot.reminder_service.status(ctx.guild.id, ctx.author.id)
        await ctx.reply(
            embed=reminder_settings_embed(status.settings, status.receive_reminders),
            mention_author=False,
            ephemeral=True,
        )

    @reminder.command(name="debug", description="Show reminder diagnostics.")
    async def reminder_debug(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        snapshot = await self.bot.reminder_service.debug_snapshot(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(embed=reminder_debug_embed(snapshot), mention_author=False, ephemeral=True)


async def setup(bot: ReminderBot) -> None:
    await bot.add_cog(RemindersCog(bot))
