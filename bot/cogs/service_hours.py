from __future__ import annotations

import discord
from discord.ext import commands

from core.bot import ReminderBot
from utils.embeds import make_embed, staff_embed, success_embed


def _is_admin(member: discord.Member) -> bool:
    return member.guild_permissions.administrator


class ServiceHoursCog(commands.Cog):
    def __init__(self, bot: ReminderBot) -> None:
        self.bot = bot

    async def _assert_admin(self, ctx: commands.Context[ReminderBot]) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member) or not _is_admin(ctx.author):
            raise commands.CheckFailure("Administrator permission required.")

    @commands.hybrid_group(name="hours", with_app_command=True, description="Service hours that gate reminders.")
    async def hours(self, ctx: commands.Context[ReminderBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Service Hours Commands",
                    "`/hours enable` / `/hours disable`\n"
                    "`/hours add`\n"
                    "`/hours list`\n"
                    "`/hours remove`\n"
                    "`/hours toggle`\n"
                    "`/hours check`",
                ),
                mention_author=False,
            )

    @hours.command(name="enable", description="Only send reminders during service hours.")
    async def hours_enable(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        await self.bot.service_hours_service.set_enabled(ctx.guild.id, True)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed("Service hours gating enabled."), mention_author=False)

    @hours.command(name="disable", description="Send reminders at any time.")
    async def hours_disable(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        await self.bot.service_hours_service.set_enabled(ctx.guild.id, False)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed("Service hours gating disabled."), mention_author=False)

    @hours.command(name="add", description="Add a cron schedule, e.g. `0 9-17 * * 1-5`.")
    async def hours_add(self, ctx: commands.Context[ReminderBot], cron: str, *, description: str = "") -> None:
        await self._assert_admin(ctx)
        schedule = await self.bot.service_hours_service.add_hours(ctx.guild.id, cron, description)  # type: ignore[union-attr]
        await ctx.reply(
            embed=success_embed(f"Service hours #{schedule.id} added: `{schedule.cron_expression}`"),
            mention_author=False,
        )

    @hours.command(name="list", description="List service hour schedules.")
    async def hours_list(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        guild_id = ctx.guild.id  # type: ignore[union-attr]
        schedules = await self.bot.service_hours_service.list_hours(guild_id)
        enabled = await self.bot.service_hours_service.is_enabled(guild_id)
        lines = [
            f"#{row.id} `{row.cron_expression}` {row.description or ''} {'✅' if row.enabled else '❌'}"
            for row in schedules
        ]
        body = "\n".join(lines) if lines else "No schedules configured."
        await ctx.reply(
            embed=make_embed(
                "Service Hours",
                f"Gating: {'enabled' if enabled else 'disabled'}\n"
                f"Timezone: {self.bot.config.service_hours.timezone}\n\n{body}",
            ),
            mention_author=False,
        )

    @hours.command(name="remove", description="Remove schedules by id (comma separated).")
    async def hours_remove(self, ctx: commands.Context[ReminderBot], ids: str) -> None:
        await self._assert_admin(ctx)
        removed = await self.bot.service_hours_service.remove_hours(ctx.guild.id, ids)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"Removed {removed} schedule(s)."), mention_author=False)

    @hours.command(name="toggle", description="Enable or disable one schedule.")
    async def hours_toggle(self, ctx: commands.Context[ReminderBot], schedule_id: int, enabled: bool) -> None:
        await self._assert_admin(ctx)
        await self.bot.service_hours_service.toggle_hours(ctx.guild.id, schedule_id, enabled)  # type: ignore[union-attr]
        state = "enabled" if enabled else "disabled"
        await ctx.reply(embed=success_embed(f"Service hours #{schedule_id} {state}."), mention_author=False)

    @hours.command(name="check", description="Check whether it is currently service time.")
    async def hours_check(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        result = await self.bot.service_hours_service.check(ctx.guild.id)  # type: ignore[union-attr]
        await ctx.reply(
            embed=staff_embed(
                "Service Hours Check",
                f"Checked at: {result.checked_at.isoformat(timespec='seconds')}\n"
                f"Gating enabled: {result.guild_enabled}\n"
                f"Within service hours: {result.within_hours}\n"
                f"Holiday in effect: {result.on_holiday}",
            ),
            mention_author=False,
        )

    @commands.hybrid_group(name="holiday", with_app_command=True, description="Holidays that pause reminders.")
    async def holiday(self, ctx: commands.Context[ReminderBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Holiday Commands",
                    "`/holiday add`\n`/holiday list`\n`/holiday toggle`\n`/holiday delete`",
                ),
                mention_author=False,
            )

    @holiday.command(name="add", description="Add a holiday by date range (YYYY-MM-DD) or cron expression.")
    async def holiday_add(
        self,
        ctx: commands.Context[ReminderBot],
        name: str,
        start: str | None = None,
        end: str | None = None,
        cron: str | None = None,
        reason: str | None = None,
    ) -> None:
        await self._assert_admin(ctx)
        holiday = await self.bot.service_hours_service.add_holiday(
            ctx.guild.id,  # type: ignore[union-attr]
            name,
            ctx.author.id,
            start=start,
            end=end,
            cron_expression=cron,
            reason=reason,
        )
        await ctx.reply(embed=success_embed(f"Holiday #{holiday.id} `{holiday.name}` added."), mention_author=False)

    @holiday.command(name="list", description="List holidays.")
    async def holiday_list(self, ctx: commands.Context[ReminderBot]) -> None:
        await self._assert_admin(ctx)
        holidays = await self.bot.service_hours_service.list_holidays(ctx.guild.id)  # type: ignore[union-attr]
        lines = []
        for row in holidays:
            when = (
                f"`{row.cron_expression}`"
                if row.is_recurring
                else f"{row.start_date:%Y-%m-%d %H:%M} → {row.end_date:%Y-%m-%d %H:%M} UTC"
            )
            lines.append(f"#{row.id} **{row.name}** {when} {'✅' if row.enabled else '❌'}")
        await ctx.reply(
            embed=make_embed("Holidays", "\n".join(lines) if lines else "No holidays configured."),
            mention_author=False,
        )

    @holiday.command(name="toggle", description="Enable or disable a holiday.")
    async def holiday_toggle(self, ctx: commands.Context[ReminderBot], holiday_id: int, enabled: bool) -> None:
        await self._assert_admin(ctx)
        await self.bot.service_hours_service.toggle_holiday(ctx.guild.id, holiday_id, enabled)  # type: ignore[union-attr]
        state = "enabled" if enabled else "disabled"
        await ctx.reply(embed=success_embed(f"Holiday #{holiday_id} {state}."), mention_author=False)

    @holiday.command(name="delete", description="Delete a holiday.")
    async def holiday_delete(self, ctx: commands.Context[ReminderBot], holiday_id: int) -> None:
        await self._assert_admin(ctx)
        await self.bot.service_hours_service.delete_holiday(ctx.guild.id, holiday_id)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"Holiday #{holiday_id} deleted."), mention_author=False)


async def setup(bot: ReminderBot) -> None:
    await bot.add_cog(ServiceHoursCog(bot))
