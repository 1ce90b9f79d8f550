from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import discord

from database.models import ReminderMode, ReminderSettings, ResponseTracking
from utils.constants import MODE_LABELS
from utils.time import seconds_between


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def staff_embed(title: str, description: str) -> discord.Embed:
    return make_embed(title=title, description=description, color=discord.Color.gold())


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


def _role_mention(role_id: int | None) -> str:
    return f"<@&{role_id}>" if role_id is not None else "Not set"


def reminder_settings_embed(settings: ReminderSettings, receive_reminders: bool | None = None) -> discord.Embed:
    embed = make_embed(
        "Ticket Reminder Settings",
        "Use the `reminder` subcommands to change these settings.",
        color=discord.Color.blue(),
    )
    mode = ReminderMode(settings.reminder_mode)
    embed.add_field(name="Status", value="✅ Enabled" if settings.enabled else "❌ Disabled", inline=True)
    embed.add_field(name="First reminder after", value=f"{settings.reminder_timeout_seconds // 60} minutes", inline=True)
    embed.add_field(name="Reminder role", value=_role_mention(settings.reminder_role_id), inline=True)
    embed.add_field(name="Mode", value=MODE_LABELS[mode.value], inline=True)
    embed.add_field(
        name="Repeat interval",
        value=f"{settings.reminder_interval_seconds} seconds" if mode is not ReminderMode.ONCE else "N/A",
        inline=True,
    )
    embed.add_field(
        name="Maximum reminders",
        value=str(settings.reminder_max_count) if mode is ReminderMode.LIMITED else "N/A",
        inline=True,
    )
    if receive_reminders is not None:
        embed.add_field(
            name="Your preference",
            value="✅ Receiving reminders" if receive_reminders else "❌ Not receiving reminders",
            inline=False,
        )
    return embed


def reminder_debug_embed(snapshot: dict[str, Any]) -> discord.Embed:
    settings = snapshot["settings"]
    embed = staff_embed("Reminder Debug Information", "Check the bot logs for per-tick details.")
    embed.add_field(
        name="Settings",
        value=(
            f"Enabled: {settings['enabled']}\n"
            f"Timeout: {settings['reminderTimeoutSeconds'] // 60} minutes\n"
            f"Mode: {settings['reminderMode']}\n"
            f"Role: {_role_mention(int(settings['reminderRoleRef']) if settings['reminderRoleRef'] else None)}"
        ),
        inline=False,
    )
    if snapshot.get("roleError"):
        embed.add_field(name="Reminder role error", value=str(snapshot["roleError"])[:1024], inline=False)
    elif snapshot.get("roleMemberCount") is not None:
        embed.add_field(
            name="Reminder role members",
            value=f"{snapshot['roleMemberCount']} members, {snapshot['optedInCount']} opted in",
            inline=False,
        )
    embed.add_field(name="Tracked open tickets", value=str(snapshot["trackedTickets"]), inline=True)
    scheduler = snapshot.get("scheduler")
    if scheduler:
        last_tick = scheduler.get("lastTick") or {}
        embed.add_field(
            name="Scheduler",
            value=(
                f"Running: {scheduler['running']}\n"
                f"Every {scheduler['pollIntervalSeconds']} seconds\n"
                f"Next run: {scheduler['nextIteration'] or 'n/a'}\n"
                f"Last tick sent: {last_tick.get('remindersSent', 'n/a')}"
            ),
            inline=True,
        )
    return embed


def build_reminder_text(
    settings: ReminderSettings,
    ticket_channel_id: int,
    next_state: ResponseTracking,
    now: datetime,
    *,
    mention_channel: bool,
) -> str:
    """Plain message body for a staff reminder. ``mention_channel`` is set when posted outside the ticket."""
    waited = seconds_between(now, next_state.last_customer_message_at or now)
    minutes = max(int(waited // 60), 0)
    subject = f"<#{ticket_channel_id}>" if mention_channel else "This ticket"
    text = (
        f"<@&{settings.reminder_role_id}> ⏰ {subject} has had no staff response "
        f"for **{minutes} minutes**. Please follow up."
    )
    mode = ReminderMode(settings.reminder_mode)
    if mode is not ReminderMode.ONCE:
        suffix = f"reminder #{next_state.reminder_count}"
        if mode is ReminderMode.LIMITED:
            suffix += f" of max {settings.reminder_max_count}"
        text += f" ({suffix})"
    return text
