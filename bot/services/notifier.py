from __future__ import annotations

import logging
from typing import Protocol

import discord
from discord.ext import commands

from core.errors import TransientDeliveryError
from views.reminder_controls import build_reminder_view

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_reminder(
        self,
        channel_id: int,
        role_id: int,
        text: str,
        escalation_count: int | None = None,
        *,
        ticket_id: str,
    ) -> str: ...

    async def suppress_controls(self, message_ref: str) -> None: ...

    async def resolve_role_members(self, guild_id: int, role_id: int) -> list[int]: ...


def format_message_ref(channel_id: int, message_id: int) -> str:
    return f"{channel_id}:{message_id}"


def parse_message_ref(message_ref: str) -> tuple[int, int]:
    channel_part, sep, message_part = message_ref.partition(":")
    if not sep or not channel_part.isdigit() or not message_part.isdigit():
        raise ValueError(f"Malformed message reference: {message_ref!r}")
    return int(channel_part), int(message_part)


class DiscordNotifier(Notifier):
    """Delivers reminders as channel messages carrying the "no response needed" button."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _resolve_channel(self, channel_id: int) -> discord.TextChannel | discord.Thread:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except discord.HTTPException as exc:
                raise TransientDeliveryError(f"Channel {channel_id} is unavailable: {exc}") from exc
        if not isinstance(channel, (discord.TextChannel, discord.Thread)):
            raise TransientDeliveryError(f"Channel {channel_id} cannot receive reminders")
        return channel

    async def send_reminder(
        self,
        channel_id: int,
        role_id: int,
        text: str,
        escalation_count: int | None = None,
        *,
        ticket_id: str,
    ) -> str:
        channel = await self._resolve_channel(channel_id)
        try:
            message = await channel.send(
                content=text,
                view=build_reminder_view(ticket_id),
                allowed_mentions=discord.AllowedMentions(
                    everyone=False, users=False, roles=[discord.Object(id=role_id)]
                ),
            )
        except discord.HTTPException as exc:
            raise TransientDeliveryError(f"Could not send reminder to channel {channel_id}: {exc}") from exc
        LOGGER.debug(
            "Reminder message %s posted in channel %s (escalation=%s)",
            message.id,
            channel_id,
            escalation_count,
            extra={"ticket_id": ticket_id},
        )
        return format_message_ref(channel.id, message.id)

    async def suppress_controls(self, message_ref: str) -> None:
        try:
            channel_id, message_id = parse_message_ref(message_ref)
        except ValueError as exc:
            raise TransientDeliveryError(str(exc)) from exc
        channel = await self._resolve_channel(channel_id)
        try:
            await channel.get_partial_message(message_id).edit(view=None)
        except discord.NotFound:
            LOGGER.debug("Previous reminder %s is already gone", message_ref)
        except discord.HTTPException as exc:
            raise TransientDeliveryError(f"Could not clear controls on {message_ref}: {exc}") from exc

    async def resolve_role_members(self, guild_id: int, role_id: int) -> list[int]:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise TransientDeliveryError(f"Guild {guild_id} is not available")
        role = guild.get_role(role_id)
        if role is None:
            raise TransientDeliveryError(f"Role {role_id} was not found in guild {guild_id}")
        return [member.id for member in role.members]
