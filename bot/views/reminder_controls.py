from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, cast

import discord

from utils.constants import NO_RESPONSE_CUSTOM_ID_PREFIX
from utils.embeds import error_embed

if TYPE_CHECKING:
    from core.bot import ReminderBot

LOGGER = logging.getLogger(__name__)


def can_dismiss_reminder(member: discord.Member, reminder_role_id: int | None) -> bool:
    if member.guild_permissions.administrator:
        return True
    return reminder_role_id is not None and any(role.id == reminder_role_id for role in member.roles)


class NoResponseNeededButton(
    discord.ui.DynamicItem[discord.ui.Button],
    template=re.escape(NO_RESPONSE_CUSTOM_ID_PREFIX) + r"(?P<ticket_id>[\w-]+)",
):
    """Persistent button on reminder messages that silences reminders until the customer writes again."""

    def __init__(self, ticket_id: str) -> None:
        super().__init__(
            discord.ui.Button(
                label="No response needed",
                style=discord.ButtonStyle.secondary,
                emoji="✅",
                custom_id=f"{NO_RESPONSE_CUSTOM_ID_PREFIX}{ticket_id}",
            )
        )
        self.ticket_id = ticket_id

    @classmethod
    async def from_custom_id(
        cls,
        interaction: discord.Interaction,
        item: discord.ui.Button,
        match: re.Match[str],
        /,
    ) -> NoResponseNeededButton:
        return cls(match["ticket_id"])

    async def callback(self, interaction: discord.Interaction) -> None:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        bot = cast("ReminderBot", interaction.client)
        settings = await bot.reminder_service.get_settings(interaction.guild.id)
        if not can_dismiss_reminder(interaction.user, settings.reminder_role_id):
            await interaction.response.send_message(
                embed=error_embed("You do not have permission to run this action."),
                ephemeral=True,
            )
            return

        await bot.reminder_service.handle_no_response_needed(self.ticket_id, interaction.user.id)
        done = discord.ui.View(timeout=None)
        done.add_item(
            discord.ui.Button(
                label=f"Marked as no response needed by {interaction.user.display_name}"[:80],
                style=discord.ButtonStyle.success,
                emoji="✅",
                disabled=True,
            )
        )
        await interaction.response.edit_message(view=done)


def build_reminder_view(ticket_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(NoResponseNeededButton(ticket_id))
    return view


def register_reminder_controls(bot: Any) -> None:
    bot.add_dynamic_items(NoResponseNeededButton)
    LOGGER.debug("Registered persistent reminder controls")
