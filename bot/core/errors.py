from __future__ import annotations

import logging
from dataclasses import dataclass

import discord
from discord import app_commands
from discord.ext import commands

from utils.embeds import error_embed

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class TicketNotFoundError(BotError):
    user_message: str = "The requested ticket could not be found."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


class ReminderError(RuntimeError):
    """Operational failure inside the reminder pipeline. Logged, never shown to customers."""


class ConfigurationError(ReminderError):
    """Reminders are enabled for a guild but a required setting is missing."""


class TransientDeliveryError(ReminderError):
    """A channel, role, member or message could not be reached on the chat platform."""


class PersistenceError(ReminderError):
    """A repository read or write failed."""


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = error_embed(message)
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False, ephemeral=True)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def _unwrap(error: Exception) -> Exception:
    if isinstance(error, (commands.HybridCommandError, commands.CommandInvokeError)):
        return error.original
    if isinstance(error, app_commands.CommandInvokeError):
        return error.original
    return error


def humanize_error(error: Exception) -> str:
    error = _unwrap(error)
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, ReminderError):
        return "The reminder backend is temporarily unavailable. Try again shortly."
    if isinstance(error, (commands.CommandOnCooldown, app_commands.CommandOnCooldown)):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, commands.MissingPermissions):
        return "You are missing required Discord permissions."
    if isinstance(error, (commands.CheckFailure, app_commands.CheckFailure)):
        return "You are not authorized for this command."
    if isinstance(error, commands.BadArgument):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    message = humanize_error(error)
    if isinstance(_unwrap(error), BotError):
        LOGGER.info(
            "Command rejected. command=%s guild=%s user=%s reason=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            message,
        )
    else:
        LOGGER.exception(
            "Command failed. command=%s guild=%s user=%s",
            getattr(ctx.command, "qualified_name", None),
            getattr(ctx.guild, "id", None),
            ctx.author.id,
            exc_info=error,
        )
    await send_error_response(ctx, message)


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    message = humanize_error(error)
    LOGGER.exception(
        "Slash command failed. command=%s guild=%s user=%s",
        getattr(interaction.command, "qualified_name", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
        exc_info=error,
    )
    await send_error_response(interaction, message)
