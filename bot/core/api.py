from __future__ import annotations

from typing import Any

from fastapi import Body, FastAPI, Header, HTTPException

from core.bot import ReminderBot
from core.errors import BotError


def _auth(x_api_key: str | None, expected: str) -> None:
    if not expected:
        return
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def create_api_app(bot: ReminderBot) -> FastAPI:
    app = FastAPI(title="Ticket Reminder API", version="1.0.0")

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "database": bot.database.connected,
            "scheduler": bot.scheduler.is_running if hasattr(bot, "scheduler") else False,
        }

    @app.get("/guilds/{guild_id}/reminders")
    async def get_reminders(guild_id: int, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        settings = await bot.reminder_service.get_settings(guild_id)
        return settings.as_dict()

    @app.put("/guilds/{guild_id}/reminders")
    async def put_reminders(
        guild_id: int,
        payload: dict[str, Any] = Body(...),
        x_api_key: str | None = Header(default=None),
    ) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        try:
            settings = await bot.reminder_service.update_settings(guild_id, payload)
        except BotError as exc:
            raise HTTPException(status_code=422, detail=exc.user_message) from exc
        return settings.as_dict()

    @app.get("/guilds/{guild_id}/reminders/debug")
    async def debug_reminders(guild_id: int, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        return await bot.reminder_service.debug_snapshot(guild_id)

    @app.post("/reminders/run")
    async def run_reminders(x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        report = await bot.reminder_service.run_now()
        return {"scope": "all-guilds", **report.as_dict()}

    return app
