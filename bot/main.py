from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.bot import ReminderBot
from core.config import AppConfig, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger("main")


def _api_server(bot: ReminderBot, config: AppConfig) -> uvicorn.Server:
    return uvicorn.Server(
        uvicorn.Config(
            app=create_api_app(bot),
            host=config.fastapi.host,
            port=config.fastapi.port,
            log_level=config.logging.level.lower(),
            log_config=None,
        )
    )


async def run(config: AppConfig) -> None:
    async with ReminderBot(config=config) as bot:
        server = _api_server(bot, config) if config.fastapi.enabled else None
        api_task = asyncio.create_task(server.serve()) if server else None
        try:
            await bot.start(config.discord.token)
        finally:
            if server and api_task:
                server.should_exit = True
                await asyncio.gather(api_task, return_exceptions=True)


def main() -> None:
    root = Path(__file__).resolve().parent
    config_path = Path(os.getenv("BOT_CONFIG", root / "config" / "config.yaml"))
    config = load_config(config_path)
    configure_logging(config.logging)
    LOGGER.info("Starting reminder bot with %s", config_path)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested")


if __name__ == "__main__":
    main()
