"""Unified entry point for the Telegram bot and the admin API.

This script launches both the Telegram bot and the FastAPI admin API
concurrently in one process, sharing a single roster and like store.
It is intended to be executed from the project root, for example in
Docker, where you only specify a single Python file to run.

Configuration such as TELEGRAM_BOT_TOKEN, DATABASE_URL and
ADMIN_API_TOKEN is read from environment variables (see
``amore_api/app/core/config.py``).

Usage:
    python run.py
"""
import asyncio
import logging

from uvicorn import Config, Server

from amore_api.app.core.config import settings
from amore_api.app.core.db import init_db
from amore_api.app.core.logging_config import setup_logging
from amore_api.app.services import set_services
from telegram_amore_bot import TelegramAmoreBot


async def run_admin() -> None:
    """Start the admin API using Uvicorn on ``ADMIN_HOST``:``ADMIN_PORT``."""
    from amore_api.app.main import app as admin_app

    config = Config(app=admin_app, host=settings.admin_host, port=settings.admin_port, reload=False, log_level="info")
    server = Server(config)
    await server.serve()


async def main() -> None:
    """Run both the bot and the admin API concurrently."""
    setup_logging(settings.log_level, settings.log_file or None)
    init_db()
    bot = TelegramAmoreBot()
    # The API serves the same roster the bot keeps up to date.
    set_services(bot.services)
    tasks = [asyncio.create_task(run_admin()), asyncio.create_task(bot.run())]
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    for task in done:
        if exception := task.exception():
            logging.exception("Exception in service", exc_info=exception)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
