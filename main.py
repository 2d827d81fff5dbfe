#!/usr/bin/env python3
"""Entry point for Remo Bot.

Initializes the admin and reminder stores, then runs the WhatsApp connection
manager and the status API in one event loop until SIGINT/SIGTERM.
"""

import asyncio
import contextlib
import signal
import sys

import uvicorn

import api_server
from admin import init_admin_system
from config import settings
from connection import ConnectionManager
from crud import init_reminder_system
from logger_config import setup_logger

logger = setup_logger(__name__, 'bot.log')

BANNER = f"""
╔═══════════════════════════════════════╗
║            🤖 {settings.BOT_NAME.upper():<8} BOT             ║
║    WhatsApp Reminder Assistant        ║
╚═══════════════════════════════════════╝"""


async def run_bot() -> None:
    """Start all components and wait for a shutdown signal."""
    logger.info(BANNER)
    logger.info("🔧 Initializing systems...")

    init_admin_system()
    init_reminder_system()

    connection = ConnectionManager(
        on_status_change=lambda status: logger.info(f"Status: {status}"),
    )
    api_server.attach_connection(connection)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(signum):
        logger.info(f"Received signal {signum}, shutting down {settings.BOT_NAME} Bot...")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    bot_task = asyncio.create_task(connection.run())
    tasks = [bot_task]

    server = None
    if settings.API_ENABLED:
        server = uvicorn.Server(uvicorn.Config(
            api_server.app,
            host=settings.API_HOST,
            port=settings.API_PORT,
            log_level="warning",
        ))
        tasks.append(asyncio.create_task(server.serve()))
        logger.info(f"  - Status API: http://{settings.API_HOST}:{settings.API_PORT}")

    logger.info("🚀 Bot startup sequence complete!")
    logger.info(f"⏰ Timezone: {settings.TIMEZONE}")

    stop_task = asyncio.create_task(stop.wait())
    await asyncio.wait([bot_task, stop_task], return_when=asyncio.FIRST_COMPLETED)

    if bot_task.done() and not stop.is_set():
        if bot_task.exception():
            raise bot_task.exception()
        if server is not None:
            logger.warning("Connection manager stopped; status API stays up until shutdown")
            await stop.wait()

    logger.info("👋 Shutting down...")
    await connection.stop()
    if server is not None:
        server.should_exit = True
    await asyncio.gather(*tasks, return_exceptions=True)
    stop_task.cancel()


def main():
    try:
        asyncio.run(run_bot())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"❌ Fatal error during startup: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Bot stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
