
"""
Main - bootstrap logging, verify RPC, run the watcher, bot and health server
"""

import asyncio
import logging
import signal
import sys

from aiohttp import web
from solana.rpc.async_api import AsyncClient

from config import (
    LOG_LEVEL, LOG_FORMAT, LOG_FILE, ERROR_LOG_FILE,
    RPC_HTTP_URL, RPC_WS_URL, PORT, validate_config,
)
from telegram_bot import TelegramBot
from telegram_notifier import TelegramNotifier
from token_enricher import TokenEnricher
from token_watcher import TokenWatcher

logger = logging.getLogger(__name__)


def setup_logging():
    handlers = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    if ERROR_LOG_FILE:
        error_handler = logging.FileHandler(ERROR_LOG_FILE)
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def check_rpc(rpc_url: str = RPC_HTTP_URL) -> bool:
    """getSlot round-trip before anything starts"""
    client = AsyncClient(rpc_url)
    try:
        resp = await client.get_slot()
        logger.info(f"✅ RPC healthy (slot {resp.value}), starting monitoring...")
        return True
    except Exception as e:
        logger.error(f"❌ RPC check failed: {e}")
        return False
    finally:
        await client.close()


async def health_handler(request):
    return web.Response(text="Bot is running", status=200)


async def start_health_server(port: int = PORT):
    app = web.Application()
    app.router.add_get("/", health_handler)
    app.router.add_get("/health", health_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '0.0.0.0', port)
    await site.start()
    logger.info(f"✅ Health server on port {port}")
    return runner


async def run():
    if not await check_rpc():
        return 1

    notifier = TelegramNotifier()
    watcher = TokenWatcher(notifier=notifier, enricher=TokenEnricher())
    bot = TelegramBot(watcher, notifier)
    health_runner = await start_health_server()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows

    watcher.start()
    polling_task = asyncio.create_task(bot.start_polling(), name="telegram-polling")
    logger.info("🚀 Bot started")

    try:
        await stop_event.wait()
        logger.info("Received interrupt signal")
    finally:
        bot.stop()
        polling_task.cancel()
        await asyncio.gather(polling_task, return_exceptions=True)
        await watcher.shutdown()
        await notifier.close()
        await health_runner.cleanup()
    return 0


def main():
    setup_logging()

    missing = validate_config()
    if missing:
        logger.error(f"Missing or invalid settings: {', '.join(missing)}")
        sys.exit(1)

    logger.info(f"RPC websocket: {RPC_WS_URL[:50]}...")
    logger.info(f"RPC http: {RPC_HTTP_URL[:50]}...")

    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")


if __name__ == "__main__":
    main()
