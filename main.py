import logging

from telegram.ext import Application, ApplicationBuilder

import config
from bot import monitor_job, register_handlers
from dexscreener import DexScreenerClient
from leaderboard import Leaderboard
from monitor import BuyMonitor
from notifier import BuyNotifier
from snapshot_cache import SnapshotCache
from subscriptions import SubscriptionRegistry
from web import start_web_server

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("main")


async def post_init(app: Application):
    await app.bot_data["notifier"].start()
    app.bot_data["monitor"].start()


async def post_stop(app: Application):
    # bot can still send here; post_shutdown runs after its HTTP client is closed
    app.bot_data["monitor"].stop()
    await app.bot_data["notifier"].stop()


async def post_shutdown(app: Application):
    app.bot_data["client"].close()


def build_application() -> Application:
    app = (
        ApplicationBuilder()
        .token(config.BOT_TOKEN)
        .post_init(post_init)
        .post_stop(post_stop)
        .post_shutdown(post_shutdown)
        .build()
    )

    client = DexScreenerClient(config.DEXSCREENER_API_URL, config.CHAIN_ID, timeout=config.HTTP_TIMEOUT)
    cache = SnapshotCache(
        client,
        ttl_seconds=config.CACHE_TTL_MS / 1000,
        stale_seconds=config.CACHE_STALE_MS / 1000,
    )
    registry = SubscriptionRegistry(config.MIN_BUY_USD)
    board = Leaderboard()
    notifier = BuyNotifier(app.bot, max_queue=config.NOTIFY_QUEUE_SIZE)
    monitor = BuyMonitor(cache, registry, board, notifier, config.MIN_BUY_USD)

    app.bot_data.update(
        chain_id=config.CHAIN_ID,
        leaderboard_size=config.LEADERBOARD_SIZE,
        client=client,
        cache=cache,
        registry=registry,
        leaderboard=board,
        notifier=notifier,
        monitor=monitor,
    )

    register_handlers(app)

    # one batch at a time: overlapping fires are dropped, missed ones coalesced
    app.job_queue.run_repeating(
        monitor_job,
        interval=config.POLL_INTERVAL_MS / 1000,
        first=1,
        name="buy-monitor",
        job_kwargs={"max_instances": 1, "coalesce": True},
    )
    return app


def main():
    config.validate_config()
    logger.info("✅ Configuration validated")

    app = build_application()

    if config.WEB_ENABLED:
        try:
            start_web_server(app.bot_data["monitor"], config.PORT)
        except Exception as e:
            # Don't crash the bot if web server fails
            logger.exception("Failed to start health server: %s", e)

    logger.info("📊 Monitoring %s via %s", config.CHAIN_ID, config.DEXSCREENER_API_URL)
    logger.info("🔔 Minimum buy notification: $%s", config.MIN_BUY_USD)
    logger.info("⏱️ Polling interval: %dms", config.POLL_INTERVAL_MS)
    logger.info("🚀 Buy bot running…")
    app.run_polling()
    logger.info("👋 Buy bot stopped")


if __name__ == "__main__":
    main()
