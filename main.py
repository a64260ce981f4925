"""Entry point for the position keeper bot."""

import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler

import config
from telegram.ext import Application, CommandHandler, MessageHandler, filters

from ai.advisor import PortfolioAdvisor
from bot.handlers import (
    balance_command,
    blacklist_command,
    buyback_command,
    handle_text_menu,
    history_command,
    monitors_command,
    pause_command,
    portfolio_command,
    resume_command,
    sell_command,
    setsl_command,
    start_command,
    status_command,
    track_command,
    trail_command,
    unblacklist_command,
    untrack_command,
    watch_command,
)
from config import APP_LOG_FILE, LOG_DIR, LOG_LEVEL, TELEGRAM_BOT_TOKEN
from monitor.alerter import TelegramNotifier
from monitor.dexscreener import DexScreenerPriceFeed
from trading.commands import PolicyConfigError, TradingCommands
from trading.coordinator import LifecycleCoordinator
from trading.engine import PositionEngine
from trading.scheduler import TickScheduler
from trading.store import PositionStore, StorePersistenceError
from trading.swap_executor import SwapExecutor


def configure_logging() -> None:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = RotatingFileHandler(APP_LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Keep the bot token out of transport logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.INFO)


logger = logging.getLogger(__name__)
RUNTIME_KEY = "runtime"


@dataclass
class Runtime:
    store: PositionStore
    notifier: TelegramNotifier
    price_feed: DexScreenerPriceFeed
    executor: SwapExecutor
    coordinator: LifecycleCoordinator
    engine: PositionEngine
    commands: TradingCommands
    scheduler: TickScheduler


def build_runtime() -> Runtime:
    store = PositionStore(config.DATA_DIR, config.HISTORY_MAX_ENTRIES)
    store.load()
    notifier = TelegramNotifier()
    price_feed = DexScreenerPriceFeed()
    executor = SwapExecutor()
    advisor = PortfolioAdvisor()
    if not advisor.enabled:
        logger.info("ADVISOR_DISABLED reason=no_api_key")
    coordinator = LifecycleCoordinator(store, executor, notifier, advisor=advisor)
    engine = PositionEngine(store, coordinator, price_feed, executor, notifier)
    scheduler = TickScheduler(engine.run_tick, config.MONITOR_INTERVAL_SECONDS, guard=coordinator.busy)
    return Runtime(
        store=store,
        notifier=notifier,
        price_feed=price_feed,
        executor=executor,
        coordinator=coordinator,
        engine=engine,
        commands=TradingCommands(engine),
        scheduler=scheduler,
    )


async def seed_focused_token(runtime: Runtime) -> None:
    if not config.FOCUSED_TOKEN:
        return
    if runtime.store.get_monitor(config.FOCUSED_TOKEN) is not None:
        logger.info("FOCUS_TOKEN_KEPT address=%s", config.FOCUSED_TOKEN)
        return
    try:
        # The first tick performs the entry through normal gating.
        result = await runtime.commands.track_flat(config.FOCUSED_TOKEN, buy=False)
    except (PolicyConfigError, StorePersistenceError) as exc:
        logger.error("FOCUS_TOKEN_SEED_FAILED address=%s err=%s", config.FOCUSED_TOKEN, exc)
        return
    logger.info("FOCUS_TOKEN_SEEDED address=%s symbol=%s", result.monitor.address, result.monitor.symbol)


async def post_init(application: Application) -> None:
    runtime = build_runtime()
    application.bot_data[RUNTIME_KEY] = runtime
    application.bot_data["commands"] = runtime.commands
    runtime.notifier.bind(application.bot)

    await seed_focused_token(runtime)
    runtime.scheduler.start()
    mode = "DRY RUN" if config.DRY_RUN else "LIVE"
    await runtime.notifier.notify(
        f"🤖 <b>Position keeper started</b> ({mode})\n"
        f"Positions: {runtime.store.open_position_count()} | Monitors: {len(runtime.store.active_monitors())}\n"
        f"Tick every {config.MONITOR_INTERVAL_SECONDS:g}s"
    )


async def post_shutdown(application: Application) -> None:
    runtime: Runtime | None = application.bot_data.get(RUNTIME_KEY)
    if runtime is None:
        return
    await runtime.scheduler.stop()
    await runtime.scheduler.wait_idle()
    await runtime.notifier.notify("🛑 <b>Position keeper stopped</b>")
    try:
        runtime.store.save_all()
    except StorePersistenceError:
        logger.exception("SHUTDOWN_SAVE_FAILED")
    await runtime.price_feed.close()
    await runtime.executor.close()


def main() -> None:
    configure_logging()

    if not TELEGRAM_BOT_TOKEN:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")
    if not config.TELEGRAM_CHAT_ID:
        raise RuntimeError("TELEGRAM_CHAT_ID is not set")

    app = Application.builder().token(TELEGRAM_BOT_TOKEN).post_init(post_init).post_shutdown(post_shutdown).build()

    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("status", status_command))
    app.add_handler(CommandHandler("portfolio", portfolio_command))
    app.add_handler(CommandHandler("balance", balance_command))
    app.add_handler(CommandHandler("history", history_command))
    app.add_handler(CommandHandler("monitors", monitors_command))
    app.add_handler(CommandHandler("pause", pause_command))
    app.add_handler(CommandHandler("resume", resume_command))
    app.add_handler(CommandHandler("sell", sell_command))
    app.add_handler(CommandHandler("blacklist", blacklist_command))
    app.add_handler(CommandHandler("unblacklist", unblacklist_command))
    app.add_handler(CommandHandler("track", track_command))
    app.add_handler(CommandHandler("trail", trail_command))
    app.add_handler(CommandHandler("watch", watch_command))
    app.add_handler(CommandHandler("buyback", buyback_command))
    app.add_handler(CommandHandler("setsl", setsl_command))
    app.add_handler(CommandHandler("untrack", untrack_command))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text_menu))

    app.run_polling()


if __name__ == "__main__":
    main()
