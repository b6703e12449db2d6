"""
Main entry point for MeteoVip.
Initializes all components and starts the bot, the scheduler and the HTTP server.
"""

import asyncio
import logging
import os
import signal
from pathlib import Path

import toml
from aiohttp import web
from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    filters
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import pytz

from .config import Config, DEFAULT_DATABASE_PATH
from .database import Database
from .weather import OpenMeteoClient
from .notifications import Notifier, TelegramChannel
from .handlers import CommandHandlers
from .web import create_web_app

logger = logging.getLogger(__name__)


class MeteoBot:
    """
    Main bot class that coordinates all components.
    """

    def __init__(self):
        """Initialize the bot."""
        self.db: Database = None
        self.weather: OpenMeteoClient = None
        self.notifier: Notifier = None
        self.scheduler: AsyncIOScheduler = None
        self.application: Application = None
        self.web_runner: web.AppRunner = None
        self._running = False

    async def initialize(self) -> None:
        """
        Initialize all bot components.
        Runtime config is loaded from TOML in DB; if empty, seeded from .env.
        """
        logger.debug("Initializing MeteoVip...")

        db_path = os.getenv("DATABASE_PATH", DEFAULT_DATABASE_PATH)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db = Database(db_path)
        await self.db.connect()

        bot_config_toml = await self.db.get_bot_config()
        if not bot_config_toml or not bot_config_toml.strip():
            # First run: seed from .env and save to DB
            default_config = Config.default_runtime_config()
            await self.db.set_bot_config(toml.dumps(default_config))
            Config.set_runtime_config(default_config)
        else:
            Config.set_runtime_config(toml.loads(bot_config_toml))

        Config.setup_logging()
        errors = Config.validate()
        if errors:
            for error in errors:
                logger.error(f"Config error: {error}")
            raise ValueError("Invalid configuration. Check bot config (TOML in DB) or .env for first run.")

        Config.ensure_data_dir()
        timezone = Config.get_timezone()

        self.weather = OpenMeteoClient(forecast_days=Config.FORECAST_DAYS)

        self.application = (
            Application.builder()
            .token(Config.BOT_TOKEN)
            .build()
        )

        self.notifier = Notifier(
            db=self.db,
            weather=self.weather,
            channel=TelegramChannel(self.application.bot)
        )

        self._setup_handlers()
        self._setup_scheduler(timezone)

        logger.debug("MeteoVip initialized successfully")

    def _setup_handlers(self) -> None:
        """Setup Telegram command handlers."""
        cmd_handlers = CommandHandlers(self.db, self.notifier, self.weather)

        commands = {
            "start": cmd_handlers.start_command,
            "help": cmd_handlers.help_command,
            "me": cmd_handlers.me_command,
            "hazards": cmd_handlers.hazards_command,
            "location": cmd_handlers.location_command,
            "confirm": cmd_handlers.confirm_command,
            "locations": cmd_handlers.locations_command,
            "use": cmd_handlers.use_command,
            "plans": cmd_handlers.plans_command,
            "plan_add": cmd_handlers.plan_add_command,
            "plan_toggle": cmd_handlers.plan_toggle_command,
            "plan_window": cmd_handlers.plan_window_command,
            "plan_delete": cmd_handlers.plan_delete_command,
            "check": cmd_handlers.check_command,
            "tick": cmd_handlers.tick_command,
        }
        for name, callback in commands.items():
            self.application.add_handler(CommandHandler(name, callback))

        self.application.add_handler(
            MessageHandler(filters.LOCATION, cmd_handlers.location_message)
        )

        # Handle unknown commands
        self.application.add_handler(
            MessageHandler(filters.COMMAND, cmd_handlers.unknown_command)
        )

        logger.debug("Command handlers registered")

    def _setup_scheduler(self, timezone: pytz.timezone) -> None:
        """Setup periodic hazard tick and cleanup."""
        self.scheduler = AsyncIOScheduler(timezone=timezone)

        self.scheduler.add_job(
            self._scheduled_tick,
            trigger=IntervalTrigger(minutes=Config.TICK_INTERVAL_MINUTES),
            id="hazard_tick",
            name="Periodic hazard tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        # Add cleanup job (daily at 3 AM)
        self.scheduler.add_job(
            self._scheduled_cleanup,
            trigger="cron",
            hour=3,
            minute=0,
            id="cleanup",
            name="Alert events cleanup",
            replace_existing=True
        )

        logger.debug(
            f"Scheduler configured: hazard tick every {Config.TICK_INTERVAL_MINUTES} minutes"
        )

    async def _scheduled_tick(self) -> None:
        """Scheduled job to run one hazard tick."""
        logger.debug("Running scheduled hazard tick")
        try:
            summary = await self.notifier.run_tick()
            logger.debug(f"Scheduled tick completed: {summary.to_dict()}")
        except Exception as e:
            logger.error(f"Error in scheduled hazard tick: {e}")

    async def _scheduled_cleanup(self) -> None:
        """Scheduled job to clean up old alert events."""
        logger.debug("Running scheduled cleanup")
        try:
            deleted = await self.db.cleanup_old_alert_events(days_to_keep=Config.ALERT_RETENTION_DAYS)
            logger.debug(f"Cleanup completed: {deleted} old alert events deleted")
        except Exception as e:
            logger.error(f"Error in scheduled cleanup: {e}")

    async def _start_web(self) -> None:
        """Start the HTTP server for the tick trigger."""
        self.web_runner = web.AppRunner(create_web_app(self.notifier))
        await self.web_runner.setup()
        site = web.TCPSite(self.web_runner, Config.HTTP_HOST, Config.HTTP_PORT)
        await site.start()
        logger.info(f"HTTP server listening on {Config.HTTP_HOST}:{Config.HTTP_PORT}")

    async def start(self) -> None:
        """Start the bot."""
        if self._running:
            logger.warning("Bot is already running")
            return

        self._running = True
        logger.debug("Starting MeteoVip...")

        self.scheduler.start()
        await self._start_web()

        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(
            allowed_updates=Update.ALL_TYPES
        )

        logger.info("MeteoVip is running")

        # Keep running until stopped
        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        logger.debug("Stopping MeteoVip...")
        self._running = False

        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None

        # Stop bot (updater may already be stopped)
        if self.application:
            try:
                if self.application.updater and self.application.updater.running:
                    await self.application.updater.stop()
                if self.application.running:
                    await self.application.stop()
                await self.application.shutdown()
            except RuntimeError as e:
                logger.debug(f"Application already stopped: {e}")
            self.application = None

        if self.weather:
            await self.weather.close()
            self.weather = None

        if self.db:
            await self.db.close()
            self.db = None

        logger.debug("MeteoVip stopped")


async def main() -> None:
    """Main entry point."""
    bot = MeteoBot()

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.debug("Received shutdown signal")
        bot._running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.initialize()
        await bot.start()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        await bot.stop()


def run() -> None:
    """Run the bot (blocking)."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
