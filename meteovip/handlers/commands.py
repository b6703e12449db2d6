"""
Telegram bot command handlers.
Handles all bot commands from users.
"""

import logging
from typing import List, Optional

from telegram import Update
from telegram.ext import ContextTypes
from telegram.constants import ParseMode

from ..config import Config
from ..database import Database, User, UserLocation
from ..errors import InvalidInput, MeteoVipError, NotFound, UpstreamUnavailable
from ..notifications import Notifier, MessageTemplates
from ..weather import PLAN_TEMPLATES

logger = logging.getLogger(__name__)


def _parse_float(value: str, name: str) -> float:
    try:
        return float(value.replace(",", "."))
    except ValueError:
        raise InvalidInput(f"{name} must be a number, got {value!r}")


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidInput(f"{name} must be an integer, got {value!r}")


def _parse_coordinates(args: List[str]) -> tuple:
    """Parse "<lat> <lon> [name...]" command arguments."""
    if len(args) < 2:
        raise InvalidInput("Usage: /location <lat> <lon> [name]")
    latitude = _parse_float(args[0], "latitude")
    longitude = _parse_float(args[1], "longitude")
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise InvalidInput("Coordinates are out of range")
    name = " ".join(args[2:]).strip() or None
    return latitude, longitude, name


class CommandHandlers:
    """
    Handles all Telegram bot commands.

    Every command works on the calling user's own data. /tick is restricted
    to global admins (ADMIN_USER_IDS).
    """

    def __init__(self, db: Database, notifier: Notifier, weather):
        """
        Initialize command handlers.

        Args:
            db: Database instance
            notifier: Notifier instance
            weather: Open-Meteo client (used for timezone lookup)
        """
        self.db = db
        self.notifier = notifier
        self.weather = weather

    async def _get_user(self, update: Update) -> User:
        """Get or register the user sending the update."""
        tg_user = update.effective_user
        return await self.db.get_or_create_user(
            telegram_id=tg_user.id,
            username=tg_user.username,
            first_name=tg_user.first_name,
            language_code=tg_user.language_code
        )

    async def _reply(self, update: Update, text: str) -> None:
        await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN_V2)

    async def _reply_error(self, update: Update, error: MeteoVipError) -> None:
        """Send a user-visible error reply."""
        if isinstance(error, NotFound):
            prefix = "🔍 Не найдено"
        elif isinstance(error, InvalidInput):
            prefix = "⚠️ Неверный ввод"
        elif isinstance(error, UpstreamUnavailable):
            prefix = "🌐 Сервис погоды недоступен"
        else:
            prefix = "❌ Ошибка"
        await self._reply(
            update,
            f"{prefix}: {MessageTemplates.escape_markdown(str(error))}"
        )

    async def start_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /start command.
        Sends welcome message and registers the user.
        """
        user = await self._get_user(update)
        message = MessageTemplates.format_welcome_message(
            update.effective_user.first_name or "друг"
        )
        await self._reply(update, message)
        logger.info(f"User {user.telegram_id} started bot")

    async def help_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /help command."""
        await self._reply(update, MessageTemplates.format_help_message())

    async def me_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /me command. Shows user settings and active location."""
        user = await self._get_user(update)
        location = await self.db.get_active_location(user.id)
        await self._reply(update, MessageTemplates.format_user_settings(user, location))

    async def hazards_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /hazards command.
        Usage: /hazards on | /hazards off
        """
        user = await self._get_user(update)
        arg = (context.args[0].lower() if context.args else "")
        if arg not in ("on", "off"):
            await self._reply_error(update, InvalidInput("Usage: /hazards on|off"))
            return

        user = await self.db.update_user(user.telegram_id, {"hazards_enabled": arg == "on"})
        state = "включены ✅" if user.hazards_enabled else "выключены ⏸"
        await self._reply(update, f"🚨 Оповещения об опасностях {MessageTemplates.escape_markdown(state)}")

    async def location_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /location command.
        Usage: /location <lat> <lon> [name]
        Saves a location and makes it active.
        """
        user = await self._get_user(update)
        try:
            latitude, longitude, name = _parse_coordinates(context.args or [])
        except InvalidInput as e:
            await self._reply_error(update, e)
            return

        timezone = await self.weather.resolve_timezone(latitude, longitude)
        location = await self.db.create_location(UserLocation(
            user_id=user.id,
            name=name or f"{latitude:.4f}, {longitude:.4f}",
            latitude=latitude,
            longitude=longitude,
            timezone=timezone
        ))
        await self.db.set_active_location(user.id, location.id)

        await self._reply(
            update,
            f"📍 Локация *{MessageTemplates.escape_markdown(location.name)}* сохранена и выбрана активной\\."
        )

    async def location_message(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle a shared device location.
        Stores it as a pending current location until /confirm.
        """
        user = await self._get_user(update)
        shared = update.message.location
        timezone = await self.weather.resolve_timezone(shared.latitude, shared.longitude)

        await self.db.create_pending_current_location(
            user.id,
            latitude=shared.latitude,
            longitude=shared.longitude,
            name="Текущее место",
            timezone=timezone
        )
        coords = f"{shared.latitude:.4f}, {shared.longitude:.4f}"
        await self._reply(
            update,
            f"📌 Получена геопозиция `{coords}`\\.\n\nПодтвердите её командой /confirm"
        )

    async def confirm_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /confirm command. Applies the pending current location."""
        user = await self._get_user(update)
        try:
            location = await self.db.confirm_pending_location(user.id)
        except NotFound as e:
            await self._reply_error(update, e)
            return

        await self._reply(
            update,
            f"✅ Активная локация: *{MessageTemplates.escape_markdown(location.name)}*"
        )

    async def locations_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /locations command. Lists confirmed locations."""
        user = await self._get_user(update)
        locations = await self.db.list_locations(user.id)
        await self._reply(
            update,
            MessageTemplates.format_location_list(locations, user.active_location_id)
        )

    async def use_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /use command.
        Usage: /use <location_id>
        """
        user = await self._get_user(update)
        try:
            if not context.args:
                raise InvalidInput("Usage: /use <id>")
            location_id = _parse_int(context.args[0], "id")
            location = await self.db.set_active_location(user.id, location_id)
        except (InvalidInput, NotFound) as e:
            await self._reply_error(update, e)
            return

        await self._reply(
            update,
            f"✅ Активная локация: *{MessageTemplates.escape_markdown(location.name)}*"
        )

    async def plans_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /plans command. Lists plans and templates."""
        user = await self._get_user(update)
        plans = await self.db.list_plans(user.id)
        await self._reply(update, MessageTemplates.format_plan_list(plans, PLAN_TEMPLATES))

    async def plan_add_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /plan_add command.
        Usage: /plan_add <template_id> [name]
        """
        user = await self._get_user(update)
        try:
            if not context.args:
                raise InvalidInput("Usage: /plan_add <template> [name]")
            name = " ".join(context.args[1:]).strip() or None
            plan = await self.db.create_plan_from_template(user.id, context.args[0], name)
        except InvalidInput as e:
            await self._reply_error(update, e)
            return

        await self._reply(
            update,
            f"📋 План *{MessageTemplates.escape_markdown(plan.name)}* создан \\(id {plan.id}\\)"
        )

    async def plan_toggle_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /plan_toggle command.
        Usage: /plan_toggle <plan_id>
        """
        user = await self._get_user(update)
        try:
            plan_id = self._plan_id_from_args(context.args)
            plan = await self.db.get_plan(user.id, plan_id)
            if plan is None:
                raise NotFound("Plan not found")
            plan = await self.db.patch_plan(user.id, plan_id, {"enabled": not plan.enabled})
        except (InvalidInput, NotFound) as e:
            await self._reply_error(update, e)
            return

        state = "включён ✅" if plan.enabled else "выключен ⏸"
        await self._reply(
            update,
            f"📋 План *{MessageTemplates.escape_markdown(plan.name)}* {MessageTemplates.escape_markdown(state)}"
        )

    async def plan_window_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /plan_window command.
        Usage: /plan_window <plan_id> <minutes>
        """
        user = await self._get_user(update)
        try:
            if not context.args or len(context.args) < 2:
                raise InvalidInput("Usage: /plan_window <id> <minutes>")
            plan_id = self._plan_id_from_args(context.args)
            minutes = _parse_int(context.args[1], "minutes")
            plan = await self.db.patch_plan(user.id, plan_id, {"min_window_minutes": minutes})
        except (InvalidInput, NotFound) as e:
            await self._reply_error(update, e)
            return

        await self._reply(
            update,
            f"⏱ План *{MessageTemplates.escape_markdown(plan.name)}*: окно от {plan.min_window_minutes} мин"
        )

    async def plan_delete_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /plan_delete command.
        Usage: /plan_delete <plan_id>
        """
        user = await self._get_user(update)
        try:
            plan_id = self._plan_id_from_args(context.args)
            await self.db.delete_plan(user.id, plan_id)
        except (InvalidInput, NotFound) as e:
            await self._reply_error(update, e)
            return

        await self._reply(update, f"🗑 План {plan_id} удалён")

    @staticmethod
    def _plan_id_from_args(args: Optional[List[str]]) -> int:
        if not args:
            raise InvalidInput("Plan id is required")
        return _parse_int(args[0], "id")

    async def check_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /check command.
        Shows hazards and plan statuses for the active location (no notifications).
        """
        user = await self._get_user(update)
        await self._reply(update, "🔄 Проверяю прогноз\\.\\.\\.")

        try:
            result = await self.notifier.evaluate_for_user(user.telegram_id)
        except (NotFound, InvalidInput, UpstreamUnavailable) as e:
            logger.warning(f"Evaluation failed for user {user.telegram_id}: {e}")
            await self._reply_error(update, e)
            return

        message = MessageTemplates.format_evaluation_message(
            result.location, result.hazards, result.plans
        )
        await self._reply(update, message)

    async def tick_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """
        Handle /tick command (admins only).
        Runs one hazard sweep immediately.
        """
        if update.effective_user.id not in Config.ADMIN_USER_IDS:
            await self._reply(update, "⛔ Эта команда доступна только администраторам\\.")
            return

        summary = await self.notifier.run_tick()
        await self._reply(update, MessageTemplates.format_tick_summary(summary))

    async def unknown_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle unknown commands."""
        await self._reply(
            update,
            "❓ Неизвестная команда\\. Используйте /help для списка команд\\."
        )
