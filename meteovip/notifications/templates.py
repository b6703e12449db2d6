"""
Message templates for hazard notifications and bot replies.
Uses MarkdownV2 format for Telegram.
"""

import re
from datetime import datetime
from typing import List, Optional
import pytz

from ..weather.hazards import Hazard, WIND_GUST, HEAVY_RAIN, THUNDERSTORM, EXTREME_TEMP, CRITICAL
from ..weather.plans import PlanEvaluation, PlanTemplate
from ..database.models import User, UserLocation, Plan


class MessageTemplates:
    """
    Message template formatter for Telegram notifications.

    All templates use MarkdownV2 format which requires escaping special characters.
    """

    HAZARD_TITLES = {
        WIND_GUST: "💨 Сильные порывы ветра",
        HEAVY_RAIN: "🌧 Сильный дождь",
        THUNDERSTORM: "⛈ Гроза",
        EXTREME_TEMP: "🌡 Экстремальная температура",
    }

    SEVERITY_NAMES = {
        "warning": "⚠️ предупреждение",
        "critical": "🛑 критический",
    }

    @classmethod
    def escape_markdown(cls, text: str) -> str:
        """
        Escape special characters for MarkdownV2.

        Args:
            text: Raw text to escape

        Returns:
            Escaped text safe for MarkdownV2
        """
        if not text:
            return ""
        return re.sub(r'([_*\[\]()~`>#+=|{}.!-])', r'\\\1', str(text))

    @staticmethod
    def _get_timezone(name: Optional[str]) -> pytz.timezone:
        try:
            return pytz.timezone(name or "UTC")
        except pytz.exceptions.UnknownTimeZoneError:
            return pytz.UTC

    @classmethod
    def _local(cls, dt: datetime, timezone: pytz.timezone, fmt: str = "%d.%m %H:%M") -> str:
        return dt.astimezone(timezone).strftime(fmt)

    @classmethod
    def _hazard_details(cls, hazard: Hazard) -> Optional[str]:
        values = hazard.values
        if hazard.type == WIND_GUST:
            return f"Порывы до {values['maxGustMs']:.1f} м/с"
        if hazard.type == HEAVY_RAIN:
            return f"До {values['maxMmPerH']:.1f} мм/ч"
        if hazard.type == EXTREME_TEMP:
            return f"От {values['minC']:.1f}°C до {values['maxC']:.1f}°C"
        return None

    @classmethod
    def format_hazard_message(cls, hazard: Hazard, location: UserLocation) -> str:
        """
        Format a proactive hazard notification.

        Args:
            hazard: Detected hazard interval
            location: Location the hazard was detected for

        Returns:
            Formatted MarkdownV2 message
        """
        tz = cls._get_timezone(location.timezone)
        icon = "🚨" if hazard.severity == CRITICAL else "⚠️"
        title = cls.HAZARD_TITLES.get(hazard.type, hazard.type)
        severity = cls.SEVERITY_NAMES.get(hazard.severity, hazard.severity)
        period = f"{cls._local(hazard.start, tz)} — {cls._local(hazard.end, tz)}"

        message = f"""{icon} *Опасность: {cls.escape_markdown(title)}*

📍 *Локация:* {cls.escape_markdown(location.name)}
📊 *Уровень:* {cls.escape_markdown(severity)}
⏰ *Период:* {cls.escape_markdown(period)}"""

        details = cls._hazard_details(hazard)
        if details:
            message += f"\n📈 {cls.escape_markdown(details)}"

        message += f"\n\n_Время: {cls.escape_markdown(location.timezone or 'UTC')}_"
        return message

    @classmethod
    def format_evaluation_message(
        cls,
        location: UserLocation,
        hazards: List[Hazard],
        plans: List[PlanEvaluation]
    ) -> str:
        """
        Format the result of an evaluation query (hazards + plan statuses).

        Returns:
            Formatted MarkdownV2 message
        """
        tz = cls._get_timezone(location.timezone)
        now = datetime.now(tz)

        lines = [f"📍 *{cls.escape_markdown(location.name)}*", ""]

        if hazards:
            lines.append("*Опасности:*")
            for hazard in hazards:
                title = cls.HAZARD_TITLES.get(hazard.type, hazard.type)
                period = f"{cls._local(hazard.start, tz)} — {cls._local(hazard.end, tz)}"
                marker = "🚨" if hazard.severity == CRITICAL else "⚠️"
                lines.append(f"{marker} {cls.escape_markdown(title)}: {cls.escape_markdown(period)}")
        else:
            lines.append("✅ Опасных явлений в ближайшие 48 ч не ожидается")
        lines.append("")

        if not plans:
            lines.append("_Нет активных планов\\. Добавьте: /plan\\_add walk\\_basic_")
        for evaluation in plans:
            status = "✅ сейчас подходит" if evaluation.is_good else "❌ сейчас не подходит"
            lines.append(f"*{cls.escape_markdown(evaluation.name)}* — {cls.escape_markdown(status)}")
            for reason in evaluation.reasons_now:
                lines.append(f"   • {cls.escape_markdown(reason)}")
            if evaluation.windows:
                for window in evaluation.windows[:5]:
                    span = (
                        f"{cls._local(window.start, tz)} — {cls._local(window.end, tz, '%H:%M')} "
                        f"({window.duration_minutes // 60} ч)"
                    )
                    lines.append(f"   🕐 {cls.escape_markdown(span)}")
                if len(evaluation.windows) > 5:
                    lines.append(f"   {cls.escape_markdown(f'… и ещё {len(evaluation.windows) - 5}')}")
            else:
                minimum = f"от {evaluation.min_window_minutes} мин"
                lines.append(f"   Подходящих окон {cls.escape_markdown(minimum)} нет")
            lines.append("")

        lines.append(f"_Обновлено: {cls.escape_markdown(now.strftime('%H:%M %d.%m.%Y'))}_")
        return "\n".join(lines)

    @classmethod
    def format_user_settings(cls, user: User, location: Optional[UserLocation]) -> str:
        """Format user settings for /me."""
        hazards = "✅ включены" if user.hazards_enabled else "⏸ выключены"
        location_str = "не выбрана"
        if location:
            location_str = f"{location.name} ({location.latitude:.4f}, {location.longitude:.4f})"

        return f"""👤 *Профиль*

🆔 Telegram ID: `{user.telegram_id}`
🚨 Оповещения об опасностях: {cls.escape_markdown(hazards)}
📍 Активная локация: {cls.escape_markdown(location_str)}"""

    @classmethod
    def format_location_list(
        cls,
        locations: List[UserLocation],
        active_location_id: Optional[int] = None
    ) -> str:
        """
        Format a list of locations.

        Args:
            locations: List of UserLocation objects
            active_location_id: ID of the active location, marked in the list

        Returns:
            Formatted MarkdownV2 message
        """
        if not locations:
            return (
                "📍 *Нет сохранённых локаций*\n\n"
                "Используйте /location \\<широта\\> \\<долгота\\> \\[название\\] "
                "или отправьте геопозицию\\."
            )

        lines = ["📍 *Локации*", ""]
        for loc in locations:
            status = "✅" if loc.id == active_location_id else "▫️"
            coords = f"{loc.latitude:.4f}, {loc.longitude:.4f}"
            lines.append(f"{status} *{loc.id}\\. {cls.escape_markdown(loc.name)}*")
            lines.append(f"   📌 `{coords}` \\({cls.escape_markdown(loc.timezone)}\\)")
        lines.append("")
        lines.append("_Сделать активной: /use \\<id\\>_")
        return "\n".join(lines)

    @classmethod
    def format_plan_list(cls, plans: List[Plan], templates: List[PlanTemplate]) -> str:
        """Format user plans and available templates."""
        lines = ["📋 *Планы*", ""]
        if not plans:
            lines.append("_Планов пока нет_")
        for plan in plans:
            status = "✅" if plan.enabled else "⏸"
            lines.append(
                f"{status} *{plan.id}\\. {cls.escape_markdown(plan.name)}* "
                f"\\(окно от {plan.min_window_minutes} мин\\)"
            )
            for module in plan.config.get("modules", []):
                params = ", ".join(f"{k}={v}" for k, v in module.items() if k != "type")
                text = f"{module.get('type')} {params}".strip()
                lines.append(f"   • `{cls.escape_markdown(text)}`")

        lines.append("")
        lines.append("*Шаблоны:*")
        for template in templates:
            lines.append(f"• `{cls.escape_markdown(template.id)}` — {cls.escape_markdown(template.name)}")
        lines.append("")
        lines.append(
            "_/plan\\_add \\<шаблон\\> \\[название\\], /plan\\_toggle \\<id\\>, "
            "/plan\\_window \\<id\\> \\<мин\\>, /plan\\_delete \\<id\\>_"
        )
        return "\n".join(lines)

    @classmethod
    def format_tick_summary(cls, summary) -> str:
        """Format a tick summary for the /tick admin command."""
        failed = [r for r in summary.results if r.error]
        message = (
            f"📊 *Проверка завершена*\n\n"
            f"👥 Пользователей: {summary.users_processed}\n"
            f"🚨 Отправлено оповещений: {summary.hazards_sent}"
        )
        if failed:
            message += f"\n⚠️ Ошибок: {len(failed)}"
        return message

    @classmethod
    def format_help_message(cls) -> str:
        """Format the help message."""
        return """🌦 *MeteoVip — погодные оповещения*

*Доступные команды:*

/start — Приветствие и начало работы
/help — Показать это сообщение
/me — Профиль и настройки
/hazards on\\|off — Включить или выключить оповещения
/location \\<широта\\> \\<долгота\\> \\[название\\] — Добавить локацию
/locations — Список локаций
/use \\<id\\> — Выбрать активную локацию
/confirm — Подтвердить отправленную геопозицию
/plans — Планы и шаблоны
/plan\\_add \\<шаблон\\> \\[название\\] — Создать план из шаблона
/plan\\_toggle \\<id\\> — Включить или выключить план
/plan\\_window \\<id\\> \\<мин\\> — Минимальная длина окна
/plan\\_delete \\<id\\> — Удалить план
/check — Опасности и статус планов сейчас

*Как это работает:*
1\\. Бот регулярно проверяет почасовой прогноз на 48 часов
2\\. При сильном ветре, ливне, грозе или экстремальной температуре — присылает оповещение
3\\. Каждое опасное явление сообщается один раз

_Данные от Open\\-Meteo_"""

    @classmethod
    def format_welcome_message(cls, user_name: str) -> str:
        """Format the welcome message."""
        return f"""👋 *Привет, {cls.escape_markdown(user_name)}\\!*

Я слежу за прогнозом погоды и предупреждаю об опасных явлениях 🌦

*Начните с:*
• отправьте геопозицию или /location 55\\.75 37\\.62 Москва
• /plan\\_add walk\\_basic — план «Прогулка»
• /check — что с погодой сейчас
• /help — все команды"""
