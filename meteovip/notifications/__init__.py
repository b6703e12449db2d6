"""Notification module for MeteoVip."""

from .channel import TelegramChannel
from .notifier import Notifier, TickSummary, UserTickResult, EvaluationResult, dedupe_key_for_hazard
from .templates import MessageTemplates

__all__ = [
    "TelegramChannel",
    "Notifier",
    "TickSummary",
    "UserTickResult",
    "EvaluationResult",
    "dedupe_key_for_hazard",
    "MessageTemplates",
]
