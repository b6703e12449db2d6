"""Database module for MeteoVip."""

from .db import Database
from .models import User, UserLocation, Plan, AlertEvent

__all__ = [
    "Database",
    "User",
    "UserLocation",
    "Plan",
    "AlertEvent",
]
