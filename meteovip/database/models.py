"""
Database models for MeteoVip.
These dataclasses represent the structure of data stored in SQLite.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any
import json


@dataclass
class User:
    """
    A Telegram user of the Mini App.

    Attributes:
        telegram_id: Telegram user ID (also the private chat ID for notifications)
        username: Telegram username (optional)
        first_name: Telegram first name (optional)
        language_code: Telegram client language
            Example: "ru"

        # Notification settings
        hazards_enabled: Whether proactive hazard alerts are sent
        summary_enabled: Whether daily summaries are wanted
        presence_mode: How the user's location is tracked
            Example: "manual"
        work_start: Start of working hours (HH:MM)
            Example: "09:00"
        work_end: End of working hours (HH:MM)

        # State
        active_location_id: Location used by default for hazards and plans

        # Metadata
        created_at: When this user was first seen
        updated_at: When settings were last updated
    """
    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    language_code: Optional[str] = None

    hazards_enabled: bool = True
    summary_enabled: bool = False
    presence_mode: str = "manual"
    work_start: Optional[str] = None
    work_end: Optional[str] = None

    active_location_id: Optional[int] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def chat_id(self) -> int:
        """Private chat ID for notifications."""
        return int(self.telegram_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "telegramId": self.telegram_id,
            "username": self.username,
            "firstName": self.first_name,
            "languageCode": self.language_code,
            "presenceMode": self.presence_mode,
            "summaryEnabled": self.summary_enabled,
            "hazardsEnabled": self.hazards_enabled,
            "workStart": self.work_start,
            "workEnd": self.work_end,
            "activeLocationId": self.active_location_id,
        }


@dataclass
class UserLocation:
    """
    A saved location of a user.

    Attributes:
        user_id: Owning user
        name: Display name
            Example: "Москва"
        latitude: Geographic latitude
            Example: 55.75
        longitude: Geographic longitude
            Example: 37.62
        timezone: IANA timezone name, resolved from coordinates
            Example: "Europe/Moscow"
        type: "point" for saved places, "current" for shared device location
        is_pending: True until a shared current location is confirmed
    """
    user_id: int
    name: str
    latitude: float
    longitude: float
    timezone: str = "UTC"
    type: str = "point"
    is_pending: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "lat": self.latitude,
            "lon": self.longitude,
            "timezone": self.timezone,
            "type": self.type,
            "isPending": self.is_pending,
        }


@dataclass
class Plan:
    """
    A user-defined activity rule set.

    Attributes:
        user_id: Owning user
        name: Display name
            Example: "Прогулка (базовый)"
        enabled: Disabled plans are skipped by the evaluation query
        min_window_minutes: Shortest suitable window worth reporting
            Example: 60
        config_json: JSON object {"modules": [...]} with constraint modules
            Example: '{"modules": [{"type": "wind_max_ms", "max": 8}]}'
    """
    user_id: int
    name: str
    enabled: bool = True
    min_window_minutes: int = 60
    config_json: str = '{"modules": []}'

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def config(self) -> Dict[str, Any]:
        """Parse plan config from JSON string."""
        try:
            return json.loads(self.config_json)
        except json.JSONDecodeError:
            return {"modules": []}

    @config.setter
    def config(self, value: Dict[str, Any]) -> None:
        self.config_json = json.dumps(value, ensure_ascii=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "minWindowMinutes": self.min_window_minutes,
            "configJson": self.config,
        }


@dataclass
class AlertEvent:
    """
    Record of a hazard occurrence that has already been notified.

    The dedupe_key is unique across the store; inserting an existing key is
    a no-op, which is what prevents repeat notifications.

    Attributes:
        user_id: Notified user
        location_id: Location the hazard was detected for
        kind: Event kind
            Example: "hazard"
        subtype: Hazard type
            Example: "WIND_GUST"
        severity: "warning" or "critical"
        dedupe_key: Deterministic key of the hazard occurrence
        payload_json: JSON of the hazard as detected
    """
    user_id: int
    location_id: int
    subtype: str
    severity: str
    dedupe_key: str
    kind: str = "hazard"
    payload_json: str = "{}"

    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def get_payload(self) -> Dict[str, Any]:
        """Parse payload from JSON string."""
        try:
            return json.loads(self.payload_json)
        except json.JSONDecodeError:
            return {}

    def set_payload(self, payload: Dict[str, Any]) -> None:
        """Set payload as JSON."""
        self.payload_json = json.dumps(payload, ensure_ascii=False, default=str)
