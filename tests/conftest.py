"""
Shared fixtures for MeteoVip tests.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytz

from meteovip.database import Database
from meteovip.errors import DeliveryFailure, UpstreamUnavailable
from meteovip.weather import ObservationPoint


BASE_TIME = datetime(2024, 6, 1, 0, 0, tzinfo=pytz.UTC)


def make_points(count: int, start: datetime = BASE_TIME, **series) -> List[ObservationPoint]:
    """
    Build ``count`` hourly points. Each keyword is a list of per-hour values
    for the matching ObservationPoint field; shorter lists are padded with None.
    """
    points = []
    for i in range(count):
        values = {
            name: (values[i] if i < len(values) else None)
            for name, values in series.items()
        }
        points.append(ObservationPoint(time=start + timedelta(hours=i), **values))
    return points


def calm_points(count: int, start: datetime = BASE_TIME, **overrides) -> List[ObservationPoint]:
    """Hourly points with pleasant weather; per-field lists in ``overrides`` replace defaults."""
    series = {
        "temperature_c": [18.0] * count,
        "precip_mmh": [0.0] * count,
        "wind_ms": [3.0] * count,
        "gust_ms": [5.0] * count,
        "weather_code": [1] * count,
    }
    series.update(overrides)
    return make_points(count, start, **series)


class FakeWeather:
    """Forecast source returning canned series per coordinate pair."""

    def __init__(self, series: Optional[Dict[tuple, List[ObservationPoint]]] = None, default=None):
        self.series = series or {}
        self.default = default if default is not None else []
        self.failing = set()
        self.calls = []

    async def get_hourly_series(self, latitude: float, longitude: float) -> List[ObservationPoint]:
        self.calls.append((latitude, longitude))
        if (latitude, longitude) in self.failing:
            raise UpstreamUnavailable("Open-Meteo error: 503")
        return self.series.get((latitude, longitude), self.default)

    async def resolve_timezone(self, latitude: float, longitude: float) -> str:
        return "Europe/Moscow"


class FakeChannel:
    """Delivery channel recording messages instead of sending them."""

    def __init__(self):
        self.sent = []
        self.failing_chats = set()

    async def send(self, chat_id: int, text: str) -> None:
        if chat_id in self.failing_chats:
            raise DeliveryFailure(f"Failed to send message to chat {chat_id}")
        self.sent.append((chat_id, text))


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database in a temporary directory."""
    database = Database(str(tmp_path / "meteovip.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def weather():
    return FakeWeather()


@pytest.fixture
def channel():
    return FakeChannel()
