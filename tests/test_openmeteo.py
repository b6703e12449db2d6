"""
Tests for the Open-Meteo client against a local aiohttp server.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from meteovip.errors import UpstreamUnavailable
from meteovip.weather import OpenMeteoClient
from meteovip.weather.openmeteo import HOURLY_FIELDS


FORECAST = {
    "latitude": 55.75,
    "longitude": 37.62,
    "timezone": "GMT",
    "hourly": {
        "time": ["2024-06-01T00:00", "2024-06-01T01:00"],
        "temperature_2m": [15.0, 16.0],
        "apparent_temperature": [14.0, 15.5],
        "precipitation_probability": [10, 20],
        "precipitation": [0.0, 0.2],
        "windspeed_10m": [18.0, 36.0],
        "windgusts_10m": [36.0, 72.0],
        "weathercode": [1, 95],
        "visibility": [20000.0, 10000.0],
    },
}


@pytest.fixture
async def open_meteo():
    """Local stand-in for the forecast endpoint; records query strings."""
    requests = []

    async def forecast(request: web.Request) -> web.Response:
        requests.append(dict(request.query))
        if request.query.get("latitude") == "0.0":
            return web.Response(status=500, text="internal error")
        if request.query.get("timezone") == "auto":
            return web.json_response({"timezone": "Europe/Moscow"})
        return web.json_response(FORECAST)

    app = web.Application()
    app.router.add_get("/v1/forecast", forecast)
    server = TestServer(app)
    await server.start_server()
    client = OpenMeteoClient(forecast_days=2, base_url=str(server.make_url("/v1/forecast")))
    client.requests = requests
    yield client
    await client.close()
    await server.close()


class TestOpenMeteoClient:

    async def test_hourly_series(self, open_meteo):
        points = await open_meteo.get_hourly_series(55.75, 37.62)

        assert len(points) == 2
        assert points[1].gust_ms == pytest.approx(20.0)
        assert points[0].wind_ms == pytest.approx(5.0)
        assert points[1].is_thunderstorm
        assert points[1].visibility_km == pytest.approx(10.0)

        [query] = open_meteo.requests
        assert query["hourly"] == ",".join(HOURLY_FIELDS)
        assert query["forecast_days"] == "2"
        assert query["timezone"] == "UTC"

    async def test_error_status_raises(self, open_meteo):
        with pytest.raises(UpstreamUnavailable):
            await open_meteo.get_hourly_series(0.0, 0.0)

    async def test_resolve_timezone(self, open_meteo):
        assert await open_meteo.resolve_timezone(55.75, 37.62) == "Europe/Moscow"

    async def test_resolve_timezone_falls_back_to_utc(self, open_meteo):
        assert await open_meteo.resolve_timezone(0.0, 0.0) == "UTC"


async def test_unreachable_host():
    client = OpenMeteoClient(base_url="http://127.0.0.1:9/v1/forecast")
    try:
        with pytest.raises(UpstreamUnavailable):
            await client.get_hourly_series(1.0, 2.0)
    finally:
        await client.close()
