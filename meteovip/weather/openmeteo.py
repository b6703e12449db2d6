"""
Open-Meteo API client.
Fetches hourly weather forecasts and resolves location timezones.
"""

import asyncio
import aiohttp
import logging
from typing import Optional, List, Dict, Any

from ..errors import UpstreamUnavailable
from .series import ObservationPoint, parse_hourly_series

logger = logging.getLogger(__name__)

HOURLY_FIELDS = [
    "temperature_2m",
    "apparent_temperature",
    "precipitation_probability",
    "precipitation",
    "windspeed_10m",
    "windgusts_10m",
    "weathercode",
    "visibility",
]


class OpenMeteoClient:
    """Client for the Open-Meteo forecast API (no API key required)."""

    BASE_URL = "https://api.open-meteo.com/v1/forecast"

    def __init__(self, forecast_days: int = 2, base_url: Optional[str] = None):
        """
        Initialize Open-Meteo client.

        Args:
            forecast_days: Hourly horizon in days (2 days = 48 hours)
            base_url: Override for the forecast endpoint
        """
        self.forecast_days = forecast_days
        self.base_url = base_url or self.BASE_URL
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=30)
            )
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_hourly_series(
        self,
        latitude: float,
        longitude: float
    ) -> List[ObservationPoint]:
        """
        Get the normalized hourly forecast for a location.

        Args:
            latitude: Location latitude
            longitude: Location longitude

        Returns:
            Time-ordered observation points (wind in m/s)

        Raises:
            UpstreamUnavailable: on any non-success response
        """
        params = {
            "latitude": str(latitude),
            "longitude": str(longitude),
            "hourly": ",".join(HOURLY_FIELDS),
            "forecast_days": str(self.forecast_days),
            "timezone": "UTC",
        }
        data = await self._get_json(params)

        try:
            points = parse_hourly_series(data)
        except (TypeError, ValueError) as e:
            raise UpstreamUnavailable(f"Open-Meteo returned malformed hourly data: {e}") from e

        logger.debug(f"Open-Meteo: {len(points)} hourly points for {latitude},{longitude}")
        return points

    async def resolve_timezone(self, latitude: float, longitude: float) -> str:
        """
        Resolve the IANA timezone for coordinates.

        Returns "UTC" if the lookup fails for any reason.
        """
        params = {
            "latitude": str(latitude),
            "longitude": str(longitude),
            "current": "temperature_2m",
            "timezone": "auto",
        }
        try:
            data = await self._get_json(params)
        except UpstreamUnavailable as e:
            logger.warning(f"Timezone lookup failed, using UTC: {e}")
            return "UTC"
        return data.get("timezone") or "UTC"

    async def _get_json(self, params: Dict[str, str]) -> Dict[str, Any]:
        session = await self._get_session()

        try:
            async with session.get(self.base_url, params=params) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(
                        f"Open-Meteo API error: {response.status} - {error_text}"
                    )
                    raise UpstreamUnavailable(
                        f"Open-Meteo error: {response.status} {error_text}"
                    )
                data = await response.json()

        except aiohttp.ClientError as e:
            logger.error(f"Open-Meteo request failed: {e}")
            raise UpstreamUnavailable(f"Open-Meteo request failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error("Open-Meteo request timed out")
            raise UpstreamUnavailable("Open-Meteo request timed out") from e
        except ValueError as e:
            logger.error(f"Open-Meteo returned invalid JSON: {e}")
            raise UpstreamUnavailable(f"Open-Meteo returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable("Open-Meteo returned a non-object response")
        return data
