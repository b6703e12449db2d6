"""
Hourly forecast series: normalized observation points and helpers shared by
the hazard detector and the plan evaluator.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytz

from ..config import DefaultHazardThresholds

KMH_PER_MS = 3.6

HOUR = timedelta(hours=1)


class MissingValuePolicy(str, Enum):
    """
    How a missing numeric reading is treated in threshold comparisons.

    ZERO: the reading counts as 0 (a missing gust never raises a hazard and
          never fails a ceiling).
    FAIL: a hazard predicate never fires on a missing reading and a plan
          module fails for that hour with an "n/a" reason.
    """
    ZERO = "zero"
    FAIL = "fail"

    @classmethod
    def from_value(cls, value: Any) -> "MissingValuePolicy":
        if isinstance(value, cls):
            return value
        return cls(str(value or "zero").lower())


@dataclass(frozen=True)
class ObservationPoint:
    """One hourly forecast sample in normalized units (UTC time, m/s, mm/h, km)."""
    time: datetime
    temperature_c: Optional[float] = None
    apparent_c: Optional[float] = None
    precip_mmh: Optional[float] = None
    precip_probability: Optional[float] = None
    wind_ms: Optional[float] = None
    gust_ms: Optional[float] = None
    weather_code: Optional[int] = None
    visibility_km: Optional[float] = None

    @property
    def is_thunderstorm(self) -> bool:
        return self.weather_code in DefaultHazardThresholds.THUNDERSTORM_CODES

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "time": isoformat_utc(self.time),
            "temperatureC": self.temperature_c,
            "apparentC": self.apparent_c,
            "precipMm": self.precip_mmh,
            "precipProb": self.precip_probability,
            "windMs": self.wind_ms,
            "gustMs": self.gust_ms,
            "weathercode": self.weather_code,
            "thunderstorm": self.is_thunderstorm,
            "visibilityKm": self.visibility_km,
        }


def isoformat_utc(dt: datetime) -> str:
    """Format an instant as ISO-8601 UTC with a trailing Z."""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_utc_time(value: str) -> datetime:
    """Parse an Open-Meteo time string (naive, already UTC) into an aware datetime."""
    text = value.rstrip("Z")
    for fmt in ("%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            return pytz.UTC.localize(datetime.strptime(text, fmt))
        except ValueError:
            continue
    raise ValueError(f"Unrecognized time format: {value!r}")


def is_number(value: Any) -> bool:
    """True for real ints and floats (bools and NaN excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def _number(values: Sequence[Any], i: int) -> Optional[float]:
    if i < len(values) and is_number(values[i]):
        return float(values[i])
    return None


def parse_hourly_series(data: Dict[str, Any]) -> List[ObservationPoint]:
    """
    Normalize an Open-Meteo ``hourly`` response into observation points.

    Wind speed and gusts arrive in km/h and are converted to m/s, visibility
    arrives in metres and is converted to km. Missing or non-numeric values
    become None. Points are returned in strictly increasing time order;
    a duplicated timestamp keeps the first sample.
    """
    hourly = data.get("hourly") or {}
    times = hourly.get("time") or []
    temp = hourly.get("temperature_2m") or []
    apparent = hourly.get("apparent_temperature") or []
    pop = hourly.get("precipitation_probability") or []
    precip = hourly.get("precipitation") or []
    wind = hourly.get("windspeed_10m") or []
    gust = hourly.get("windgusts_10m") or []
    codes = hourly.get("weathercode") or []
    visibility = hourly.get("visibility") or []

    points: Dict[datetime, ObservationPoint] = {}
    for i, raw_time in enumerate(times):
        time = parse_utc_time(raw_time)
        if time in points:
            continue

        wind_kmh = _number(wind, i)
        gust_kmh = _number(gust, i)
        code = _number(codes, i)
        visibility_m = _number(visibility, i)

        points[time] = ObservationPoint(
            time=time,
            temperature_c=_number(temp, i),
            apparent_c=_number(apparent, i),
            precip_mmh=_number(precip, i),
            precip_probability=_number(pop, i),
            wind_ms=wind_kmh / KMH_PER_MS if wind_kmh is not None else None,
            gust_ms=gust_kmh / KMH_PER_MS if gust_kmh is not None else None,
            weather_code=int(code) if code is not None else None,
            visibility_km=visibility_m / 1000 if visibility_m is not None else None,
        )

    return [points[t] for t in sorted(points)]


def group_intervals(
    points: Sequence[ObservationPoint],
    predicate: Callable[[ObservationPoint], bool]
) -> List[Tuple[int, int]]:
    """
    Find maximal runs of consecutive points satisfying ``predicate``.

    Returns (start, end) index pairs, both inclusive.
    """
    intervals = []
    start = None

    for i, point in enumerate(points):
        ok = predicate(point)
        if ok and start is None:
            start = i
        elif not ok and start is not None:
            intervals.append((start, i - 1))
            start = None

    if start is not None:
        intervals.append((start, len(points) - 1))
    return intervals
