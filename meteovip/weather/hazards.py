"""
Hazard detection over an hourly forecast series.
Emits independent interval lists for wind gusts, heavy rain, thunderstorms
and extreme temperatures.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config import DefaultHazardThresholds
from .series import MissingValuePolicy, ObservationPoint, group_intervals, isoformat_utc

logger = logging.getLogger(__name__)

WIND_GUST = "WIND_GUST"
HEAVY_RAIN = "HEAVY_RAIN"
THUNDERSTORM = "THUNDERSTORM"
EXTREME_TEMP = "EXTREME_TEMP"

HAZARD_TYPES = (WIND_GUST, HEAVY_RAIN, THUNDERSTORM, EXTREME_TEMP)

WARNING = "warning"
CRITICAL = "critical"


@dataclass(frozen=True)
class Hazard:
    """
    A maximal run of forecast hours satisfying one hazard predicate.

    Attributes:
        type: One of WIND_GUST, HEAVY_RAIN, THUNDERSTORM, EXTREME_TEMP
        severity: "warning" or "critical"
        start: Time of the first qualifying hour
        end: Time of the last qualifying hour (inclusive)
        values: Summary statistics for the run
            Example: {"maxGustMs": 23.0}
    """
    type: str
    severity: str
    start: datetime
    end: datetime
    values: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type,
            "severity": self.severity,
            "from": isoformat_utc(self.start),
            "to": isoformat_utc(self.end),
            "values": dict(self.values),
        }


def _reading(
    point: ObservationPoint,
    attr: str,
    policy: MissingValuePolicy
) -> Optional[float]:
    value = getattr(point, attr)
    if value is None and policy is MissingValuePolicy.ZERO:
        return 0.0
    return value


class HazardDetector:
    """
    Turns an observation sequence into hazard intervals.

    The detector is stateless: the same input always yields the same list.
    Hazard lists of different types may overlap in time; no merge or sort
    across types is applied.
    """

    def __init__(
        self,
        policy: MissingValuePolicy = MissingValuePolicy.ZERO,
        thresholds: type = DefaultHazardThresholds
    ):
        self.policy = MissingValuePolicy.from_value(policy)
        self.thresholds = thresholds

    def detect(self, points: Sequence[ObservationPoint]) -> List[Hazard]:
        """Run every detector and return gust, rain, thunderstorm, then temperature hazards."""
        hazards: List[Hazard] = []
        hazards.extend(self.detect_wind_gusts(points))
        hazards.extend(self.detect_heavy_rain(points))
        hazards.extend(self.detect_thunderstorms(points))
        hazards.extend(self.detect_extreme_temperature(points))
        logger.debug(f"Detected {len(hazards)} hazards over {len(points)} points")
        return hazards

    def _values(self, points: Sequence[ObservationPoint], attr: str) -> Callable[[int, int], List[float]]:
        def values(start: int, end: int) -> List[float]:
            readings = (_reading(p, attr, self.policy) for p in points[start:end + 1])
            return [v for v in readings if v is not None]
        return values

    def detect_wind_gusts(self, points: Sequence[ObservationPoint]) -> List[Hazard]:
        t = self.thresholds

        def gusty(p: ObservationPoint) -> bool:
            gust = _reading(p, "gust_ms", self.policy)
            return gust is not None and gust >= t.GUST_WARNING_MS

        values = self._values(points, "gust_ms")
        hazards = []
        for start, end in group_intervals(points, gusty):
            peak = max(values(start, end))
            severity = CRITICAL if peak >= t.GUST_CRITICAL_MS else WARNING
            hazards.append(Hazard(
                WIND_GUST, severity, points[start].time, points[end].time,
                {"maxGustMs": peak}
            ))
        return hazards

    def detect_heavy_rain(self, points: Sequence[ObservationPoint]) -> List[Hazard]:
        t = self.thresholds

        def rainy(p: ObservationPoint) -> bool:
            rate = _reading(p, "precip_mmh", self.policy)
            return rate is not None and rate >= t.RAIN_WARNING_MMH

        values = self._values(points, "precip_mmh")
        hazards = []
        for start, end in group_intervals(points, rainy):
            peak = max(values(start, end))
            severity = CRITICAL if peak >= t.RAIN_CRITICAL_MMH else WARNING
            hazards.append(Hazard(
                HEAVY_RAIN, severity, points[start].time, points[end].time,
                {"maxMmPerH": peak}
            ))
        return hazards

    def detect_thunderstorms(self, points: Sequence[ObservationPoint]) -> List[Hazard]:
        return [
            Hazard(THUNDERSTORM, WARNING, points[start].time, points[end].time, {})
            for start, end in group_intervals(points, lambda p: p.is_thunderstorm)
        ]

    def detect_extreme_temperature(self, points: Sequence[ObservationPoint]) -> List[Hazard]:
        t = self.thresholds

        def extreme(p: ObservationPoint) -> bool:
            temp = _reading(p, "temperature_c", self.policy)
            if temp is None:
                return False
            return temp <= t.TEMP_EXTREME_LOW_C or temp >= t.TEMP_EXTREME_HIGH_C

        values = self._values(points, "temperature_c")
        hazards = []
        for start, end in group_intervals(points, extreme):
            temps = values(start, end)
            hazards.append(Hazard(
                EXTREME_TEMP, WARNING, points[start].time, points[end].time,
                {"minC": min(temps), "maxC": max(temps)}
            ))
        return hazards

