"""
Tests for hazard detection.
"""

from datetime import timedelta

import pytest

from meteovip.weather import group_intervals, HazardDetector
from meteovip.weather.hazards import (
    CRITICAL,
    EXTREME_TEMP,
    HEAVY_RAIN,
    THUNDERSTORM,
    WARNING,
    WIND_GUST,
)
from meteovip.weather.series import MissingValuePolicy

from conftest import BASE_TIME, calm_points, make_points


# =============================================================================
# group_intervals
# =============================================================================

class TestGroupIntervals:

    def test_runs_are_inclusive_and_maximal(self):
        flags = [False, True, True, False, True]
        points = make_points(len(flags))

        intervals = group_intervals(points, lambda p: flags[points.index(p)])

        assert intervals == [(1, 2), (4, 4)]

    def test_no_matches(self):
        assert group_intervals(make_points(3), lambda p: False) == []

    def test_empty_input(self):
        assert group_intervals([], lambda p: True) == []

    def test_whole_series(self):
        assert group_intervals(make_points(4), lambda p: True) == [(0, 3)]


# =============================================================================
# Detectors
# =============================================================================

class TestWindGusts:

    def test_single_critical_interval(self):
        points = calm_points(5, gust_ms=[5.0, 18.0, 23.0, 19.0, 5.0])

        hazards = HazardDetector().detect_wind_gusts(points)

        assert len(hazards) == 1
        hazard = hazards[0]
        assert hazard.type == WIND_GUST
        assert hazard.severity == CRITICAL
        assert hazard.values == {"maxGustMs": 23.0}
        assert hazard.start == BASE_TIME + timedelta(hours=1)
        assert hazard.end == BASE_TIME + timedelta(hours=3)

    def test_warning_below_critical(self):
        points = calm_points(3, gust_ms=[17.0, 21.9, 5.0])

        [hazard] = HazardDetector().detect_wind_gusts(points)

        assert hazard.severity == WARNING
        assert hazard.values["maxGustMs"] == 21.9

    def test_threshold_is_inclusive(self):
        points = calm_points(1, gust_ms=[17.0])
        assert len(HazardDetector().detect_wind_gusts(points)) == 1

    def test_missing_gust_never_fires(self):
        points = make_points(3, gust_ms=[None, None, None])

        assert HazardDetector(MissingValuePolicy.ZERO).detect_wind_gusts(points) == []
        assert HazardDetector(MissingValuePolicy.FAIL).detect_wind_gusts(points) == []

    def test_missing_gust_splits_interval(self):
        points = make_points(3, gust_ms=[20.0, None, 20.0])

        hazards = HazardDetector().detect_wind_gusts(points)

        assert len(hazards) == 2


class TestHeavyRain:

    def test_critical_rain(self):
        points = calm_points(4, precip_mmh=[0.0, 6.0, 12.5, 0.0])

        [hazard] = HazardDetector().detect_heavy_rain(points)

        assert hazard.type == HEAVY_RAIN
        assert hazard.severity == CRITICAL
        assert hazard.values == {"maxMmPerH": 12.5}

    def test_warning_rain(self):
        points = calm_points(2, precip_mmh=[5.0, 9.9])

        [hazard] = HazardDetector().detect_heavy_rain(points)

        assert hazard.severity == WARNING


class TestThunderstorm:

    def test_thunderstorm_intervals(self):
        points = calm_points(5, weather_code=[95, 99, 3, 1, 96])

        hazards = HazardDetector().detect_thunderstorms(points)

        assert [(h.type, h.severity) for h in hazards] == [(THUNDERSTORM, WARNING)] * 2
        assert hazards[0].end == BASE_TIME + timedelta(hours=1)
        assert hazards[1].start == hazards[1].end == BASE_TIME + timedelta(hours=4)
        assert hazards[0].values == {}


class TestExtremeTemperature:

    def test_heat(self):
        points = calm_points(3, temperature_c=[34.0, 35.0, 37.5])

        [hazard] = HazardDetector().detect_extreme_temperature(points)

        assert hazard.type == EXTREME_TEMP
        assert hazard.severity == WARNING
        assert hazard.values == {"minC": 35.0, "maxC": 37.5}

    def test_frost(self):
        points = calm_points(2, temperature_c=[-20.0, -25.0])

        [hazard] = HazardDetector().detect_extreme_temperature(points)

        assert hazard.values == {"minC": -25.0, "maxC": -20.0}


# =============================================================================
# Full detection
# =============================================================================

class TestDetect:

    def test_types_may_overlap(self):
        points = calm_points(
            3,
            gust_ms=[20.0, 20.0, 5.0],
            weather_code=[95, 95, 1],
            precip_mmh=[7.0, 0.0, 0.0],
        )

        hazards = HazardDetector().detect(points)

        assert [h.type for h in hazards] == [WIND_GUST, HEAVY_RAIN, THUNDERSTORM]

    def test_deterministic(self):
        points = calm_points(6, gust_ms=[20.0, 25.0, 5.0, 5.0, 18.0, 5.0])
        detector = HazardDetector()

        assert detector.detect(points) == detector.detect(points)

    def test_calm_weather(self):
        assert HazardDetector().detect(calm_points(48)) == []

    def test_to_dict(self):
        points = calm_points(2, gust_ms=[23.0, 5.0])

        [hazard] = HazardDetector().detect(points)

        assert hazard.to_dict() == {
            "type": WIND_GUST,
            "severity": CRITICAL,
            "from": "2024-06-01T00:00:00Z",
            "to": "2024-06-01T00:00:00Z",
            "values": {"maxGustMs": 23.0},
        }


@pytest.mark.parametrize("policy", [MissingValuePolicy.ZERO, MissingValuePolicy.FAIL])
def test_missing_temperature_is_not_extreme(policy):
    points = make_points(2, temperature_c=[None, None])
    assert HazardDetector(policy).detect_extreme_temperature(points) == []
