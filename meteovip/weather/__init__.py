"""Weather API client and forecast evaluation module."""

from .openmeteo import OpenMeteoClient
from .series import ObservationPoint, MissingValuePolicy, parse_hourly_series, group_intervals
from .hazards import Hazard, HazardDetector
from .plans import PlanEvaluator, PlanEvaluation, PlanWindow, PLAN_TEMPLATES, get_template, parse_config

__all__ = [
    "OpenMeteoClient",
    "ObservationPoint",
    "MissingValuePolicy",
    "parse_hourly_series",
    "group_intervals",
    "Hazard",
    "HazardDetector",
    "PlanEvaluator",
    "PlanEvaluation",
    "PlanWindow",
    "PLAN_TEMPLATES",
    "get_template",
    "parse_config",
]
