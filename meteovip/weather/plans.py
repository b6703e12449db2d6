"""
Plan evaluation: checks an hourly forecast against a user's activity rules.

A plan is an ordered list of constraint modules. An hour passes the plan when
every module accepts it; the first rejecting module provides the reason.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

import pytz

from ..errors import InvalidInput
from .series import (
    HOUR,
    MissingValuePolicy,
    ObservationPoint,
    group_intervals,
    is_number,
    isoformat_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_WINDOW_MINUTES = 60


def _fmt(value: Any) -> str:
    return f"{value:g}" if is_number(value) else str(value)


# =========================================================================
# Constraint modules
# =========================================================================

@dataclass(frozen=True)
class CeilingModule:
    """Rejects an hour whose reading is above ``max``. A missing ``max`` rejects every hour."""
    TYPE: ClassVar[str] = ""
    LABEL: ClassVar[str] = ""
    ATTR: ClassVar[str] = ""

    max: Any = None

    def check(self, point: ObservationPoint, policy: MissingValuePolicy) -> Optional[str]:
        if not is_number(self.max):
            return f"{self.LABEL}: limit not set"
        value = getattr(point, self.ATTR)
        if value is None:
            if policy is MissingValuePolicy.FAIL:
                return f"{self.LABEL} n/a"
            value = 0.0
        if value > self.max:
            return f"{self.LABEL} {value:.1f}>{_fmt(self.max)}"
        return None

    def to_dict(self) -> dict:
        return {"type": self.TYPE, "max": self.max}


@dataclass(frozen=True)
class WindMaxModule(CeilingModule):
    TYPE: ClassVar[str] = "wind_max_ms"
    LABEL: ClassVar[str] = "wind"
    ATTR: ClassVar[str] = "wind_ms"


@dataclass(frozen=True)
class GustMaxModule(CeilingModule):
    TYPE: ClassVar[str] = "gust_max_ms"
    LABEL: ClassVar[str] = "gust"
    ATTR: ClassVar[str] = "gust_ms"


@dataclass(frozen=True)
class PrecipMaxModule(CeilingModule):
    TYPE: ClassVar[str] = "precip_max_mmh"
    LABEL: ClassVar[str] = "precip"
    ATTR: ClassVar[str] = "precip_mmh"


@dataclass(frozen=True)
class TempRangeModule:
    """Rejects an hour outside [min, max]. Either bound may be omitted."""
    TYPE: ClassVar[str] = "temp_range_c"

    min: Any = None
    max: Any = None

    def check(self, point: ObservationPoint, policy: MissingValuePolicy) -> Optional[str]:
        value = point.temperature_c
        if value is None:
            if policy is MissingValuePolicy.FAIL and (is_number(self.min) or is_number(self.max)):
                return "temp n/a"
            value = 0.0
        if is_number(self.min) and value < self.min:
            return f"temp {value:.1f}<{_fmt(self.min)}"
        if is_number(self.max) and value > self.max:
            return f"temp {value:.1f}>{_fmt(self.max)}"
        return None

    def to_dict(self) -> dict:
        return {"type": self.TYPE, "min": self.min, "max": self.max}


@dataclass(frozen=True)
class NoThunderstormModule:
    TYPE: ClassVar[str] = "no_thunderstorm"

    def check(self, point: ObservationPoint, policy: MissingValuePolicy) -> Optional[str]:
        return "thunderstorm" if point.is_thunderstorm else None

    def to_dict(self) -> dict:
        return {"type": self.TYPE}


PlanModule = Union[WindMaxModule, GustMaxModule, PrecipMaxModule, TempRangeModule, NoThunderstormModule]

MODULE_TYPES: Dict[str, type] = {
    cls.TYPE: cls
    for cls in (WindMaxModule, GustMaxModule, PrecipMaxModule, TempRangeModule, NoThunderstormModule)
}


def parse_module(raw: Any) -> PlanModule:
    """Build a module from its stored dict form. Unknown types raise InvalidInput."""
    if not isinstance(raw, dict):
        raise InvalidInput(f"Plan module must be an object, got {type(raw).__name__}")
    module_type = raw.get("type")
    cls = MODULE_TYPES.get(module_type)
    if cls is None:
        raise InvalidInput(f"Unknown plan module type: {module_type!r}")
    if cls is NoThunderstormModule:
        return cls()
    if cls is TempRangeModule:
        return cls(min=raw.get("min"), max=raw.get("max"))
    return cls(max=raw.get("max"))


def parse_config(config: Any) -> List[PlanModule]:
    """Parse a plan config of the form {"modules": [...]}."""
    if config is None:
        return []
    if not isinstance(config, dict):
        raise InvalidInput("Plan config must be an object with a 'modules' list")
    modules = config.get("modules") or []
    if not isinstance(modules, list):
        raise InvalidInput("Plan config 'modules' must be a list")
    return [parse_module(m) for m in modules]


# =========================================================================
# Templates
# =========================================================================

@dataclass(frozen=True)
class PlanTemplate:
    id: str
    name: str
    min_window_minutes: int
    default_config: Dict[str, Any]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "minWindowMinutes": self.min_window_minutes,
            "defaultConfigJson": copy.deepcopy(self.default_config),
        }


PLAN_TEMPLATES: List[PlanTemplate] = [
    PlanTemplate(
        id="walk_basic",
        name="Прогулка (базовый)",
        min_window_minutes=60,
        default_config={
            "modules": [
                {"type": "wind_max_ms", "max": 8},
                {"type": "gust_max_ms", "max": 12},
                {"type": "precip_max_mmh", "max": 1.5},
                {"type": "temp_range_c", "min": -15, "max": 30},
                {"type": "no_thunderstorm"},
            ]
        },
    ),
]


def get_template(template_id: str) -> Optional[PlanTemplate]:
    """Find a plan template by id."""
    return next((t for t in PLAN_TEMPLATES if t.id == template_id), None)


# =========================================================================
# Evaluation
# =========================================================================

@dataclass
class PlanWindow:
    """A future period where every hour passes the plan."""
    start: datetime
    end: datetime
    duration_minutes: int

    def to_dict(self) -> dict:
        return {
            "from": isoformat_utc(self.start),
            "to": isoformat_utc(self.end),
            "durationMin": self.duration_minutes,
        }


@dataclass
class PlanEvaluation:
    """Result of evaluating one plan against a forecast."""
    plan_id: Optional[int]
    name: str
    status_now: str  # "good" or "bad"
    min_window_minutes: int
    reasons_now: List[str] = field(default_factory=list)
    windows: List[PlanWindow] = field(default_factory=list)

    @property
    def is_good(self) -> bool:
        return self.status_now == "good"

    def to_dict(self) -> dict:
        return {
            "planId": self.plan_id,
            "name": self.name,
            "statusNow": self.status_now,
            "reasonsNow": list(self.reasons_now),
            "minWindowMinutes": self.min_window_minutes,
            "windows": [w.to_dict() for w in self.windows],
        }


class PlanEvaluator:
    """
    Evaluates plans against an hourly series.

    Key rules:
    - An hour passes when every module accepts it (first rejection wins)
    - Windows are maximal runs of passing hours; each hour counts as 60 minutes
    - Windows shorter than the plan's minimum are dropped
    - "Now" is the hour nearest the evaluation instant (first one on ties)
    """

    def __init__(self, policy: MissingValuePolicy = MissingValuePolicy.ZERO):
        self.policy = MissingValuePolicy.from_value(policy)

    def check_point(self, modules: Sequence[PlanModule], point: ObservationPoint) -> Optional[str]:
        """Return the first failing module's reason, or None if the hour passes."""
        for module in modules:
            reason = module.check(point, self.policy)
            if reason is not None:
                return reason
        return None

    def evaluate(
        self,
        plan,
        points: Sequence[ObservationPoint],
        now: Optional[datetime] = None
    ) -> PlanEvaluation:
        """
        Evaluate a plan.

        Args:
            plan: Object with id, name, min_window_minutes and config attributes
            points: Time-ordered observation points
            now: Evaluation instant (defaults to current UTC time)

        Returns:
            PlanEvaluation with status now and qualifying windows
        """
        if now is None:
            now = datetime.now(pytz.UTC)

        modules = parse_config(plan.config)
        min_window = plan.min_window_minutes
        if min_window is None:
            min_window = DEFAULT_MIN_WINDOW_MINUTES

        def passing(p: ObservationPoint) -> bool:
            return self.check_point(modules, p) is None

        windows = []
        for start, end in group_intervals(points, passing):
            span = points[end].time - points[start].time + HOUR
            duration = round(span.total_seconds() / 60)
            if duration >= min_window:
                windows.append(PlanWindow(points[start].time, points[end].time, duration))

        nearest = self._nearest_point(points, now)
        if nearest is None:
            reason = "no data"
        else:
            reason = self.check_point(modules, nearest)

        logger.debug(
            f"Plan {plan.id} evaluated: now={'good' if reason is None else 'bad'}, "
            f"{len(windows)} windows >= {min_window} min"
        )
        return PlanEvaluation(
            plan_id=plan.id,
            name=plan.name,
            status_now="good" if reason is None else "bad",
            reasons_now=[] if reason is None else [reason],
            min_window_minutes=min_window,
            windows=windows,
        )

    @staticmethod
    def _nearest_point(
        points: Sequence[ObservationPoint],
        now: datetime
    ) -> Optional[ObservationPoint]:
        best = None
        best_distance = None
        for point in points:
            distance = abs(point.time - now)
            if best_distance is None or distance < best_distance:
                best, best_distance = point, distance
        return best
