"""
Hazard notification manager.
Runs the periodic tick (detect, deduplicate, dispatch) and the on-demand evaluation query.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .templates import MessageTemplates
from ..config import Config
from ..database import Database, User, UserLocation, AlertEvent
from ..errors import DeliveryFailure, NotFound, UpstreamUnavailable
from ..weather import Hazard, HazardDetector, MissingValuePolicy, PlanEvaluation, PlanEvaluator
from ..weather.series import isoformat_utc

logger = logging.getLogger(__name__)


def dedupe_key_for_hazard(user_id: int, location_id: int, hazard: Hazard) -> str:
    """Deterministic key of one hazard occurrence for one user and location."""
    return (
        f"hazard:{user_id}:{location_id}:{hazard.type}:"
        f"{isoformat_utc(hazard.start)}:{isoformat_utc(hazard.end)}:{hazard.severity}"
    )


@dataclass
class UserTickResult:
    """Outcome of one user's share of a tick."""
    user_id: int
    location_id: Optional[int] = None
    hazards_detected: int = 0
    hazards_sent: int = 0
    skipped: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TickSummary:
    """Result of one tick over all eligible users."""
    users_processed: int = 0
    hazards_sent: int = 0
    results: List[UserTickResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "usersProcessed": self.users_processed,
            "hazardsSent": self.hazards_sent,
        }


@dataclass
class EvaluationResult:
    """Hazards and plan statuses for a user's active location."""
    location: UserLocation
    hazards: List[Hazard] = field(default_factory=list)
    plans: List[PlanEvaluation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "location": {
                "id": self.location.id,
                "name": self.location.name,
                "lat": self.location.latitude,
                "lon": self.location.longitude,
                "timezone": self.location.timezone,
            },
            "hazards": [h.to_dict() for h in self.hazards],
            "plans": [p.to_dict() for p in self.plans],
        }


class Notifier:
    """
    Manages hazard notifications.

    Tick logic:
    - Only users with hazards enabled and a confirmed active location are checked
    - Each new hazard occurrence is recorded under a dedupe key before sending
    - A recorded key is never notified again, even if delivery failed
    - One user's forecast failure or one message's delivery failure never aborts the tick
    """

    def __init__(
        self,
        db: Database,
        weather,
        channel,
        policy: Optional[MissingValuePolicy] = None,
        concurrency: Optional[int] = None,
        user_timeout: Optional[float] = None,
        tick_timeout: Optional[float] = None
    ):
        """
        Initialize the notifier.

        Args:
            db: Database instance
            weather: Forecast source with ``get_hourly_series(lat, lon)``
            channel: Delivery channel with ``send(chat_id, text)``
            policy: Missing-value policy (defaults to Config)
            concurrency: Users processed in parallel (defaults to Config)
            user_timeout: Per-user forecast fetch deadline in seconds (defaults to Config)
            tick_timeout: Whole-tick deadline in seconds (defaults to Config)
        """
        self.db = db
        self.weather = weather
        self.channel = channel
        policy = MissingValuePolicy.from_value(policy or Config.MISSING_VALUE_POLICY)
        self.detector = HazardDetector(policy)
        self.evaluator = PlanEvaluator(policy)
        self.concurrency = concurrency or Config.TICK_CONCURRENCY
        self.user_timeout = user_timeout or Config.USER_FETCH_TIMEOUT_SECONDS
        self.tick_timeout = tick_timeout or Config.TICK_TIMEOUT_SECONDS

    # =========================================================================
    # Tick
    # =========================================================================

    async def run_tick(self) -> TickSummary:
        """
        Check hazards for all eligible users and send notifications for new ones.

        Returns:
            TickSummary with per-user results
        """
        users = await self.db.list_eligible_users_with_active_location()
        logger.info(f"Starting hazard tick for {len(users)} users")

        summary = TickSummary(users_processed=len(users))
        if not users:
            return summary

        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(user: User) -> UserTickResult:
            async with semaphore:
                return await self._process_user_safely(user)

        tasks = [asyncio.create_task(guarded(user)) for user in users]
        done, pending = await asyncio.wait(tasks, timeout=self.tick_timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.error(f"Tick deadline exceeded, cancelled {len(pending)} users")

        for user, task in zip(users, tasks):
            if task in done:
                result = task.result()
            else:
                result = UserTickResult(user_id=user.id, error="tick deadline exceeded")
            summary.results.append(result)
            summary.hazards_sent += result.hazards_sent

        failed = sum(1 for r in summary.results if not r.ok)
        logger.info(
            f"Hazard tick finished: {summary.users_processed} users, "
            f"{summary.hazards_sent} sent, {failed} failed"
        )
        return summary

    async def _process_user_safely(self, user: User) -> UserTickResult:
        try:
            return await self.process_user(user)
        except Exception as e:
            logger.exception(f"Error processing user {user.id}: {e}")
            return UserTickResult(user_id=user.id, error=str(e) or type(e).__name__)

    async def process_user(self, user: User) -> UserTickResult:
        """
        Run detection and dispatch for one user.

        Args:
            user: User with hazards enabled

        Returns:
            UserTickResult; upstream failures are reported in ``error``
        """
        result = UserTickResult(user_id=user.id)

        location = await self.db.get_active_location(user.id)
        if location is None or location.is_pending:
            result.skipped = "no confirmed active location"
            logger.debug(f"Skipping user {user.id}: {result.skipped}")
            return result
        result.location_id = location.id

        try:
            points = await asyncio.wait_for(
                self.weather.get_hourly_series(location.latitude, location.longitude),
                timeout=self.user_timeout
            )
        except asyncio.TimeoutError:
            result.error = f"forecast fetch timed out after {self.user_timeout:g}s"
            logger.error(f"User {user.id}: {result.error}")
            return result
        except UpstreamUnavailable as e:
            result.error = str(e)
            logger.error(f"User {user.id}: forecast unavailable: {e}")
            return result

        hazards = self.detector.detect(points)
        result.hazards_detected = len(hazards)

        for hazard in hazards:
            try:
                if await self._dispatch(user, location, hazard):
                    result.hazards_sent += 1
            except Exception as e:
                logger.exception(f"User {user.id}: failed to dispatch {hazard.type} hazard: {e}")

        return result

    async def _dispatch(self, user: User, location: UserLocation, hazard: Hazard) -> bool:
        """
        Record a hazard occurrence and notify the user if it is new.

        Returns:
            True if a message was delivered
        """
        event = AlertEvent(
            user_id=user.id,
            location_id=location.id,
            subtype=hazard.type,
            severity=hazard.severity,
            dedupe_key=dedupe_key_for_hazard(user.id, location.id, hazard)
        )
        event.set_payload(hazard.to_dict())

        if not await self.db.upsert_alert_event(event):
            logger.debug(f"Already notified: {event.dedupe_key}")
            return False

        message = MessageTemplates.format_hazard_message(hazard, location)
        try:
            await self.channel.send(user.chat_id, message)
        except DeliveryFailure as e:
            logger.error(f"Failed to send hazard notification: {e}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error sending hazard notification to user {user.id}: {e}")
            return False

        logger.info(f"Sent {hazard.type} ({hazard.severity}) notification to user {user.id}")
        return True

    # =========================================================================
    # Evaluation query
    # =========================================================================

    async def evaluate_for_user(
        self,
        telegram_id: int,
        now: Optional[datetime] = None
    ) -> EvaluationResult:
        """
        Evaluate hazards and enabled plans for the user's active location.

        Raises:
            NotFound: if the user or the active location does not exist
            UpstreamUnavailable: if the forecast cannot be fetched
        """
        user = await self.db.find_user(telegram_id)
        if user is None:
            raise NotFound("User not found")
        if not user.active_location_id:
            raise NotFound("No active location")

        location = await self.db.get_active_location(user.id)
        if location is None:
            raise NotFound("Active location not found")

        points = await self.weather.get_hourly_series(location.latitude, location.longitude)
        hazards = self.detector.detect(points)

        plans = await self.db.list_enabled_plans(user.id)
        evaluations = [self.evaluator.evaluate(plan, points, now) for plan in plans]

        return EvaluationResult(location=location, hazards=hazards, plans=evaluations)
