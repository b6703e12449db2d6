"""
Tests for the hazard tick and the evaluation query.
"""

import asyncio

import pytest

from meteovip.database import UserLocation
from meteovip.errors import NotFound, UpstreamUnavailable
from meteovip.notifications import Notifier, dedupe_key_for_hazard
from meteovip.weather.hazards import CRITICAL, HEAVY_RAIN, WIND_GUST, Hazard
from meteovip.weather.series import MissingValuePolicy

from conftest import BASE_TIME, FakeChannel, FakeWeather, calm_points


MOSCOW = (55.75, 37.62)
PITER = (59.94, 30.31)


def gusty_series():
    """48 hours with critical gusts at hours 3-5."""
    gusts = [5.0] * 48
    gusts[3:6] = [20.0, 23.0, 19.0]
    return calm_points(48, gust_ms=gusts)


async def _eligible_user(db, telegram_id, coords=MOSCOW, name="Москва"):
    user = await db.get_or_create_user(telegram_id, first_name="Test")
    location = await db.create_location(UserLocation(
        user_id=user.id, name=name, latitude=coords[0], longitude=coords[1], timezone="Europe/Moscow"
    ))
    await db.set_active_location(user.id, location.id)
    return user, location


def _notifier(db, weather, channel, **kwargs):
    kwargs.setdefault("policy", MissingValuePolicy.ZERO)
    kwargs.setdefault("concurrency", 2)
    kwargs.setdefault("user_timeout", 5)
    kwargs.setdefault("tick_timeout", 10)
    return Notifier(db, weather, channel, **kwargs)


# =============================================================================
# Tick
# =============================================================================

class TestRunTick:

    async def test_end_to_end_dedup(self, db, channel):
        user, location = await _eligible_user(db, 1001)
        weather = FakeWeather({MOSCOW: gusty_series()})
        notifier = _notifier(db, weather, channel)

        first = await notifier.run_tick()
        second = await notifier.run_tick()

        assert first.to_dict() == {"usersProcessed": 1, "hazardsSent": 1}
        assert second.to_dict() == {"usersProcessed": 1, "hazardsSent": 0}
        assert await db.count_alert_events() == 1
        assert len(channel.sent) == 1
        chat_id, text = channel.sent[0]
        assert chat_id == 1001
        assert "Москва" in text

        [event] = await db.get_alert_events(user.id)
        assert event.subtype == WIND_GUST
        assert event.severity == CRITICAL
        assert event.dedupe_key == (
            f"hazard:{user.id}:{location.id}:WIND_GUST:"
            "2024-06-01T03:00:00Z:2024-06-01T05:00:00Z:critical"
        )
        assert event.get_payload()["values"] == {"maxGustMs": 23.0}

    async def test_upstream_failure_is_isolated(self, db, channel):
        await _eligible_user(db, 1001, MOSCOW)
        await _eligible_user(db, 2002, PITER, "Питер")
        weather = FakeWeather({MOSCOW: gusty_series(), PITER: gusty_series()})
        weather.failing.add(MOSCOW)

        summary = await _notifier(db, weather, channel).run_tick()

        assert summary.users_processed == 2
        assert summary.hazards_sent == 1
        errors = [r for r in summary.results if not r.ok]
        assert len(errors) == 1
        assert "503" in errors[0].error
        assert [chat for chat, _ in channel.sent] == [2002]

    async def test_delivery_failure_still_recorded(self, db, channel):
        await _eligible_user(db, 1001)
        channel.failing_chats.add(1001)
        notifier = _notifier(db, FakeWeather({MOSCOW: gusty_series()}), channel)

        first = await notifier.run_tick()
        channel.failing_chats.clear()
        second = await notifier.run_tick()

        assert first.hazards_sent == 0
        assert second.hazards_sent == 0
        assert await db.count_alert_events() == 1
        assert channel.sent == []

    async def test_disabled_user_not_processed(self, db, channel):
        user, _ = await _eligible_user(db, 1001)
        await db.update_user(user.telegram_id, {"hazards_enabled": False})
        weather = FakeWeather({MOSCOW: gusty_series()})

        summary = await _notifier(db, weather, channel).run_tick()

        assert summary.users_processed == 0
        assert weather.calls == []

    async def test_pending_active_location_skipped(self, db, channel):
        user, _ = await _eligible_user(db, 1001)
        pending = await db.create_pending_current_location(user.id, *PITER, "Current")
        # Simulates a store where the active pointer ends up on an unconfirmed record
        async with db._connection.cursor() as cursor:
            await cursor.execute(
                "UPDATE users SET active_location_id = ? WHERE id = ?", (pending.id, user.id)
            )
            await db._connection.commit()
        weather = FakeWeather({PITER: gusty_series()})

        summary = await _notifier(db, weather, channel).run_tick()

        assert summary.hazards_sent == 0
        assert summary.results[0].skipped
        assert weather.calls == []

    async def test_calm_weather_sends_nothing(self, db, channel):
        await _eligible_user(db, 1001)

        summary = await _notifier(db, FakeWeather(default=calm_points(48)), channel).run_tick()

        assert summary.to_dict() == {"usersProcessed": 1, "hazardsSent": 0}
        assert summary.results[0].hazards_detected == 0

    async def test_slow_forecast_times_out(self, db, channel):
        await _eligible_user(db, 1001)

        class SlowWeather(FakeWeather):
            async def get_hourly_series(self, latitude, longitude):
                await asyncio.sleep(5)
                return []

        notifier = _notifier(db, SlowWeather(), channel, user_timeout=0.05)
        summary = await notifier.run_tick()

        assert "timed out" in summary.results[0].error

    async def test_tick_deadline_cancels_pending_users(self, db, channel):
        await _eligible_user(db, 1001, MOSCOW)
        await _eligible_user(db, 2002, PITER, "Питер")

        class StuckWeather(FakeWeather):
            async def get_hourly_series(self, latitude, longitude):
                if (latitude, longitude) == MOSCOW:
                    await asyncio.sleep(5)
                return gusty_series()

        notifier = _notifier(db, StuckWeather(), channel, user_timeout=10, tick_timeout=0.2)
        summary = await notifier.run_tick()

        by_user = {r.user_id: r for r in summary.results}
        assert summary.users_processed == 2
        assert [r.error for r in summary.results].count("tick deadline exceeded") == 1
        assert summary.hazards_sent == 1
        assert [chat for chat, _ in channel.sent] == [2002]
        assert len(by_user) == 2

    async def test_failed_hazard_does_not_block_next(self, db):
        user, _ = await _eligible_user(db, 1001)
        gusts = [5.0] * 24
        gusts[3:6] = [20.0, 23.0, 19.0]
        rain = [0.0] * 24
        rain[10:12] = [6.0, 7.0]
        weather = FakeWeather({MOSCOW: calm_points(24, gust_ms=gusts, precip_mmh=rain)})

        class FlakyChannel(FakeChannel):
            async def send(self, chat_id, text):
                if not self.failed_once:
                    self.failed_once = True
                    raise ConnectionError("socket reset")
                await super().send(chat_id, text)

        channel = FlakyChannel()
        channel.failed_once = False

        summary = await _notifier(db, weather, channel).run_tick()

        [result] = summary.results
        assert result.ok
        assert result.hazards_detected == 2
        assert result.hazards_sent == 1
        assert summary.hazards_sent == 1
        assert len(channel.sent) == 1
        assert await db.count_alert_events() == 2
        assert [e.subtype for e in await db.get_alert_events(user.id)].count(HEAVY_RAIN) == 1

    async def test_dispatch_error_keeps_partial_counts(self, db, channel, monkeypatch):
        await _eligible_user(db, 1001)
        gusts = [5.0] * 24
        gusts[3:6] = [20.0, 23.0, 19.0]
        rain = [0.0] * 24
        rain[10:12] = [6.0, 7.0]
        notifier = _notifier(db, FakeWeather({MOSCOW: calm_points(24, gust_ms=gusts, precip_mmh=rain)}), channel)
        original = db.upsert_alert_event

        async def upsert(event):
            if event.subtype == HEAVY_RAIN:
                raise RuntimeError("database is locked")
            return await original(event)

        monkeypatch.setattr(db, "upsert_alert_event", upsert)

        summary = await notifier.run_tick()

        [result] = summary.results
        assert result.ok
        assert result.location_id is not None
        assert result.hazards_detected == 2
        assert result.hazards_sent == 1
        assert summary.hazards_sent == 1

    async def test_overlapping_ticks_send_once(self, db, channel):
        await _eligible_user(db, 1001, MOSCOW)
        await _eligible_user(db, 2002, PITER, "Питер")
        weather = FakeWeather({MOSCOW: gusty_series(), PITER: gusty_series()})
        notifier = _notifier(db, weather, channel)

        first, second = await asyncio.gather(notifier.run_tick(), notifier.run_tick())

        assert first.hazards_sent + second.hazards_sent == 2
        assert len(channel.sent) == 2
        assert sorted(chat for chat, _ in channel.sent) == [1001, 2002]
        assert await db.count_alert_events() == 2

    async def test_no_users(self, db, channel, weather):
        summary = await _notifier(db, weather, channel).run_tick()

        assert summary.to_dict() == {"usersProcessed": 0, "hazardsSent": 0}


class TestDedupeKey:

    def test_shifted_boundary_is_new_occurrence(self):
        end = BASE_TIME.replace(hour=5)
        a = Hazard(WIND_GUST, CRITICAL, BASE_TIME.replace(hour=3), end, {})
        b = Hazard(WIND_GUST, CRITICAL, BASE_TIME.replace(hour=4), end, {})

        assert dedupe_key_for_hazard(1, 2, a) != dedupe_key_for_hazard(1, 2, b)
        assert dedupe_key_for_hazard(1, 2, a) == dedupe_key_for_hazard(1, 2, a)


# =============================================================================
# Evaluation query
# =============================================================================

class TestEvaluateForUser:

    async def test_hazards_and_plans(self, db, channel):
        user, location = await _eligible_user(db, 1001)
        await db.create_plan_from_template(user.id, "walk_basic")
        disabled = await db.create_plan_from_template(user.id, "walk_basic", "Off")
        await db.patch_plan(user.id, disabled.id, {"enabled": False})
        notifier = _notifier(db, FakeWeather({MOSCOW: gusty_series()}), channel)

        result = await notifier.evaluate_for_user(1001, now=BASE_TIME)

        assert result.location.id == location.id
        assert [h.type for h in result.hazards] == [WIND_GUST]
        assert len(result.plans) == 1
        assert result.plans[0].status_now == "good"
        assert channel.sent == []
        assert await db.count_alert_events() == 0

        payload = result.to_dict()
        assert payload["location"]["timezone"] == "Europe/Moscow"
        assert payload["plans"][0]["statusNow"] == "good"

    async def test_unknown_user(self, db, channel, weather):
        with pytest.raises(NotFound):
            await _notifier(db, weather, channel).evaluate_for_user(404)

    async def test_no_active_location(self, db, channel, weather):
        await db.get_or_create_user(1001)

        with pytest.raises(NotFound):
            await _notifier(db, weather, channel).evaluate_for_user(1001)

    async def test_upstream_failure_propagates(self, db, channel):
        await _eligible_user(db, 1001)
        weather = FakeWeather()
        weather.failing.add(MOSCOW)

        with pytest.raises(UpstreamUnavailable):
            await _notifier(db, weather, channel).evaluate_for_user(1001)
