"""
Tests for Telegram command handlers with mocked updates.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from meteovip.config import Config
from meteovip.handlers import CommandHandlers
from meteovip.notifications import Notifier

from conftest import FakeChannel, FakeWeather, calm_points


MOSCOW = (55.75, 37.62)


def make_update(telegram_id=1001, location=None):
    update = MagicMock()
    update.effective_user = SimpleNamespace(
        id=telegram_id, username="alice", first_name="Alice", language_code="ru"
    )
    update.message.reply_text = AsyncMock()
    update.message.location = location
    return update


def make_context(*args):
    return SimpleNamespace(args=list(args))


def replies(update):
    return [call.args[0] for call in update.message.reply_text.await_args_list]


@pytest.fixture
def handlers(db):
    weather = FakeWeather({MOSCOW: calm_points(48)})
    notifier = Notifier(db, weather, FakeChannel(), concurrency=1, user_timeout=5, tick_timeout=10)
    return CommandHandlers(db, notifier, weather)


class TestLocationCommands:

    async def test_location_command_sets_active(self, handlers, db):
        update = make_update()

        await handlers.location_command(update, make_context("55.75", "37,62", "Москва"))

        user = await db.find_user(1001)
        location = await db.get_active_location(user.id)
        assert location.name == "Москва"
        assert location.longitude == pytest.approx(37.62)
        assert location.timezone == "Europe/Moscow"

    async def test_location_command_bad_input(self, handlers, db):
        update = make_update()

        await handlers.location_command(update, make_context("north", "37.62"))

        assert "Неверный ввод" in replies(update)[0]
        user = await db.find_user(1001)
        assert user.active_location_id is None

    async def test_shared_location_needs_confirm(self, handlers, db):
        shared = SimpleNamespace(latitude=59.94, longitude=30.31)

        await handlers.location_message(make_update(location=shared), make_context())
        user = await db.find_user(1001)
        assert user.active_location_id is None

        await handlers.confirm_command(make_update(), make_context())
        location = await db.get_active_location(user.id)
        assert location.latitude == pytest.approx(59.94)
        assert location.is_pending is False


class TestPlanAndCheckCommands:

    async def test_plan_add_and_check(self, handlers):
        await handlers.location_command(make_update(), make_context("55.75", "37.62", "Home"))
        await handlers.plan_add_command(make_update(), make_context("walk_basic"))

        update = make_update()
        await handlers.check_command(update, make_context())

        final = replies(update)[-1]
        assert "Home" in final
        assert "сейчас подходит" in final

    async def test_check_without_location(self, handlers):
        update = make_update()

        await handlers.check_command(update, make_context())

        assert "Не найдено" in replies(update)[-1]

    async def test_plan_delete_missing(self, handlers):
        update = make_update()

        await handlers.plan_delete_command(update, make_context("42"))

        assert "Не найдено" in replies(update)[0]


class TestTickCommand:

    async def test_non_admin_rejected(self, handlers, monkeypatch):
        monkeypatch.setattr(Config, "ADMIN_USER_IDS", [])
        update = make_update()

        await handlers.tick_command(update, make_context())

        assert "администраторам" in replies(update)[0]

    async def test_admin_runs_tick(self, handlers, monkeypatch):
        monkeypatch.setattr(Config, "ADMIN_USER_IDS", [1001])
        update = make_update()

        await handlers.tick_command(update, make_context())

        assert "Проверка завершена" in replies(update)[0]
