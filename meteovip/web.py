"""
HTTP surface for external schedulers.
Exposes the tick trigger and a health check.
"""

import hmac
import logging

from aiohttp import web

from .config import Config
from .notifications import Notifier

logger = logging.getLogger(__name__)

TICK_PATH = "/api/v1/jobs/tick"
SECRET_HEADER = "X-Jobs-Secret"

NOTIFIER_KEY = web.AppKey("notifier", Notifier)


async def tick_handler(request: web.Request) -> web.Response:
    """Run one hazard tick if the jobs secret matches."""
    secret = Config.JOBS_SECRET
    if not secret:
        logger.warning("Tick requested but JOBS_SECRET is not configured")
        return web.json_response({"error": "jobs secret not configured"}, status=503)

    provided = request.headers.get(SECRET_HEADER, "")
    if not hmac.compare_digest(provided.encode(), secret.encode()):
        logger.warning(f"Rejected tick request from {request.remote}")
        return web.json_response({"error": "unauthorized"}, status=401)

    summary = await request.app[NOTIFIER_KEY].run_tick()
    return web.json_response(summary.to_dict())


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


def create_web_app(notifier: Notifier) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        notifier: Notifier used to run ticks

    Returns:
        Configured web.Application
    """
    app = web.Application()
    app[NOTIFIER_KEY] = notifier
    app.router.add_post(TICK_PATH, tick_handler)
    app.router.add_get("/health", health_handler)
    return app
