"""
One-shot tick trigger for cron or other external schedulers.
Posts to the running service's tick endpoint and prints the summary.
"""

import asyncio
import logging
import os
import sys

import aiohttp

from .config import Config
from .web import TICK_PATH, SECRET_HEADER

logger = logging.getLogger(__name__)


async def trigger_tick(base_url: str, secret: str) -> dict:
    """
    Request one tick from the service.

    Raises:
        RuntimeError: if the service responds with a non-200 status
    """
    url = base_url.rstrip("/") + TICK_PATH
    timeout = aiohttp.ClientTimeout(total=Config.TICK_TIMEOUT_SECONDS + 30)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.post(url, headers={SECRET_HEADER: secret}) as response:
            if response.status != 200:
                body = await response.text()
                raise RuntimeError(f"Tick failed: HTTP {response.status}: {body}")
            return await response.json()


def run() -> None:
    """Entry point for ``meteovip-tick``."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    )
    base_url = os.getenv("API_BASE_URL", "http://localhost:3000")
    if not Config.JOBS_SECRET:
        logger.error("JOBS_SECRET is not set")
        sys.exit(1)

    try:
        result = asyncio.run(trigger_tick(base_url, Config.JOBS_SECRET))
    except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as e:
        logger.error(f"{e}")
        sys.exit(1)

    logger.info(
        f"Tick done: {result.get('usersProcessed')} users, "
        f"{result.get('hazardsSent')} hazards sent"
    )


if __name__ == "__main__":
    run()
