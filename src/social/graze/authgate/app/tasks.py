import asyncio
import logging
from typing import NoReturn
from aiohttp import web
import sentry_sdk

from social.graze.authgate.app.config import (
    HealthGaugeAppKey,
    MetricsClientAppKey,
    RateLimiterAppKey,
    SettingsAppKey,
)

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Tick the health gauge every 30 seconds, reducing the health score by 1 each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    while True:
        await health_gauge.tick()
        await asyncio.sleep(30)


async def rate_limit_sweep_task(app: web.Application) -> NoReturn:
    """
    Periodically drop rate limit windows that have ended.

    Windows are also replaced lazily when their client comes back, so this only
    bounds memory for clients that never return.
    """

    logger.info("Starting rate limit sweep task")

    settings = app[SettingsAppKey]
    rate_limiter = app[RateLimiterAppKey]
    metrics_client = app[MetricsClientAppKey]

    while True:
        await asyncio.sleep(settings.rate_limit_sweep_interval_seconds)

        try:
            dropped = await rate_limiter.sweep()
            if dropped > 0:
                logger.debug("Swept %d expired rate limit windows", dropped)

            metrics_client.gauge(
                "authgate.ratelimit.windows",
                len(rate_limiter),
                tag_dict={},
            )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("rate_limit_sweep_task: Exception")
