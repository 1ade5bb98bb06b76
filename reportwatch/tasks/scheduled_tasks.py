"""Scheduled Celery tasks: rate-limit ledger sweep."""

import logging

from reportwatch.celery_app import app
from reportwatch.tasks.db import run_async

logger = logging.getLogger(__name__)


async def _async_sweep_rate_limits() -> dict:
    from reportwatch.services.rate_limiter import get_rate_limiter
    deleted = await get_rate_limiter().sweep()
    return {"deleted": deleted}


@app.task(
    bind=True,
    name="reportwatch.tasks.scheduled_tasks.sweep_rate_limits",
    acks_late=True,
    soft_time_limit=120,
    time_limit=180,
)
def sweep_rate_limits(self):
    """Hourly deletion of ledger rows older than the retention horizon."""
    logger.info("Rate limit sweep starting")
    try:
        result = run_async(_async_sweep_rate_limits)
        logger.info(f"Rate limit sweep completed: {result}")
        return result
    except Exception as exc:
        logger.error(f"Rate limit sweep failed: {exc}")
        raise
