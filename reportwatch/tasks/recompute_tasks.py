"""On-demand risk recomputation tasks (admin repair path)."""

import logging

from reportwatch.celery_app import (
    app,
    RECOMPUTE_MAX_RETRIES,
    RECOMPUTE_RETRY_BACKOFF,
    RECOMPUTE_RETRY_BACKOFF_MAX,
)
from reportwatch.exceptions import StorageError
from reportwatch.tasks.db import run_async

logger = logging.getLogger(__name__)


async def _async_recompute_entity_risk(entity_id: str) -> dict:
    from reportwatch.services.recomputation import get_recomputation_hooks
    from reportwatch.services.repository import get_repository

    if await get_repository().get_entity(entity_id) is None:
        return {"entity_id": entity_id, "status": "not_found"}

    assessment = await get_recomputation_hooks().recompute_entity(entity_id)
    return {
        "entity_id": entity_id,
        "status": "recomputed",
        "severity_score": assessment.score,
        "risk_level": assessment.level,
        "total_incidents": assessment.total_incidents,
    }


@app.task(
    bind=True,
    name="reportwatch.tasks.recompute_tasks.recompute_entity_risk",
    acks_late=True,
    soft_time_limit=60,
    time_limit=120,
    max_retries=RECOMPUTE_MAX_RETRIES,
    autoretry_for=(StorageError, ConnectionError),
    retry_backoff=RECOMPUTE_RETRY_BACKOFF,
    retry_backoff_max=RECOMPUTE_RETRY_BACKOFF_MAX,
)
def recompute_entity_risk(self, entity_id: str):
    """Rebuild one entity's risk row from its current incidents."""
    result = run_async(_async_recompute_entity_risk, entity_id)
    logger.info(f"Risk recompute for {entity_id}: {result}")
    return result
