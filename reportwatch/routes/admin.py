"""
Moderation routes. Every endpoint here requires the service identity.
"""

import logging

from fastapi import APIRouter, Body, Depends

from reportwatch.routes._shared import USE_CELERY, parse_uuid, require_service_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"], dependencies=[Depends(require_service_key)])


# =====================
# Evidence moderation
# =====================


@router.patch("/api/admin/evidence/{evidence_id}")
async def update_evidence(evidence_id: str, data: dict = Body(...)):
    """Mark evidence verified or unverified; incident confidence is recomputed."""
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().set_evidence_verified(
        parse_uuid(evidence_id, "evidence_id"), data,
    )


@router.delete("/api/admin/evidence/{evidence_id}")
async def delete_evidence(evidence_id: str):
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().delete_evidence(parse_uuid(evidence_id, "evidence_id"))


# =====================
# Incident moderation
# =====================


@router.patch("/api/admin/incidents/{incident_id}/status")
async def update_incident_status(incident_id: str, data: dict = Body(...)):
    """Move a pending incident to verified, disputed or rejected."""
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().moderate_incident(
        parse_uuid(incident_id, "incident_id"), data,
    )


@router.delete("/api/admin/incidents/{incident_id}")
async def delete_incident(incident_id: str):
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().delete_incident(parse_uuid(incident_id, "incident_id"))


# =====================
# Risk repair
# =====================


@router.post("/api/admin/entities/{entity_id}/recompute")
async def recompute_entity(entity_id: str):
    """Rebuild an entity's risk row from its current incidents."""
    entity_uuid = parse_uuid(entity_id, "entity_id")

    if USE_CELERY:
        from reportwatch.tasks.recompute_tasks import recompute_entity_risk
        task = recompute_entity_risk.delay(str(entity_uuid))
        logger.info(f"Queued risk recompute for entity {entity_uuid} (task {task.id})")
        return {"queued": True, "entity_id": str(entity_uuid), "task_id": task.id}

    from reportwatch.services.recomputation import get_recomputation_hooks
    from reportwatch.services.repository import get_repository
    from reportwatch.exceptions import NotFoundError

    if await get_repository().get_entity(entity_uuid) is None:
        raise NotFoundError("Entity not found")
    assessment = await get_recomputation_hooks().recompute_entity(entity_uuid)
    return {
        "queued": False,
        "entity_id": str(entity_uuid),
        "severity_score": assessment.score,
        "risk_level": assessment.level,
        "total_incidents": assessment.total_incidents,
        "verified_incidents": assessment.verified_incidents,
    }


# =====================
# Settings
# =====================


@router.get("/api/admin/settings")
async def get_all_settings():
    """Current non-secret settings and which LLM providers are configured."""
    from reportwatch.services.llm_provider import get_llm_router
    from reportwatch.services.settings import get_settings_service
    return {
        **get_settings_service().get_all(),
        "llm_providers": get_llm_router().provider_status(),
    }


@router.put("/api/admin/settings/rate-limits")
async def update_settings_rate_limits(config: dict = Body(...)):
    """Change ceilings or windows; the running limiter picks them up immediately."""
    from reportwatch.services.rate_limiter import get_rate_limiter
    from reportwatch.services.settings import get_settings_service

    settings = get_settings_service()
    result = settings.update_rate_limits(config)
    cfg = settings.rate_limits
    get_rate_limiter().configure(cfg.ceilings(), cfg.window_seconds, cfg.retention_hours)
    return result


@router.put("/api/admin/settings/ai")
async def update_settings_ai(config: dict = Body(...)):
    """Toggle or retune the AI collaborators."""
    from reportwatch.services.settings import get_settings_service
    return get_settings_service().update_ai(config)
