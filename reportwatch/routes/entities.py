"""
Entity risk routes.
"""

import logging

from fastapi import APIRouter, Depends, Response

from reportwatch.routes._shared import client_fingerprint, parse_uuid, rate_limit_headers

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Entities"])


@router.get("/api/entities/{entity_id}/risk-score")
async def get_risk_score(entity_id: str):
    """Stored risk indicator with category, severity and status breakdown."""
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().get_risk_score(parse_uuid(entity_id, "entity_id"))


@router.post("/api/entities/{entity_id}/risk/explain")
async def explain_risk(
    entity_id: str,
    response: Response,
    fingerprint: str = Depends(client_fingerprint),
):
    """Recompute the risk indicator and explain each factor."""
    from reportwatch.services.submission_service import get_submission_service
    result = await get_submission_service().explain_risk(
        fingerprint, parse_uuid(entity_id, "entity_id"),
    )
    response.headers.update(rate_limit_headers(result["rate_limit"]))
    return result
