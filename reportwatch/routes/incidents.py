"""
Public incident routes: anonymous submission, read and flagging, plus the
service-only evidence attachment endpoint.
"""

import logging

from fastapi import APIRouter, Body, Depends, Response

from reportwatch.routes._shared import (
    client_fingerprint,
    parse_uuid,
    rate_limit_headers,
    require_service_key,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Incidents"])


@router.post("/api/incidents", status_code=201)
async def submit_incident(
    response: Response,
    data: dict = Body(...),
    fingerprint: str = Depends(client_fingerprint),
):
    """Submit an incident report against an existing or new entity."""
    from reportwatch.services.submission_service import get_submission_service
    result = await get_submission_service().submit_incident(fingerprint, data)
    response.headers.update(rate_limit_headers(result["rate_limit"]))
    return result


@router.get("/api/incidents/{incident_id}")
async def get_incident(incident_id: str):
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().get_incident(parse_uuid(incident_id, "incident_id"))


@router.post("/api/incidents/{incident_id}/flag")
async def flag_incident(
    incident_id: str,
    data: dict = Body(...),
    fingerprint: str = Depends(client_fingerprint),
):
    """Dispute an incident, or flag it as false or duplicate for moderation."""
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().flag_incident(
        fingerprint, parse_uuid(incident_id, "incident_id"), data,
    )


@router.post(
    "/api/incidents/{incident_id}/evidence",
    status_code=201,
    dependencies=[Depends(require_service_key)],
)
async def attach_evidence(incident_id: str, data: dict = Body(...)):
    """Record metadata for an evidence file already placed in storage."""
    from reportwatch.services.submission_service import get_submission_service
    return await get_submission_service().attach_evidence(
        parse_uuid(incident_id, "incident_id"), data,
    )
