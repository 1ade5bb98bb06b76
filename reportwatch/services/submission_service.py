"""
Submission orchestration: the operations behind the HTTP handlers.

Every incident or evidence mutation goes through the ``ReactiveWriter`` so
that confidence and risk are recomputed after commit. Rate limits are
checked before the request body is validated and recorded only after it has
passed validation, so malformed requests are throttled but not counted.
"""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError as PydanticValidationError

from reportwatch.exceptions import (
    NotFoundError,
    RateLimitExceededError,
    StorageError,
    ValidationError,
)
from reportwatch.models import (
    EvidenceCreate,
    EvidenceVerificationUpdate,
    FlagAction,
    FlagRequest,
    IncidentStatus,
    IncidentSubmission,
    RiskBreakdown,
    StatusUpdate,
)
from .incident_lifecycle import ensure_accepts_evidence
from .rate_limiter import ActionType, RateLimitStatus
from .thresholds import (
    ALLOWED_EVIDENCE_MIME_TYPES,
    DUPLICATE_CANDIDATE_LIMIT,
    MAX_EVIDENCE_SIZE_BYTES,
    RISK_ALGORITHM_VERSION,
    RISK_DISCLAIMER,
    SCORED_STATUSES,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."

FLAG_MESSAGES = {
    FlagAction.DISPUTE: "Incident has been marked as disputed and will be reviewed by our team.",
    FlagAction.FLAG_FALSE: "Thank you for reporting. This incident will be reviewed for accuracy.",
    FlagAction.FLAG_DUPLICATE: "Thank you for reporting. We will check for duplicates.",
}

# Internal columns never returned to anonymous callers
_PRIVATE_INCIDENT_FIELDS = ("submitter_fingerprint",)


def _validate(model: type, payload: Any) -> BaseModel:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        first = errors[0] if errors else {}
        field_path = ".".join(str(p) for p in first.get("loc", ()))
        message = first.get("msg", "Invalid request")
        if field_path:
            message = f"{field_path}: {message}"
        raise ValidationError(message, {"errors": errors}) from e


def public_incident(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in _PRIVATE_INCIDENT_FIELDS}


def rate_limit_dict(status: RateLimitStatus) -> Dict[str, Any]:
    return {
        "limit": status.limit,
        "remaining": status.remaining,
        "reset_at": status.reset_at.isoformat(),
    }


class SubmissionService:
    """Coordinates limiter, validation, entity resolution and reactive writes."""

    def __init__(self, repository, limiter, writer, hooks, enrichment):
        self._repo = repository
        self._limiter = limiter
        self._writer = writer
        self._hooks = hooks
        self._enrichment = enrichment

    async def _check(self, fingerprint: str, action: ActionType) -> RateLimitStatus:
        status = await self._limiter.check(fingerprint, action)
        if not status.allowed:
            logger.info(f"Rate limit exceeded for {fingerprint} on {action.value}")
            raise RateLimitExceededError(RATE_LIMIT_MESSAGE, status)
        return status

    async def _require_entity(self, entity_id) -> Dict[str, Any]:
        entity = await self._repo.get_entity(entity_id)
        if entity is None:
            raise NotFoundError("Entity not found")
        return entity

    async def _require_incident(self, incident_id) -> Dict[str, Any]:
        incident = await self._repo.get_incident(incident_id)
        if incident is None:
            raise NotFoundError("Incident not found")
        return incident

    # --- Submission ---

    async def _resolve_entity(
        self,
        fingerprint: str,
        submission: IncidentSubmission,
    ) -> Tuple[Dict[str, Any], bool]:
        if submission.entity_id is not None:
            return await self._require_entity(submission.entity_id), False

        ref = submission.entity
        normalized = ref.normalized_identifier
        existing = await self._repo.find_entity(ref.type.value, normalized)
        if existing is not None:
            return existing, False

        await self._check(fingerprint, ActionType.ENTITY_CREATION)
        await self._limiter.record(fingerprint, ActionType.ENTITY_CREATION)
        entity, created = await self._repo.insert_entity(
            ref.type.value, ref.name, ref.identifier, normalized,
        )
        if created:
            logger.info(f"Created {ref.type.value} entity {entity['id']}")
        return entity, created

    async def _comparison_candidates(self, entity_id, incident_id) -> Optional[List[Dict[str, Any]]]:
        try:
            rows = await self._repo.list_entity_incidents(entity_id, exclude_id=incident_id)
        except StorageError as e:
            logger.warning(f"Could not load comparison incidents for entity {entity_id}: {e}")
            return None
        scored = [r for r in rows if r["status"] in SCORED_STATUSES]
        return scored[:DUPLICATE_CANDIDATE_LIMIT]

    async def submit_incident(self, fingerprint: str, payload: Any) -> Dict[str, Any]:
        """Accept an anonymous incident report.

        Raises:
            RateLimitExceededError: submission or entity-creation ceiling hit
            ValidationError: malformed body
            NotFoundError: ``entity_id`` does not exist
        """
        status = await self._check(fingerprint, ActionType.INCIDENT_SUBMISSION)
        submission = _validate(IncidentSubmission, payload)
        entity, entity_created = await self._resolve_entity(fingerprint, submission)
        await self._limiter.record(fingerprint, ActionType.INCIDENT_SUBMISSION)

        row = await self._writer.insert_incident({
            "entity_id": entity["id"],
            "title": submission.title,
            "description": submission.description,
            "what_was_promised": submission.what_was_promised,
            "what_actually_happened": submission.what_actually_happened,
            "category": submission.category.value,
            "severity": submission.severity.value,
            "date_occurred": submission.date_occurred,
            "location": submission.location,
            "submitter_fingerprint": fingerprint,
        })
        logger.info(
            f"Incident {row['id']} submitted for entity {entity['id']} "
            f"by {fingerprint} (confidence {row['verification_confidence']})"
        )

        candidates = await self._comparison_candidates(entity["id"], row["id"])
        enrichment = await self._enrichment.enrich(row, candidates)

        after_record = dataclasses.replace(status, remaining=max(0, status.remaining - 1))
        return {
            "incident": public_incident(row),
            "entity": entity,
            "entity_created": entity_created,
            **enrichment.to_dict(),
            "rate_limit": rate_limit_dict(after_record),
        }

    async def get_incident(self, incident_id) -> Dict[str, Any]:
        return public_incident(await self._require_incident(incident_id))

    # --- Flags and moderation ---

    async def flag_incident(self, fingerprint: str, incident_id, payload: Any) -> Dict[str, Any]:
        request = _validate(FlagRequest, payload)
        incident = await self._require_incident(incident_id)
        if incident["status"] == IncidentStatus.REJECTED.value:
            raise ValidationError("This incident has already been rejected")

        status = incident["status"]
        if request.action == FlagAction.DISPUTE:
            after = await self._writer.update_incident_status(incident_id, IncidentStatus.DISPUTED)
            status = after["status"]

        logger.info(
            f"Incident {incident_id} flagged: action={request.action.value} "
            f"by={fingerprint} contact={'yes' if request.contact_email else 'no'} "
            f"reason={request.reason!r}"
        )
        return {
            "success": True,
            "incident_id": str(incident_id),
            "action": request.action.value,
            "status": status,
            "message": FLAG_MESSAGES[request.action],
        }

    async def moderate_incident(self, incident_id, payload: Any) -> Dict[str, Any]:
        update = _validate(StatusUpdate, payload)
        after = await self._writer.update_incident_status(incident_id, update.status)
        if update.notes:
            logger.info(f"Moderation note for incident {incident_id}: {update.notes!r}")
        return public_incident(after)

    async def delete_incident(self, incident_id) -> Dict[str, Any]:
        row = await self._writer.delete_incident(incident_id)
        return {"deleted": True, "incident_id": str(row["id"]), "entity_id": str(row["entity_id"])}

    # --- Evidence ---

    async def _confidence_summary(self, incident_id) -> Dict[str, Any]:
        incident = await self._repo.get_incident(incident_id)
        if incident is None:
            return {"verification_confidence": None, "evidence_count": None}
        return {
            "verification_confidence": incident["verification_confidence"],
            "evidence_count": incident["evidence_count"],
        }

    async def attach_evidence(self, incident_id, payload: Any) -> Dict[str, Any]:
        evidence = _validate(EvidenceCreate, payload)
        if evidence.mime_type not in ALLOWED_EVIDENCE_MIME_TYPES:
            raise ValidationError(
                f"Invalid file type. Allowed: {', '.join(ALLOWED_EVIDENCE_MIME_TYPES)}")
        if evidence.size_bytes > MAX_EVIDENCE_SIZE_BYTES:
            raise ValidationError(
                f"File too large. Maximum size is {MAX_EVIDENCE_SIZE_BYTES // (1024 * 1024)}MB")

        incident = await self._require_incident(incident_id)
        ensure_accepts_evidence(incident["status"])

        row = await self._writer.insert_evidence(incident_id, evidence.model_dump())
        logger.info(f"Evidence {row['id']} attached to incident {incident_id}")
        return {"evidence": row, **await self._confidence_summary(incident_id)}

    async def set_evidence_verified(self, evidence_id, payload: Any) -> Dict[str, Any]:
        update = _validate(EvidenceVerificationUpdate, payload)
        after = await self._writer.set_evidence_verified(
            evidence_id, update.is_verified, update.verification_notes,
        )
        return {"evidence": after, **await self._confidence_summary(after["incident_id"])}

    async def delete_evidence(self, evidence_id) -> Dict[str, Any]:
        row = await self._writer.delete_evidence(evidence_id)
        return {
            "deleted": True,
            "evidence_id": str(row["id"]),
            "incident_id": str(row["incident_id"]),
            **await self._confidence_summary(row["incident_id"]),
        }

    # --- Risk ---

    async def explain_risk(self, fingerprint: str, entity_id) -> Dict[str, Any]:
        """Recompute the entity's risk and return the factor breakdown."""
        status = await self._check(fingerprint, ActionType.AI_CALL)
        await self._require_entity(entity_id)
        await self._limiter.record(fingerprint, ActionType.AI_CALL)

        assessment = await self._hooks.recompute_entity(entity_id)
        after_record = dataclasses.replace(status, remaining=max(0, status.remaining - 1))
        return {
            "entity_id": str(entity_id),
            "score": assessment.score,
            "risk_level": assessment.level,
            "factors": assessment.factors_dict(),
            "total_incidents": assessment.total_incidents,
            "verified_incidents": assessment.verified_incidents,
            "last_incident_at": assessment.last_incident_at,
            "algorithm_version": RISK_ALGORITHM_VERSION,
            "disclaimer": RISK_DISCLAIMER,
            "rate_limit": rate_limit_dict(after_record),
        }

    async def get_risk_score(self, entity_id) -> Dict[str, Any]:
        """Stored risk row (defaults when never computed) plus incident breakdown."""
        await self._require_entity(entity_id)
        stored = await self._repo.get_risk_score(entity_id) or {}
        incidents = await self._repo.list_entity_incidents(entity_id)

        breakdown = RiskBreakdown()
        for incident in incidents:
            status = incident["status"]
            if status in breakdown.by_status:
                breakdown.by_status[status] += 1
            if status not in SCORED_STATUSES:
                continue
            category = incident["category"]
            breakdown.by_category[category] = breakdown.by_category.get(category, 0) + 1
            if incident["severity"] in breakdown.by_severity:
                breakdown.by_severity[incident["severity"]] += 1

        return {
            "entity_id": str(entity_id),
            "total_incidents": stored.get("total_incidents", 0),
            "verified_incidents": stored.get("verified_incidents", 0),
            "severity_score": stored.get("severity_score", 0),
            "risk_level": stored.get("risk_level", "unknown"),
            "last_incident_at": stored.get("last_incident_at"),
            "calculated_at": stored.get("calculated_at") or datetime.now(timezone.utc),
            "breakdown": breakdown.model_dump(),
        }


# Singleton
_service: Optional[SubmissionService] = None


def get_submission_service() -> SubmissionService:
    """Get the singleton service wired to the Postgres-backed collaborators."""
    global _service
    if _service is None:
        from .ai_enrichment import get_ai_enrichment_service
        from .rate_limiter import get_rate_limiter
        from .recomputation import get_reactive_writer, get_recomputation_hooks
        from .repository import get_repository

        _service = SubmissionService(
            repository=get_repository(),
            limiter=get_rate_limiter(),
            writer=get_reactive_writer(),
            hooks=get_recomputation_hooks(),
            enrichment=get_ai_enrichment_service(),
        )
    return _service
