"""
Reactive recomputation of derived state.

Two derived values exist in the store: each incident's
``verification_confidence`` / ``evidence_count`` and each entity's single
``entity_risk_scores`` row. Neither is ever patched; both are recomputed
wholesale from the current rows whenever something they depend on changes.

``ReactiveWriter`` is the only path through which incidents and evidence are
mutated. It commits the mutation through the repository, then calls the
matching ``RecomputationHooks`` method:

    evidence insert/verify/delete
        -> recompute incident confidence (write by incident id)
        -> on_incident_mutated(before, after)
    incident insert/status change/delete
        -> recompute entity risk score (upsert by entity id)

Each recompute reads and writes under a per-row lock in the store, so when
two recomputes of the same row race, the stored value comes from whichever
one read later.

Hook failures are logged and swallowed. The committed mutation stands; the
next mutation of the same entity, or an admin recompute, repairs the
derived row.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from reportwatch.exceptions import NotFoundError
from reportwatch.models import IncidentStatus
from .confidence_scorer import initial_confidence, score_incident
from .incident_lifecycle import ensure_transition, verified_timestamp
from .risk_scorer import RiskAssessment, calculate_risk_score
from .thresholds import MAX_EVIDENCE_PER_INCIDENT

logger = logging.getLogger(__name__)

Row = Optional[Dict[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecomputationHooks:
    """Recompute derived fields after a committed mutation."""

    def __init__(self, repository, clock=None):
        self._repo = repository
        self._clock = clock or _utcnow

    async def recompute_entity(self, entity_id) -> RiskAssessment:
        """Score all of the entity's incidents and overwrite its risk row."""
        assessments = []

        def score(incidents):
            now = self._clock()
            assessment = calculate_risk_score(incidents, now=now)
            assessments.append(assessment)
            return assessment.to_row(entity_id, now)

        await self._repo.refresh_risk_score(entity_id, score)
        assessment = assessments[-1]
        logger.debug(
            f"Risk recomputed for entity {entity_id}: "
            f"score={assessment.score} level={assessment.level}"
        )
        return assessment

    async def recompute_incident_confidence(self, incident_id) -> Row:
        """Rescore one incident from its live evidence set. Returns the updated row."""

        def score(incident, evidence):
            result = score_incident(incident, evidence)
            return result.confidence, result.evidence_count

        return await self._repo.refresh_incident_confidence(incident_id, score)

    async def on_incident_mutated(self, before: Row, after: Row) -> None:
        entity_ids = []
        for row in (after, before):
            if row is not None and row["entity_id"] not in entity_ids:
                entity_ids.append(row["entity_id"])
        for entity_id in entity_ids:
            await self.recompute_entity(entity_id)

    async def on_evidence_mutated(self, before: Row, after: Row) -> None:
        row = after or before
        if row is None:
            return
        incident_id = row["incident_id"]
        incident_before = await self._repo.get_incident(incident_id)
        if incident_before is None:
            # Incident deleted along with its evidence
            return
        incident_after = await self.recompute_incident_confidence(incident_id)
        await self.on_incident_mutated(incident_before, incident_after)


class ReactiveWriter:
    """Commit incident/evidence mutations, then run the recompute hooks."""

    def __init__(self, repository, hooks: RecomputationHooks):
        self._repo = repository
        self._hooks = hooks

    async def _fire(self, hook, before: Row, after: Row) -> None:
        try:
            await hook(before, after)
        except Exception:
            row = after or before or {}
            logger.exception(
                f"{hook.__name__} failed for {row.get('id')}; derived state left stale"
            )

    # --- Incidents ---

    async def insert_incident(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = dict(fields)
        fields["verification_confidence"] = initial_confidence(fields)
        row = await self._repo.insert_incident(fields)
        await self._fire(self._hooks.on_incident_mutated, None, row)
        return row

    async def update_incident_status(
        self,
        incident_id,
        target,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        target = IncidentStatus(target)

        def guard(before: Dict[str, Any], status: str) -> None:
            ensure_transition(before["status"], status)

        result = await self._repo.update_incident_status(
            incident_id,
            target.value,
            verified_at=verified_timestamp(target, now),
            guard=guard,
        )
        if result is None:
            raise NotFoundError("Incident not found")
        before, after = result
        logger.info(f"Incident {incident_id} status {before['status']} -> {after['status']}")
        await self._fire(self._hooks.on_incident_mutated, before, after)
        return after

    async def delete_incident(self, incident_id) -> Dict[str, Any]:
        row = await self._repo.delete_incident(incident_id)
        if row is None:
            raise NotFoundError("Incident not found")
        logger.info(f"Incident {incident_id} deleted")
        await self._fire(self._hooks.on_incident_mutated, row, None)
        return row

    # --- Evidence ---

    async def insert_evidence(self, incident_id, evidence: Dict[str, Any]) -> Dict[str, Any]:
        row = await self._repo.insert_evidence(incident_id, evidence, MAX_EVIDENCE_PER_INCIDENT)
        await self._fire(self._hooks.on_evidence_mutated, None, row)
        return row

    async def set_evidence_verified(
        self,
        evidence_id,
        is_verified: bool,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        result = await self._repo.update_evidence_verification(evidence_id, is_verified, notes)
        if result is None:
            raise NotFoundError("Evidence not found")
        before, after = result
        await self._fire(self._hooks.on_evidence_mutated, before, after)
        return after

    async def delete_evidence(self, evidence_id) -> Dict[str, Any]:
        row = await self._repo.delete_evidence(evidence_id)
        if row is None:
            raise NotFoundError("Evidence not found")
        await self._fire(self._hooks.on_evidence_mutated, row, None)
        return row


# Singletons
_hooks: Optional[RecomputationHooks] = None
_writer: Optional[ReactiveWriter] = None


def get_recomputation_hooks() -> RecomputationHooks:
    global _hooks
    if _hooks is None:
        from .repository import get_repository
        _hooks = RecomputationHooks(get_repository())
    return _hooks


def get_reactive_writer() -> ReactiveWriter:
    """Get the singleton writer bound to the Postgres repository."""
    global _writer
    if _writer is None:
        from .repository import get_repository
        _writer = ReactiveWriter(get_repository(), get_recomputation_hooks())
    return _writer
