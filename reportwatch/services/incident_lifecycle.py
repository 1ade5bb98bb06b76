"""
Incident verification lifecycle.

    pending ──> verified
            ├─> disputed
            └─> rejected

Every report starts ``pending``. The three other states are terminal;
escalation and appeal are handled outside this service. Evidence can only be
attached while an incident is ``pending``.
"""

from datetime import datetime, timezone
from typing import Optional

from reportwatch.exceptions import InvalidTransitionError, ValidationError
from reportwatch.models import IncidentStatus

ALLOWED_TRANSITIONS = {
    IncidentStatus.PENDING: frozenset({
        IncidentStatus.VERIFIED,
        IncidentStatus.DISPUTED,
        IncidentStatus.REJECTED,
    }),
    IncidentStatus.VERIFIED: frozenset(),
    IncidentStatus.DISPUTED: frozenset(),
    IncidentStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def is_terminal(status) -> bool:
    return IncidentStatus(status) in TERMINAL_STATUSES


def can_transition(current, target) -> bool:
    return IncidentStatus(target) in ALLOWED_TRANSITIONS[IncidentStatus(current)]


def ensure_transition(current, target) -> IncidentStatus:
    """Validate ``current -> target``; returns the target status."""
    current_status = IncidentStatus(current)
    target_status = IncidentStatus(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status.value, target_status.value)
    return target_status


def ensure_accepts_evidence(status) -> None:
    if IncidentStatus(status) != IncidentStatus.PENDING:
        raise ValidationError("Cannot add evidence to non-pending incidents")


def verified_timestamp(target, now: Optional[datetime] = None) -> Optional[datetime]:
    """``verified_at`` stamp for a transition, or None when not verifying."""
    if IncidentStatus(target) == IncidentStatus.VERIFIED:
        return now or datetime.now(timezone.utc)
    return None
