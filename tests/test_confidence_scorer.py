"""Tests for per-incident verification confidence and the status lifecycle."""

from datetime import datetime, timezone

import pytest

from reportwatch.exceptions import InvalidTransitionError, ValidationError
from reportwatch.models import IncidentStatus
from reportwatch.services.confidence_scorer import (
    calculate_confidence,
    initial_confidence,
    score_incident,
)
from reportwatch.services.incident_lifecycle import (
    can_transition,
    ensure_accepts_evidence,
    ensure_transition,
    is_terminal,
    verified_timestamp,
)


# ============================================================
# Confidence
# ============================================================

def test_bare_report_scores_base():
    assert calculate_confidence(0, 0, False) == 10


def test_evidence_verified_and_narrative():
    assert calculate_confidence(3, 1, True) == 75


def test_evidence_contribution_is_capped():
    assert calculate_confidence(5, 0, False) == 60
    assert calculate_confidence(4, 0, False) == 60


def test_total_is_clamped_to_100():
    assert calculate_confidence(5, 5, True) == 100


def test_score_incident_counts_verified_rows():
    incident = {"what_was_promised": "A refund within 5 days", "what_actually_happened": None}
    evidence = [{"is_verified": True}, {"is_verified": False}, {"is_verified": False}]

    result = score_incident(incident, evidence)

    assert result.confidence == 75
    assert result.evidence_count == 3
    assert result.verified_evidence_count == 1
    assert result.has_narrative_detail


def test_blank_narrative_does_not_count():
    assert initial_confidence({"what_was_promised": "   ", "what_actually_happened": ""}) == 10


def test_initial_confidence_with_narrative():
    assert initial_confidence({"what_actually_happened": "Nothing arrived"}) == 20


# ============================================================
# Lifecycle
# ============================================================

@pytest.mark.parametrize("target", ["verified", "disputed", "rejected"])
def test_pending_can_move_to_any_outcome(target):
    assert can_transition("pending", target)
    assert ensure_transition("pending", target) == IncidentStatus(target)


@pytest.mark.parametrize("current", ["verified", "disputed", "rejected"])
@pytest.mark.parametrize("target", ["pending", "verified", "disputed", "rejected"])
def test_terminal_states_never_transition(current, target):
    assert is_terminal(current)
    with pytest.raises(InvalidTransitionError) as exc:
        ensure_transition(current, target)
    assert exc.value.detail == {"current_status": current, "requested_status": target}


def test_pending_to_pending_is_invalid():
    with pytest.raises(InvalidTransitionError):
        ensure_transition("pending", "pending")


def test_invalid_transition_is_a_validation_error():
    assert issubclass(InvalidTransitionError, ValidationError)
    assert InvalidTransitionError("verified", "pending").status_code == 400


def test_evidence_only_while_pending():
    ensure_accepts_evidence("pending")
    for status in ("verified", "disputed", "rejected"):
        with pytest.raises(ValidationError):
            ensure_accepts_evidence(status)


def test_verified_timestamp_only_for_verified():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert verified_timestamp("verified", now) == now
    assert verified_timestamp("disputed", now) is None
    assert verified_timestamp(IncidentStatus.REJECTED, now) is None
