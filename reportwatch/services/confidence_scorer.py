"""
Verification confidence for a single incident report.

Confidence is a derived 0-100 score built from the report's own completeness
and its evidence set:

    10                                  base, every submission
  + min(evidence_count * 15, 50)        evidence attached
  + verified_evidence_count * 10        evidence confirmed by moderation
  + 10 if narrative detail              "what was promised" / "what happened"

clamped to 100. It is always recomputed from the full evidence set, never
patched incrementally, and is never accepted from a client.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from reportwatch.utils.rows import field_of
from .thresholds import (
    CONFIDENCE_BASE,
    CONFIDENCE_PER_EVIDENCE,
    CONFIDENCE_EVIDENCE_CAP,
    CONFIDENCE_PER_VERIFIED_EVIDENCE,
    CONFIDENCE_NARRATIVE_BONUS,
    CONFIDENCE_MAX,
)


@dataclass(frozen=True)
class ConfidenceResult:
    confidence: int
    evidence_count: int
    verified_evidence_count: int
    has_narrative_detail: bool


def has_narrative_detail(incident: Any) -> bool:
    """True when either optional free-text narrative field is non-blank."""
    for name in ("what_was_promised", "what_actually_happened"):
        value = field_of(incident, name)
        if value and str(value).strip():
            return True
    return False


def calculate_confidence(
    evidence_count: int,
    verified_evidence_count: int,
    narrative_detail: bool,
) -> int:
    confidence = CONFIDENCE_BASE
    confidence += min(evidence_count * CONFIDENCE_PER_EVIDENCE, CONFIDENCE_EVIDENCE_CAP)
    confidence += verified_evidence_count * CONFIDENCE_PER_VERIFIED_EVIDENCE
    if narrative_detail:
        confidence += CONFIDENCE_NARRATIVE_BONUS
    return min(confidence, CONFIDENCE_MAX)


def score_incident(
    incident: Any,
    evidence: Optional[Iterable[Any]] = None,
) -> ConfidenceResult:
    """Score an incident (row dict or model) against its live evidence rows."""
    rows = list(evidence or [])
    verified = sum(1 for e in rows if field_of(e, "is_verified"))
    narrative = has_narrative_detail(incident)
    return ConfidenceResult(
        confidence=calculate_confidence(len(rows), verified, narrative),
        evidence_count=len(rows),
        verified_evidence_count=verified,
        has_narrative_detail=narrative,
    )


def initial_confidence(incident: Any) -> int:
    """Confidence at creation, before any evidence exists (10 or 20)."""
    return score_incident(incident, []).confidence
