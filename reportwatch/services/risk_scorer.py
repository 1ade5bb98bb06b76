"""
Explainable multi-factor risk indicator for an entity.

The indicator is a weighted sum of four factors over the entity's
participating incidents (``pending`` and ``verified`` only):

  Factor        Weight  Raw value
  ------------  ------  ---------------------------------------------------
  frequency       30    min(count / 10, 1)
  severity        35    sum(severity_weight * status_multiplier) / (count * 4)
  recency         20    mean(0.5 ** (days_since / 90))
  verification    15    verified / count

The severity raw ratio can exceed 1 because verified incidents carry a 1.5x
multiplier; it is reported as-is and its weighted contribution is clamped to
the 35-point share. The final sum is rounded half-up and clamped to [0, 100].

Every factor carries a plain-language explanation so the number can be shown
to users alongside its derivation.
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Optional

from reportwatch.utils.rows import enum_value, field_of
from .thresholds import (
    FREQUENCY_WEIGHT,
    SEVERITY_WEIGHT,
    RECENCY_WEIGHT,
    VERIFICATION_WEIGHT,
    FREQUENCY_THRESHOLD,
    SEVERITY_WEIGHTS,
    MAX_SEVERITY_WEIGHT,
    VERIFIED_SEVERITY_MULTIPLIER,
    RECENCY_HALF_LIFE_DAYS,
    RECENT_WINDOW_DAYS,
    RISK_LEVEL_BOUNDS,
    SCORED_STATUSES,
    RISK_ALGORITHM_VERSION,
)


@dataclass
class FactorBreakdown:
    raw: float
    weighted: float
    weight: int
    explanation: str


@dataclass
class RiskAssessment:
    score: int
    level: str
    factors: Dict[str, FactorBreakdown] = field(default_factory=dict)
    total_incidents: int = 0
    verified_incidents: int = 0
    last_incident_at: Optional[datetime] = None
    algorithm_version: str = RISK_ALGORITHM_VERSION

    def to_row(self, entity_id, calculated_at: datetime) -> Dict[str, Any]:
        """The persisted RiskScore row, every derived field overwritten."""
        return {
            "entity_id": entity_id,
            "total_incidents": self.total_incidents,
            "verified_incidents": self.verified_incidents,
            "severity_score": self.score,
            "risk_level": self.level,
            "last_incident_at": self.last_incident_at,
            "calculated_at": calculated_at,
        }

    def factors_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: asdict(f) for name, f in self.factors.items()}


def _as_datetime(value: Any) -> Optional[datetime]:
    """Midnight UTC for dates; aware UTC for datetimes; parses ISO strings."""
    if value is None:
        return None
    if isinstance(value, str):
        value = date.fromisoformat(value[:10]) if len(value) <= 10 else datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def determine_risk_level(score: int) -> str:
    if score <= 0:
        return "unknown"
    for upper, level in RISK_LEVEL_BOUNDS:
        if score <= upper:
            return level
    return RISK_LEVEL_BOUNDS[-1][1]


def _pct(ratio: float) -> int:
    return round_half_up(ratio * 100)


def _empty_assessment() -> RiskAssessment:
    weights = {
        "frequency": FREQUENCY_WEIGHT,
        "severity": SEVERITY_WEIGHT,
        "recency": RECENCY_WEIGHT,
        "verification": VERIFICATION_WEIGHT,
    }
    return RiskAssessment(
        score=0,
        level="unknown",
        factors={
            name: FactorBreakdown(
                raw=0.0,
                weighted=0.0,
                weight=weight,
                explanation="No data: no pending or verified incidents have been reported.",
            )
            for name, weight in weights.items()
        },
    )


def calculate_risk_score(
    incidents: Iterable[Any],
    now: Optional[datetime] = None,
) -> RiskAssessment:
    """Score an entity from all of its incidents (rows or models).

    Disputed and rejected incidents are filtered out here, so callers can
    pass the entity's complete incident list.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    scored: List[Any] = [
        i for i in incidents if enum_value(field_of(i, "status")) in SCORED_STATUSES
    ]
    if not scored:
        return _empty_assessment()

    count = len(scored)
    verified = sum(1 for i in scored if enum_value(field_of(i, "status")) == "verified")

    # Frequency
    frequency_raw = min(count / FREQUENCY_THRESHOLD, 1.0)
    frequency = FactorBreakdown(
        raw=frequency_raw,
        weighted=frequency_raw * FREQUENCY_WEIGHT,
        weight=FREQUENCY_WEIGHT,
        explanation=(
            f"{count} incident{'s' if count != 1 else ''} reported. "
            f"Score: {_pct(frequency_raw)}% of threshold "
            f"({FREQUENCY_THRESHOLD} incidents = max)."
        ),
    )

    # Severity
    by_severity = {level: 0 for level in SEVERITY_WEIGHTS}
    severity_sum = 0.0
    for i in scored:
        level = enum_value(field_of(i, "severity"))
        by_severity[level] = by_severity.get(level, 0) + 1
        multiplier = (
            VERIFIED_SEVERITY_MULTIPLIER
            if enum_value(field_of(i, "status")) == "verified" else 1.0
        )
        severity_sum += SEVERITY_WEIGHTS.get(level, 1) * multiplier
    severity_raw = severity_sum / (count * MAX_SEVERITY_WEIGHT)
    severity = FactorBreakdown(
        raw=severity_raw,
        weighted=min(severity_raw * SEVERITY_WEIGHT, float(SEVERITY_WEIGHT)),
        weight=SEVERITY_WEIGHT,
        explanation=(
            f"Severity distribution: {by_severity['critical']} critical, "
            f"{by_severity['high']} high, {by_severity['medium']} medium, "
            f"{by_severity['low']} low ({verified} verified, weighted "
            f"×{VERIFIED_SEVERITY_MULTIPLIER}). "
            f"Weighted average: {_pct(severity_raw)}% of maximum."
        ),
    )

    # Recency
    occurred = [_as_datetime(field_of(i, "date_occurred")) for i in scored]
    decay_total = 0.0
    recent = 0
    for when in occurred:
        if when is None:
            days_since = 0.0
        else:
            days_since = max((now - when).total_seconds() / 86400.0, 0.0)
        decay_total += 0.5 ** (days_since / RECENCY_HALF_LIFE_DAYS)
        if days_since <= RECENT_WINDOW_DAYS:
            recent += 1
    recency_raw = decay_total / count
    recency = FactorBreakdown(
        raw=recency_raw,
        weighted=recency_raw * RECENCY_WEIGHT,
        weight=RECENCY_WEIGHT,
        explanation=(
            f"{recent} incident{'s' if recent != 1 else ''} in the last "
            f"{RECENT_WINDOW_DAYS} days. Average recency weight: "
            f"{_pct(recency_raw)}% (older incidents decay with a "
            f"{RECENCY_HALF_LIFE_DAYS}-day half-life)."
        ),
    )

    # Verification
    verification_raw = verified / count
    verification = FactorBreakdown(
        raw=verification_raw,
        weighted=verification_raw * VERIFICATION_WEIGHT,
        weight=VERIFICATION_WEIGHT,
        explanation=(
            f"{verified} of {count} incidents verified "
            f"({_pct(verification_raw)}%). Verified incidents increase "
            f"indicator confidence."
        ),
    )

    factors = {
        "frequency": frequency,
        "severity": severity,
        "recency": recency,
        "verification": verification,
    }
    total = sum(f.weighted for f in factors.values())
    score = max(0, min(100, round_half_up(total)))

    known = [d for d in occurred if d is not None]
    return RiskAssessment(
        score=score,
        level=determine_risk_level(score),
        factors=factors,
        total_incidents=count,
        verified_incidents=verified,
        last_incident_at=max(known) if known else None,
    )
