"""
Pydantic models for the reportwatch API.
"""

from .entity import (
    EntityType,
    EntityRef,
    normalize_identifier,
)
from .incident import (
    IncidentCategory,
    Severity,
    IncidentStatus,
    FlagAction,
    IncidentSubmission,
    FlagRequest,
    StatusUpdate,
)
from .evidence import (
    EvidenceCreate,
    EvidenceVerificationUpdate,
)
from .risk import RiskBreakdown

__all__ = [
    # Entity
    "EntityType",
    "EntityRef",
    "normalize_identifier",
    # Incident
    "IncidentCategory",
    "Severity",
    "IncidentStatus",
    "FlagAction",
    "IncidentSubmission",
    "FlagRequest",
    "StatusUpdate",
    # Evidence
    "EvidenceCreate",
    "EvidenceVerificationUpdate",
    # Risk
    "RiskBreakdown",
]
