"""
Incident report models.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from .entity import EntityRef


class IncidentCategory(str, Enum):
    """What kind of harm the report describes."""
    FRAUD = "fraud"
    SCAM = "scam"
    HARASSMENT = "harassment"
    MISREPRESENTATION = "misrepresentation"
    NON_DELIVERY = "non_delivery"
    QUALITY_ISSUE = "quality_issue"
    SAFETY_CONCERN = "safety_concern"
    DATA_BREACH = "data_breach"
    UNAUTHORIZED_CHARGES = "unauthorized_charges"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    """Verification status. Only PENDING is non-terminal."""
    PENDING = "pending"
    VERIFIED = "verified"
    DISPUTED = "disputed"
    REJECTED = "rejected"


class FlagAction(str, Enum):
    DISPUTE = "dispute"
    FLAG_FALSE = "flag_false"
    FLAG_DUPLICATE = "flag_duplicate"


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class IncidentSubmission(BaseModel):
    """Anonymous incident submission body."""
    entity_id: Optional[UUID] = None
    entity: Optional[EntityRef] = None

    title: str
    description: str
    what_was_promised: Optional[str] = Field(default=None, max_length=2000)
    what_actually_happened: Optional[str] = Field(default=None, max_length=2000)

    category: IncidentCategory
    severity: Severity
    date_occurred: date
    location: Optional[str] = Field(default=None, max_length=200)

    @field_validator("title")
    @classmethod
    def _title_length(cls, value: str) -> str:
        value = value.strip()
        if not 10 <= len(value) <= 200:
            raise ValueError("Title must be 10-200 characters")
        return value

    @field_validator("description")
    @classmethod
    def _description_length(cls, value: str) -> str:
        value = value.strip()
        if not 50 <= len(value) <= 2000:
            raise ValueError("Description must be 50-2000 characters")
        return value

    @field_validator("what_was_promised", "what_actually_happened", "location")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return _optional_text(value)

    @field_validator("date_occurred")
    @classmethod
    def _not_in_future(cls, value: date) -> date:
        if value > datetime.now(timezone.utc).date():
            raise ValueError("date_occurred cannot be in the future")
        return value

    @model_validator(mode="after")
    def _one_entity_reference(self) -> "IncidentSubmission":
        if self.entity_id is None and self.entity is None:
            raise ValueError("Either entity_id or entity object is required")
        if self.entity_id is not None and self.entity is not None:
            raise ValueError("Provide entity_id or entity, not both")
        return self


class FlagRequest(BaseModel):
    """Public dispute / flag body."""
    action: FlagAction
    reason: str
    contact_email: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def _reason_length(cls, value: str) -> str:
        value = value.strip()
        if not 10 <= len(value) <= 500:
            raise ValueError("Reason must be 10-500 characters")
        return value

    @field_validator("contact_email")
    @classmethod
    def _email_shape(cls, value: Optional[str]) -> Optional[str]:
        value = _optional_text(value)
        if value is None:
            return None
        local, _, domain = value.partition("@")
        if not local or "." not in domain or " " in value or domain.startswith("."):
            raise ValueError("Invalid email format")
        return value


class StatusUpdate(BaseModel):
    """Moderation status change."""
    status: IncidentStatus
    notes: Optional[str] = Field(default=None, max_length=1000)
