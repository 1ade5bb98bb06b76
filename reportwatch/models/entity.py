"""
Entity models: the subjects incident reports are filed against.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field, field_validator

_WHITESPACE = re.compile(r"\s+")


class EntityType(str, Enum):
    """Kind of subject being reported."""
    PERSON = "person"
    BUSINESS = "business"
    PHONE = "phone"
    WEBSITE = "website"
    SERVICE = "service"


def normalize_identifier(identifier: str) -> str:
    """Lowercase, trim and drop internal whitespace ("+1 555 0100" -> "+15550100")."""
    return _WHITESPACE.sub("", identifier.strip().lower())


class EntityRef(BaseModel):
    """Inline entity supplied with a submission when no entity_id is known."""
    type: EntityType
    name: str = Field(min_length=1, max_length=200)
    identifier: str = Field(min_length=1, max_length=500)

    @field_validator("name", "identifier")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @property
    def normalized_identifier(self) -> str:
        return normalize_identifier(self.identifier)
