"""
Evidence metadata models. File bytes live in object storage; only metadata is
persisted here.
"""

from typing import Optional

from pydantic import BaseModel, Field


class EvidenceCreate(BaseModel):
    """Metadata for a file already stored by the upload handler."""
    file_name: Optional[str] = Field(default=None, max_length=255)
    mime_type: str
    size_bytes: int = Field(ge=0)
    storage_path: Optional[str] = Field(default=None, max_length=1000)


class EvidenceVerificationUpdate(BaseModel):
    """Moderation-only change to an evidence row."""
    is_verified: bool
    verification_notes: Optional[str] = Field(default=None, max_length=1000)
