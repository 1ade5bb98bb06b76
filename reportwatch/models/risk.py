"""
Entity risk breakdown model.
"""

from typing import Dict

from pydantic import BaseModel, Field


class RiskBreakdown(BaseModel):
    """Incident counts behind a stored risk indicator."""
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(
        default_factory=lambda: {"low": 0, "medium": 0, "high": 0, "critical": 0})
    by_status: Dict[str, int] = Field(
        default_factory=lambda: {"pending": 0, "verified": 0, "disputed": 0})
