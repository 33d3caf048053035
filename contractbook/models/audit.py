"""
Safety Audit Models
"""

from pydantic import BaseModel, Field

AUDIT_ERROR_PREFIX = "LLM audit failed: "


class AuditVerdict(BaseModel):
    """Classifier verdict for one contract source."""

    safe: bool
    reason: str | None = Field(default=None, description="Short description of the violation")


class AuditSummary(BaseModel):
    """Counts for one audit pass."""

    audited: int = 0
    flagged: int = 0
    skipped: int = 0
    flagged_ids: list[str] = Field(default_factory=list)
