"""
Base Models and Common Types

Foundation classes shared by the deployment record and the ephemeral
verification result models.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


def convert_neo4j_datetime(value: Any) -> datetime | None:
    """
    Convert a stored timestamp to a timezone-aware Python datetime.

    Accepts native datetimes, Neo4j DateTime objects and ISO-8601 strings so
    records read back from the store always carry parseable timestamps.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
    # Handle Neo4j DateTime object
    if hasattr(value, "to_native"):
        native: datetime = value.to_native()
        return native if native.tzinfo else native.replace(tzinfo=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


class ContractbookModel(BaseModel):
    """Base model for all Contractbook entities with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )
