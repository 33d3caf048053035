"""
Deployment Models

The deployment record is owned by the record store; the verification
pipeline reads it and mutates only the verification fields.
"""

import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator

from contractbook.models.base import ContractbookModel, convert_neo4j_datetime

EVM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(address: str) -> bool:
    """Check for a 0x-prefixed 20-byte hex address."""
    return bool(EVM_ADDRESS_PATTERN.match(address))


class VerificationStatus(str, Enum):
    """
    Verification lifecycle of a deployment.

    pending -> verified | failed. A verified deployment can only regress to
    failed through the safety audit.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class Deployment(ContractbookModel):
    """A contract deployment submitted by an agent."""

    id: str = Field(description="Opaque record identifier")
    contract_address: str = Field(description="Address the contract lives at")
    chain_key: str = Field(description="Chain registry key, e.g. bsc-testnet")
    contract_name: str | None = Field(
        default=None, description="Declared contract name when the source holds several"
    )
    source_url: str | None = Field(default=None, description="Where the source was uploaded")
    constructor_args: str | None = Field(
        default=None, description="ABI-encoded constructor arguments (hex, no 0x)"
    )
    verification_status: VerificationStatus = Field(default=VerificationStatus.PENDING)
    verification_retry_count: int = Field(default=0, ge=0)
    verification_error: str | None = Field(default=None)
    contract_bytecode_hash: str | None = Field(default=None)
    verified_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("verified_at", "created_at", mode="before")
    @classmethod
    def convert_datetime(cls, v: Any) -> datetime | None:
        """Normalize stored timestamps."""
        return convert_neo4j_datetime(v)

    @property
    def has_source(self) -> bool:
        """Whether a source reference was ever uploaded."""
        return bool(self.source_url)


class DeploymentUpdate(ContractbookModel):
    """
    Partial update of the verification fields.

    Only fields explicitly set are written; setting a field to None clears it.
    """

    verification_status: VerificationStatus | None = None
    verification_retry_count: int | None = Field(default=None, ge=0)
    verification_error: str | None = None
    contract_bytecode_hash: str | None = None
    verified_at: datetime | None = None

    def to_fields(self) -> dict[str, Any]:
        """Fields to persist, enum values unwrapped."""
        fields = self.model_dump(exclude_unset=True)
        status = fields.get("verification_status")
        if isinstance(status, VerificationStatus):
            fields["verification_status"] = status.value
        return fields
