"""
Verification Result Models

Ephemeral outputs of the bytecode verification engine. None of these are
persisted; the worker renders them into the deployment's verification
fields.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """
    Closed set of reasons a verification attempt can fail.

    Input errors are terminal and consume no retries; the rest count against
    the deployment's retry budget.
    """

    # Engine, level 1
    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"
    LEVEL1_ERROR = "LEVEL1_ERROR"
    # Engine, level 3
    COMPILE_ERROR = "COMPILE_ERROR"
    BYTECODE_MISMATCH = "BYTECODE_MISMATCH"
    # Worker
    TIMEOUT = "TIMEOUT"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    # Input errors
    NO_SOURCE_CODE = "NO_SOURCE_CODE"
    SOURCE_CODE_NOT_FOUND = "SOURCE_CODE_NOT_FOUND"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    UNSUPPORTED_CHAIN = "UNSUPPORTED_CHAIN"


class VerificationFailure(BaseModel):
    """A tagged failure with an optional human-readable detail."""

    kind: FailureKind
    detail: str | None = None

    def __str__(self) -> str:
        if self.detail:
            return f"{self.kind.value}: {self.detail}"
        return self.kind.value


class BytecodeComparisonResult(BaseModel):
    """Outcome of comparing on-chain and compiled bytecode."""

    matches: bool
    on_chain_length: int = Field(description="Byte length of the compared on-chain code")
    compiled_length: int = Field(description="Byte length of the compared compiled code")
    on_chain_hash: str = Field(description="0x-prefixed keccak-256 of the on-chain side")
    compiled_hash: str = Field(description="0x-prefixed keccak-256 of the compiled side")


class VerificationDetails(BaseModel):
    """Raw material kept for diagnosing near misses."""

    on_chain_bytecode: str | None = None
    compiled_bytecode: str | None = None
    on_chain_hash: str | None = None
    compiled_hash: str | None = None
    on_chain_length: int | None = None
    compiled_length: int | None = None
    compiler_version: str | None = None
    contract_name: str | None = None


class VerificationResult(BaseModel):
    """
    Result of one verification attempt.

    level1: code exists at the address.
    level3: compiled runtime bytecode matches the on-chain bytecode.
    """

    level1: bool = False
    level3: bool = False
    errors: list[VerificationFailure] = Field(default_factory=list)
    details: VerificationDetails = Field(default_factory=VerificationDetails)

    @property
    def success(self) -> bool:
        return self.level1 and self.level3

    @property
    def error_kinds(self) -> list[FailureKind]:
        return [error.kind for error in self.errors]

    @property
    def error_message(self) -> str:
        """Errors rendered for storage on the deployment record."""
        return "; ".join(str(error) for error in self.errors) or "Verification failed"
