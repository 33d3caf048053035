"""
Contractbook Data Models

Pydantic models for deployment records and for the ephemeral results of
verification, explorer submission and safety auditing.
"""

from contractbook.models.audit import AUDIT_ERROR_PREFIX, AuditSummary, AuditVerdict
from contractbook.models.deployment import (
    Deployment,
    DeploymentUpdate,
    VerificationStatus,
    is_valid_address,
)
from contractbook.models.explorer import (
    ExplorerOutcome,
    ExplorerSubmission,
    ExplorerVerifyResult,
)
from contractbook.models.verification import (
    BytecodeComparisonResult,
    FailureKind,
    VerificationDetails,
    VerificationFailure,
    VerificationResult,
)

__all__ = [
    # Deployment
    "Deployment",
    "DeploymentUpdate",
    "VerificationStatus",
    "is_valid_address",
    # Verification
    "BytecodeComparisonResult",
    "FailureKind",
    "VerificationDetails",
    "VerificationFailure",
    "VerificationResult",
    # Explorer
    "ExplorerOutcome",
    "ExplorerSubmission",
    "ExplorerVerifyResult",
    # Audit
    "AUDIT_ERROR_PREFIX",
    "AuditSummary",
    "AuditVerdict",
]
