"""
Verification Worker

Drives pending deployments through the verification engine:

1. Pick up to batch_size pending deployments with a source, oldest first
2. Verify them one at a time (engine call bounded by a timeout)
3. Persist the outcome: verified, pending with one more retry used, or failed
4. Submit newly verified sources to the block explorer (best effort)
5. Hand the newly verified IDs to the safety audit

Only one cycle runs at a time. A cycle triggered while another is in
flight returns immediately without doing anything.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from contractbook.config import is_supported_chain
from contractbook.explorer.client import ExplorerClient
from contractbook.models.audit import AuditSummary
from contractbook.models.deployment import (
    Deployment,
    DeploymentUpdate,
    VerificationStatus,
    is_valid_address,
)
from contractbook.models.explorer import ExplorerSubmission, ExplorerVerifyResult
from contractbook.models.verification import (
    FailureKind,
    VerificationFailure,
    VerificationResult,
)
from contractbook.repositories.deployment_repository import DeploymentRepository
from contractbook.services.audit import SafetyAuditor
from contractbook.storage.source_store import SourceStore
from contractbook.verification.bytecode import hash_bytecode
from contractbook.verification.engine import VerificationEngine

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class VerificationJobResult:
    """Outcome of processing one deployment in a cycle."""

    deployment_id: str
    success: bool
    errors: list[str] = field(default_factory=list)
    status: VerificationStatus | None = None
    transitioned: bool = False  # became verified during this cycle
    explorer: ExplorerVerifyResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "success": self.success,
            "errors": self.errors,
            "status": self.status.value if self.status else None,
            "transitioned": self.transitioned,
            "explorer": self.explorer.model_dump(mode="json") if self.explorer else None,
        }


@dataclass
class CycleReport:
    """Everything one verification cycle did."""

    results: list[VerificationJobResult] = field(default_factory=list)
    audit: AuditSummary = field(default_factory=AuditSummary)
    duration_ms: float = 0.0

    @property
    def verified(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def newly_verified_ids(self) -> list[str]:
        return [r.deployment_id for r in self.results if r.transitioned]

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": len(self.results),
            "verified": self.verified,
            "failed": self.failed,
            "duration_ms": round(self.duration_ms, 1),
            "results": [r.to_dict() for r in self.results],
            "audit": self.audit.model_dump(),
        }


class VerificationWorker:
    """
    Single-flight verification cycle over the pending backlog.

    The retry ceiling lives on the deployment record, so it survives
    restarts of the worker.
    """

    def __init__(
        self,
        repository: DeploymentRepository,
        source_store: SourceStore,
        engine: VerificationEngine,
        explorer_client: ExplorerClient | None = None,
        auditor: SafetyAuditor | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        optimizer_runs: int = 200,
    ) -> None:
        """
        Initialize the worker.

        Args:
            repository: Deployment record store
            source_store: Uploaded source store
            engine: Bytecode verification engine
            explorer_client: Explorer client; submission is skipped when None
            auditor: Safety auditor run over newly verified deployments
            batch_size: Deployments selected per cycle
            max_retries: Failed attempts before a deployment is marked failed
            timeout_seconds: Upper bound for one engine run
            optimizer_runs: Optimizer runs reported to the explorer
        """
        self._repository = repository
        self._source_store = source_store
        self._engine = engine
        self._explorer = explorer_client
        self._auditor = auditor
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._timeout = timeout_seconds
        self._optimizer_runs = optimizer_runs
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        """Whether a cycle is in flight."""
        return self._lock.locked()

    async def run_cycle(self) -> CycleReport | None:
        """
        Run one verification cycle.

        Returns:
            CycleReport, or None if another cycle was already running
        """
        if self._lock.locked():
            logger.debug("verification_cycle_skipped", reason="cycle already running")
            return None

        async with self._lock:
            start = time.monotonic()
            logger.info("verification_cycle_starting", batch_size=self._batch_size)

            try:
                report = await self._run_batch()
            except Exception as e:
                logger.error("verification_cycle_failed", error=str(e))
                raise

            report.duration_ms = (time.monotonic() - start) * 1000
            logger.info(
                "verification_cycle_completed",
                processed=len(report.results),
                verified=report.verified,
                failed=report.failed,
                audited=report.audit.audited,
                flagged=report.audit.flagged,
                duration_ms=round(report.duration_ms, 1),
            )
            return report

    async def _run_batch(self) -> CycleReport:
        report = CycleReport()
        pending = await self._repository.find_pending_batch(self._batch_size)

        for deployment in pending:
            logger.debug("verification_processing", deployment_id=deployment.id)
            try:
                result = await self.process_deployment(deployment.id)
            except Exception as e:
                # Recording the failure itself failed; nothing was written
                logger.error(
                    "verification_job_crashed",
                    deployment_id=deployment.id,
                    error=str(e),
                )
                result = VerificationJobResult(
                    deployment_id=deployment.id,
                    success=False,
                    errors=[str(VerificationFailure(kind=FailureKind.UNEXPECTED_ERROR, detail=str(e)))],
                )
            report.results.append(result)

        if report.newly_verified_ids and self._auditor is not None:
            report.audit = await self._auditor.audit_verified_deployments(report.newly_verified_ids)

        return report

    async def process_deployment(self, deployment_id: str) -> VerificationJobResult:
        """
        Verify one deployment and persist the outcome.

        The record is re-read first so stale batch entries are handled:
        verified deployments count as success, failed ones are left alone.
        """
        deployment = await self._repository.find_by_id(deployment_id)

        if deployment is None:
            return VerificationJobResult(
                deployment_id=deployment_id,
                success=False,
                errors=["Deployment not found"],
            )

        if deployment.verification_status == VerificationStatus.VERIFIED:
            return VerificationJobResult(
                deployment_id=deployment_id,
                success=True,
                status=VerificationStatus.VERIFIED,
            )

        if deployment.verification_status == VerificationStatus.FAILED:
            exhausted = deployment.verification_retry_count >= self._max_retries
            return VerificationJobResult(
                deployment_id=deployment_id,
                success=False,
                errors=["Max retries exceeded" if exhausted else "Deployment already failed"],
                status=VerificationStatus.FAILED,
            )

        try:
            input_error = self._check_inputs(deployment)
            if input_error is not None:
                return await self._fail_terminal(deployment, input_error)

            source = await self._source_store.get_source(
                deployment.chain_key,
                deployment.contract_address,
            )
            if not source:
                return await self._fail_terminal(
                    deployment,
                    VerificationFailure(kind=FailureKind.SOURCE_CODE_NOT_FOUND),
                )

            try:
                result = await asyncio.wait_for(
                    self._engine.verify(
                        deployment.contract_address,
                        deployment.chain_key,
                        source,
                        deployment.contract_name,
                    ),
                    timeout=self._timeout,
                )
            except TimeoutError:
                return await self._record_failure(
                    deployment,
                    f"{FailureKind.TIMEOUT.value}: Verification timed out after {self._timeout}s",
                )

            if result.success:
                return await self._mark_verified(deployment, result, source)

            return await self._record_failure(deployment, result.error_message)

        except Exception as e:
            logger.error(
                "verification_unexpected_error",
                deployment_id=deployment_id,
                error=str(e),
            )
            return await self._record_failure(
                deployment,
                str(VerificationFailure(kind=FailureKind.UNEXPECTED_ERROR, detail=str(e))),
            )

    @staticmethod
    def _check_inputs(deployment: Deployment) -> VerificationFailure | None:
        """Problems no retry can fix."""
        if not deployment.has_source:
            return VerificationFailure(kind=FailureKind.NO_SOURCE_CODE)
        if not is_valid_address(deployment.contract_address):
            return VerificationFailure(
                kind=FailureKind.INVALID_ADDRESS,
                detail=deployment.contract_address,
            )
        if not is_supported_chain(deployment.chain_key):
            return VerificationFailure(
                kind=FailureKind.UNSUPPORTED_CHAIN,
                detail=deployment.chain_key,
            )
        return None

    async def _fail_terminal(
        self,
        deployment: Deployment,
        failure: VerificationFailure,
    ) -> VerificationJobResult:
        """Fail without consuming a retry."""
        await self._repository.update(
            deployment.id,
            DeploymentUpdate(
                verification_status=VerificationStatus.FAILED,
                verification_error=str(failure),
            ),
        )
        logger.info(
            "verification_failed_terminal",
            deployment_id=deployment.id,
            kind=failure.kind.value,
        )
        return VerificationJobResult(
            deployment_id=deployment.id,
            success=False,
            errors=[str(failure)],
            status=VerificationStatus.FAILED,
        )

    async def _record_failure(self, deployment: Deployment, message: str) -> VerificationJobResult:
        """Use up one retry; fail the deployment once the ceiling is reached."""
        retry_count = deployment.verification_retry_count + 1
        fields: dict[str, Any] = {
            "verification_retry_count": retry_count,
            "verification_error": message,
        }

        status = VerificationStatus.PENDING
        if retry_count >= self._max_retries:
            status = VerificationStatus.FAILED
            fields["verification_status"] = status

        await self._repository.update(deployment.id, DeploymentUpdate(**fields))
        logger.info(
            "verification_attempt_failed",
            deployment_id=deployment.id,
            retry_count=retry_count,
            max_retries=self._max_retries,
            status=status.value,
            error=message,
        )
        return VerificationJobResult(
            deployment_id=deployment.id,
            success=False,
            errors=[message],
            status=status,
        )

    async def _mark_verified(
        self,
        deployment: Deployment,
        result: VerificationResult,
        source: str,
    ) -> VerificationJobResult:
        fields: dict[str, Any] = {
            "verification_status": VerificationStatus.VERIFIED,
            "verification_error": None,
            "contract_bytecode_hash": hash_bytecode(result.details.on_chain_bytecode or "0x"),
        }
        if deployment.verified_at is None:
            fields["verified_at"] = datetime.now(UTC)

        await self._repository.update(deployment.id, DeploymentUpdate(**fields))
        logger.info(
            "deployment_verified",
            deployment_id=deployment.id,
            address=deployment.contract_address,
            chain=deployment.chain_key,
        )

        job = VerificationJobResult(
            deployment_id=deployment.id,
            success=True,
            status=VerificationStatus.VERIFIED,
            transitioned=True,
        )
        job.explorer = await self._submit_to_explorer(deployment, result, source)
        return job

    async def _submit_to_explorer(
        self,
        deployment: Deployment,
        result: VerificationResult,
        source: str,
    ) -> ExplorerVerifyResult | None:
        """Best-effort explorer submission; never affects the verification outcome."""
        if self._explorer is None:
            return None

        submission_fields: dict[str, Any] = {
            "contract_address": deployment.contract_address,
            "chain_key": deployment.chain_key,
            "contract_name": result.details.contract_name or deployment.contract_name or "",
            "source_code": source,
            "runs": self._optimizer_runs,
            "constructor_args": deployment.constructor_args,
        }
        if result.details.compiler_version:
            submission_fields["compiler_version"] = result.details.compiler_version

        try:
            explorer_result = await self._explorer.verify_on_explorer(
                ExplorerSubmission(**submission_fields)
            )
        except Exception as e:
            logger.warning(
                "explorer_verification_error",
                deployment_id=deployment.id,
                error=str(e),
            )
            return None

        logger.info(
            "explorer_verification_result",
            deployment_id=deployment.id,
            outcome=explorer_result.outcome.value,
            message=explorer_result.message,
            explorer_url=explorer_result.explorer_url,
        )
        return explorer_result
