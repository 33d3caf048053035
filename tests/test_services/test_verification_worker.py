"""
Tests for the verification worker.

The engine, explorer and auditor are mocked; the record store and source
store are in-memory.
"""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from contractbook.models.audit import AuditSummary
from contractbook.models.deployment import VerificationStatus
from contractbook.models.explorer import ExplorerOutcome, ExplorerVerifyResult
from contractbook.models.verification import (
    FailureKind,
    VerificationDetails,
    VerificationFailure,
    VerificationResult,
)
from contractbook.services.verification_worker import VerificationWorker
from contractbook.verification.bytecode import hash_bytecode

ON_CHAIN = "0x6080604052348015600f57600080fd5b"


def passed_result() -> VerificationResult:
    return VerificationResult(
        level1=True,
        level3=True,
        details=VerificationDetails(
            on_chain_bytecode=ON_CHAIN,
            compiled_bytecode=ON_CHAIN,
            compiler_version="v0.8.20+commit.a1b79de6",
            contract_name="Counter",
        ),
    )


def mismatch_result() -> VerificationResult:
    return VerificationResult(
        level1=True,
        errors=[VerificationFailure(kind=FailureKind.BYTECODE_MISMATCH, detail="differs")],
    )


# ==================== Fixtures ====================


@pytest.fixture
def mock_engine():
    """Engine that verifies everything."""
    engine = MagicMock()
    engine.verify = AsyncMock(return_value=passed_result())
    return engine


@pytest.fixture
def mock_auditor():
    """Auditor that flags nothing."""
    auditor = MagicMock()
    auditor.audit_verified_deployments = AsyncMock(return_value=AuditSummary())
    return auditor


@pytest.fixture
def worker(repository, source_store, mock_engine, mock_auditor):
    return VerificationWorker(
        repository=repository,
        source_store=source_store,
        engine=mock_engine,
        auditor=mock_auditor,
    )


@pytest.fixture
def pending(repository, source_store, deployment_factory, counter_source):
    """One pending deployment with its source uploaded."""
    deployment = repository.add(deployment_factory())
    source_store.put(deployment.chain_key, deployment.contract_address, counter_source)
    return deployment


# ==================== Tests ====================


class TestSuccessfulVerification:
    """Tests for the pending -> verified transition."""

    @pytest.mark.asyncio
    async def test_marks_verified(self, worker, repository, pending, mock_engine, counter_source):
        """Test that a passing deployment becomes verified with a bytecode hash."""
        report = await worker.run_cycle()

        stored = repository.deployments[pending.id]
        assert stored.verification_status == VerificationStatus.VERIFIED
        assert stored.verified_at is not None
        assert stored.verification_error is None
        assert stored.contract_bytecode_hash == hash_bytecode(ON_CHAIN)
        assert stored.verification_retry_count == 0

        assert report.verified == 1
        assert report.newly_verified_ids == [pending.id]
        mock_engine.verify.assert_awaited_once_with(
            pending.contract_address, "bsc-testnet", counter_source, "Counter"
        )

    @pytest.mark.asyncio
    async def test_existing_verified_at_preserved(
        self, worker, repository, source_store, deployment_factory, counter_source
    ):
        """Test that an earlier verified_at is never overwritten."""
        earlier = datetime(2025, 6, 1, tzinfo=UTC)
        deployment = repository.add(deployment_factory(verified_at=earlier))
        source_store.put(deployment.chain_key, deployment.contract_address, counter_source)

        await worker.run_cycle()

        assert repository.deployments[deployment.id].verified_at == earlier

    @pytest.mark.asyncio
    async def test_audit_receives_newly_verified(self, worker, pending, mock_auditor):
        """Test that newly verified IDs are handed to the audit pass."""
        await worker.run_cycle()

        mock_auditor.audit_verified_deployments.assert_awaited_once_with([pending.id])

    @pytest.mark.asyncio
    async def test_audit_not_called_without_transitions(self, worker, pending, mock_engine, mock_auditor):
        """Test that a cycle with no new verifications skips the audit."""
        mock_engine.verify = AsyncMock(return_value=mismatch_result())

        await worker.run_cycle()

        mock_auditor.audit_verified_deployments.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_verified_is_success_without_writes(
        self, worker, repository, deployment_factory, mock_engine
    ):
        """Test that re-processing a verified deployment changes nothing."""
        deployment = repository.add(deployment_factory(
            verification_status=VerificationStatus.VERIFIED,
        ))

        result = await worker.process_deployment(deployment.id)

        assert result.success is True
        assert result.transitioned is False
        assert repository.updates == []
        mock_engine.verify.assert_not_awaited()


class TestRetryCeiling:
    """Tests for retry accounting."""

    @pytest.mark.asyncio
    async def test_failed_after_max_retries(self, worker, repository, pending, mock_engine):
        """Test that three failing cycles fail the deployment and a fourth never runs."""
        mock_engine.verify = AsyncMock(return_value=mismatch_result())

        await worker.run_cycle()
        stored = repository.deployments[pending.id]
        assert stored.verification_status == VerificationStatus.PENDING
        assert stored.verification_retry_count == 1
        assert stored.verification_error.startswith("BYTECODE_MISMATCH")

        await worker.run_cycle()
        assert repository.deployments[pending.id].verification_retry_count == 2
        assert repository.deployments[pending.id].verification_status == VerificationStatus.PENDING

        await worker.run_cycle()
        stored = repository.deployments[pending.id]
        assert stored.verification_retry_count == 3
        assert stored.verification_status == VerificationStatus.FAILED

        report = await worker.run_cycle()
        assert report.results == []
        assert mock_engine.verify.await_count == 3

    @pytest.mark.asyncio
    async def test_failed_deployment_left_alone(self, worker, repository, deployment_factory, mock_engine):
        """Test that a failed deployment at the ceiling is never re-verified."""
        deployment = repository.add(deployment_factory(
            verification_status=VerificationStatus.FAILED,
            verification_retry_count=3,
        ))

        result = await worker.process_deployment(deployment.id)

        assert result.success is False
        assert result.errors == ["Max retries exceeded"]
        assert repository.updates == []
        mock_engine.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_below_ceiling_left_alone(self, worker, repository, deployment_factory, mock_engine):
        """Test that a deployment failed by other means is not retried."""
        deployment = repository.add(deployment_factory(
            verification_status=VerificationStatus.FAILED,
            verification_retry_count=0,
        ))

        result = await worker.process_deployment(deployment.id)

        assert result.errors == ["Deployment already failed"]
        assert repository.updates == []
        mock_engine.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_deployment(self, worker):
        """Test that an unknown ID reports not found."""
        result = await worker.process_deployment("nope")

        assert result.success is False
        assert result.errors == ["Deployment not found"]


class TestInputErrors:
    """Tests for failures that consume no retries."""

    @pytest.mark.asyncio
    async def test_no_source_reference(self, worker, repository, deployment_factory, mock_engine):
        """Test that a deployment without a source fails immediately."""
        deployment = repository.add(deployment_factory(source_url=None))

        result = await worker.process_deployment(deployment.id)

        stored = repository.deployments[deployment.id]
        assert stored.verification_status == VerificationStatus.FAILED
        assert stored.verification_error == "NO_SOURCE_CODE"
        assert stored.verification_retry_count == 0
        assert result.errors == ["NO_SOURCE_CODE"]
        mock_engine.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_source_reference_not_selected(self, worker, repository, deployment_factory):
        """Test that deployments without a source are not picked up by a cycle."""
        repository.add(deployment_factory(source_url=None))

        report = await worker.run_cycle()

        assert report.results == []

    @pytest.mark.asyncio
    async def test_source_missing_from_store(self, worker, repository, deployment_factory, mock_engine):
        """Test that a referenced but absent source fails without a retry."""
        deployment = repository.add(deployment_factory())

        result = await worker.process_deployment(deployment.id)

        stored = repository.deployments[deployment.id]
        assert stored.verification_status == VerificationStatus.FAILED
        assert stored.verification_error == "SOURCE_CODE_NOT_FOUND"
        assert stored.verification_retry_count == 0
        assert result.status == VerificationStatus.FAILED
        mock_engine.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_address(self, worker, repository, deployment_factory):
        """Test that a malformed address fails without a retry."""
        deployment = repository.add(deployment_factory(contract_address="0x1234"))

        await worker.process_deployment(deployment.id)

        stored = repository.deployments[deployment.id]
        assert stored.verification_status == VerificationStatus.FAILED
        assert stored.verification_error == "INVALID_ADDRESS: 0x1234"
        assert stored.verification_retry_count == 0

    @pytest.mark.asyncio
    async def test_unsupported_chain(self, worker, repository, deployment_factory):
        """Test that an unknown chain fails without a retry."""
        deployment = repository.add(deployment_factory(chain_key="solana-mainnet"))

        await worker.process_deployment(deployment.id)

        stored = repository.deployments[deployment.id]
        assert stored.verification_status == VerificationStatus.FAILED
        assert stored.verification_error == "UNSUPPORTED_CHAIN: solana-mainnet"
        assert stored.verification_retry_count == 0


class TestEngineFailures:
    """Tests for timeouts and unexpected errors."""

    @pytest.mark.asyncio
    async def test_timeout_counts_as_retry(self, repository, source_store, pending, mock_engine):
        """Test that a slow engine run is abandoned and costs one retry."""

        async def slow_verify(*args, **kwargs):
            await asyncio.sleep(10)

        mock_engine.verify = AsyncMock(side_effect=slow_verify)
        worker = VerificationWorker(
            repository=repository,
            source_store=source_store,
            engine=mock_engine,
            timeout_seconds=0.01,
        )

        result = await worker.process_deployment(pending.id)

        stored = repository.deployments[pending.id]
        assert stored.verification_status == VerificationStatus.PENDING
        assert stored.verification_retry_count == 1
        assert stored.verification_error == "TIMEOUT: Verification timed out after 0.01s"
        assert result.success is False

    @pytest.mark.asyncio
    async def test_unexpected_error_counts_as_retry(self, worker, repository, pending, mock_engine):
        """Test that an engine crash is recorded as UNEXPECTED_ERROR."""
        mock_engine.verify = AsyncMock(side_effect=RuntimeError("boom"))

        await worker.run_cycle()

        stored = repository.deployments[pending.id]
        assert stored.verification_status == VerificationStatus.PENDING
        assert stored.verification_retry_count == 1
        assert stored.verification_error == "UNEXPECTED_ERROR: boom"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(
        self, worker, repository, source_store, deployment_factory, counter_source, mock_engine
    ):
        """Test that later deployments are processed after a crash."""
        first = repository.add(deployment_factory(
            contract_address="0x1111111111111111111111111111111111111111",
        ))
        second = repository.add(deployment_factory(
            contract_address="0x2222222222222222222222222222222222222222",
        ))
        for deployment in (first, second):
            source_store.put(deployment.chain_key, deployment.contract_address, counter_source)

        mock_engine.verify = AsyncMock(side_effect=[RuntimeError("boom"), passed_result()])

        report = await worker.run_cycle()

        assert [r.deployment_id for r in report.results] == [first.id, second.id]
        assert repository.deployments[first.id].verification_status == VerificationStatus.PENDING
        assert repository.deployments[second.id].verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_store_write_failure_reported(self, worker, repository, pending, mock_engine):
        """Test that a crash while recording a failure still yields a result."""
        mock_engine.verify = AsyncMock(return_value=mismatch_result())
        repository.update = AsyncMock(side_effect=ConnectionError("store down"))

        report = await worker.run_cycle()

        assert len(report.results) == 1
        assert report.results[0].success is False
        assert "UNEXPECTED_ERROR" in report.results[0].errors[0]


class TestBatchSelection:
    """Tests for batch size and ordering."""

    @pytest.mark.asyncio
    async def test_oldest_first_and_batch_size(
        self, repository, source_store, deployment_factory, counter_source, mock_engine
    ):
        """Test that at most batch_size deployments are taken, oldest first."""
        deployments = []
        for i in range(4):
            address = "0x" + f"{i + 1:040x}"
            deployment = repository.add(deployment_factory(contract_address=address))
            source_store.put(deployment.chain_key, address, counter_source)
            deployments.append(deployment)

        worker = VerificationWorker(
            repository=repository,
            source_store=source_store,
            engine=mock_engine,
            batch_size=3,
        )
        report = await worker.run_cycle()

        assert [r.deployment_id for r in report.results] == [d.id for d in deployments[:3]]
        assert repository.deployments[deployments[3].id].verification_status == VerificationStatus.PENDING


class TestSingleFlight:
    """Tests for cycle exclusivity."""

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_noop(self, worker, pending, mock_engine):
        """Test that a second cycle started mid-flight returns None."""
        release = asyncio.Event()
        started = asyncio.Event()

        async def blocked_verify(*args, **kwargs):
            started.set()
            await release.wait()
            return passed_result()

        mock_engine.verify = AsyncMock(side_effect=blocked_verify)

        first = asyncio.create_task(worker.run_cycle())
        await started.wait()

        assert worker.is_running is True
        assert await worker.run_cycle() is None

        release.set()
        report = await first

        assert report is not None
        assert mock_engine.verify.await_count == 1
        assert worker.is_running is False

    @pytest.mark.asyncio
    async def test_lock_released_after_error(self, worker, repository, pending):
        """Test that a failing cycle does not block the next one."""
        original = repository.find_pending_batch
        repository.find_pending_batch = AsyncMock(side_effect=ConnectionError("store down"))

        with pytest.raises(ConnectionError):
            await worker.run_cycle()

        repository.find_pending_batch = original
        assert worker.is_running is False
        report = await worker.run_cycle()
        assert report.verified == 1


class TestExplorerSubmission:
    """Tests for best-effort explorer submission."""

    @pytest.mark.asyncio
    async def test_submission_built_from_verification(
        self, repository, source_store, deployment_factory, counter_source, mock_engine
    ):
        """Test that the explorer receives the verified source and settings."""
        deployment = repository.add(deployment_factory(constructor_args="0x00ff"))
        source_store.put(deployment.chain_key, deployment.contract_address, counter_source)
        explorer_result = ExplorerVerifyResult(
            outcome=ExplorerOutcome.CONFIRMED,
            message="Pass - Verified",
            explorer_url="https://testnet.bscscan.com/address/x#code",
            guid="guid-1",
        )
        explorer = MagicMock()
        explorer.verify_on_explorer = AsyncMock(return_value=explorer_result)
        worker = VerificationWorker(
            repository=repository,
            source_store=source_store,
            engine=mock_engine,
            explorer_client=explorer,
            optimizer_runs=200,
        )

        result = await worker.process_deployment(deployment.id)

        submission = explorer.verify_on_explorer.await_args.args[0]
        assert submission.contract_address == deployment.contract_address
        assert submission.chain_key == "bsc-testnet"
        assert submission.contract_name == "Counter"
        assert submission.source_code == counter_source
        assert submission.runs == 200
        assert submission.constructor_args == "0x00ff"
        assert submission.compiler_version == "v0.8.20+commit.a1b79de6"
        assert result.explorer == explorer_result

    @pytest.mark.asyncio
    async def test_explorer_crash_does_not_regress(
        self, repository, source_store, pending, mock_engine
    ):
        """Test that an explorer failure leaves the deployment verified."""
        explorer = MagicMock()
        explorer.verify_on_explorer = AsyncMock(side_effect=RuntimeError("explorer down"))
        worker = VerificationWorker(
            repository=repository,
            source_store=source_store,
            engine=mock_engine,
            explorer_client=explorer,
        )

        result = await worker.process_deployment(pending.id)

        assert result.success is True
        assert result.explorer is None
        assert repository.deployments[pending.id].verification_status == VerificationStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_explorer_rejection_does_not_regress(
        self, repository, source_store, pending, mock_engine
    ):
        """Test that an explorer rejection is reported but changes nothing."""
        explorer = MagicMock()
        explorer.verify_on_explorer = AsyncMock(return_value=ExplorerVerifyResult(
            outcome=ExplorerOutcome.REJECTED,
            message="Fail - Unable to verify",
            explorer_url="https://testnet.bscscan.com",
        ))
        worker = VerificationWorker(
            repository=repository,
            source_store=source_store,
            engine=mock_engine,
            explorer_client=explorer,
        )

        result = await worker.process_deployment(pending.id)

        assert result.success is True
        assert result.explorer.outcome == ExplorerOutcome.REJECTED
        assert repository.deployments[pending.id].verification_status == VerificationStatus.VERIFIED


class TestCycleReport:
    """Tests for report serialization."""

    @pytest.mark.asyncio
    async def test_to_dict(self, worker, pending):
        """Test that the report renders as plain data."""
        report = await worker.run_cycle()

        data = report.to_dict()

        assert data["processed"] == 1
        assert data["verified"] == 1
        assert data["failed"] == 0
        assert data["results"][0]["status"] == "verified"
        assert data["results"][0]["transitioned"] is True
        assert data["audit"]["flagged"] == 0
