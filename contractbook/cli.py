"""
Contractbook Verifier CLI

Usage:
    contractbook worker                      # run the verification scheduler
    contractbook cycle                       # run one cycle, print a JSON report
    contractbook verify 0xADDR --chain bsc-testnet --file Token.sol [--explorer]
"""

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import Any

import structlog

from contractbook.chains.rpc_client import ChainRpcClient
from contractbook.config import SUPPORTED_CHAINS, Settings, get_settings, is_supported_chain
from contractbook.database.client import Neo4jClient
from contractbook.explorer.client import ExplorerClient, RetryPolicy
from contractbook.models.deployment import is_valid_address
from contractbook.models.explorer import ExplorerSubmission
from contractbook.monitoring.logging import bind_context, configure_logging, log_duration
from contractbook.repositories.deployment_repository import Neo4jDeploymentRepository
from contractbook.services.audit import SafetyAuditor
from contractbook.services.llm import LLMConfig, LLMService
from contractbook.services.scheduler import setup_scheduler
from contractbook.services.verification_worker import VerificationWorker
from contractbook.storage.source_store import S3SourceStore
from contractbook.verification.compiler import SolcCompiler
from contractbook.verification.engine import VerificationEngine

logger = structlog.get_logger(__name__)


# =============================================================================
# Wiring
# =============================================================================

def build_engine(settings: Settings, rpc_client: ChainRpcClient) -> VerificationEngine:
    """Verification engine configured from settings."""
    compiler = SolcCompiler(
        solc_binary=settings.solc_binary,
        optimizer_runs=settings.solc_optimizer_runs,
        evm_version=settings.solc_evm_version,
        timeout_seconds=settings.solc_timeout_seconds,
        default_version=settings.default_compiler_version,
    )
    return VerificationEngine(
        rpc_client=rpc_client,
        compiler=compiler,
        metadata_max_length=settings.metadata_max_length,
    )


def build_explorer_client(settings: Settings) -> ExplorerClient | None:
    """Explorer client, or None when no API key is configured."""
    if not settings.explorer_enabled:
        return None

    policy_args = {
        "initial_delay": settings.explorer_initial_delay_seconds,
        "max_delay": settings.explorer_max_delay_seconds,
    }
    return ExplorerClient(
        api_key=settings.explorer_api_key or "",
        api_url=settings.explorer_api_url,
        timeout_seconds=settings.explorer_timeout_seconds,
        submit_policy=RetryPolicy(max_attempts=settings.explorer_submit_max_retries, **policy_args),
        poll_policy=RetryPolicy(max_attempts=settings.explorer_poll_max_attempts, **policy_args),
    )


def build_llm_service(settings: Settings) -> LLMService | None:
    """Classifier service, or None when no API key is configured."""
    if not settings.audit_enabled:
        return None

    return LLMService(LLMConfig(
        model=settings.audit_model,
        api_key=settings.audit_api_key,
        api_base=settings.audit_api_base,
        max_tokens=settings.audit_max_tokens,
        timeout_seconds=settings.audit_timeout_seconds,
    ))


@asynccontextmanager
async def worker_context(settings: Settings) -> AsyncIterator[VerificationWorker]:
    """Build a fully wired worker and release its connections afterwards."""
    async with AsyncExitStack() as stack:
        db = Neo4jClient(settings=settings)
        await db.connect()
        stack.push_async_callback(db.close)

        rpc_client = ChainRpcClient(timeout_seconds=settings.rpc_timeout_seconds)
        stack.push_async_callback(rpc_client.close)

        explorer = build_explorer_client(settings)
        if explorer is not None:
            stack.push_async_callback(explorer.close)

        llm_service = build_llm_service(settings)
        if llm_service is not None:
            stack.push_async_callback(llm_service.close)

        repository = Neo4jDeploymentRepository(db)
        source_store = S3SourceStore(
            bucket=settings.s3_bucket,
            endpoint_url=settings.s3_endpoint,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            region_name=settings.s3_region,
        )

        yield VerificationWorker(
            repository=repository,
            source_store=source_store,
            engine=build_engine(settings, rpc_client),
            explorer_client=explorer,
            auditor=SafetyAuditor(repository, source_store, llm_service),
            batch_size=settings.verification_batch_size,
            max_retries=settings.verification_max_retries,
            timeout_seconds=settings.verification_timeout_seconds,
            optimizer_runs=settings.solc_optimizer_runs,
        )


# =============================================================================
# Commands
# =============================================================================

async def run_worker(settings: Settings) -> int:
    """Run the scheduler until SIGINT or SIGTERM."""
    bind_context(command="worker")
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    async with worker_context(settings) as worker:
        scheduler = setup_scheduler(worker, settings)
        await scheduler.start()
        logger.info(
            "verification_worker_started",
            interval_seconds=settings.verification_interval_seconds,
            explorer_enabled=settings.explorer_enabled,
            audit_enabled=settings.audit_enabled,
        )
        try:
            await stop_event.wait()
        finally:
            await scheduler.stop()

    logger.info("verification_worker_stopped")
    return 0


async def run_single_cycle(settings: Settings) -> int:
    """Run one cycle and print its report."""
    bind_context(command="cycle")
    async with worker_context(settings) as worker:
        report = await worker.run_cycle()

    if report is None:
        print(json.dumps({"skipped": True}))
        return 0

    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0


async def run_verify(args: argparse.Namespace, settings: Settings) -> int:
    """Verify a local source file against an on-chain address."""
    bind_context(command="verify")

    if not is_valid_address(args.address):
        print(f"Invalid contract address: {args.address}", file=sys.stderr)
        return 1
    if not is_supported_chain(args.chain):
        print(f"Unsupported chain: {args.chain}", file=sys.stderr)
        return 1

    source_path = Path(args.file)
    if not source_path.is_file():
        print(f"Source file not found: {source_path}", file=sys.stderr)
        return 1
    source_code = source_path.read_text(encoding="utf-8")

    rpc_client = ChainRpcClient(timeout_seconds=settings.rpc_timeout_seconds)
    try:
        engine = build_engine(settings, rpc_client)
        with log_duration(logger, "contract_verification", address=args.address, chain=args.chain):
            result = await engine.verify(args.address, args.chain, source_code, args.contract_name)
    finally:
        await rpc_client.close()

    output: dict[str, Any] = {
        "success": result.success,
        "level1": result.level1,
        "level3": result.level3,
        "errors": [str(e) for e in result.errors],
        "details": result.details.model_dump(
            exclude={"on_chain_bytecode", "compiled_bytecode"},
        ),
    }

    if args.explorer and result.success:
        explorer = build_explorer_client(settings)
        if explorer is None:
            output["explorer"] = {"skipped": "explorer API key not configured"}
        else:
            try:
                submission_fields: dict[str, Any] = {
                    "contract_address": args.address,
                    "chain_key": args.chain,
                    "contract_name": result.details.contract_name or args.contract_name or "",
                    "source_code": source_code,
                    "runs": settings.solc_optimizer_runs,
                    "constructor_args": args.constructor_args,
                }
                if result.details.compiler_version:
                    submission_fields["compiler_version"] = result.details.compiler_version
                explorer_result = await explorer.verify_on_explorer(
                    ExplorerSubmission(**submission_fields)
                )
            finally:
                await explorer.close()
            output["explorer"] = explorer_result.model_dump(mode="json")

    print(json.dumps(output, indent=2))
    return 0 if result.success else 1


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contractbook",
        description="Contract verification pipeline",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("worker", help="Run the verification scheduler")
    subparsers.add_parser("cycle", help="Run a single verification cycle")

    verify = subparsers.add_parser("verify", help="Verify a source file against a deployment")
    verify.add_argument("address", help="Deployed contract address")
    verify.add_argument(
        "--chain",
        required=True,
        choices=[key.value for key in SUPPORTED_CHAINS],
        help="Chain the contract is deployed on",
    )
    verify.add_argument("--file", required=True, help="Path to the Solidity source file")
    verify.add_argument("--contract-name", help="Contract to verify when the file declares several")
    verify.add_argument("--constructor-args", help="ABI-encoded constructor arguments (hex)")
    verify.add_argument(
        "--explorer",
        action="store_true",
        help="Also submit the source to the block explorer",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(
        level=args.log_level or settings.log_level,
        json_output=settings.log_json,
    )

    if args.command == "worker":
        return asyncio.run(run_worker(settings))
    if args.command == "cycle":
        return asyncio.run(run_single_cycle(settings))
    return asyncio.run(run_verify(args, settings))


if __name__ == "__main__":
    sys.exit(main())
