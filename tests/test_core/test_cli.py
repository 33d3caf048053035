"""
Tests for the command line entry point.
"""

import argparse
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from contractbook.cli import build_explorer_client, build_llm_service, build_parser, run_verify
from contractbook.config import Settings
from contractbook.models.verification import (
    FailureKind,
    VerificationDetails,
    VerificationFailure,
    VerificationResult,
)
from contractbook.services.llm import LLMService

ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def verify_args(**overrides) -> argparse.Namespace:
    fields = {
        "address": ADDRESS,
        "chain": "bsc-testnet",
        "file": "Counter.sol",
        "contract_name": None,
        "constructor_args": None,
        "explorer": False,
    }
    fields.update(overrides)
    return argparse.Namespace(**fields)


# ==================== Fixtures ====================


@pytest.fixture
def settings():
    return Settings(_env_file=None, explorer_api_key=None, audit_api_key=None)


@pytest.fixture
def source_file(tmp_path, counter_source):
    path = tmp_path / "Counter.sol"
    path.write_text(counter_source)
    return path


# ==================== Tests ====================


class TestParser:
    """Tests for argument parsing."""

    def test_verify_command(self):
        """Test that verify accepts address, chain and file."""
        args = build_parser().parse_args([
            "verify", ADDRESS, "--chain", "bsc-testnet", "--file", "Counter.sol", "--explorer",
        ])

        assert args.command == "verify"
        assert args.address == ADDRESS
        assert args.chain == "bsc-testnet"
        assert args.explorer is True
        assert args.contract_name is None

    def test_unknown_chain_rejected(self):
        """Test that only registry chains are accepted."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["verify", ADDRESS, "--chain", "mainnet", "--file", "a.sol"])

    def test_command_required(self):
        """Test that a subcommand must be given."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.parametrize("command", ["worker", "cycle"])
    def test_worker_commands(self, command):
        """Test that the worker commands parse without options."""
        assert build_parser().parse_args([command]).command == command


class TestBuilders:
    """Tests for settings-driven wiring."""

    def test_explorer_disabled_without_key(self, settings):
        """Test that no explorer client is built without an API key."""
        assert build_explorer_client(settings) is None

    def test_explorer_policies_from_settings(self):
        """Test that retry settings reach the explorer client."""
        settings = Settings(
            _env_file=None,
            explorer_api_key="key",
            explorer_submit_max_retries=2,
            explorer_poll_max_attempts=4,
            explorer_initial_delay_seconds=1,
            explorer_max_delay_seconds=8,
        )

        client = build_explorer_client(settings)

        assert client.submit_policy.max_attempts == 2
        assert client.poll_policy.max_attempts == 4
        assert client.poll_policy.initial_delay == 1
        assert client.poll_policy.max_delay == 8

    def test_llm_disabled_without_key(self, settings):
        """Test that no classifier is built without an API key."""
        assert build_llm_service(settings) is None

    def test_llm_service_from_settings(self):
        """Test that the audit model and token limit reach the classifier."""
        settings = Settings(
            _env_file=None,
            audit_api_key="sk-or-key",
            audit_model="openai/gpt-4o-mini",
            audit_max_tokens=256,
        )

        service = build_llm_service(settings)

        assert isinstance(service, LLMService)
        assert service.config.model == "openai/gpt-4o-mini"
        assert service.config.max_tokens == 256


class TestRunVerify:
    """Tests for the verify command."""

    @pytest.mark.asyncio
    async def test_invalid_address(self, settings, source_file, capsys):
        """Test that a malformed address exits with status 1."""
        code = await run_verify(verify_args(address="0x123", file=str(source_file)), settings)

        assert code == 1
        assert "Invalid contract address" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_missing_file(self, settings, tmp_path, capsys):
        """Test that a missing source file exits with status 1."""
        code = await run_verify(verify_args(file=str(tmp_path / "nope.sol")), settings)

        assert code == 1
        assert "Source file not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_prints_result(self, settings, source_file, counter_source, capsys):
        """Test that a verification result is printed as JSON."""
        engine = MagicMock()
        engine.verify = AsyncMock(return_value=VerificationResult(
            level1=True,
            level3=True,
            details=VerificationDetails(
                on_chain_bytecode="0x6080",
                compiled_bytecode="0x6080",
                contract_name="Counter",
            ),
        ))
        rpc = MagicMock()
        rpc.close = AsyncMock()

        with patch("contractbook.cli.ChainRpcClient", return_value=rpc):
            with patch("contractbook.cli.build_engine", return_value=engine):
                code = await run_verify(verify_args(file=str(source_file)), settings)

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["success"] is True
        assert output["details"]["contract_name"] == "Counter"
        assert "on_chain_bytecode" not in output["details"]
        engine.verify.assert_awaited_once_with(ADDRESS, "bsc-testnet", counter_source, None)
        rpc.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_verification_exit_code(self, settings, source_file, capsys):
        """Test that a failed verification exits with status 1."""
        engine = MagicMock()
        engine.verify = AsyncMock(return_value=VerificationResult(
            level1=True,
            errors=[VerificationFailure(kind=FailureKind.BYTECODE_MISMATCH)],
        ))
        rpc = MagicMock()
        rpc.close = AsyncMock()

        with patch("contractbook.cli.ChainRpcClient", return_value=rpc):
            with patch("contractbook.cli.build_engine", return_value=engine):
                code = await run_verify(verify_args(file=str(source_file), explorer=True), settings)

        output = json.loads(capsys.readouterr().out)
        assert code == 1
        assert output["errors"] == ["BYTECODE_MISMATCH"]
        assert "explorer" not in output
