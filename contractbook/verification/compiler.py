"""
Solidity Compiler Wrapper

Compiles claimed source through solc's standard-JSON interface. The compiler
runs as a subprocess so the event loop keeps serving other work while it
builds.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from contractbook.verification.bytecode import normalize_hex

logger = structlog.get_logger(__name__)

DEFAULT_OPTIMIZER_RUNS = 200
DEFAULT_EVM_VERSION = "paris"

_CONTRACT_DECLARATION = re.compile(r"^\s*contract\s+(\w+)", re.MULTILINE)
_VERSION_PATTERN = re.compile(r"(\d+\.\d+\.\d+\+commit\.[0-9a-f]+)")


class CompilationError(Exception):
    """Raised when source cannot be compiled into the requested contract."""
    pass


@dataclass
class CompileResult:
    """Artifacts of a successful compilation."""

    contract_name: str
    bytecode: str
    runtime_bytecode: str
    compiler_version: str
    standard_json_input: dict[str, Any] = field(default_factory=dict)
    source_key: str = ""


def extract_contract_name(source_code: str) -> str:
    """
    Name of the first concrete contract declared in a source file.

    Raises:
        CompilationError: If no contract declaration is found
    """
    match = _CONTRACT_DECLARATION.search(source_code)
    if not match:
        raise CompilationError("Could not find contract name in source file")
    return match.group(1)


class SolcCompiler:
    """
    Runs solc --standard-json with the optimizer settings deployments are
    presumed to have been built with.
    """

    def __init__(
        self,
        solc_binary: str = "solc",
        optimizer_runs: int = DEFAULT_OPTIMIZER_RUNS,
        evm_version: str = DEFAULT_EVM_VERSION,
        timeout_seconds: float = 60.0,
        compiler_version: str | None = None,
        default_version: str = "v0.8.20+commit.a1b79de6",
    ) -> None:
        """
        Initialize the compiler wrapper.

        Args:
            solc_binary: solc executable name or path
            optimizer_runs: Optimizer runs value
            evm_version: Target EVM version
            timeout_seconds: Upper bound for one compiler run
            compiler_version: Known long version (skips querying solc)
            default_version: Version reported when solc cannot be queried
        """
        self._solc_binary = solc_binary
        self._optimizer_runs = optimizer_runs
        self._evm_version = evm_version
        self._timeout = timeout_seconds
        self._version = compiler_version
        self._default_version = default_version

    @property
    def optimizer_runs(self) -> int:
        return self._optimizer_runs

    def build_standard_json_input(self, source_code: str, source_key: str) -> dict[str, Any]:
        """Standard-JSON compiler input for a single source file."""
        return {
            "language": "Solidity",
            "sources": {source_key: {"content": source_code}},
            "settings": {
                "optimizer": {"enabled": True, "runs": self._optimizer_runs},
                "evmVersion": self._evm_version,
                "outputSelection": {
                    "*": {"*": ["evm.bytecode.object", "evm.deployedBytecode.object"]},
                },
            },
        }

    async def compile(self, source_code: str, contract_name: str | None = None) -> CompileResult:
        """
        Compile source and return the named contract's artifacts.

        Args:
            source_code: Solidity source text
            contract_name: Contract to select; defaults to the first declared

        Returns:
            CompileResult with creation and runtime bytecode

        Raises:
            CompilationError: On syntax errors, a missing contract, or a
                              compiler that cannot be run
        """
        name = contract_name or extract_contract_name(source_code)
        source_key = f"{name}.sol"
        standard_json_input = self.build_standard_json_input(source_code, source_key)

        output = await self._run_solc(json.dumps(standard_json_input))

        errors = [e for e in output.get("errors", []) if e.get("severity") == "error"]
        if errors:
            messages = ", ".join(e.get("message", "unknown error") for e in errors)
            raise CompilationError(f"Compilation errors: {messages}")

        artifact = self._find_artifact(output.get("contracts") or {}, name)

        evm = artifact.get("evm", {})
        bytecode = evm.get("bytecode", {}).get("object")
        runtime_bytecode = evm.get("deployedBytecode", {}).get("object")
        if not bytecode or not runtime_bytecode:
            raise CompilationError("Compilation succeeded but no bytecode generated")

        result = CompileResult(
            contract_name=name,
            bytecode=normalize_hex(bytecode),
            runtime_bytecode=normalize_hex(runtime_bytecode),
            compiler_version=await self.get_version(),
            standard_json_input=standard_json_input,
            source_key=source_key,
        )
        logger.debug(
            "contract_compiled",
            contract_name=name,
            runtime_length=len(result.runtime_bytecode) // 2 - 1,
        )
        return result

    @staticmethod
    def _find_artifact(contracts: dict[str, Any], name: str) -> dict[str, Any]:
        """Locate a contract across source units."""
        for source_unit in contracts.values():
            if name in source_unit:
                artifact: dict[str, Any] = source_unit[name]
                return artifact

        # A lone contract is unambiguous even if keyed differently
        if len(contracts) == 1:
            sole_unit = next(iter(contracts.values()))
            if len(sole_unit) == 1:
                artifact = next(iter(sole_unit.values()))
                return artifact

        available = [n for unit in contracts.values() for n in unit]
        raise CompilationError(
            f'Contract "{name}" not found in source. '
            f"Available: {', '.join(available) if available else 'none'}"
        )

    async def _run_solc(self, input_json: str) -> dict[str, Any]:
        """Feed standard-JSON input to solc and parse its output."""
        stdout = await self._exec(["--standard-json"], input_json.encode())
        try:
            output: dict[str, Any] = json.loads(stdout)
        except json.JSONDecodeError:
            raise CompilationError("Unreadable compiler output")
        return output

    async def _exec(self, args: list[str], stdin: bytes | None = None) -> bytes:
        try:
            process = await asyncio.create_subprocess_exec(
                self._solc_binary,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise CompilationError(f"Compiler not found: {self._solc_binary}")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin),
                timeout=self._timeout,
            )
        except TimeoutError:
            raise CompilationError(f"Compiler timed out after {self._timeout}s") from None
        finally:
            # Also reached when a caller's timeout cancels us mid-compile
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
                logger.warning("solc_process_killed", pid=process.pid)

        if process.returncode != 0 and not stdout:
            raise CompilationError(
                f"Compiler exited with code {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()[:500]}"
            )
        return stdout

    async def get_version(self) -> str:
        """
        Long compiler version as explorers expect it (v0.8.20+commit.a1b79de6).

        Falls back to the configured default if solc cannot report one.
        """
        if self._version is None:
            try:
                stdout = await self._exec(["--version"])
                match = _VERSION_PATTERN.search(stdout.decode(errors="replace"))
                self._version = f"v{match.group(1)}" if match else self._default_version
            except CompilationError as e:
                logger.warning("solc_version_unavailable", error=str(e))
                return self._default_version
        return self._version
