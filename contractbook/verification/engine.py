"""
Bytecode Verification Engine

Proves that claimed source produced the code at an address:

    Level 1: code exists at the address.
    Level 3: the source compiles to runtime bytecode matching the on-chain
             code once both metadata trailers are stripped.

The engine never retries; retry policy belongs to the caller.
"""

import structlog

from contractbook.chains.rpc_client import EMPTY_CODE, ChainClientError, ChainRpcClient
from contractbook.config import UnsupportedChainError
from contractbook.models.verification import (
    FailureKind,
    VerificationDetails,
    VerificationFailure,
    VerificationResult,
)
from contractbook.verification.bytecode import (
    DEFAULT_METADATA_MAX_LENGTH,
    compare_runtime_bytecode,
)
from contractbook.verification.compiler import CompilationError, CompileResult, SolcCompiler

logger = structlog.get_logger(__name__)


class VerificationEngine:
    """Runs the level 1 and level 3 checks for one deployment."""

    def __init__(
        self,
        rpc_client: ChainRpcClient,
        compiler: SolcCompiler,
        metadata_max_length: int = DEFAULT_METADATA_MAX_LENGTH,
    ) -> None:
        self._rpc = rpc_client
        self._compiler = compiler
        self._metadata_max_length = metadata_max_length

    async def verify(
        self,
        contract_address: str,
        chain_key: str,
        source_code: str,
        contract_name: str | None = None,
    ) -> VerificationResult:
        """
        Verify claimed source against the code deployed at an address.

        Args:
            contract_address: Deployed contract address
            chain_key: Chain registry key
            source_code: Claimed Solidity source
            contract_name: Contract to compile when the file declares several

        Returns:
            VerificationResult; failures are reported in ``errors``, never raised
        """
        result = VerificationResult()

        # Level 1: existence
        try:
            on_chain = await self._rpc.get_code(contract_address, chain_key)
        except (ChainClientError, UnsupportedChainError) as e:
            result.errors.append(VerificationFailure(kind=FailureKind.LEVEL1_ERROR, detail=str(e)))
            logger.warning(
                "level1_check_failed",
                address=contract_address,
                chain=chain_key,
                error=str(e),
            )
            return result

        if not on_chain or on_chain == EMPTY_CODE:
            result.errors.append(VerificationFailure(
                kind=FailureKind.CONTRACT_NOT_FOUND,
                detail=f"No bytecode at {contract_address}",
            ))
            return result

        result.level1 = True
        result.details.on_chain_bytecode = on_chain

        # Level 3A: compile
        try:
            compiled = await self._compiler.compile(source_code, contract_name)
        except CompilationError as e:
            result.errors.append(VerificationFailure(kind=FailureKind.COMPILE_ERROR, detail=str(e)))
            logger.info(
                "level3_compile_failed",
                address=contract_address,
                chain=chain_key,
                error=str(e),
            )
            return result

        # Level 3B: compare
        try:
            comparison = compare_runtime_bytecode(
                on_chain,
                compiled.runtime_bytecode,
                self._metadata_max_length,
            )
        except ValueError:
            # Unlinked library placeholders leave non-hex text in the output
            result.errors.append(VerificationFailure(
                kind=FailureKind.COMPILE_ERROR,
                detail="Compiled bytecode is not valid hex (unlinked libraries?)",
            ))
            return result

        result.details = VerificationDetails(
            on_chain_bytecode=on_chain,
            compiled_bytecode=compiled.runtime_bytecode,
            on_chain_hash=comparison.on_chain_hash,
            compiled_hash=comparison.compiled_hash,
            on_chain_length=comparison.on_chain_length,
            compiled_length=comparison.compiled_length,
            compiler_version=compiled.compiler_version,
            contract_name=compiled.contract_name,
        )

        if comparison.matches:
            result.level3 = True
        else:
            result.errors.append(VerificationFailure(
                kind=FailureKind.BYTECODE_MISMATCH,
                detail=(
                    f"on-chain {comparison.on_chain_length} bytes "
                    f"({comparison.on_chain_hash[:10]}), compiled "
                    f"{comparison.compiled_length} bytes ({comparison.compiled_hash[:10]})"
                ),
            ))

        logger.info(
            "verification_completed",
            address=contract_address,
            chain=chain_key,
            contract_name=compiled.contract_name,
            success=result.success,
        )
        return result

    async def compile(self, source_code: str, contract_name: str | None = None) -> CompileResult:
        """Compile without verifying, for building explorer submissions."""
        return await self._compiler.compile(source_code, contract_name)
