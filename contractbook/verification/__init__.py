"""
Bytecode Verification

Compile claimed source, fetch on-chain code, strip metadata trailers, hash
and compare.
"""

from contractbook.verification.bytecode import (
    compare_bytecode,
    compare_runtime_bytecode,
    hash_bytecode,
    normalize_hex,
    strip_metadata,
)
from contractbook.verification.compiler import (
    CompilationError,
    CompileResult,
    SolcCompiler,
    extract_contract_name,
)
from contractbook.verification.engine import VerificationEngine

__all__ = [
    # Bytecode
    "compare_bytecode",
    "compare_runtime_bytecode",
    "hash_bytecode",
    "normalize_hex",
    "strip_metadata",
    # Compiler
    "CompilationError",
    "CompileResult",
    "SolcCompiler",
    "extract_contract_name",
    # Engine
    "VerificationEngine",
]
