"""
Bytecode Comparison

Solidity appends a CBOR-encoded metadata trailer (source hashes, compiler
build) to runtime bytecode, followed by two bytes giving the trailer length.
Two builds of identical logic differ only in that trailer, so it is stripped
from both sides before hashing.
"""

from web3 import Web3

from contractbook.models.verification import BytecodeComparisonResult

DEFAULT_METADATA_MAX_LENGTH = 200

# CBOR major type 5 (map) occupies initial bytes 0xa0-0xbf
_CBOR_MAP_MIN = 0xA0
_CBOR_MAP_MAX = 0xBF


def _strip_prefix(bytecode: str) -> str:
    return bytecode[2:] if bytecode[:2].lower() == "0x" else bytecode


def normalize_hex(bytecode: str) -> str:
    """Lowercase, 0x-prefixed form of a hex string."""
    return "0x" + _strip_prefix(bytecode.strip()).lower()


def hex_to_bytes(bytecode: str) -> bytes:
    """
    Decode hex bytecode with or without the 0x prefix.

    Raises:
        ValueError: If the string is not valid hex
    """
    return bytes.fromhex(_strip_prefix(bytecode.strip()))


def keccak_hex(data: bytes) -> str:
    """Keccak-256 of raw bytes as a 0x-prefixed hex string."""
    return Web3.to_hex(Web3.keccak(data))


def hash_bytecode(bytecode: str) -> str:
    """Keccak-256 of hex-encoded bytecode; the 0x prefix does not matter."""
    return keccak_hex(hex_to_bytes(bytecode))


def strip_metadata(
    bytecode: str,
    max_length: int = DEFAULT_METADATA_MAX_LENGTH,
) -> str:
    """
    Remove the compiler metadata trailer from runtime bytecode.

    The trailer is only stripped when its declared length is plausible
    (1..max_length bytes), the code is longer than the trailer, and the
    trailer starts with a CBOR map header. Otherwise the input is returned
    unchanged.

    Only one trailer is removed per call. Stripping is idempotent for
    compiler output, whose code section ends in an opcode (INVALID, STOP or
    similar) rather than in a second length-suffixed CBOR map. Crafted
    input that nests trailers, such as 0x00a00001a00001, loses one layer
    per call.

    Args:
        bytecode: Hex bytecode, with or without 0x
        max_length: Largest trailer (bytes) considered plausible

    Returns:
        0x-prefixed bytecode without the trailer, or the input unchanged
    """
    raw = _strip_prefix(bytecode)
    if len(raw) < 4:
        return bytecode

    try:
        trailer_length = int(raw[-4:], 16)
    except ValueError:
        return bytecode
    if trailer_length <= 0 or trailer_length > max_length:
        return bytecode

    strip_chars = (trailer_length + 2) * 2
    if len(raw) <= strip_chars:
        return bytecode

    header = int(raw[-strip_chars:-strip_chars + 2], 16)
    if not _CBOR_MAP_MIN <= header <= _CBOR_MAP_MAX:
        return bytecode

    return "0x" + raw[:-strip_chars]


def compare_bytecode(on_chain_bytecode: str, compiled_bytecode: str) -> BytecodeComparisonResult:
    """Compare two bytecodes exactly, metadata included."""
    on_chain = hex_to_bytes(on_chain_bytecode)
    compiled = hex_to_bytes(compiled_bytecode)
    on_chain_hash = keccak_hex(on_chain)
    compiled_hash = keccak_hex(compiled)

    return BytecodeComparisonResult(
        matches=on_chain_hash == compiled_hash,
        on_chain_length=len(on_chain),
        compiled_length=len(compiled),
        on_chain_hash=on_chain_hash,
        compiled_hash=compiled_hash,
    )


def compare_runtime_bytecode(
    on_chain_bytecode: str,
    compiled_runtime_bytecode: str,
    metadata_max_length: int = DEFAULT_METADATA_MAX_LENGTH,
) -> BytecodeComparisonResult:
    """
    Compare runtime bytecode with the metadata trailer stripped from both sides.

    Lengths and hashes in the result describe the stripped code.
    """
    return compare_bytecode(
        strip_metadata(on_chain_bytecode, metadata_max_length),
        strip_metadata(compiled_runtime_bytecode, metadata_max_length),
    )
