"""
Chain Client Package

Read-only JSON-RPC access to the EVM chains deployments live on.

Usage:
    from contractbook.chains import ChainRpcClient

    client = ChainRpcClient(timeout_seconds=30)
    code = await client.get_code("0x...", "bsc-testnet")
"""

from contractbook.chains.rpc_client import EMPTY_CODE, ChainClientError, ChainRpcClient

__all__ = [
    "ChainClientError",
    "ChainRpcClient",
    "EMPTY_CODE",
]
