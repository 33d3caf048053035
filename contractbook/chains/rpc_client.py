"""
EVM Chain RPC Client

Read-only access to the chains in the registry. The verification engine only
needs the runtime bytecode stored at an address, fetched with eth_getCode
through web3.py's async provider.
"""

import asyncio
from typing import Any

import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3

from contractbook.config import ChainKey, get_chain

logger = structlog.get_logger(__name__)

EMPTY_CODE = "0x"


class ChainClientError(Exception):
    """Base exception for chain client errors (disconnects, timeouts, bad responses)."""
    pass


class ChainRpcClient:
    """
    Lazily connected JSON-RPC client, one web3 instance per chain.

    Every call is bounded by a timeout so a stalled endpoint surfaces as a
    ChainClientError rather than a hang.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        rpc_overrides: dict[str, str] | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            timeout_seconds: Upper bound for a single RPC call
            rpc_overrides: Optional chain key -> RPC URL mapping replacing the
                           registry's public endpoints
        """
        self._timeout = timeout_seconds
        self._rpc_overrides = rpc_overrides or {}
        self._clients: dict[ChainKey, AsyncWeb3] = {}

    def get_rpc_url(self, chain_key: str) -> str:
        """RPC endpoint for a chain, honouring overrides."""
        chain = get_chain(chain_key)
        return self._rpc_overrides.get(ChainKey(chain_key).value, chain.rpc_url)

    def _get_w3(self, chain_key: str) -> AsyncWeb3:
        """Return (creating on first use) the web3 instance for a chain."""
        get_chain(chain_key)
        key = ChainKey(chain_key)
        if key not in self._clients:
            rpc_url = self.get_rpc_url(chain_key)
            self._clients[key] = AsyncWeb3(
                AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self._timeout})
            )
            logger.debug("rpc_client_created", chain=key.value, rpc_url=rpc_url)
        return self._clients[key]

    async def get_code(self, address: str, chain_key: str) -> str:
        """
        Fetch the runtime bytecode deployed at an address.

        Args:
            address: Contract address
            chain_key: Chain registry key

        Returns:
            0x-prefixed hex string; "0x" when no code is deployed

        Raises:
            UnsupportedChainError: If the chain is not in the registry
            ChainClientError: On any RPC, network or timeout failure
        """
        w3 = self._get_w3(chain_key)

        try:
            checksum_address = w3.to_checksum_address(address)
            code: Any = await asyncio.wait_for(
                w3.eth.get_code(checksum_address),
                timeout=self._timeout,
            )
        except TimeoutError:
            raise ChainClientError(
                f"RPC request to {chain_key} timed out after {self._timeout}s"
            )
        except Exception as e:
            raise ChainClientError(f"Failed to get bytecode: {e}")

        if not code:
            return EMPTY_CODE
        return "0x" + bytes(code).hex()

    async def close(self) -> None:
        """Disconnect all providers."""
        for w3 in self._clients.values():
            provider: Any = w3.provider
            if hasattr(provider, "disconnect"):
                await provider.disconnect()
        self._clients.clear()
