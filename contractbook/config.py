"""
Contractbook Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation, plus the registry of supported chains.

SECURITY NOTE: API keys (explorer, audit classifier) and database passwords
should be injected from a secrets manager in production rather than committed
to a .env file.
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ChainKey(str, Enum):
    """Chains a deployment can live on."""

    BSC_MAINNET = "bsc-mainnet"
    BSC_TESTNET = "bsc-testnet"  # Testnet
    OPBNB_MAINNET = "opbnb-mainnet"
    OPBNB_TESTNET = "opbnb-testnet"  # Testnet


class ChainInfo(BaseModel):
    """Static description of a supported chain."""

    name: str
    chain_id: int
    rpc_url: str
    explorer_url: str
    is_testnet: bool = False


SUPPORTED_CHAINS: dict[ChainKey, ChainInfo] = {
    ChainKey.BSC_MAINNET: ChainInfo(
        name="BNB Smart Chain Mainnet",
        chain_id=56,
        rpc_url="https://bsc-dataseed1.binance.org",
        explorer_url="https://bscscan.com",
    ),
    ChainKey.BSC_TESTNET: ChainInfo(
        name="BNB Smart Chain Testnet",
        chain_id=97,
        rpc_url="https://data-seed-prebsc-1-s1.binance.org:8545",
        explorer_url="https://testnet.bscscan.com",
        is_testnet=True,
    ),
    ChainKey.OPBNB_MAINNET: ChainInfo(
        name="opBNB Mainnet",
        chain_id=204,
        rpc_url="https://opbnb-mainnet-rpc.bnbchain.org",
        explorer_url="https://opbnbscan.com",
    ),
    ChainKey.OPBNB_TESTNET: ChainInfo(
        name="opBNB Testnet",
        chain_id=5611,
        rpc_url="https://opbnb-testnet-rpc.bnbchain.org",
        explorer_url="https://testnet.opbnbscan.com",
        is_testnet=True,
    ),
}


class UnsupportedChainError(ValueError):
    """Raised when a chain key is not in the registry."""

    pass


def get_chain(chain_key: str | ChainKey) -> ChainInfo:
    """
    Look up a chain in the registry.

    Args:
        chain_key: Chain key as stored on the deployment record

    Returns:
        ChainInfo for the chain

    Raises:
        UnsupportedChainError: If the key is unknown
    """
    try:
        return SUPPORTED_CHAINS[ChainKey(chain_key)]
    except ValueError:
        raise UnsupportedChainError(f"Unsupported chain: {chain_key}")


def is_supported_chain(chain_key: str) -> bool:
    """Check whether a chain key is in the registry."""
    return chain_key in {key.value for key in SUPPORTED_CHAINS}


def get_explorer_address_url(chain_key: str | ChainKey, address: str) -> str:
    """Public explorer page showing a contract's verified source."""
    return f"{get_chain(chain_key).explorer_url}/address/{address}#code"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="contractbook-verifier", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Emit JSON logs instead of console output")

    # ═══════════════════════════════════════════════════════════════
    # NEO4J RECORD STORE
    # ═══════════════════════════════════════════════════════════════
    neo4j_uri: str = Field(default="bolt://localhost:7687", description="Neo4j connection URI")
    neo4j_user: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str = Field(default="", description="Neo4j password")
    neo4j_database: str = Field(default="neo4j", description="Neo4j database name")
    neo4j_max_connection_lifetime: int = Field(
        default=3600, description="Max connection lifetime in seconds"
    )
    neo4j_max_connection_pool_size: int = Field(
        default=10, ge=1, description="Max connection pool size"
    )
    neo4j_connection_timeout: int = Field(
        default=30, ge=1, description="Connection timeout in seconds"
    )

    # ═══════════════════════════════════════════════════════════════
    # S3 SOURCE STORE
    # ═══════════════════════════════════════════════════════════════
    s3_endpoint: str = Field(default="http://localhost:8333", description="S3-compatible endpoint")
    s3_access_key: str = Field(default="clawcontractbook", description="S3 access key")
    s3_secret_key: str = Field(default="clawcontractbook", description="S3 secret key")
    s3_bucket: str = Field(default="clawcontractbook", description="Bucket holding sources and ABIs")
    s3_region: str = Field(default="us-east-1", description="S3 region")

    # ═══════════════════════════════════════════════════════════════
    # VERIFICATION WORKER
    # ═══════════════════════════════════════════════════════════════
    verification_interval_seconds: float = Field(
        default=60.0, gt=0, description="Seconds between verification cycles"
    )
    verification_batch_size: int = Field(
        default=10, ge=1, le=100, description="Pending deployments processed per cycle"
    )
    verification_max_retries: int = Field(
        default=3, ge=1, description="Failed attempts before a deployment is marked failed"
    )
    verification_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Overall timeout for one engine attempt"
    )
    metadata_max_length: int = Field(
        default=200,
        ge=1,
        description="Largest metadata trailer (bytes) that will be stripped before hashing",
    )
    rpc_timeout_seconds: float = Field(default=30.0, gt=0, description="JSON-RPC request timeout")

    # ═══════════════════════════════════════════════════════════════
    # SOLIDITY COMPILER
    # ═══════════════════════════════════════════════════════════════
    solc_binary: str = Field(default="solc", description="Path to the solc executable")
    solc_optimizer_runs: int = Field(default=200, ge=1, description="Optimizer runs")
    solc_evm_version: str = Field(default="paris", description="Target EVM version")
    solc_timeout_seconds: float = Field(default=60.0, gt=0, description="Compiler process timeout")
    default_compiler_version: str = Field(
        default="v0.8.20+commit.a1b79de6",
        description="Compiler version reported to the explorer when solc cannot be queried",
    )

    # ═══════════════════════════════════════════════════════════════
    # BLOCK EXPLORER
    # ═══════════════════════════════════════════════════════════════
    explorer_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("explorer_api_key", "bscscan_api_key"),
        description="Etherscan-family API key; explorer submission is skipped when unset",
    )
    explorer_api_url: str = Field(
        default="https://api.etherscan.io/v2/api", description="Etherscan v2 multichain endpoint"
    )
    explorer_timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout")
    explorer_submit_max_retries: int = Field(
        default=5, ge=0, description="Retries while the explorer has not indexed the contract"
    )
    explorer_poll_max_attempts: int = Field(
        default=5, ge=1, description="Status checks before reporting a timeout"
    )
    explorer_initial_delay_seconds: float = Field(
        default=5.0, ge=0, description="First backoff delay"
    )
    explorer_max_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff ceiling")

    # ═══════════════════════════════════════════════════════════════
    # SAFETY AUDIT (LLM CLASSIFIER)
    # ═══════════════════════════════════════════════════════════════
    audit_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "audit_api_key", "openrouter_api_key", "clawcontract_openrouter_api_key"
        ),
        description="Classifier API key; the audit pass is skipped when unset",
    )
    audit_api_base: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenAI-compatible API base"
    )
    audit_model: str = Field(
        default="anthropic/claude-sonnet-4-20250514",
        validation_alias=AliasChoices("audit_model", "clawcontract_openrouter_model"),
        description="Classifier model",
    )
    audit_max_tokens: int = Field(default=4096, ge=1, description="Max completion tokens")
    audit_timeout_seconds: float = Field(default=60.0, gt=0, description="Classifier HTTP timeout")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"

    @property
    def explorer_enabled(self) -> bool:
        """Explorer submission runs only with an API key."""
        return bool(self.explorer_api_key)

    @property
    def audit_enabled(self) -> bool:
        """The safety audit runs only with a classifier API key."""
        return bool(self.audit_api_key)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
