"""
Contractbook Verifier - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# TEST-ONLY values. Use setdefault so CI can point at real services.

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("NEO4J_URI", "bolt://localhost:7687")
os.environ.setdefault("NEO4J_USER", "neo4j")
os.environ.setdefault("NEO4J_PASSWORD", "testpassword")  # TEST ONLY

from contractbook.config import get_settings  # noqa: E402
from contractbook.models.deployment import (  # noqa: E402
    Deployment,
    DeploymentUpdate,
    VerificationStatus,
)
from contractbook.monitoring.logging import configure_logging  # noqa: E402
from contractbook.repositories.deployment_repository import DeploymentRepository  # noqa: E402
from contractbook.storage.source_store import SourceStore, source_key  # noqa: E402

# Keep info-level events off stdout so CLI output stays parseable
configure_logging(level="WARNING")

COUNTER_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

COUNTER_SOURCE = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.20;

contract Counter {
    uint256 public count;

    function increment() external {
        count += 1;
    }
}
"""


# =============================================================================
# In-memory stores
# =============================================================================


class InMemoryDeploymentRepository(DeploymentRepository):
    """Dict-backed repository that records every update it receives."""

    def __init__(self, deployments: list[Deployment] | None = None):
        self.deployments: dict[str, Deployment] = {d.id: d for d in deployments or []}
        self.updates: list[tuple[str, dict[str, Any]]] = []

    def add(self, deployment: Deployment) -> Deployment:
        self.deployments[deployment.id] = deployment
        return deployment

    async def find_pending_batch(self, limit: int) -> list[Deployment]:
        pending = [
            d for d in self.deployments.values()
            if d.verification_status == VerificationStatus.PENDING and d.source_url
        ]
        pending.sort(key=lambda d: d.created_at)
        return [d.model_copy() for d in pending[:limit]]

    async def find_by_id(self, deployment_id: str) -> Deployment | None:
        deployment = self.deployments.get(deployment_id)
        return deployment.model_copy() if deployment else None

    async def update(self, deployment_id: str, data: DeploymentUpdate) -> Deployment | None:
        deployment = self.deployments.get(deployment_id)
        if deployment is None:
            return None
        fields = data.model_dump(exclude_unset=True)
        self.updates.append((deployment_id, fields))
        updated = deployment.model_copy(update=fields)
        self.deployments[deployment_id] = updated
        return updated


class InMemorySourceStore(SourceStore):
    """Dict-backed source store keyed like the bucket layout."""

    def __init__(self) -> None:
        self.sources: dict[str, str] = {}

    def put(self, chain_key: str, address: str, source: str) -> None:
        self.sources[source_key(chain_key, address)] = source

    async def get_source(self, chain_key: str, address: str) -> str | None:
        return self.sources.get(source_key(chain_key, address))


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Give every test freshly loaded settings."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Mock Database Client
# =============================================================================


@pytest.fixture
def mock_db_client():
    """Create a mock Neo4j client."""
    client = AsyncMock()
    client.execute = AsyncMock(return_value=[])
    client.execute_single = AsyncMock(return_value=None)
    client.connect = AsyncMock()
    client.close = AsyncMock()
    client._driver = MagicMock()
    return client


# =============================================================================
# Repositories and stores
# =============================================================================


@pytest.fixture
def repository() -> InMemoryDeploymentRepository:
    """Empty in-memory deployment repository."""
    return InMemoryDeploymentRepository()


@pytest.fixture
def source_store() -> InMemorySourceStore:
    """Empty in-memory source store."""
    return InMemorySourceStore()


# =============================================================================
# Test Data Generators
# =============================================================================


@pytest.fixture
def counter_source() -> str:
    """A small single-contract Solidity source."""
    return COUNTER_SOURCE


@pytest.fixture
def deployment_factory() -> Callable[..., Deployment]:
    """Factory for creating pending deployments with a source reference."""
    base_time = datetime(2026, 1, 1, tzinfo=UTC)
    counter = {"n": 0}

    def _create_deployment(**overrides: Any) -> Deployment:
        counter["n"] += 1
        fields: dict[str, Any] = {
            "id": f"dep-{uuid4().hex[:8]}",
            "contract_address": COUNTER_ADDRESS,
            "chain_key": "bsc-testnet",
            "contract_name": "Counter",
            "source_url": f"sources/bsc-testnet/{COUNTER_ADDRESS.lower()}.sol",
            "created_at": base_time + timedelta(minutes=counter["n"]),
        }
        fields.update(overrides)
        return Deployment(**fields)

    return _create_deployment
