"""
Deployment Repository

Record-store access for deployments. The verification pipeline only ever
selects pending work, re-reads single records and writes the verification
fields; creating and deleting deployments belongs to the registry API.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from contractbook.database.client import Neo4jClient
from contractbook.models.deployment import Deployment, DeploymentUpdate, VerificationStatus


class DeploymentRepository(ABC):
    """Interface the verification worker and audit pass depend on."""

    @abstractmethod
    async def find_pending_batch(self, limit: int) -> list[Deployment]:
        """
        Pending deployments that have a source reference, oldest first.

        Args:
            limit: Maximum number of deployments to return
        """
        pass

    @abstractmethod
    async def find_by_id(self, deployment_id: str) -> Deployment | None:
        """Get a deployment by ID, or None if it does not exist."""
        pass

    @abstractmethod
    async def update(self, deployment_id: str, data: DeploymentUpdate) -> Deployment | None:
        """
        Write the explicitly set fields of an update.

        Returns:
            The updated deployment, or None if it does not exist
        """
        pass


class Neo4jDeploymentRepository(DeploymentRepository):
    """
    Deployments stored as (:Deployment) nodes with snake_case properties
    mirroring the Deployment model.
    """

    node_label = "Deployment"

    def __init__(self, client: Neo4jClient):
        """
        Initialize repository with database client.

        Args:
            client: Neo4j client instance
        """
        self.client = client
        self.logger = structlog.get_logger(self.__class__.__name__)

    def _to_model(self, record: dict[str, Any] | None) -> Deployment | None:
        """Convert a Neo4j record to a Deployment."""
        if not record:
            return None
        try:
            return Deployment.model_validate(record)
        except Exception as e:
            self.logger.error(
                "deployment_record_invalid",
                error=str(e),
                record_keys=list(record.keys()),
            )
            return None

    async def find_pending_batch(self, limit: int) -> list[Deployment]:
        query = f"""
        MATCH (d:{self.node_label})
        WHERE d.verification_status = $status AND d.source_url IS NOT NULL
        RETURN d {{.*}} AS entity
        ORDER BY d.created_at ASC
        LIMIT $limit
        """
        results = await self.client.execute(
            query,
            {"status": VerificationStatus.PENDING.value, "limit": limit},
        )

        deployments = []
        for record in results:
            deployment = self._to_model(record.get("entity"))
            if deployment is not None:
                deployments.append(deployment)
        return deployments

    async def find_by_id(self, deployment_id: str) -> Deployment | None:
        query = f"""
        MATCH (d:{self.node_label} {{id: $id}})
        RETURN d {{.*}} AS entity
        """
        result = await self.client.execute_single(query, {"id": deployment_id})
        if result is None:
            return None
        return self._to_model(result.get("entity"))

    async def update(self, deployment_id: str, data: DeploymentUpdate) -> Deployment | None:
        fields = data.to_fields()
        if not fields:
            return await self.find_by_id(deployment_id)

        # SET += with a null value removes the property
        query = f"""
        MATCH (d:{self.node_label} {{id: $id}})
        SET d += $fields
        RETURN d {{.*}} AS entity
        """
        result = await self.client.execute_single(
            query,
            {"id": deployment_id, "fields": fields},
        )

        self.logger.debug(
            "deployment_updated",
            deployment_id=deployment_id,
            fields=sorted(fields),
        )
        if result is None:
            return None
        return self._to_model(result.get("entity"))
