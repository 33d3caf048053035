"""
Repositories

Record-store access for deployments.
"""

from contractbook.repositories.deployment_repository import (
    DeploymentRepository,
    Neo4jDeploymentRepository,
)

__all__ = [
    "DeploymentRepository",
    "Neo4jDeploymentRepository",
]
