"""
Database Layer

Neo4j access for deployment records.
"""

from contractbook.database.client import Neo4jClient

__all__ = ["Neo4jClient"]
