"""
Neo4j Record Store Client

The deployment records live in Neo4j. This client owns the driver, opens a
session per query and retries queries that hit a dropped connection or a
transient cluster error.
"""

from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession
from neo4j.exceptions import (
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contractbook.config import Settings, get_settings

logger = structlog.get_logger(__name__)

RETRYABLE_EXCEPTIONS = (ServiceUnavailable, SessionExpired, TransientError)

retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
    reraise=True,
)


class Neo4jClient:
    """Async client for the database holding deployment records."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._driver: AsyncDriver | None = None

    @property
    def database(self) -> str:
        return self._settings.neo4j_database

    @property
    def is_connected(self) -> bool:
        return self._driver is not None

    async def connect(self) -> None:
        """
        Create the driver and check that the server answers.

        Raises:
            neo4j.exceptions.Neo4jError: If the server cannot be reached; the
                half-open driver is closed before re-raising
        """
        if self._driver is not None:
            return

        s = self._settings
        driver = AsyncGraphDatabase.driver(
            s.neo4j_uri,
            auth=(s.neo4j_user, s.neo4j_password),
            max_connection_lifetime=s.neo4j_max_connection_lifetime,
            max_connection_pool_size=s.neo4j_max_connection_pool_size,
            connection_timeout=s.neo4j_connection_timeout,
        )
        try:
            await driver.verify_connectivity()
        except Exception as e:
            logger.error("neo4j_connection_failed", uri=s.neo4j_uri, error=str(e))
            await driver.close()
            raise

        self._driver = driver
        logger.info("neo4j_connected", uri=s.neo4j_uri, database=self.database)

    async def close(self) -> None:
        if self._driver is None:
            return
        await self._driver.close()
        self._driver = None
        logger.info("neo4j_connection_closed")

    def _session(self) -> AsyncSession:
        if self._driver is None:
            raise RuntimeError("Neo4j client not connected; call connect() first")
        return self._driver.session(database=self.database)

    @retry_transient
    async def execute(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return every record as a dict."""
        async with self._session() as session:
            result = await session.run(query, parameters or {})
            records: list[dict[str, Any]] = await result.data()
            return records

    @retry_transient
    async def execute_single(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Run a query expected to match at most one record."""
        async with self._session() as session:
            result = await session.run(query, parameters or {})
            record = await result.single()
            return record.data() if record is not None else None
