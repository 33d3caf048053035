"""
Contract Source Store

Uploaded contract sources live in an S3-compatible bucket under

    sources/{chain_key}/{address_lowercase}.sol

The store is read-only from the pipeline's side. A source that was never
uploaded is reported as None, not as an error.
"""

import abc
import asyncio
from typing import Any

import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

logger = structlog.get_logger(__name__)

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class SourceStoreError(Exception):
    """Raised when the store itself is misconfigured or unreachable."""
    pass


def source_key(chain_key: str, address: str) -> str:
    """Object key of a deployment's source file."""
    return f"sources/{chain_key}/{address.lower()}.sol"


class SourceStore(abc.ABC):
    """Read access to uploaded contract sources."""

    @abc.abstractmethod
    async def get_source(self, chain_key: str, address: str) -> str | None:
        """
        Fetch the source uploaded for a deployment.

        Returns:
            Source text, or None if nothing was uploaded
        """
        pass


class S3SourceStore(SourceStore):
    """
    S3-compatible source store.

    boto3 is synchronous, so calls run in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region_name: str = "us-east-1",
        client: Any = None,
    ) -> None:
        self._bucket = bucket
        self._endpoint_url = endpoint_url
        self._access_key = access_key
        self._secret_key = secret_key
        self._region_name = region_name
        self._client = client

    def _get_client(self) -> Any:
        """Get or create the S3 client (lazy initialization)."""
        if self._client is None:
            import boto3

            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                region_name=self._region_name,
                # SeaweedFS and MinIO need path-style addressing
                config=Config(s3={"addressing_style": "path"}),
            )
        return self._client

    async def get_source(self, chain_key: str, address: str) -> str | None:
        key = source_key(chain_key, address)
        client = self._get_client()

        try:
            response = await asyncio.to_thread(
                client.get_object,
                Bucket=self._bucket,
                Key=key,
            )
            body: bytes = await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _MISSING_CODES:
                logger.debug("source_not_found", key=key)
                return None
            raise SourceStoreError(f"Failed to read {key}: {code or e}")

        return body.decode("utf-8")
