"""
Source Storage

Read access to contract sources uploaded alongside deployments.
"""

from contractbook.storage.source_store import (
    S3SourceStore,
    SourceStore,
    SourceStoreError,
    source_key,
)

__all__ = [
    "S3SourceStore",
    "SourceStore",
    "SourceStoreError",
    "source_key",
]
