"""
Block Explorer Submission

Publishes a verified deployment's source to an Etherscan-family explorer.

Usage:
    from contractbook.explorer import ExplorerClient

    client = ExplorerClient(api_key=settings.explorer_api_key)
    result = await client.verify_on_explorer(submission)
"""

from contractbook.explorer.client import (
    ExplorerClient,
    ExplorerError,
    ExplorerResponseError,
    ExplorerSubmissionError,
    RetryPolicy,
)
from contractbook.explorer.schemas import ExplorerApiResponse, ExplorerStatus, VerifyStatusKind

__all__ = [
    "ExplorerApiResponse",
    "ExplorerClient",
    "ExplorerError",
    "ExplorerResponseError",
    "ExplorerStatus",
    "ExplorerSubmissionError",
    "RetryPolicy",
    "VerifyStatusKind",
]
