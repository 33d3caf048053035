"""
Block Explorer Verification Client

Submits verified source to an Etherscan v2 compatible explorer and polls for
the explorer's own judgement:

    SUBMITTING -> (GUID issued) -> POLLING -> CONFIRMED | REJECTED | TIMED_OUT

Submission and polling are separate retry loops with separate policies. The
submit loop absorbs the explorer's indexing lag ("Unable to locate
ContractCode"); the poll loop absorbs judging latency ("Pending in queue").
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contractbook.config import get_chain, get_explorer_address_url
from contractbook.explorer.schemas import ExplorerApiResponse, ExplorerStatus
from contractbook.models.explorer import (
    ExplorerOutcome,
    ExplorerSubmission,
    ExplorerVerifyResult,
)

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.etherscan.io/v2/api"
TIMED_OUT_MESSAGE = "Verification timed out after maximum retries"


class ExplorerError(Exception):
    """Base exception for explorer client errors."""
    pass


class ExplorerSubmissionError(ExplorerError):
    """Raised when the explorer refuses a submission."""
    pass


class ExplorerResponseError(ExplorerError):
    """Raised when a response does not have the expected shape."""
    pass


class ContractNotIndexedError(ExplorerError):
    """The explorer has not indexed the contract yet; submission may be retried."""
    pass


class VerificationPendingError(ExplorerError):
    """The submission is still queued for judging."""
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff: initial_delay, doubling, capped at max_delay.

    With the defaults the delays run 5s, 10s, 20s, 30s, 30s.
    """

    max_attempts: int = 5
    initial_delay: float = 5.0
    max_delay: float = 30.0

    def delay(self, n: int) -> float:
        """Delay before the n-th retry (1-based)."""
        return min(self.initial_delay * 2 ** (n - 1), self.max_delay)

    def wait(self, skip: int = 0) -> wait_exponential:
        """
        Tenacity wait strategy following this schedule.

        Args:
            skip: Number of delays already spent before the first attempt
        """
        return wait_exponential(multiplier=self.initial_delay * 2**skip, max=self.max_delay)


class ExplorerClient:
    """
    Etherscan v2 multichain API client.

    The HTTP client is created lazily and must be closed with close().
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        submit_policy: RetryPolicy | None = None,
        poll_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the explorer client.

        Args:
            api_key: Explorer API key
            api_url: Etherscan v2 endpoint
            timeout_seconds: HTTP timeout per request
            submit_policy: Retries while the contract is not indexed
                           (max_attempts counts retries after the first try)
            poll_policy: Status checks while the submission is queued
            sleep: Awaitable sleep used between attempts
            http_client: Pre-built client, mainly for tests
        """
        if not api_key:
            raise ExplorerError("Explorer API key is not configured")

        self._api_key = api_key
        self._api_url = api_url
        self._timeout = timeout_seconds
        self.submit_policy = submit_policy or RetryPolicy()
        self.poll_policy = poll_policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _endpoint(self, chain_key: str) -> str:
        chain = get_chain(chain_key)
        return f"{self._api_url}?chainid={chain.chain_id}"

    @staticmethod
    def _parse(response: httpx.Response) -> ExplorerApiResponse:
        try:
            response.raise_for_status()
            return ExplorerApiResponse.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            raise ExplorerError(f"Explorer returned HTTP {e.response.status_code}")
        except (ValueError, ValidationError) as e:
            raise ExplorerResponseError(f"Unexpected explorer response: {e}")

    async def _post_submission(self, submission: ExplorerSubmission) -> ExplorerApiResponse:
        form = submission.to_form()
        form["apikey"] = self._api_key
        try:
            response = await self._get_client().post(
                self._endpoint(submission.chain_key),
                data=form,
            )
        except httpx.HTTPError as e:
            raise ExplorerError(f"Explorer request failed: {e}")
        return self._parse(response)

    async def submit_verification(self, submission: ExplorerSubmission) -> str:
        """
        Submit source for verification.

        The first attempt is sent immediately. "Unable to locate ContractCode"
        responses are retried with backoff; anything else that is not a
        success fails at once.

        Returns:
            GUID correlating the submission with its eventual outcome

        Raises:
            ExplorerSubmissionError: On rejection or when retries run out
            ExplorerResponseError: On a malformed response
            ExplorerError: On transport failures
        """
        policy = self.submit_policy
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts + 1),
            wait=policy.wait(),
            retry=retry_if_exception_type(ContractNotIndexedError),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    data = await self._post_submission(submission)

                    if data.ok:
                        logger.info(
                            "explorer_submission_accepted",
                            address=submission.contract_address,
                            chain=submission.chain_key,
                            guid=data.result,
                            attempts=attempts,
                        )
                        return data.result

                    if data.not_indexed:
                        logger.debug(
                            "explorer_contract_not_indexed",
                            address=submission.contract_address,
                            attempt=attempts,
                        )
                        raise ContractNotIndexedError(data.result)

                    raise ExplorerSubmissionError(
                        f"Verification submission failed: {data.result or data.message}"
                    )
        except ContractNotIndexedError:
            raise ExplorerSubmissionError(
                "Verification submission failed after maximum retries"
            )

        # AsyncRetrying either returns from inside the loop or raises
        raise ExplorerSubmissionError("Verification submission failed after maximum retries")

    async def check_verification_status(self, guid: str, chain_key: str) -> ExplorerStatus:
        """
        Query the judging state of a submission once.

        Raises:
            ExplorerResponseError: On a malformed response
            ExplorerError: On transport failures
        """
        chain = get_chain(chain_key)
        try:
            response = await self._get_client().get(
                self._api_url,
                params={
                    "chainid": chain.chain_id,
                    "module": "contract",
                    "action": "checkverifystatus",
                    "guid": guid,
                    "apikey": self._api_key,
                },
            )
        except httpx.HTTPError as e:
            raise ExplorerError(f"Explorer request failed: {e}")

        return ExplorerStatus.from_response(self._parse(response))

    async def poll_verification_status(
        self,
        guid: str,
        chain_key: str,
        contract_address: str | None = None,
    ) -> ExplorerVerifyResult:
        """
        Poll until the explorer passes or rejects the submission.

        Every status check is preceded by a backoff delay, the first one
        included, since a fresh GUID is never judged instantly.

        Args:
            guid: Submission GUID
            chain_key: Chain registry key
            contract_address: Used to build the explorer URL of the result

        Returns:
            ExplorerVerifyResult with outcome confirmed, rejected or timed_out
        """
        policy = self.poll_policy
        if contract_address:
            explorer_url = get_explorer_address_url(chain_key, contract_address)
        else:
            explorer_url = get_chain(chain_key).explorer_url
        status: ExplorerStatus | None = None

        await self._sleep(policy.delay(1))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.wait(skip=1),
            retry=retry_if_exception_type(VerificationPendingError),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    status = await self.check_verification_status(guid, chain_key)
                    if status.is_pending:
                        raise VerificationPendingError(status.message)
        except VerificationPendingError:
            logger.warning("explorer_poll_timed_out", guid=guid, chain=chain_key)
            return ExplorerVerifyResult(
                outcome=ExplorerOutcome.TIMED_OUT,
                message=TIMED_OUT_MESSAGE,
                explorer_url=explorer_url,
                guid=guid,
            )

        if status is None:
            raise ExplorerResponseError("Explorer poll ended without a status")

        return ExplorerVerifyResult(
            outcome=ExplorerOutcome.CONFIRMED if status.success else ExplorerOutcome.REJECTED,
            message=status.message,
            explorer_url=explorer_url,
            guid=guid,
        )

    async def verify_on_explorer(self, submission: ExplorerSubmission) -> ExplorerVerifyResult:
        """
        Submit, then poll for the outcome.

        Never raises for explorer-side failures; they are reported as a
        rejected result. The explorer URL of the contract is always set.
        """
        explorer_url = get_explorer_address_url(submission.chain_key, submission.contract_address)

        try:
            guid = await self.submit_verification(submission)
        except ExplorerError as e:
            logger.warning(
                "explorer_submission_failed",
                address=submission.contract_address,
                chain=submission.chain_key,
                error=str(e),
            )
            return ExplorerVerifyResult(
                outcome=ExplorerOutcome.REJECTED,
                message=str(e),
                explorer_url=explorer_url,
            )

        try:
            result = await self.poll_verification_status(
                guid,
                submission.chain_key,
                submission.contract_address,
            )
        except ExplorerError as e:
            logger.warning("explorer_poll_failed", guid=guid, error=str(e))
            return ExplorerVerifyResult(
                outcome=ExplorerOutcome.REJECTED,
                message=str(e),
                explorer_url=explorer_url,
                guid=guid,
            )

        logger.info(
            "explorer_verification_finished",
            address=submission.contract_address,
            chain=submission.chain_key,
            outcome=result.outcome.value,
        )
        return result
