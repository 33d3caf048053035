"""
Safety Audit Pass

Second gate after bytecode verification. Freshly verified sources are sent
to an LLM classifier with a fixed policy; a contract judged unsafe is moved
back from verified to failed with an "LLM audit failed: " error.

The audit is best effort. Without a configured classifier it does nothing,
and an unreadable verdict leaves the deployment as it is.
"""

import structlog
from pydantic import ValidationError

from contractbook.models.audit import AUDIT_ERROR_PREFIX, AuditSummary, AuditVerdict
from contractbook.models.deployment import DeploymentUpdate, VerificationStatus
from contractbook.repositories.deployment_repository import DeploymentRepository
from contractbook.services.llm import LLMMessage, LLMService, strip_code_fence
from contractbook.storage.source_store import SourceStore

logger = structlog.get_logger(__name__)


AUDIT_SYSTEM_PROMPT = """You are a smart contract security auditor. Analyze the given Solidity source code and determine if it is malicious or violates any of the following rules:

RULES:
1. Must NOT contain hidden backdoors (e.g. owner-only drain functions disguised with misleading names)
2. Must NOT contain honeypot patterns (e.g. preventing sells, hidden transfer fees, blacklist manipulation)
3. Must NOT contain rug-pull mechanisms (e.g. unlimited minting by owner, removable liquidity locks, self-destruct)
4. Must NOT contain phishing patterns (e.g. approve-to-attacker, delegatecall to untrusted addresses)
5. Must NOT contain obfuscated or intentionally misleading code
6. Must NOT contain hardcoded addresses that receive fees/funds without clear documentation
7. Must NOT disable or bypass standard safety checks (e.g. overriding transfer to steal funds)
8. Must NOT be a token contract (ERC-20, BEP-20, or any fungible token with name/symbol/supply/mint/burn; tokens are not allowed on this platform)

Respond with ONLY a JSON object (no markdown fences):
{"safe": true} if the contract passes all checks
{"safe": false, "reason": "<brief description of the violation>"} if the contract is malicious or violates rules"""


class AuditParseError(Exception):
    """Raised when the classifier's answer is not a usable verdict."""
    pass


def parse_verdict(content: str) -> AuditVerdict:
    """
    Parse a classifier completion into a verdict.

    Raises:
        AuditParseError: If the content is not a {"safe": bool} JSON object
    """
    try:
        return AuditVerdict.model_validate_json(strip_code_fence(content))
    except ValidationError as e:
        raise AuditParseError(f"Unparseable audit verdict: {e.error_count()} error(s)")


class SafetyAuditor:
    """
    Runs the classifier over deployments that just became verified.

    Usage:
        auditor = SafetyAuditor(repository, source_store, llm_service)
        summary = await auditor.audit_verified_deployments(["dep-1", "dep-2"])
    """

    def __init__(
        self,
        repository: DeploymentRepository,
        source_store: SourceStore,
        llm_service: LLMService | None = None,
    ):
        self._repository = repository
        self._source_store = source_store
        self._llm = llm_service

    @property
    def enabled(self) -> bool:
        return self._llm is not None

    async def audit_source(self, source_code: str) -> AuditVerdict:
        """
        Classify one contract source.

        Raises:
            AuditParseError: If the classifier's answer cannot be parsed
        """
        if self._llm is None:
            raise RuntimeError("No classifier configured")

        messages = [
            LLMMessage(role="system", content=AUDIT_SYSTEM_PROMPT),
            LLMMessage(role="user", content=f"Analyze this Solidity contract:\n\n{source_code}"),
        ]
        response = await self._llm.complete(messages)
        return parse_verdict(response.content)

    async def audit_verified_deployments(self, deployment_ids: list[str]) -> AuditSummary:
        """
        Audit each deployment and flag the unsafe ones.

        Deployments that are no longer verified, or have no source, are
        skipped. Errors on one deployment never stop the rest.
        """
        summary = AuditSummary()
        if not deployment_ids:
            return summary

        if self._llm is None:
            logger.info("audit_skipped", reason="no classifier configured", count=len(deployment_ids))
            summary.skipped = len(deployment_ids)
            return summary

        for deployment_id in deployment_ids:
            try:
                deployment = await self._repository.find_by_id(deployment_id)
                if (
                    deployment is None
                    or deployment.verification_status != VerificationStatus.VERIFIED
                    or not deployment.has_source
                ):
                    summary.skipped += 1
                    continue

                source = await self._source_store.get_source(
                    deployment.chain_key,
                    deployment.contract_address,
                )
                if not source:
                    logger.info("audit_source_missing", deployment_id=deployment_id)
                    summary.skipped += 1
                    continue

                verdict = await self.audit_source(source)
                summary.audited += 1

                if verdict.safe:
                    logger.info("audit_passed", deployment_id=deployment_id)
                    continue

                reason = verdict.reason or "no reason given"
                # verified_at stays set
                await self._repository.update(
                    deployment_id,
                    DeploymentUpdate(
                        verification_status=VerificationStatus.FAILED,
                        verification_error=f"{AUDIT_ERROR_PREFIX}{reason}",
                    ),
                )
                summary.flagged += 1
                summary.flagged_ids.append(deployment_id)
                logger.warning("audit_flagged", deployment_id=deployment_id, reason=reason)

            except AuditParseError as e:
                logger.warning("audit_parse_failed", deployment_id=deployment_id, error=str(e))
                summary.skipped += 1
            except Exception as e:
                logger.error("audit_error", deployment_id=deployment_id, error=str(e))
                summary.skipped += 1

        logger.info(
            "audit_pass_completed",
            audited=summary.audited,
            flagged=summary.flagged,
            skipped=summary.skipped,
        )
        return summary
