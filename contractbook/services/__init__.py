"""
Contractbook Services

The verification worker, its scheduler, and the safety audit pass.
"""

from contractbook.services.audit import (
    AUDIT_SYSTEM_PROMPT,
    AuditParseError,
    SafetyAuditor,
    parse_verdict,
)
from contractbook.services.llm import (
    LLMConfig,
    LLMConfigurationError,
    LLMMessage,
    LLMProvider,
    LLMProviderError,
    LLMResponse,
    LLMService,
    MockLLMProvider,
)
from contractbook.services.scheduler import (
    VERIFICATION_TASK,
    BackgroundScheduler,
    setup_scheduler,
)
from contractbook.services.verification_worker import (
    CycleReport,
    VerificationJobResult,
    VerificationWorker,
)

__all__ = [
    # Audit
    "AUDIT_SYSTEM_PROMPT",
    "AuditParseError",
    "SafetyAuditor",
    "parse_verdict",
    # LLM
    "LLMConfig",
    "LLMConfigurationError",
    "LLMMessage",
    "LLMProvider",
    "LLMProviderError",
    "LLMResponse",
    "LLMService",
    "MockLLMProvider",
    # Scheduler
    "VERIFICATION_TASK",
    "BackgroundScheduler",
    "setup_scheduler",
    # Worker
    "CycleReport",
    "VerificationJobResult",
    "VerificationWorker",
]
