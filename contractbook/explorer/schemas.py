"""
Explorer API Response Schemas

Every Etherscan-family endpoint answers with the same envelope:

    {"status": "1" | "0", "message": "OK" | "NOTOK", "result": ...}

The meaning of ``result`` depends on the action, so each action gets its
own interpretation on top of the shared envelope.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

NOT_INDEXED_MARKER = "Unable to locate ContractCode"
PENDING_MARKER = "Pending in queue"


class ExplorerApiResponse(BaseModel):
    """The status/message/result envelope."""

    model_config = ConfigDict(extra="ignore")

    status: str
    message: str = ""
    result: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> str:
        if isinstance(v, int | float):
            return str(int(v))
        return v

    @field_validator("result", mode="before")
    @classmethod
    def coerce_result(cls, v: Any) -> str:
        """Some failures come back with a null or non-string result."""
        if v is None:
            return ""
        if not isinstance(v, str):
            return str(v)
        return v

    @property
    def ok(self) -> bool:
        return self.status == "1"

    @property
    def not_indexed(self) -> bool:
        """The explorer has not yet seen the deployment transaction."""
        return NOT_INDEXED_MARKER in self.result


class VerifyStatusKind(str, Enum):
    """Judging state of a submitted verification."""

    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"


class ExplorerStatus(BaseModel):
    """Interpreted checkverifystatus response."""

    kind: VerifyStatusKind
    message: str = Field(default="", description="Explorer's own wording, e.g. 'Pass - Verified'")

    @property
    def is_pending(self) -> bool:
        return self.kind == VerifyStatusKind.PENDING

    @property
    def success(self) -> bool:
        return self.kind == VerifyStatusKind.PASS

    @classmethod
    def from_response(cls, response: ExplorerApiResponse) -> "ExplorerStatus":
        if PENDING_MARKER in response.result:
            kind = VerifyStatusKind.PENDING
        elif response.ok:
            kind = VerifyStatusKind.PASS
        else:
            kind = VerifyStatusKind.FAIL
        return cls(kind=kind, message=response.result or response.message)
