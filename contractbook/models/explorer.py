"""
Explorer Submission Models

Inputs and outputs of the block-explorer verification protocol.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

SINGLE_FILE_FORMAT = "solidity-single-file"
STANDARD_JSON_FORMAT = "solidity-standard-json-input"


class ExplorerOutcome(str, Enum):
    """Terminal states of SUBMITTING -> POLLING."""

    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class ExplorerSubmission(BaseModel):
    """
    Everything the explorer needs to re-run the compilation.

    Either plain single-file source or a structured standard-JSON compiler
    input can be submitted; the latter takes precedence when present.
    """

    contract_address: str
    chain_key: str
    contract_name: str
    source_code: str | None = None
    standard_json_input: dict[str, Any] | None = None
    fully_qualified_name: str | None = Field(
        default=None, description="path/File.sol:Name, used with standard-JSON input"
    )
    compiler_version: str = Field(default="v0.8.20+commit.a1b79de6")
    optimization_used: bool = True
    runs: int = 200
    constructor_args: str | None = None

    @property
    def uses_standard_json(self) -> bool:
        return self.standard_json_input is not None

    def to_form(self) -> dict[str, str]:
        """Form fields of the verifysourcecode request (API key excluded)."""
        if self.uses_standard_json:
            source = json.dumps(self.standard_json_input)
            name = self.fully_qualified_name or self.contract_name
            code_format = STANDARD_JSON_FORMAT
        else:
            source = self.source_code or ""
            name = self.contract_name
            code_format = SINGLE_FILE_FORMAT

        form = {
            "module": "contract",
            "action": "verifysourcecode",
            "contractaddress": self.contract_address,
            "sourceCode": source,
            "codeformat": code_format,
            "contractname": name,
            "compilerversion": self.compiler_version,
            "optimizationUsed": "1" if self.optimization_used else "0",
            "runs": str(self.runs),
        }
        if self.constructor_args:
            # Misspelling is part of the Etherscan API
            form["constructorArguements"] = self.constructor_args.removeprefix("0x")
        return form


class ExplorerVerifyResult(BaseModel):
    """Final report of an explorer submission."""

    outcome: ExplorerOutcome
    message: str
    explorer_url: str
    guid: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome == ExplorerOutcome.CONFIRMED
