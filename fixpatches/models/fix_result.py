"""
Fix Result Models
=================
Pydantic models tracking one oracle candidate and the outcome of judging it.

CandidateFix fields:
    patch_text      — full replacement patch text as returned by the oracle
    rationale       — free text the oracle wrote outside the diff (may be empty)
    files           — paths present in the parsed candidate
    input_tokens    — tokens reported by the endpoint for the request
    output_tokens   — tokens reported by the endpoint for the response
    max_tokens      — output ceiling that was requested
    stop_reason     — endpoint stop reason ("end_turn", "max_tokens", ...)
    cost_usd        — estimated cost of the call

AttemptResult outcomes:
    succeeded         — strict apply + all validations passed
    apply-failed      — strict apply rejected the candidate
    build-failed      — build harness failed
    semantic-mismatch — semantic check failed
"""
from enum import Enum
from typing import List

from pydantic import BaseModel


class CandidateFix(BaseModel):
    patch_text: str
    rationale: str = ""
    files: List[str] = []
    input_tokens: int = 0
    output_tokens: int = 0
    max_tokens: int = 0
    stop_reason: str = ""
    cost_usd: float = 0.0


class AttemptOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    APPLY_FAILED = "apply-failed"
    BUILD_FAILED = "build-failed"
    SEMANTIC_MISMATCH = "semantic-mismatch"


class AttemptResult(BaseModel):
    """Outcome of strictly applying and validating one CandidateFix."""
    outcome: AttemptOutcome
    diagnostic: str = ""
    failing_files: List[str] = []
    warnings: List[str] = []

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCEEDED
