"""
Attempt Record Model
====================
Pydantic model representing one pass through the retry loop for one patch.

Represents one loop cycle: Extract → Request fix → Apply → Validate.

Fields:
    attempt            — loop counter (1-based)
    states             — FixState values visited during this attempt, in order
    outcome            — AttemptOutcome value, or the oracle failure kind
                         ("oracle-quota", "oracle-truncated", "oracle-parse",
                         "oracle-transport", "extraction-failed")
    diagnostic         — diagnostic produced by this attempt (becomes the next error)
    failing_files      — files still failing at the end of the attempt
    warnings           — validator warnings for a candidate that applied
    rejected_hunks     — rejections seen when the original was re-applied
    max_tokens         — output ceiling requested from the oracle
    input_tokens / output_tokens / cost_usd — oracle usage
    attempt_time_seconds — wall clock time for this attempt

Used by:
    - Orchestrator to track progress across attempts
    - Results writer to compile the final results.json
"""
from typing import List

from pydantic import BaseModel


class AttemptRecord(BaseModel):
    attempt: int
    states: List[str] = []
    outcome: str = ""
    diagnostic: str = ""
    failing_files: List[str] = []
    warnings: List[str] = []
    rejected_hunks: int = 0

    # --- Oracle usage ---
    max_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    attempt_time_seconds: float = 0.0
