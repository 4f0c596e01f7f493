"""
Output Budget
=============
How many output tokens to request from the oracle for one candidate.

The fixed patch must repeat every file of the original, so the request grows
with the file count (OUTPUT_TOKENS_PER_FILE each, plus a safety margin) and
with the size of the original patch text (about 3 chars per token, doubled
for headroom). The larger estimate wins, is multiplied by the escalation
scale (doubled after each truncated response), and is clamped to
[ORACLE_MIN_OUTPUT_TOKENS, ORACLE_MAX_OUTPUT_TOKENS].
"""
from fixpatches.core.config import (
    ORACLE_MAX_OUTPUT_TOKENS,
    ORACLE_MIN_OUTPUT_TOKENS,
    OUTPUT_TOKENS_PER_FILE,
)

SAFETY_MARGIN_TOKENS = 4000
CHARS_PER_TOKEN = 3


def estimate_output_tokens(
    file_count: int,
    patch_chars: int = 0,
    scale: float = 1.0,
    minimum: int = ORACLE_MIN_OUTPUT_TOKENS,
    maximum: int = ORACLE_MAX_OUTPUT_TOKENS,
) -> int:
    per_file = max(file_count, 1) * OUTPUT_TOKENS_PER_FILE + SAFETY_MARGIN_TOKENS
    by_size = (patch_chars // CHARS_PER_TOKEN) * 2
    estimate = int(max(per_file, by_size) * max(scale, 1.0))
    return max(minimum, min(estimate, maximum))


def escalate(scale: float) -> float:
    """Scale to use after a truncated response."""
    return scale * 2
