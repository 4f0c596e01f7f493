"""
Run Result Models
=================
Per-patch and per-run outcomes returned by the Orchestrator and written to
results.json.

PatchFixResult.status:
    succeeded — patch applies (originally, or after a fix) and validates
    exhausted — attempts ran out; ``diagnostic`` holds the final attempt's error
    skipped   — complexity above threshold, no oracle call was made
    failed    — fatal error (revert / checkout / configuration)
"""
from typing import List, Optional

from pydantic import BaseModel

from .attempt_record import AttemptRecord


class PatchFixResult(BaseModel):
    patch_name: str
    status: str = "pending"
    final_state: str = ""
    fixed: bool = False              # True when the patch file was rewritten
    attempts: List[AttemptRecord] = []
    oracle_calls: int = 0
    diagnostic: str = ""
    failing_files: List[str] = []
    complexity: int = 0
    cost_usd: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class FixRunResult(BaseModel):
    project: str
    change_request: str = ""
    status: str = "pending"
    patches: List[PatchFixResult] = []
    summary: str = ""
    error: Optional[str] = None
    total_cost_usd: float = 0.0
    run_time_seconds: float = 0.0
