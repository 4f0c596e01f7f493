"""
Attempt Context Models
======================
Pydantic models describing the *current* failure of a patch against a
freshly reset working tree. Built by the ContextExtractor, rendered by
the Prompt Builder, never carried across attempts.

Fields (AttemptContext):
    project          — "org/repo" identity of the target project
    change_request   — pull-request / change id the run belongs to
    patch_name       — file name of the patch being repaired
    original_patch   — full original patch text (never a candidate)
    metadata         — mail header of the original patch
    file_states      — one FileState for EVERY file the patch touches
    current_error    — the single most recent diagnostic (or "")
    attempt          — 1-based attempt ordinal
    apply_output     — raw output of the permissive apply

Outcomes (FileState.outcome):
    applied-clean        — every hunk applied at its recorded position
    applied-with-offset  — every hunk applied, at least one displaced (offset != 0)
    failed               — at least one hunk was rejected
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .patch import Hunk, PatchMetadata


class FileOutcome(str, Enum):
    APPLIED_CLEAN = "applied-clean"
    APPLIED_WITH_OFFSET = "applied-with-offset"
    FAILED = "failed"


class ContentWindow(BaseModel):
    """A bounded slice of a file, 1-based inclusive line numbers."""
    start_line: int
    end_line: int
    lines: List[str] = []

    def render(self, numbered: bool = True) -> str:
        if not numbered:
            return "\n".join(self.lines)
        width = len(str(self.end_line))
        return "\n".join(
            f"{self.start_line + i:>{width}} | {line}"
            for i, line in enumerate(self.lines)
        )


class Alignment(BaseModel):
    """Expected-vs-actual comparison for one rejected hunk."""
    expected: List[str] = []
    actual: List[str] = []
    actual_start: int = 0            # 1-based line of actual[0] in the file, 0 if not located
    similarity: float = 0.0
    differences: List[str] = []


class RejectionRecord(BaseModel):
    hunk_index: int                  # 1-based position within the file's hunks
    hunk: Hunk
    attempted_line: int              # line git tried to apply the hunk at
    surrounding: Optional[ContentWindow] = None
    alignment: Alignment = Alignment()
    reason: str = ""


class FileState(BaseModel):
    path: str
    kind: str = "modify"
    outcome: FileOutcome = FileOutcome.APPLIED_CLEAN
    offset: int = 0                  # largest absolute displacement seen when applied-with-offset
    rejections: List[RejectionRecord] = []
    windows: List[ContentWindow] = []
    file_error: str = ""             # file-level error (missing file, mode mismatch, ...)

    @property
    def failed(self) -> bool:
        return self.outcome == FileOutcome.FAILED


class AttemptContext(BaseModel):
    project: str
    change_request: str = ""
    patch_name: str = ""
    original_patch: str
    metadata: PatchMetadata = PatchMetadata()
    file_states: List[FileState] = []
    current_error: str = ""
    attempt: int = 1
    apply_output: str = ""

    @property
    def failed_files(self) -> List[FileState]:
        return [f for f in self.file_states if f.failed]

    @property
    def rejection_count(self) -> int:
        return sum(len(f.rejections) for f in self.file_states)

    @property
    def expected_paths(self) -> List[str]:
        return [f.path for f in self.file_states]
