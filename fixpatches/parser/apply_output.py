"""
Apply Output Parser
===================
Turns `git apply -v [--reject]` output and `.rej` artifacts into structured
per-file reports.

Recognised lines (all printed by git on stderr):
    Checking patch <path>...
    Hunk #<n> succeeded at <line> (offset <k> lines).
    error: while searching for:   (followed by the literal lines, skipped)
    error: patch failed: <path>:<line>
    error: <path>: <reason>       (missing file, already exists, does not apply, ...)
    error: corrupt patch at line <n>
    Applying patch <path> with <n> rejects...
    Rejected hunk #<n>.
    Applied patch <path> cleanly.

Contract:
    - No exceptions: unknown lines are ignored, the raw output is kept.
    - `.rej` files are a fallback source only; git's own output wins.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fixpatches.models.patch import PatchFile

logger = logging.getLogger(__name__)


_CHECKING_RE = re.compile(r"^Checking patch (?P<path>.+)\.\.\.$")
_OFFSET_RE = re.compile(
    r"^Hunk #(?P<hunk>\d+) succeeded at (?P<line>\d+)"
    r"(?: \(offset (?P<offset>-?\d+) lines?\))?\.$"
)
_SEARCHING_RE = re.compile(r"^error: while searching for:$")
_PATCH_FAILED_RE = re.compile(r"^error: patch failed: (?P<path>.+):(?P<line>\d+)$")
_APPLYING_RE = re.compile(r"^Applying patch (?P<path>.+) with (?P<count>\d+) rejects?\.\.\.$")
_REJECTED_RE = re.compile(r"^Rejected hunk #(?P<hunk>\d+)\.$")
_APPLIED_CLEANLY_RE = re.compile(r"^Applied patch (?P<path>.+) cleanly\.$")
_FATAL_RE = re.compile(
    r"^error: (?P<reason>corrupt patch at line \d+|"
    r"patch fragment without header at line \d+.*|"
    r"No valid patches in input.*|"
    r"unrecognized input)$"
)
_FILE_ERROR_RE = re.compile(r"^error: (?P<path>[^:]+): (?P<reason>.+)$")
_REJ_HUNK_RE = re.compile(r"^@@ -(?P<start>\d+)(?:,(?P<length>\d+))? \+\d+(?:,\d+)? @@")


def _normalize_name(name: str) -> str:
    name = name.strip()
    if " => " in name:
        name = name.split(" => ", 1)[1]
    return name.strip('"')


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@dataclass
class FileApplyReport:
    """What git reported for one file of the patch."""
    path: str
    offsets: Dict[int, int] = field(default_factory=dict)    # hunk index → offset
    applied_at: Dict[int, int] = field(default_factory=dict)  # hunk index → line
    failed_lines: List[int] = field(default_factory=list)     # from "patch failed: path:N"
    rejected_hunks: List[int] = field(default_factory=list)   # 1-based hunk indices
    errors: List[str] = field(default_factory=list)
    applied_cleanly: bool = False

    @property
    def failed(self) -> bool:
        return bool(self.rejected_hunks or self.errors or self.failed_lines)


@dataclass
class ApplyReport:
    """
    Structured view of one `git apply` run.

    Fields
    ------
    returncode : int
        git's exit code (0 clean, 1 rejects / errors, 128 corrupt input).
    output : str
        Combined stdout + stderr.
    files : dict
        Per-file reports keyed by the path git printed.
    fatal_error : str
        Whole-patch failure (corrupt patch, no valid patches).
    """
    returncode: int = 0
    output: str = ""
    files: Dict[str, FileApplyReport] = field(default_factory=dict)
    fatal_error: str = ""

    def file(self, path: str) -> FileApplyReport:
        path = _normalize_name(path)
        if path not in self.files:
            self.files[path] = FileApplyReport(path=path)
        return self.files[path]

    @property
    def clean(self) -> bool:
        return self.returncode == 0 and not self.fatal_error and not self.failing_files

    @property
    def failing_files(self) -> List[str]:
        return [p for p, r in self.files.items() if r.failed]

    @property
    def rejected_hunk_count(self) -> int:
        return sum(len(r.rejected_hunks) for r in self.files.values())

    def rejection_map(self) -> Dict[str, List[str]]:
        """path → human-readable reasons, for PatchApplyError."""
        out: Dict[str, List[str]] = {}
        for path, report in self.files.items():
            reasons = list(report.errors)
            reasons += [f"hunk #{n} rejected" for n in report.rejected_hunks]
            if not report.rejected_hunks:
                reasons += [f"patch failed at line {n}" for n in report.failed_lines]
            if reasons:
                out[path] = reasons
        return out


def parse_apply_output(output: str, returncode: int = 0) -> ApplyReport:
    """Parse `git apply -v` output (permissive or strict) into an ApplyReport."""
    report = ApplyReport(returncode=returncode, output=output or "")
    current: Optional[FileApplyReport] = None
    searching = False

    for raw_line in (output or "").splitlines():
        line = raw_line.rstrip()

        # Literal file content echoed after "while searching for:"
        if searching:
            match = _PATCH_FAILED_RE.match(line)
            if match:
                searching = False
                report.file(match.group("path")).failed_lines.append(int(match.group("line")))
            continue

        match = _CHECKING_RE.match(line)
        if match:
            current = report.file(match.group("path"))
            continue

        match = _OFFSET_RE.match(line)
        if match and current is not None:
            hunk = int(match.group("hunk"))
            current.applied_at[hunk] = int(match.group("line"))
            current.offsets[hunk] = int(match.group("offset") or 0)
            continue

        if _SEARCHING_RE.match(line):
            searching = True
            continue

        match = _PATCH_FAILED_RE.match(line)
        if match:
            report.file(match.group("path")).failed_lines.append(int(match.group("line")))
            continue

        match = _APPLYING_RE.match(line)
        if match:
            current = report.file(match.group("path"))
            continue

        match = _REJECTED_RE.match(line)
        if match and current is not None:
            current.rejected_hunks.append(int(match.group("hunk")))
            continue

        match = _APPLIED_CLEANLY_RE.match(line)
        if match:
            report.file(match.group("path")).applied_cleanly = True
            continue

        match = _FATAL_RE.match(line)
        if match:
            report.fatal_error = match.group("reason")
            continue

        match = _FILE_ERROR_RE.match(line)
        if match:
            report.file(match.group("path")).errors.append(match.group("reason"))
            continue

    if report.fatal_error:
        logger.debug("git apply fatal error: %s", report.fatal_error)
    return report


# ---------------------------------------------------------------------------
# .rej artifacts
# ---------------------------------------------------------------------------
@dataclass
class RejectedHunk:
    source_start: int
    source_length: int
    lines: List[str] = field(default_factory=list)


def parse_reject_file(text: str) -> List[RejectedHunk]:
    """Parse a `<file>.rej` artifact into its rejected hunks."""
    hunks: List[RejectedHunk] = []
    current: Optional[RejectedHunk] = None
    for line in text.splitlines():
        match = _REJ_HUNK_RE.match(line)
        if match:
            length = match.group("length")
            current = RejectedHunk(
                source_start=int(match.group("start")),
                source_length=int(length) if length is not None else 1,
            )
            hunks.append(current)
            continue
        if current is not None and line[:1] in (" ", "+", "-", "\\"):
            current.lines.append(line)
    return hunks


def match_rejected_hunks(patch_file: PatchFile, rejected: List[RejectedHunk]) -> List[int]:
    """
    Map `.rej` hunks back to 1-based hunk indices of ``patch_file``.

    Matches on hunk body first (git may rewrite whitespace in the header),
    then on source start.
    """
    indices: List[int] = []
    for rej in rejected:
        found = None
        for i, hunk in enumerate(patch_file.hunks, start=1):
            if hunk.lines == rej.lines:
                found = i
                break
        if found is None:
            for i, hunk in enumerate(patch_file.hunks, start=1):
                if hunk.source_start == rej.source_start:
                    found = i
                    break
        if found is not None and found not in indices:
            indices.append(found)
    return sorted(indices)
