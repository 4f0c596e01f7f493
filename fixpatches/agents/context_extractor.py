"""
Context Extractor
=================
Reproduces a patch failure on a freshly reset tree and turns it into an
AttemptContext.

Pipeline:
    1. Force a clean tree (reset + clean), refuse to continue if still dirty
    2. Snapshot the pristine content of every file the patch names
    3. Permissive apply (`git apply -v --reject`), parse git's report,
       cross-check with `.rej` artifacts
    4. One FileState per patched file (clean, offset or failed) with
       bounded content windows around each hunk (never whole files)
    5. For each rejected hunk, locate the closest region in the pristine
       file and describe expected-vs-actual differences
       (whitespace, renamed identifiers, reordered / missing / extra lines)
    6. Stale-state detection: failure expected but no file failed → error

Windows and alignments are taken from the PRISTINE content: a candidate fix
is always applied to a clean tree, so those are the line numbers it needs.
"""
import difflib
import logging
import re
from typing import Dict, List, Optional, Tuple

from fixpatches.core.config import CONTEXT_WINDOW_LINES
from fixpatches.agents.patch_applier import PatchApplier
from fixpatches.core.errors import ExtractionError
from fixpatches.executor.git_workspace import GitWorkspace
from fixpatches.models.context import (
    Alignment,
    AttemptContext,
    ContentWindow,
    FileOutcome,
    FileState,
    RejectionRecord,
)
from fixpatches.models.patch import Hunk, PatchFile, PatchSet
from fixpatches.parser.apply_output import (
    ApplyReport,
    FileApplyReport,
    match_rejected_hunks,
    parse_reject_file,
)

logger = logging.getLogger(__name__)

# Alignment search
_SEARCH_RADIUS = 400
_MIN_SIMILARITY = 0.3
_MAX_DIFFERENCES = 20

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------
def _window(lines: List[str], start: int, end: int) -> ContentWindow:
    """1-based inclusive window, clamped to the file."""
    start = max(1, start)
    end = min(len(lines), end)
    if end < start:
        return ContentWindow(start_line=start, end_line=start - 1, lines=[])
    return ContentWindow(start_line=start, end_line=end, lines=lines[start - 1:end])


def build_windows(lines: List[str], regions: List[Tuple[int, int]], size: int) -> List[ContentWindow]:
    """
    Merge ``regions`` (1-based start, length) padded by ``size // 2`` on each
    side into non-overlapping windows.
    """
    if not lines or not regions:
        return []
    half = max(size // 2, 1)
    spans = sorted((max(1, s - half), s + max(n, 1) - 1 + half) for s, n in regions)
    merged: List[List[int]] = []
    for start, end in spans:
        if merged and start <= merged[-1][1] + 1:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [w for w in (_window(lines, s, e) for s, e in merged) if w.lines]


# ---------------------------------------------------------------------------
# Expected vs actual
# ---------------------------------------------------------------------------
def _describe_pair(expected: str, actual: str, line_no: int) -> str:
    if expected.split() == actual.split():
        return f"line {line_no}: whitespace differs"
    exp_tokens = _IDENT_RE.findall(expected)
    act_tokens = _IDENT_RE.findall(actual)
    if len(exp_tokens) == len(act_tokens) and _IDENT_RE.sub("", expected).split() == _IDENT_RE.sub("", actual).split():
        renamed = [(e, a) for e, a in zip(exp_tokens, act_tokens) if e != a]
        if 0 < len(renamed) <= 2:
            pairs = ", ".join(f"`{e}` -> `{a}`" for e, a in renamed)
            return f"line {line_no}: renamed {pairs}"
    return f"line {line_no}: expected `{expected.strip()}` but found `{actual.strip()}`"


def describe_differences(expected: List[str], actual: List[str], actual_start: int) -> List[str]:
    """Literal, line-level differences between what a hunk expected and what is there."""
    matcher = difflib.SequenceMatcher(None, expected, actual, autojunk=False)
    differences: List[str] = []
    missing: List[str] = []
    extra: List[Tuple[int, str]] = []

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        if tag == "replace":
            for offset, (e, a) in enumerate(zip(expected[i1:i2], actual[j1:j2])):
                differences.append(_describe_pair(e, a, actual_start + j1 + offset))
            paired = min(i2 - i1, j2 - j1)
            missing += expected[i1 + paired:i2]
            extra += [(actual_start + j, actual[j]) for j in range(j1 + paired, j2)]
        elif tag == "delete":
            missing += expected[i1:i2]
        elif tag == "insert":
            extra += [(actual_start + j, actual[j]) for j in range(j1, j2)]

    extra_text = {text.strip() for _, text in extra}
    reordered = {m.strip() for m in missing if m.strip() and m.strip() in extra_text}
    for line in missing:
        if line.strip() in reordered:
            continue
        differences.append(f"missing: `{line.strip()}` is no longer present")
    for line_no, line in extra:
        if line.strip() in reordered:
            continue
        differences.append(f"line {line_no}: unexpected `{line.strip()}`")
    for line in sorted(reordered):
        differences.append(f"reordered: `{line}` is present but in a different position")

    if len(differences) > _MAX_DIFFERENCES:
        omitted = len(differences) - _MAX_DIFFERENCES
        differences = differences[:_MAX_DIFFERENCES] + [f"... {omitted} more difference(s)"]
    return differences


def align_hunk(hunk: Hunk, lines: List[str], hint: int) -> Alignment:
    """
    Find the region of ``lines`` that best matches what ``hunk`` expected,
    searching around ``hint`` (1-based), and describe the differences.
    """
    expected = hunk.expected_lines
    if not expected:
        return Alignment(expected=[], actual=[], actual_start=hint, similarity=1.0)
    if not lines:
        return Alignment(
            expected=expected,
            actual=[],
            actual_start=0,
            differences=["file does not exist in the current tree"],
        )

    size = len(expected)
    lo = max(0, hint - 1 - _SEARCH_RADIUS)
    hi = min(len(lines) - 1, hint - 1 + _SEARCH_RADIUS)
    best_start, best_ratio = max(0, min(hint - 1, len(lines) - 1)), -1.0
    matcher = difflib.SequenceMatcher(autojunk=False)
    matcher.set_seq2(expected)
    for start in range(lo, hi + 1):
        matcher.set_seq1(lines[start:start + size])
        if matcher.real_quick_ratio() < best_ratio or matcher.quick_ratio() < best_ratio:
            continue
        ratio = matcher.ratio()
        # Ties resolved towards the recorded position
        if ratio > best_ratio or (ratio == best_ratio and abs(start - (hint - 1)) < abs(best_start - (hint - 1))):
            best_start, best_ratio = start, ratio

    actual = lines[best_start:best_start + size]
    alignment = Alignment(
        expected=expected,
        actual=actual,
        actual_start=best_start + 1,
        similarity=round(max(best_ratio, 0.0), 3),
    )
    if best_ratio < _MIN_SIMILARITY:
        alignment.differences = [
            f"no region similar to the expected content near line {hint}; "
            f"the code was probably moved or removed (best match {alignment.similarity:.0%} at line {best_start + 1})"
        ]
        alignment.actual_start = 0
    else:
        alignment.differences = describe_differences(expected, actual, best_start + 1)
    return alignment


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------
class ContextExtractor:
    """
    Builds AttemptContexts from a GitWorkspace.

    The workspace is left with the original patch permissively applied
    (partial hunks + `.rej` files); the caller reverts before trying a
    candidate.
    """

    def __init__(
        self,
        workspace: GitWorkspace,
        window_lines: int = CONTEXT_WINDOW_LINES,
        applier: Optional[PatchApplier] = None,
    ) -> None:
        self.workspace = workspace
        self.window_lines = window_lines
        self.applier = applier or PatchApplier(workspace)

    def extract(
        self,
        patch: PatchSet,
        *,
        project: str,
        change_request: str = "",
        patch_name: str = "",
        attempt: int = 1,
        current_error: str = "",
        expect_failure: bool = True,
    ) -> AttemptContext:
        """
        Reproduce the failure of ``patch`` and describe it.

        Raises
        ------
        RevertError
            The tree cannot be reset (fatal, propagated).
        ExtractionError
            Tree still dirty after reset, git cannot read the patch, git
            fails without blaming any file, or ``expect_failure`` is set and
            no file failed.
        """
        # 1. Clean-tree precondition
        self.workspace.reset_clean()
        dirty = self.workspace.dirty_paths()
        if dirty:
            raise ExtractionError(
                f"refusing to extract from a dirty tree: {', '.join(dirty[:10])}",
                {"dirty": dirty},
            )

        # 2. Pristine snapshot
        pristine: Dict[str, Optional[str]] = {}
        for patch_file in patch.files:
            source = patch_file.old_path or patch_file.path
            pristine[patch_file.path] = self.workspace.read_file(source)

        # 3. Permissive apply
        report = self.applier.apply_permissive(patch.text)
        if report.fatal_error:
            raise ExtractionError(
                f"git could not read the patch: {report.fatal_error}",
                {"output": report.output[-2000:]},
            )
        reject_artifacts = self._read_reject_artifacts()

        # 4 + 5. File states
        file_states = [
            self._file_state(pf, self._report_for(report, pf), pristine[pf.path], reject_artifacts)
            for pf in patch.files
        ]
        if report.returncode != 0 and not any(state.failed for state in file_states):
            raise ExtractionError(
                f"git apply exited with {report.returncode} without a failing file",
                {"output": report.output[-2000:]},
            )

        context = AttemptContext(
            project=project,
            change_request=change_request,
            patch_name=patch_name,
            original_patch=patch.text,
            metadata=patch.metadata,
            file_states=file_states,
            current_error=current_error,
            attempt=attempt,
            apply_output=report.output,
        )

        # 6. Stale-state detection
        if expect_failure and context.rejection_count == 0 and not context.failed_files:
            raise ExtractionError(
                "original patch was expected to fail but applied without failures; "
                "the working tree does not reflect the failing state"
            )

        logger.info(
            "Extracted context for %s: %d file(s), %d failed, %d rejected hunk(s)",
            patch_name or project, len(file_states),
            len(context.failed_files), context.rejection_count,
        )
        return context

    # ------------------------------------------------------------------
    def _read_reject_artifacts(self) -> Dict[str, str]:
        artifacts = {}
        for rel in self.workspace.reject_files():
            content = self.workspace.read_file(rel)
            if content is not None:
                artifacts[rel[: -len(".rej")]] = content
        return artifacts

    @staticmethod
    def _report_for(report: ApplyReport, patch_file: PatchFile) -> FileApplyReport:
        """
        Merge everything git printed under any name of ``patch_file``.

        A rename is checked under its new name while a missing source is
        reported under the old one.
        """
        merged = FileApplyReport(path=patch_file.path)
        names = []
        for name in (patch_file.path, patch_file.new_path, patch_file.old_path):
            if name and name not in names and name in report.files:
                names.append(name)
        for name in names:
            part = report.files[name]
            merged.offsets.update(part.offsets)
            merged.applied_at.update(part.applied_at)
            merged.failed_lines.extend(part.failed_lines)
            merged.rejected_hunks.extend(part.rejected_hunks)
            merged.errors.extend(part.errors)
            merged.applied_cleanly = merged.applied_cleanly or part.applied_cleanly
        return merged

    def _rejected_indices(
        self,
        patch_file: PatchFile,
        file_report: FileApplyReport,
        reject_artifacts: Dict[str, str],
    ) -> List[int]:
        if file_report.rejected_hunks:
            return sorted(set(file_report.rejected_hunks))
        rej_text = reject_artifacts.get(patch_file.path)
        if rej_text is None and patch_file.old_path:
            rej_text = reject_artifacts.get(patch_file.old_path)
        if rej_text is not None:
            indices = match_rejected_hunks(patch_file, parse_reject_file(rej_text))
            if indices:
                return indices
        if file_report.errors:
            # File-level failure: git never reached the hunks
            return list(range(1, len(patch_file.hunks) + 1))
        if file_report.failed_lines:
            starts = set(file_report.failed_lines)
            return [i for i, h in enumerate(patch_file.hunks, start=1) if h.source_start in starts]
        return []

    def _file_state(
        self,
        patch_file: PatchFile,
        file_report: FileApplyReport,
        pristine: Optional[str],
        reject_artifacts: Dict[str, str],
    ) -> FileState:
        lines = pristine.splitlines() if pristine is not None else []
        rejected = self._rejected_indices(patch_file, file_report, reject_artifacts)
        file_error = "; ".join(file_report.errors)

        # File-level errors without hunks (pure rename / mode change onto a missing file)
        if file_error and not patch_file.hunks:
            return FileState(
                path=patch_file.path,
                kind=patch_file.kind,
                outcome=FileOutcome.FAILED,
                file_error=file_error,
            )

        records: List[RejectionRecord] = []
        regions: List[Tuple[int, int]] = []
        running_offset = 0
        for index, hunk in enumerate(patch_file.hunks, start=1):
            if index in file_report.offsets:
                running_offset = file_report.offsets[index]
            hint = max(1, hunk.source_start + running_offset)
            if index not in rejected:
                regions.append((hint, hunk.source_length))
                continue

            alignment = align_hunk(hunk, lines, hint)
            anchor = alignment.actual_start or hint
            regions.append((anchor, max(hunk.source_length, len(alignment.actual))))
            surrounding = _window(
                lines, anchor - self.window_lines // 2,
                anchor + len(alignment.actual) + self.window_lines // 2,
            ) if lines else None
            records.append(RejectionRecord(
                hunk_index=index,
                hunk=hunk,
                attempted_line=hint,
                surrounding=surrounding,
                alignment=alignment,
                reason=file_error or "context did not match current content",
            ))

        if records or file_error:
            outcome = FileOutcome.FAILED
        elif any(file_report.offsets.values()):
            outcome = FileOutcome.APPLIED_WITH_OFFSET
        else:
            outcome = FileOutcome.APPLIED_CLEAN

        signed_offset = 0
        for value in file_report.offsets.values():
            if abs(value) > abs(signed_offset):
                signed_offset = value

        return FileState(
            path=patch_file.path,
            kind=patch_file.kind,
            outcome=outcome,
            offset=signed_offset if outcome == FileOutcome.APPLIED_WITH_OFFSET else 0,
            rejections=records,
            windows=build_windows(lines, regions, self.window_lines),
            file_error=file_error,
        )


def complexity(context: AttemptContext) -> int:
    """Failed hunks plus failed files; large values are skipped by the Orchestrator."""
    return context.rejection_count + len(context.failed_files)
