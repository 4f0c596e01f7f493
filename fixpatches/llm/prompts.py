"""
Oracle Prompts
==============
System prompt and the renderer that turns exactly one AttemptContext into
a bounded request.

Section order (most decision-relevant last, next to the task):
    1. Project identity and original patch metadata / intent
    2. The full original patch
    3. Files that still apply (clean / offset) — reference windows
    4. Failed hunks — expected vs actual, differences, current content
    5. Reflection request (attempt 3 onwards)
    6. The current diagnostic — ONLY the latest error, last N lines
    7. Task: a complete multi-file diff naming every file

Bounded Context:
    Earlier attempts' errors and earlier candidate patches are never rendered
    unless DIAGNOSTIC_HISTORY_DEPTH > 1, and each diagnostic is clipped to
    MAX_DIAGNOSTIC_LINES lines, so prompt size does not grow with attempts.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from fixpatches.core.config import DIAGNOSTIC_HISTORY_DEPTH, MAX_DIAGNOSTIC_LINES
from fixpatches.executor.build_executor import tail_lines
from fixpatches.models.context import AttemptContext, FileOutcome, FileState, RejectionRecord

logger = logging.getLogger(__name__)

_MAX_LINE_CHARS = 500


# ---------------------------------------------------------------------------
# System Prompt
# ---------------------------------------------------------------------------
SYSTEM_PROMPT = (
    "You are an expert at resolving Git patch conflicts. A patch that applied "
    "to an older version of an upstream project no longer applies to the "
    "current version. You produce a corrected patch.\n"
    "\n"
    "Rules:\n"
    "1. Preserve the original patch intent exactly.\n"
    "2. Preserve the original patch metadata (From, Date, Subject) exactly.\n"
    "3. Only modify the diff content.\n"
    "4. Maintain the code style of the current files.\n"
    "5. Output ONLY the corrected patch in unified diff format with complete headers.\n"
    "6. No explanations outside the patch, except a short reflection before it when asked for one."
)


@dataclass
class OraclePrompt:
    """A rendered request, ready for the oracle client."""
    system: str
    user: str
    expected_files: List[str] = field(default_factory=list)
    attempt: int = 1


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def clip_diagnostic(text: str, max_lines: int = MAX_DIAGNOSTIC_LINES) -> str:
    """Last ``max_lines`` lines of ``text``, each at most _MAX_LINE_CHARS long."""
    clipped = tail_lines(text.strip(), max_lines)
    return "\n".join(
        line if len(line) <= _MAX_LINE_CHARS else line[:_MAX_LINE_CHARS] + " ...(cut)"
        for line in clipped.splitlines()
    )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------
def _project_section(context: AttemptContext) -> str:
    lines = [f"## Project: {context.project}"]
    if context.change_request:
        lines.append(f"Change request: {context.change_request}")
    if context.patch_name:
        lines.append(f"Patch file: {context.patch_name}")
    meta = context.metadata
    if meta.author or meta.date or meta.subject:
        lines.append("")
        lines.append("## Original Patch Metadata")
        if meta.author:
            lines.append(f"From: {meta.author}")
        if meta.date:
            lines.append(f"Date: {meta.date}")
        if meta.subject:
            lines.append(f"Subject: {meta.subject}")
    if meta.body:
        lines.append("")
        lines.append("## Original Patch Intent")
        lines.append(meta.body)
    return "\n".join(lines)


def _original_patch_section(context: AttemptContext) -> str:
    return (
        "## Original Patch (written against an OLDER upstream version)\n"
        f"```diff\n{context.original_patch.rstrip()}\n```"
    )


def _windows_block(state: FileState) -> str:
    if not state.windows:
        return "(file does not exist in the current tree)" if state.kind != "add" else "(new file)"
    return "\n...\n".join(w.render() for w in state.windows)


def _reference_section(states: Sequence[FileState]) -> str:
    parts = [
        "## Files That Still Apply\n"
        "These files apply to the current tree. Keep them in your patch; "
        "for offset files use the current line numbers shown."
    ]
    for state in states:
        if state.outcome == FileOutcome.APPLIED_WITH_OFFSET:
            status = f"APPLIED WITH OFFSET ({state.offset:+d} lines)"
        else:
            status = "APPLIED CLEANLY"
        parts.append(
            f"### {state.path}\n"
            f"Status: {status}\n"
            f"Current content (line | text):\n```\n{_windows_block(state)}\n```"
        )
    return "\n\n".join(parts)


def _rejection_block(state: FileState, record: RejectionRecord) -> str:
    hunk = record.hunk
    alignment = record.alignment
    parts = [
        f"### Failed hunk #{record.hunk_index} in {state.path} "
        f"(attempted at line {record.attempted_line})",
        f"What the patch tried to do:\n```diff\n{hunk.render()}\n```",
    ]
    expected = "\n".join(alignment.expected) or "(nothing: pure addition)"
    if alignment.actual_start:
        actual = "\n".join(alignment.actual) or "(empty)"
        where = f"found at line {alignment.actual_start}, {alignment.similarity:.0%} similar"
    else:
        actual = "(no matching region found)"
        where = "not located"
    parts.append(
        "Expected vs actual:\n"
        f"Expected by the patch (OLD version):\n```\n{expected}\n```\n"
        f"Actually in the file now (CURRENT version, {where}):\n```\n{actual}\n```"
    )
    if alignment.differences:
        parts.append("Differences:\n" + "\n".join(f"- {d}" for d in alignment.differences))
    if record.surrounding is not None and record.surrounding.lines:
        parts.append(
            f"Current file content around line {record.surrounding.start_line}:\n"
            f"```\n{record.surrounding.render()}\n```"
        )
    return "\n\n".join(parts)


def _failed_section(states: Sequence[FileState]) -> str:
    parts = ["## Failed Files\nThese files do not apply. Fix them using the CURRENT content."]
    for state in states:
        header = f"### {state.path}\nStatus: FAILED"
        if state.file_error:
            header += f" ({state.file_error})"
        parts.append(header)
        for record in state.rejections:
            parts.append(_rejection_block(state, record))
    return "\n\n".join(parts)


def _reflection_section(attempt: int) -> str:
    return (
        f"## Reflection Required ({_ordinal(attempt)} attempt)\n"
        "Before the patch, briefly state:\n"
        "1. What specific error occurred in the previous attempt\n"
        "2. Why it happened\n"
        "3. What you will change to fix it"
    )


def _diagnostic_section(current_error: str, prior_errors: Sequence[str], attempt: int) -> str:
    parts = []
    for i, earlier in enumerate(prior_errors, start=1):
        parts.append(f"## Earlier error ({i})\n```\n{clip_diagnostic(earlier)}\n```")
    parts.append(
        f"## Previous Attempt Failed (attempt {attempt - 1})\n"
        f"Your previous patch failed with this error:\n```\n{clip_diagnostic(current_error)}\n```\n"
        "Fix this specific error. 'corrupt patch at line N' means the diff is malformed "
        "(hunk counts, missing newlines, truncated content); 'does not apply' means the "
        "context lines or line numbers do not match the current files."
    )
    return "\n\n".join(parts)


def _task_section(context: AttemptContext) -> str:
    files = "\n".join(f"- {path}" for path in context.expected_paths)
    meta = context.metadata
    header_lines = ["From <commit-hash> Mon Sep 17 00:00:00 2001"]
    if meta.author:
        header_lines.append(f"From: {meta.author}")
    if meta.date:
        header_lines.append(f"Date: {meta.date}")
    if meta.subject:
        header_lines.append(f"Subject: {meta.subject}")
    example = "\n".join(header_lines + ["", "---", "", "diff --git a/<file> b/<file>", "..."])
    return (
        "## Task\n"
        "Generate the complete corrected patch. It must:\n"
        "1. Preserve the metadata (From, Date, Subject) of the original patch\n"
        f"2. Include EVERY one of these {len(context.expected_paths)} file(s), "
        f"even those that need no change:\n{files}\n"
        "3. Use context lines copied exactly from the CURRENT content and current line numbers\n"
        "4. Make the same change the original patch intended\n"
        "5. Use relative paths (a/... and b/...)\n\n"
        f"Output format (unified diff with complete headers):\n```\n{example}\n```"
    )


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------
def build_prompt(
    context: AttemptContext,
    prior_errors: Sequence[str] = (),
    history_depth: int = DIAGNOSTIC_HISTORY_DEPTH,
) -> OraclePrompt:
    """
    Render ``context`` into an OraclePrompt.

    Parameters
    ----------
    context : AttemptContext
        The current failure; its ``current_error`` is the only diagnostic
        rendered by default.
    prior_errors : sequence of str
        Older diagnostics, oldest first. Only the last ``history_depth - 1``
        are rendered; with the default depth of 1 none are.
    history_depth : int
        Total number of diagnostics that may appear in the prompt.

    Returns
    -------
    OraclePrompt
    """
    reference = [s for s in context.file_states if not s.failed]
    failed = context.failed_files

    parts: List[str] = [_project_section(context), _original_patch_section(context)]
    if reference:
        parts.append(_reference_section(reference))
    if failed:
        parts.append(_failed_section(failed))
    if context.attempt >= 3:
        parts.append(_reflection_section(context.attempt))
    if context.current_error:
        keep = max(history_depth - 1, 0)
        earlier = list(prior_errors)[-keep:] if keep else []
        parts.append(_diagnostic_section(context.current_error, earlier, context.attempt))
    parts.append(_task_section(context))

    user = "\n\n".join(parts)
    logger.debug(
        "Built prompt for attempt %d: %d chars, %d file(s), %d failed",
        context.attempt, len(user), len(context.file_states), len(failed),
    )
    return OraclePrompt(
        system=SYSTEM_PROMPT,
        user=user,
        expected_files=context.expected_paths,
        attempt=context.attempt,
    )
