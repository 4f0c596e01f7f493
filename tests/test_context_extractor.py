"""
Context Extractor Tests
=======================
Failures are reproduced with real `git apply` runs on throwaway repositories.
"""
from unittest.mock import MagicMock

import pytest

from fixpatches.agents.context_extractor import (
    ContextExtractor,
    align_hunk,
    build_windows,
    complexity,
    describe_differences,
)
from fixpatches.core.errors import ExtractionError
from fixpatches.executor.git_workspace import GitWorkspace
from fixpatches.models.context import FileOutcome
from fixpatches.models.patch import Hunk
from fixpatches.parser.apply_output import ApplyReport
from fixpatches.parser.patch_parser import parse_patch

from conftest import MAIL_HEADER, capture_patch, commit_files, numbered

A = numbered("a", 100)
B = numbered("b", 100)


def _two_file_patch(repo) -> str:
    return capture_patch(repo, {
        "a.txt": A.replace("a line 50\n", "a line 50 patched\n"),
        "b.txt": B.replace("b line 50\n", "b line 50 patched\n"),
    }, header=MAIL_HEADER)


@pytest.fixture
def repo(make_repo):
    return make_repo({"a.txt": A, "b.txt": B, ".gitignore": "*.rej\n"})


def _extract(repo, patch_text, window_lines=10, **kwargs):
    ws = GitWorkspace(str(repo))
    extractor = ContextExtractor(ws, window_lines=window_lines)
    return ws, extractor.extract(parse_patch(patch_text), project="org/repo", **kwargs)


# ---------------------------------------------------------------------------
# Extraction against real trees
# ---------------------------------------------------------------------------
def test_one_failed_one_clean(repo):
    patch = _two_file_patch(repo)
    commit_files(repo, {"a.txt": A.replace("a line 49\n", "a line forty-nine\n")})

    _, context = _extract(repo, patch, patch_name="0001-tune.patch")

    assert context.expected_paths == ["a.txt", "b.txt"]
    a_state, b_state = context.file_states
    assert a_state.outcome == FileOutcome.FAILED
    assert [r.hunk_index for r in a_state.rejections] == [1]
    assert b_state.outcome == FileOutcome.APPLIED_CLEAN
    assert b_state.rejections == []
    assert context.rejection_count == 1
    assert context.metadata.subject == "[PATCH] Tune retry settings"

    record = a_state.rejections[0]
    assert record.alignment.actual_start == 47
    assert "a line forty-nine" in record.alignment.actual
    assert any("a line forty-nine" in d for d in record.alignment.differences)


def test_windows_are_bounded(repo):
    patch = _two_file_patch(repo)
    commit_files(repo, {"a.txt": A.replace("a line 49\n", "a line forty-nine\n")})

    _, context = _extract(repo, patch, window_lines=10)

    for state in context.file_states:
        assert state.windows
        for window in state.windows:
            assert window.start_line > 1
            assert window.end_line < 100
            assert len(window.lines) == window.end_line - window.start_line + 1
    b_window = context.file_states[1].windows[0]
    assert b_window.start_line == 42
    assert "b line 50" in b_window.lines


def test_offset_file_is_reported(repo):
    patch = _two_file_patch(repo)
    commit_files(repo, {"b.txt": "new 1\nnew 2\nnew 3\n" + B})

    _, context = _extract(repo, patch, expect_failure=False)

    a_state, b_state = context.file_states
    assert a_state.outcome == FileOutcome.APPLIED_CLEAN
    assert b_state.outcome == FileOutcome.APPLIED_WITH_OFFSET
    assert b_state.offset == 3
    assert context.rejection_count == 0
    # windows use the current numbering
    assert "b line 50" in b_state.windows[0].lines
    line_50 = b_state.windows[0].start_line + b_state.windows[0].lines.index("b line 50")
    assert line_50 == 53


def test_missing_file_fails_every_hunk(repo):
    patch = _two_file_patch(repo)
    commit_files(repo, {"b.txt": None})

    _, context = _extract(repo, patch)

    b_state = context.file_states[1]
    assert b_state.outcome == FileOutcome.FAILED
    assert "No such file" in b_state.file_error
    assert len(b_state.rejections) == 1
    assert b_state.windows == []
    assert b_state.rejections[0].alignment.differences == ["file does not exist in the current tree"]


def test_rename_of_missing_file_fails(repo):
    rename = (
        "diff --git a/b.txt b/c.txt\n"
        "similarity index 100%\n"
        "rename from b.txt\n"
        "rename to c.txt\n"
    )
    commit_files(repo, {"b.txt": None})

    _, context = _extract(repo, rename)

    state = context.file_states[0]
    assert state.path == "c.txt"
    assert state.outcome == FileOutcome.FAILED
    assert "No such file" in state.file_error
    assert context.rejection_count == 0
    assert [s.path for s in context.failed_files] == ["c.txt"]


def test_failed_apply_without_a_failing_file_is_an_error(repo):
    ws = GitWorkspace(str(repo))
    applier = MagicMock()
    applier.apply_permissive.return_value = ApplyReport(returncode=1, output="error: unexpected\n")
    extractor = ContextExtractor(ws, applier=applier)

    with pytest.raises(ExtractionError, match="without a failing file"):
        extractor.extract(parse_patch(_two_file_patch(repo)), project="org/repo", expect_failure=False)
    applier.apply_permissive.assert_called_once()


def test_applying_patch_is_stale_when_failure_expected(repo):
    patch = _two_file_patch(repo)
    with pytest.raises(ExtractionError, match="expected to fail"):
        _extract(repo, patch, expect_failure=True)


def test_extraction_ignores_leftovers(repo):
    patch = _two_file_patch(repo)
    commit_files(repo, {"a.txt": A.replace("a line 49\n", "a line forty-nine\n")})
    ws, first = _extract(repo, patch, current_error="boom")

    # leftovers of a previous candidate
    (repo / "a.txt").write_text("half applied\n")
    (repo / "scratch.txt").write_text("junk\n")
    (repo / "b.txt.rej").write_text("@@ -1 +1 @@\n-x\n+y\n")

    _, second = _extract(repo, patch, current_error="boom")

    assert second.model_dump() == first.model_dump()
    assert not (repo / "scratch.txt").exists()


def test_unreadable_patch_is_an_extraction_error(repo):
    garbage = (
        "diff --git a/a.txt b/a.txt\n"
        "--- a/a.txt\n"
        "+++ b/a.txt\n"
        "@@ -1,3 +1,3 @@\n"
        " a line 1\n"
        "-a line 2\n"
        "+a line two\n"
        " a line 3\n"
    )
    parsed = parse_patch(garbage)
    ws = GitWorkspace(str(repo))
    bad = parsed.model_copy(update={"text": garbage.replace(" a line 3\n", "@@ broken\n")})
    with pytest.raises(ExtractionError):
        ContextExtractor(ws).extract(bad, project="org/repo")


def test_complexity_counts_hunks_and_files(repo):
    patch = _two_file_patch(repo)
    commit_files(repo, {
        "a.txt": A.replace("a line 49\n", "a line forty-nine\n"),
        "b.txt": B.replace("b line 51\n", "b line fifty-one\n"),
    })
    _, context = _extract(repo, patch)
    assert complexity(context) == 4


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------
def test_build_windows_merges_and_clamps():
    lines = [f"l{i}" for i in range(1, 31)]
    windows = build_windows(lines, [(3, 2), (8, 1), (28, 5)], size=4)
    assert [(w.start_line, w.end_line) for w in windows] == [(1, 10), (26, 30)]
    assert build_windows([], [(1, 1)], 4) == []


def test_describe_whitespace_and_rename():
    diffs = describe_differences(
        ["\tfoo()", "x := alpha(1)"],
        ["    foo()", "x := beta(1)"],
        actual_start=10,
    )
    assert diffs == ["line 10: whitespace differs", "line 11: renamed `alpha` -> `beta`"]


def test_describe_missing_line():
    diffs = describe_differences(["one", "two", "three"], ["one", "three"], actual_start=1)
    assert diffs == ["missing: `two` is no longer present"]


def test_describe_reordered_lines():
    diffs = describe_differences(["first", "second", "third"], ["second", "first", "third"], 1)
    assert any(d.startswith("reordered:") for d in diffs)
    assert not any(d.startswith("missing:") for d in diffs)


def test_align_hunk_reports_moved_code():
    hunk = Hunk(
        source_start=5, source_length=3, target_start=5, target_length=3,
        lines=[" alpha", "-beta", "+gamma", " delta"],
    )
    lines = [f"unrelated {i}" for i in range(20)]
    alignment = align_hunk(hunk, lines, hint=5)
    assert alignment.actual_start == 0
    assert "moved or removed" in alignment.differences[0]
