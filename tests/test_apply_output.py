"""
Apply Output Parser Tests
=========================
git apply -v output (permissive and strict) and .rej artifacts.
"""
from fixpatches.parser.apply_output import (
    match_rejected_hunks,
    parse_apply_output,
    parse_reject_file,
)
from fixpatches.parser.patch_parser import parse_patch

PERMISSIVE_OUTPUT = """\
Checking patch a.txt...
error: while searching for:
a line 8
a line 9
error: patch failed: a.txt:7
Checking patch b.txt...
Hunk #1 succeeded at 10 (offset 3 lines).
Checking patch c.txt...
error: c.txt: No such file or directory
Applying patch a.txt with 1 reject...
Rejected hunk #1.
Applied patch b.txt cleanly.
"""

STRICT_OUTPUT = """\
Checking patch a.txt...
error: while searching for:
a line 8
error: patch failed: a.txt:7
error: a.txt: patch does not apply
"""


def test_permissive_output_per_file():
    report = parse_apply_output(PERMISSIVE_OUTPUT, returncode=1)

    a = report.files["a.txt"]
    assert a.rejected_hunks == [1]
    assert a.failed_lines == [7]
    assert a.failed

    b = report.files["b.txt"]
    assert b.offsets == {1: 3}
    assert b.applied_at == {1: 10}
    assert b.applied_cleanly
    assert not b.failed

    c = report.files["c.txt"]
    assert c.errors == ["No such file or directory"]

    assert sorted(report.failing_files) == ["a.txt", "c.txt"]
    assert report.rejected_hunk_count == 1
    assert not report.clean


def test_searched_lines_are_not_parsed_as_messages():
    output = (
        "Checking patch a.txt...\n"
        "error: while searching for:\n"
        "Rejected hunk #9.\n"
        "error: patch failed: a.txt:3\n"
    )
    report = parse_apply_output(output, returncode=1)
    assert report.files["a.txt"].rejected_hunks == []
    assert report.files["a.txt"].failed_lines == [3]


def test_strict_output_rejection_map():
    report = parse_apply_output(STRICT_OUTPUT, returncode=1)
    rejections = report.rejection_map()
    assert "a.txt" in rejections
    assert "patch does not apply" in rejections["a.txt"]
    assert "patch failed at line 7" in rejections["a.txt"]


def test_corrupt_patch_is_fatal():
    report = parse_apply_output("error: corrupt patch at line 14\n", returncode=128)
    assert report.fatal_error == "corrupt patch at line 14"
    assert not report.clean


def test_clean_apply():
    output = "Checking patch a.txt...\nApplied patch a.txt cleanly.\n"
    report = parse_apply_output(output, returncode=0)
    assert report.clean
    assert report.failing_files == []


def test_unknown_lines_are_ignored():
    report = parse_apply_output("warning: 1 line adds whitespace errors.\n", returncode=0)
    assert report.files == {}
    assert report.clean


def test_reject_file_matches_hunks_by_body():
    patch = parse_patch(
        "diff --git a/x b/x\n"
        "--- a/x\n"
        "+++ b/x\n"
        "@@ -2,3 +2,3 @@\n"
        " a\n"
        "-b\n"
        "+B\n"
        " c\n"
        "@@ -20,3 +20,3 @@\n"
        " k\n"
        "-l\n"
        "+L\n"
        " m\n"
    )
    rej = (
        "diff a/x b/x\t(rejected hunks)\n"
        "@@ -20,3 +20,3 @@\n"
        " k\n"
        "-l\n"
        "+L\n"
        " m\n"
    )
    hunks = parse_reject_file(rej)
    assert len(hunks) == 1
    assert hunks[0].source_start == 20
    assert match_rejected_hunks(patch.files[0], hunks) == [2]
