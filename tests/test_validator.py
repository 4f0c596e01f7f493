"""
Validator Tests
===============
"""
from unittest.mock import MagicMock, patch

import pytest

from fixpatches.agents.validator import PatchValidator, introduced_definitions, metadata_warnings
from fixpatches.core.errors import ValidationError
from fixpatches.executor.build_executor import ExecutionResult
from fixpatches.parser.patch_parser import parse_patch
from fixpatches.services.project_layout import ProjectLayout

from conftest import MAIL_HEADER

ORIGINAL = MAIL_HEADER + (
    "diff --git a/pkg/retry.go b/pkg/retry.go\n"
    "--- a/pkg/retry.go\n"
    "+++ b/pkg/retry.go\n"
    "@@ -10,3 +10,6 @@ package retry\n"
    " import \"time\"\n"
    " \n"
    " const attempts = 3\n"
    "+\n"
    "+func Backoff(n int) time.Duration {\n"
    "+\treturn time.Duration(n) * time.Second\n"
)

CANDIDATE = ORIGINAL.replace("@@ -10,3 +10,6 @@", "@@ -12,3 +12,6 @@")

BLOATED = CANDIDATE + "".join(f"+// filler {i}\n" for i in range(10))


def _layout() -> ProjectLayout:
    return ProjectLayout(
        name="org/repo", root="/tooling", project_path="/tooling/projects/org/repo",
        repo_name="repo", repo_path="/tooling/projects/org/repo/repo",
        patches_dir="/tooling/projects/org/repo/patches",
        git_tag_file="/tooling/projects/org/repo/GIT_TAG",
    )


def _workspace(content="func Backoff(n int) time.Duration {}\n"):
    workspace = MagicMock()
    workspace.read_file.return_value = content
    return workspace


def test_introduced_definitions():
    assert introduced_definitions(parse_patch(ORIGINAL)) == {"pkg/retry.go": {"Backoff"}}


def test_metadata_warnings():
    original = parse_patch(ORIGINAL)
    assert metadata_warnings(CANDIDATE, original) == []
    bare = CANDIDATE[CANDIDATE.index("diff --git"):]
    warnings = metadata_warnings(bare, original)
    assert len(warnings) == 3
    assert any("Tune retry settings" in w for w in warnings)


def test_validate_passes_without_build():
    validator = PatchValidator(_workspace(), layout=None, skip_build=False)
    assert validator.validate(parse_patch(CANDIDATE), parse_patch(ORIGINAL)) == []


def test_semantic_drift_is_rejected():
    validator = PatchValidator(_workspace(), skip_build=True)
    with pytest.raises(ValidationError) as exc_info:
        validator.validate(parse_patch(BLOATED.replace(",6 @@", ",16 @@")), parse_patch(ORIGINAL))
    assert exc_info.value.kind == "semantic"
    assert "semantic drift" in str(exc_info.value)


def test_dropped_definition_is_rejected():
    validator = PatchValidator(_workspace("const attempts = 3\n"), skip_build=True)
    with pytest.raises(ValidationError) as exc_info:
        validator.validate(parse_patch(CANDIDATE), parse_patch(ORIGINAL))
    assert exc_info.value.kind == "semantic"
    assert "pkg/retry.go: Backoff" in str(exc_info.value)


def test_build_failure_carries_log():
    runner = MagicMock(return_value=ExecutionResult(
        exit_code=2, full_log=">>> make build\nretry.go:14: undefined: Second", failed_target="build",
    ))
    validator = PatchValidator(_workspace(), _layout(), skip_build=False, build_runner=runner)
    with pytest.raises(ValidationError) as exc_info:
        validator.validate(parse_patch(CANDIDATE), parse_patch(ORIGINAL))
    assert exc_info.value.kind == "build"
    assert "make build failed (exit 2)" in exc_info.value.diagnostic
    assert "undefined: Second" in exc_info.value.diagnostic
    runner.assert_called_once()


def test_build_runs_on_host_by_default():
    with patch("fixpatches.agents.validator.run_make_targets",
               return_value=ExecutionResult(exit_code=0)) as mock_make:
        validator = PatchValidator(_workspace(), _layout(), skip_build=False, in_docker=False)
        validator.check_build()
    mock_make.assert_called_once_with("/tooling/projects/org/repo")


def test_build_in_container():
    with patch("fixpatches.agents.validator.run_in_container",
               return_value=ExecutionResult(exit_code=0)) as mock_container:
        validator = PatchValidator(_workspace(), _layout(), skip_build=False, in_docker=True)
        validator.check_build()
    mock_container.assert_called_once_with("/tooling", "projects/org/repo")


def test_skip_build_never_runs_make():
    with patch("fixpatches.agents.validator.run_make_targets") as mock_make:
        PatchValidator(_workspace(), _layout(), skip_build=True).check_build()
    mock_make.assert_not_called()
