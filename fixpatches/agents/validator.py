"""
Patch Validator
===============
Judges a candidate that already applied strictly.

Checks, in order:
    1. Semantic drift — the candidate may change at most SEMANTIC_DRIFT_RATIO
       times as many lines as the original patch
    2. Preserved definitions — functions / types / variables the original patch
       introduced must still be defined in the resulting files
    3. Build — `make build` then `make checksums` in the project (host or Docker),
       skipped when SKIP_VALIDATION is set

Metadata (From / Date / Subject) not carried over is only a warning.

Failures raise ValidationError(kind="semantic" | "build").
"""
import logging
import re
from typing import Callable, List, Optional

from fixpatches.core.config import (
    BUILD_IN_DOCKER,
    SEMANTIC_DRIFT_RATIO,
    SKIP_VALIDATION,
)
from fixpatches.core.errors import ValidationError
from fixpatches.executor.build_executor import ExecutionResult, run_in_container, run_make_targets
from fixpatches.executor.git_workspace import GitWorkspace
from fixpatches.models.patch import PatchSet
from fixpatches.services.project_layout import ProjectLayout

logger = logging.getLogger(__name__)

_DEFINITION_RE = re.compile(
    r"^\s*(?:export\s+)?(?:func|def|class|type|var|const|struct|interface|fn)\s+"
    r"(?:\([^)]*\)\s*)?(?P<name>[A-Za-z_][A-Za-z0-9_]*)"
)


def metadata_warnings(candidate_text: str, original: PatchSet) -> List[str]:
    """Mail-header fields of ``original`` that the candidate text does not carry."""
    meta = original.metadata
    warnings = []
    if meta.author and meta.author not in candidate_text:
        warnings.append(f"patch author not preserved (expected {meta.author!r})")
    if meta.date and meta.date not in candidate_text:
        warnings.append(f"patch date not preserved (expected {meta.date!r})")
    if meta.subject_core and meta.subject_core not in candidate_text:
        warnings.append(f"patch subject not preserved (expected {meta.subject_core!r})")
    return warnings


def introduced_definitions(patch: PatchSet) -> dict:
    """path → names defined on added lines of ``patch`` (deleted files excluded)."""
    found = {}
    for patch_file in patch.files:
        if patch_file.kind == "delete":
            continue
        names = set()
        for hunk in patch_file.hunks:
            for line in hunk.lines:
                if not line.startswith("+"):
                    continue
                match = _DEFINITION_RE.match(line[1:])
                if match:
                    names.add(match.group("name"))
        if names:
            found[patch_file.path] = names
    return found


class PatchValidator:
    """
    Parameters
    ----------
    workspace : GitWorkspace
        Tree holding the strictly applied candidate.
    layout : ProjectLayout | None
        Needed for the build check; None disables it.
    build_runner : callable | None
        ``(layout) -> ExecutionResult`` override, used by tests.
    """

    def __init__(
        self,
        workspace: GitWorkspace,
        layout: Optional[ProjectLayout] = None,
        skip_build: bool = SKIP_VALIDATION,
        in_docker: bool = BUILD_IN_DOCKER,
        drift_ratio: float = SEMANTIC_DRIFT_RATIO,
        build_runner: Optional[Callable[[ProjectLayout], ExecutionResult]] = None,
    ) -> None:
        self.workspace = workspace
        self.layout = layout
        self.skip_build = skip_build
        self.in_docker = in_docker
        self.drift_ratio = drift_ratio
        self.build_runner = build_runner

    def validate(self, candidate: PatchSet, original: PatchSet) -> List[str]:
        """
        Run every check. Returns warnings; raises ValidationError on failure.
        """
        warnings = metadata_warnings(candidate.text, original)
        for warning in warnings:
            logger.warning("Metadata: %s", warning)

        self.check_drift(candidate, original)
        self.check_definitions(original)
        self.check_build()
        logger.info("Validation passed")
        return warnings

    # ------------------------------------------------------------------
    def check_drift(self, candidate: PatchSet, original: PatchSet) -> None:
        original_lines = original.changed_line_count
        candidate_lines = candidate.changed_line_count
        if candidate_lines > original_lines * self.drift_ratio:
            raise ValidationError(
                f"semantic drift: fix changes {candidate_lines} lines vs "
                f"{original_lines} in original (limit {self.drift_ratio:g}x)",
                kind="semantic",
            )
        logger.debug("Drift check: original=%d candidate=%d", original_lines, candidate_lines)

    def check_definitions(self, original: PatchSet) -> None:
        missing = []
        for path, names in introduced_definitions(original).items():
            content = self.workspace.read_file(path) or ""
            for name in sorted(names):
                if not re.search(rf"\b{re.escape(name)}\b", content):
                    missing.append(f"{path}: {name}")
        if missing:
            raise ValidationError(
                "fix drops definitions the original patch introduced: " + ", ".join(missing),
                kind="semantic",
            )

    def check_build(self) -> None:
        if self.skip_build:
            logger.info("Skipping build validation (SKIP_VALIDATION=true)")
            return
        if self.layout is None:
            logger.info("No project layout, build validation not applicable")
            return

        if self.build_runner is not None:
            result = self.build_runner(self.layout)
        elif self.in_docker:
            result = run_in_container(self.layout.root, self.layout.project_rel)
        else:
            result = run_make_targets(self.layout.project_path)

        if not result.passed:
            target = result.failed_target or "build"
            diagnostic = result.error or result.full_log
            raise ValidationError(
                f"{target} failed (exit {result.exit_code})",
                kind="build",
                diagnostic=f"make {target} failed (exit {result.exit_code}):\n{diagnostic}",
            )
