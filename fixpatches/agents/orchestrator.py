"""
Orchestrator Agent
==================
Drives the Extract → Request fix → Apply → Validate loop for every patch of
a project.

Per patch (see fixpatches/state/fix_state.py):
    - Reset the tree, permissively apply the original patch
    - No failing file → nothing to fix, commit and move on (no oracle call)
    - A patch file that cannot be read or parsed → failed
    - Complexity above COMPLEXITY_THRESHOLD → skipped
    - Otherwise up to MAX_ATTEMPTS attempts:
        prompt → oracle → revert → strict apply → validate
      success writes the candidate over the patch file and commits the tree
      so later patches apply on top of it

Retry Discipline:
    - Every failure (oracle, apply, validation, extraction) consumes one
      attempt, reverts the tree and REPLACES the carried error string
    - The next attempt re-extracts from a freshly reset + reapplied tree
    - A truncated oracle response doubles the output budget scale
    - Exhaustion reports the final attempt's diagnostic and failing files

Fatal Errors:
    RevertError, CommitError, CheckoutError and ConfigurationError stop the
    run immediately.
"""
import logging
import os
import time
from typing import Callable, List, Optional

from fixpatches.agents.context_extractor import ContextExtractor, complexity
from fixpatches.agents.patch_applier import PatchApplier
from fixpatches.agents.validator import PatchValidator
from fixpatches.core.config import (
    BUILD_TOOLING_ROOT,
    COMPLEXITY_THRESHOLD,
    DIAGNOSTIC_HISTORY_DEPTH,
    MAX_ATTEMPTS,
    RESULTS_PATH,
)
from fixpatches.core.constants import COMMIT_PREFIX
from fixpatches.core.errors import (
    ExtractionError,
    OracleError,
    OracleParseError,
    OracleQuotaError,
    OracleTransportError,
    OracleTruncationError,
    PatchApplyError,
    PatchFixError,
    PatchParseError,
    ValidationError,
)
from fixpatches.executor.checkout import MakeCheckout
from fixpatches.executor.git_workspace import GitWorkspace
from fixpatches.llm.budget import escalate, estimate_output_tokens
from fixpatches.llm.prompts import build_prompt
from fixpatches.models.attempt_record import AttemptRecord
from fixpatches.models.context import AttemptContext
from fixpatches.models.fix_result import AttemptOutcome, AttemptResult, CandidateFix
from fixpatches.models.patch import PatchSet
from fixpatches.models.run_result import FixRunResult, PatchFixResult
from fixpatches.parser.patch_parser import parse_patch
from fixpatches.services.patch_store import list_patches, read_patch, write_patch
from fixpatches.services.project_layout import ProjectLayout, resolve_layout
from fixpatches.services.results_writer import ResultsWriter
from fixpatches.state.fix_state import FixState, StateTracker

logger = logging.getLogger(__name__)


def _oracle_outcome(exc: OracleError) -> str:
    if isinstance(exc, OracleTruncationError):
        return "oracle-truncated"
    if isinstance(exc, OracleQuotaError):
        return "oracle-quota"
    if isinstance(exc, OracleParseError):
        return "oracle-parse"
    if isinstance(exc, OracleTransportError):
        return "oracle-transport"
    return "oracle-error"


def _validation_outcome(exc: ValidationError) -> AttemptOutcome:
    if exc.kind == "semantic":
        return AttemptOutcome.SEMANTIC_MISMATCH
    return AttemptOutcome.BUILD_FAILED


def _default_validator(workspace: GitWorkspace, layout: Optional[ProjectLayout]) -> PatchValidator:
    return PatchValidator(workspace, layout)


class Orchestrator:
    """
    Owns the working tree for the duration of a run.

    Parameters
    ----------
    oracle
        Object with ``async request_fix(prompt, max_tokens) -> CandidateFix``
        (normally an OracleClient).
    checkout
        Object with ``checkout(layout) -> tag``; defaults to MakeCheckout.
    workspace_factory / validator_factory
        Builders for the git workspace and validator, replaced in tests.
    """

    def __init__(
        self,
        oracle,
        checkout=None,
        workspace_factory: Callable[[str], GitWorkspace] = GitWorkspace,
        validator_factory: Callable[..., PatchValidator] = _default_validator,
        max_attempts: int = MAX_ATTEMPTS,
        complexity_threshold: int = COMPLEXITY_THRESHOLD,
        history_depth: int = DIAGNOSTIC_HISTORY_DEPTH,
        root: str = BUILD_TOOLING_ROOT,
        release_branched: Optional[bool] = None,
        results_path: Optional[str] = RESULTS_PATH,
    ) -> None:
        self.oracle = oracle
        self.checkout = checkout or MakeCheckout()
        self.workspace_factory = workspace_factory
        self.validator_factory = validator_factory
        self.max_attempts = max_attempts
        self.complexity_threshold = complexity_threshold
        self.history_depth = history_depth
        self.root = root
        self.release_branched = release_branched
        self.results_path = results_path

    # ------------------------------------------------------------------
    # Project run
    # ------------------------------------------------------------------
    async def run(
        self,
        project: str,
        change_request: str = "",
        max_attempts: Optional[int] = None,
    ) -> FixRunResult:
        """Fix every patch of ``project`` in order, stopping at the first that cannot be fixed."""
        run_start = time.time()
        result = FixRunResult(project=project, change_request=change_request)

        try:
            # ===========================================================
            # 1. Resolve layout and check out upstream
            # ===========================================================
            layout = resolve_layout(project, self.root, self.release_branched)
            patches = list_patches(layout.patches_dir)
            logger.info("Step 1: %s has %d patch(es) in %s", project, len(patches), layout.patches_dir)

            if not patches:
                result.status = "success"
                result.summary = "No patches to fix"
            else:
                tag = self.checkout.checkout(layout)
                logger.info("Step 2: Checked out %s at %s", layout.repo_name, tag)

                workspace = self.workspace_factory(layout.repo_path)
                validator = self.validator_factory(workspace, layout)

                # =======================================================
                # 3. Patches in apply order
                # =======================================================
                for path in patches:
                    patch_result = await self.fix_patch(
                        workspace,
                        path,
                        project=project,
                        change_request=change_request,
                        validator=validator,
                        max_attempts=max_attempts,
                    )
                    result.patches.append(patch_result)
                    result.total_cost_usd += patch_result.cost_usd
                    if not patch_result.succeeded:
                        break

                failed = [p for p in result.patches if not p.succeeded]
                if any(p.status == "failed" for p in failed):
                    result.status = "error"
                    result.error = failed[-1].diagnostic
                elif failed:
                    result.status = "failed"
                else:
                    result.status = "success"
                result.summary = self._summary(result, len(patches))

        except PatchFixError as e:
            logger.error("Fix run aborted: %s", e)
            result.status = "error"
            result.error = str(e)
        except Exception as e:
            logger.error("Orchestrator encountered a fatal error: %s", e, exc_info=True)
            result.status = "error"
            result.error = str(e)

        result.run_time_seconds = time.time() - run_start
        logger.info("Run finished: %s (%s)", result.status, result.summary or result.error)

        if self.results_path:
            ResultsWriter.write_results(result, self.results_path)
        return result

    @staticmethod
    def _summary(result: FixRunResult, total: int) -> str:
        fixed = sum(1 for p in result.patches if p.fixed)
        ok = sum(1 for p in result.patches if p.succeeded)
        text = f"{ok}/{total} patch(es) apply, {fixed} fixed by the oracle"
        if result.patches and not result.patches[-1].succeeded:
            last = result.patches[-1]
            text += f"; stopped at {last.patch_name} ({last.status})"
        return text

    # ------------------------------------------------------------------
    # Single patch
    # ------------------------------------------------------------------
    async def fix_patch(
        self,
        workspace: GitWorkspace,
        patch_path: str,
        *,
        project: str,
        change_request: str = "",
        validator: Optional[PatchValidator] = None,
        max_attempts: Optional[int] = None,
    ) -> PatchFixResult:
        """
        Run the retry state machine for one patch file.

        The returned result's ``final_state`` is one of succeeded, exhausted,
        skipped or failed. On success the patch file holds the working patch
        and the tree is committed.
        """
        limit = max_attempts or self.max_attempts
        patch_name = os.path.basename(patch_path)
        tracker = StateTracker()
        result = PatchFixResult(patch_name=patch_name)
        validator = validator or self.validator_factory(workspace, None)
        applier = PatchApplier(workspace)
        extractor = ContextExtractor(workspace, applier=applier)

        logger.info("=== Patch %s ===", patch_name)
        try:
            original_text = read_patch(patch_path)
            original = parse_patch(original_text)
        except (OSError, UnicodeDecodeError, PatchParseError) as e:
            tracker.advance(FixState.FAILED)
            return self._finish(result, tracker, "failed", f"cannot read {patch_name}: {e}")

        try:
            # ===========================================================
            # Probe: does the original still apply?
            # ===========================================================
            tracker.advance(FixState.EXTRACTING)
            context = extractor.extract(
                original,
                project=project,
                change_request=change_request,
                patch_name=patch_name,
                attempt=1,
                expect_failure=False,
            )
            if context.rejection_count == 0 and not context.failed_files:
                workspace.stage_all()
                workspace.commit(f"Apply {patch_name}")
                tracker.advance(FixState.SUCCEEDED)
                logger.info("%s applies cleanly, no fix needed", patch_name)
                return self._finish(result, tracker, "succeeded")

            result.complexity = complexity(context)
            if result.complexity > self.complexity_threshold:
                workspace.reset_clean()
                tracker.advance(FixState.SKIPPED)
                return self._finish(
                    result, tracker, "skipped",
                    f"complexity {result.complexity} exceeds threshold {self.complexity_threshold}",
                    [s.path for s in context.failed_files],
                )

            # ===========================================================
            # Attempt loop
            # ===========================================================
            await self._attempt_loop(
                workspace, original, patch_path, context, tracker, result,
                applier, extractor, validator, limit,
            )
            return result

        except PatchFixError as e:
            logger.error("%s error while fixing %s: %s", "Fatal" if e.fatal else "Unrecoverable", patch_name, e)
            if not tracker.terminal:
                tracker.advance(FixState.FAILED)
            return self._finish(result, tracker, "failed", str(e))

    async def _attempt_loop(
        self,
        workspace: GitWorkspace,
        original: PatchSet,
        patch_path: str,
        context: AttemptContext,
        tracker: StateTracker,
        result: PatchFixResult,
        applier: PatchApplier,
        extractor: ContextExtractor,
        validator: PatchValidator,
        limit: int,
    ) -> None:
        patch_name = result.patch_name
        current_error = ""
        prior_errors: List[str] = []
        scale = 1.0
        failing_files = [s.path for s in context.failed_files]

        for attempt in range(1, limit + 1):
            attempt_start = time.time()
            mark = len(tracker.history)
            record = AttemptRecord(attempt=attempt)
            logger.info("--- %s: attempt %d/%d ---", patch_name, attempt, limit)

            diagnostic = ""
            try:
                # --- (a) Extract from a freshly reset + reapplied tree ---
                if attempt > 1:
                    tracker.advance(FixState.EXTRACTING)
                    context = extractor.extract(
                        original,
                        project=context.project,
                        change_request=context.change_request,
                        patch_name=patch_name,
                        attempt=attempt,
                        current_error=current_error,
                        expect_failure=True,
                    )
                record.rejected_hunks = context.rejection_count
                failing_files = [s.path for s in context.failed_files]
                tracker.advance(FixState.AWAITING_FIX)

                # --- (b) Ask the oracle ---
                prompt = build_prompt(context, prior_errors, self.history_depth)
                record.max_tokens = estimate_output_tokens(
                    len(original.files), len(original.text), scale
                )
                result.oracle_calls += 1
                candidate = await self.oracle.request_fix(prompt, record.max_tokens)
                record.input_tokens = candidate.input_tokens
                record.output_tokens = candidate.output_tokens
                record.cost_usd = candidate.cost_usd

                # --- (c) Strict apply on a clean tree, (d) validate ---
                judged = self._judge(workspace, tracker, applier, validator, candidate, original)
                record.outcome = judged.outcome.value
                record.warnings = judged.warnings

                if judged.succeeded:
                    # --- (e) Persist ---
                    write_patch(patch_path, candidate.patch_text)
                    workspace.commit(f"{COMMIT_PREFIX} {patch_name}")
                    tracker.advance(FixState.SUCCEEDED)
                    self._close_record(record, tracker, mark, attempt_start, result)
                    result.fixed = True
                    logger.info("%s fixed on attempt %d", patch_name, attempt)
                    self._finish(result, tracker, "succeeded")
                    return

                diagnostic = judged.diagnostic
                if judged.failing_files:
                    failing_files = judged.failing_files

            except ExtractionError as e:
                record.outcome = "extraction-failed"
                diagnostic = str(e)
            except OracleError as e:
                record.outcome = _oracle_outcome(e)
                diagnostic = str(e)
                if isinstance(e, OracleTruncationError):
                    record.output_tokens = e.output_tokens
                    scale = escalate(scale)
                    logger.warning("Truncated response, output budget scale now %.0fx", scale)

            logger.warning("%s attempt %d failed (%s): %s",
                           patch_name, attempt, record.outcome, diagnostic.splitlines()[0] if diagnostic else "")
            record.diagnostic = diagnostic
            record.failing_files = list(failing_files)

            # --- (f) Revert and carry only this attempt's error ---
            workspace.reset_clean()
            if self.history_depth > 1 and current_error:
                prior_errors = (prior_errors + [current_error])[-(self.history_depth - 1):]
            current_error = diagnostic

            if attempt < limit:
                tracker.advance(FixState.RETRYING)
            else:
                tracker.advance(FixState.EXHAUSTED)
            self._close_record(record, tracker, mark, attempt_start, result)

        logger.warning("%s exhausted after %d attempt(s)", patch_name, limit)
        self._finish(result, tracker, "exhausted", current_error, failing_files)

    @staticmethod
    def _judge(
        workspace: GitWorkspace,
        tracker: StateTracker,
        applier: PatchApplier,
        validator: PatchValidator,
        candidate: CandidateFix,
        original: PatchSet,
    ) -> AttemptResult:
        """Strictly apply ``candidate`` to a reset tree and validate the result."""
        tracker.advance(FixState.APPLYING)
        workspace.reset_clean()
        try:
            parsed = applier.apply_strict(candidate, original)
        except PatchApplyError as e:
            return AttemptResult(
                outcome=AttemptOutcome.APPLY_FAILED,
                diagnostic=str(e),
                failing_files=e.failing_files,
            )

        tracker.advance(FixState.VALIDATING)
        try:
            warnings = validator.validate(parsed, original)
        except ValidationError as e:
            return AttemptResult(outcome=_validation_outcome(e), diagnostic=e.diagnostic)
        return AttemptResult(outcome=AttemptOutcome.SUCCEEDED, warnings=list(warnings or []))

    @staticmethod
    def _close_record(
        record: AttemptRecord,
        tracker: StateTracker,
        mark: int,
        started: float,
        result: PatchFixResult,
    ) -> None:
        record.states = tracker.path()[mark:]
        record.attempt_time_seconds = time.time() - started
        result.attempts.append(record)
        result.cost_usd += record.cost_usd

    @staticmethod
    def _finish(
        result: PatchFixResult,
        tracker: StateTracker,
        status: str,
        diagnostic: str = "",
        failing_files: Optional[List[str]] = None,
    ) -> PatchFixResult:
        result.status = status
        result.final_state = tracker.state.value
        result.diagnostic = diagnostic
        result.failing_files = sorted(failing_files or [])
        return result
