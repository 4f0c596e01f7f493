"""
Patch Applier
=============
Applies patches to the GitWorkspace in one of two modes.

    permissive — continue past failing hunks, write `.rej` artifacts;
                 used to characterise a failure
    strict     — atomic; any failing hunk aborts the whole apply and is
                 reported per file; used to judge a CandidateFix

A strict apply either leaves the tree fully applied and staged, or raises
PatchApplyError with the tree untouched (git apply is atomic without
--reject). The Orchestrator reverts after every failure regardless.
"""
import logging

from fixpatches.core.errors import PatchApplyError, PatchParseError
from fixpatches.executor.git_workspace import GitWorkspace
from fixpatches.models.fix_result import CandidateFix
from fixpatches.models.patch import PatchSet
from fixpatches.parser.apply_output import ApplyReport
from fixpatches.parser.patch_parser import parse_patch

logger = logging.getLogger(__name__)


class PatchApplier:

    def __init__(self, workspace: GitWorkspace) -> None:
        self.workspace = workspace

    def apply_permissive(self, patch_text: str) -> ApplyReport:
        return self.workspace.apply(patch_text, reject=True)

    def apply_strict(self, candidate: CandidateFix, original: PatchSet) -> PatchSet:
        """
        Strictly apply ``candidate`` and stage the result.

        Every file named by ``original`` must be present in the candidate,
        including files that already applied cleanly.

        Returns
        -------
        PatchSet
            The parsed candidate.

        Raises
        ------
        PatchApplyError
            Candidate unparsable, incomplete, or rejected by git.
        """
        try:
            parsed = parse_patch(candidate.patch_text)
        except PatchParseError as exc:
            raise PatchApplyError(
                f"candidate patch is not a valid unified diff: {exc}",
                {"<patch>": [str(exc)]},
            ) from exc

        missing = [path for path in original.paths if parsed.file(path) is None]
        if missing:
            raise PatchApplyError(
                "candidate patch omits file(s) from the original patch: " + ", ".join(missing),
                {path: ["missing from candidate"] for path in missing},
            )

        report = self.workspace.apply(candidate.patch_text, reject=False)
        if not report.clean:
            rejections = report.rejection_map()
            if report.fatal_error:
                rejections.setdefault("<patch>", []).append(report.fatal_error)
            if not rejections:
                rejections = {"<patch>": [f"git apply exited with {report.returncode}"]}
            logger.warning("Strict apply failed for %d file(s)", len(rejections))
            raise PatchApplyError(
                "git apply failed:\n" + report.output.strip(),
                rejections,
                output=report.output,
            )

        self.workspace.stage_all()
        logger.info("Candidate applied cleanly to %d file(s)", len(parsed.files))
        return parsed
