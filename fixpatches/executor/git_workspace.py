"""
Git Workspace
=============
The upstream clone a patch is applied to. Owned exclusively by the
Orchestrator for the duration of a patch-fix run.

Operations:
    reset_clean  — `git reset --hard HEAD` + `git clean -fd` (checkout marker kept),
                   then remove any `.rej` left behind by ignore rules
    is_clean     — no tracked changes, no untracked files, no `.rej` artifacts
    apply        — `git apply -v` in permissive (--reject) or strict mode
    stage_all / commit — record a validated fix so later patches build on it

Reverting is idempotent: two consecutive resets from the same dirty state
leave a byte-identical tree.
"""
import fnmatch
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from fixpatches.core.config import (
    CHECKOUT_MARKER_PATTERN,
    PATCH_GIT_USER_EMAIL,
    PATCH_GIT_USER_NAME,
)
from fixpatches.core.constants import PERMISSIVE_APPLY_ARGS, REJECT_SUFFIX, STRICT_APPLY_ARGS
from fixpatches.core.errors import CommitError, RevertError
from fixpatches.parser.apply_output import ApplyReport, parse_apply_output

logger = logging.getLogger(__name__)


class GitWorkspace:
    """
    Thin subprocess wrapper around one git working tree.

    Usage:
        ws = GitWorkspace("/path/to/projects/org/repo/repo")
        ws.reset_clean()
        report = ws.apply(patch_text, reject=True)
    """

    def __init__(
        self,
        repo_path: str,
        marker_pattern: str = CHECKOUT_MARKER_PATTERN,
        user_name: str = PATCH_GIT_USER_NAME,
        user_email: str = PATCH_GIT_USER_EMAIL,
    ) -> None:
        self.repo_path = os.path.abspath(repo_path)
        self.marker_pattern = marker_pattern
        self.user_name = user_name
        self.user_email = user_email

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", *args],
            cwd=self.repo_path,
            capture_output=True,
            text=True,
            errors="replace",
        )

    def _is_marker(self, rel_path: str) -> bool:
        return bool(self.marker_pattern) and fnmatch.fnmatch(
            os.path.basename(rel_path.rstrip("/")), self.marker_pattern
        )

    # ------------------------------------------------------------------
    # Revert
    # ------------------------------------------------------------------
    def reject_files(self) -> List[str]:
        """Repo-relative paths of every `.rej` artifact in the tree."""
        root = Path(self.repo_path)
        found = []
        for path in root.rglob(f"*{REJECT_SUFFIX}"):
            rel = path.relative_to(root)
            if rel.parts and rel.parts[0] == ".git":
                continue
            found.append(rel.as_posix())
        return sorted(found)

    def reset_clean(self) -> None:
        """
        Return the tree to HEAD with no untracked files.

        Raises
        ------
        RevertError
            If git refuses, or the tree is still dirty afterwards.
        """
        reset = self._git("reset", "--hard", "HEAD")
        if reset.returncode != 0:
            raise RevertError(
                f"git reset --hard failed in {self.repo_path}: {reset.stderr.strip()}"
            )

        clean_args = ["clean", "-fd"]
        if self.marker_pattern:
            clean_args += ["-e", self.marker_pattern]
        clean = self._git(*clean_args)
        if clean.returncode != 0:
            raise RevertError(
                f"git clean failed in {self.repo_path}: {clean.stderr.strip()}"
            )

        # .rej files matched by .gitignore survive `git clean -fd`
        for rel in self.reject_files():
            try:
                os.remove(os.path.join(self.repo_path, rel))
            except OSError as exc:
                raise RevertError(f"cannot remove {rel}: {exc}") from exc

        dirty = self.dirty_paths()
        if dirty:
            raise RevertError(
                f"working tree still dirty after revert: {', '.join(dirty[:10])}",
                {"dirty": dirty},
            )
        logger.debug("Reverted %s to clean HEAD", self.repo_path)

    def dirty_paths(self) -> List[str]:
        status = self._git("status", "--porcelain", "--untracked-files=all")
        if status.returncode != 0:
            raise RevertError(f"git status failed in {self.repo_path}: {status.stderr.strip()}")
        dirty = []
        for line in status.stdout.splitlines():
            rel = line[3:].strip().strip('"')
            if " -> " in rel:
                rel = rel.split(" -> ", 1)[1]
            if rel and not self._is_marker(rel):
                dirty.append(rel)
        dirty += [r for r in self.reject_files() if r not in dirty]
        return dirty

    def is_clean(self) -> bool:
        return not self.dirty_paths()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def read_file(self, rel_path: str) -> Optional[str]:
        """Current content of ``rel_path``, or None if it does not exist."""
        full = os.path.join(self.repo_path, rel_path)
        if not os.path.isfile(full):
            return None
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------
    def apply(self, patch_text: str, reject: bool = False) -> ApplyReport:
        """
        Run `git apply -v` with ``patch_text``.

        Parameters
        ----------
        patch_text : str
            Patch content; written to a temp file outside the tree.
        reject : bool
            True = permissive (apply what applies, write `.rej` for the rest).
            False = strict (atomic, nothing applied on any failure).
        """
        args = PERMISSIVE_APPLY_ARGS if reject else STRICT_APPLY_ARGS
        if not patch_text.endswith("\n"):
            patch_text += "\n"

        fd, patch_path = tempfile.mkstemp(suffix=".patch", prefix="fixpatches-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(patch_text)
            result = self._git(*args, patch_path)
        finally:
            os.unlink(patch_path)

        output = (result.stdout or "") + (result.stderr or "")
        report = parse_apply_output(output, result.returncode)
        logger.info(
            "git apply (%s) rc=%d, %d file(s) failing",
            "permissive" if reject else "strict",
            result.returncode,
            len(report.failing_files),
        )
        return report

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------
    def stage_all(self) -> None:
        result = self._git("add", "-A")
        if result.returncode != 0:
            raise CommitError(f"git add failed: {result.stderr.strip()}")

    def commit(self, message: str) -> bool:
        """
        Commit staged changes. Returns False when there is nothing to commit.

        Raises
        ------
        CommitError
            On any other git failure.
        """
        result = self._git(
            "-c", f"user.name={self.user_name}",
            "-c", f"user.email={self.user_email}",
            "commit", "-m", message,
        )
        if result.returncode == 0:
            logger.info("Committed: %s", message)
            return True
        combined = result.stdout + result.stderr
        if "nothing to commit" in combined or "nothing added to commit" in combined:
            logger.info("Nothing to commit for: %s", message)
            return False
        raise CommitError(f"git commit failed: {combined.strip()}")
