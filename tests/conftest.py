"""
Shared fixtures: throwaway git repositories and patches captured from them.
"""
import subprocess
from pathlib import Path

import pytest

from fixpatches.models.fix_result import CandidateFix

MAIL_HEADER = (
    "From 1234567890abcdef1234567890abcdef12345678 Mon Sep 17 00:00:00 2001\n"
    "From: Jane Dev <jane@example.com>\n"
    "Date: Tue, 4 Jun 2024 10:00:00 +0000\n"
    "Subject: [PATCH] Tune retry settings\n"
    "\n"
    "Raise the retry budget for flaky registries.\n"
    "---\n"
)


def git(repo, *args) -> str:
    proc = subprocess.run(
        ["git", *args], cwd=str(repo), capture_output=True, text=True, check=True,
    )
    return proc.stdout


def numbered(prefix: str, count: int = 30) -> str:
    return "".join(f"{prefix} line {i}\n" for i in range(1, count + 1))


def write_files(repo, files: dict) -> None:
    for rel, content in files.items():
        path = Path(repo) / rel
        if content is None:
            if path.exists():
                path.unlink()
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def commit_files(repo, files: dict, message: str = "upstream change") -> None:
    write_files(repo, files)
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)


def capture_patch(repo, changes: dict, header: str = "") -> str:
    """Diff of ``changes`` against HEAD; the tree is reset afterwards."""
    write_files(repo, changes)
    git(repo, "add", "-A")
    diff = git(repo, "diff", "--cached")
    git(repo, "reset", "-q", "--hard", "HEAD")
    git(repo, "clean", "-fdq")
    return header + diff


def candidate(text: str, **kwargs) -> CandidateFix:
    return CandidateFix(patch_text=text, **kwargs)


@pytest.fixture
def make_repo(tmp_path):
    def _make(files: dict, name: str = "repo") -> Path:
        repo = tmp_path / name
        repo.mkdir(parents=True)
        git(repo, "init", "-q")
        git(repo, "config", "user.email", "tests@example.com")
        git(repo, "config", "user.name", "Tests")
        git(repo, "config", "commit.gpgsign", "false")
        commit_files(repo, files, "base")
        return repo
    return _make
