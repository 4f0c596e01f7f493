"""
Git Workspace Tests
===================
Run against real throwaway repositories under tmp_path.
"""
import pytest

from fixpatches.core.errors import RevertError
from fixpatches.executor.git_workspace import GitWorkspace

from conftest import capture_patch, commit_files, git, numbered


@pytest.fixture
def repo(make_repo):
    return make_repo({"a.txt": numbered("a"), "b.txt": numbered("b"), ".gitignore": "*.rej\n"})


def _dirty(repo):
    (repo / "a.txt").write_text("clobbered\n")
    (repo / "junk.txt").write_text("junk\n")
    (repo / "nested").mkdir()
    (repo / "nested" / "more.txt").write_text("more\n")
    (repo / "b.txt.rej").write_text("@@ -1,1 +1,1 @@\n-x\n+y\n")


def test_reset_clean_restores_head(repo):
    ws = GitWorkspace(str(repo))
    _dirty(repo)
    assert not ws.is_clean()

    ws.reset_clean()

    assert ws.is_clean()
    assert (repo / "a.txt").read_text() == numbered("a")
    assert not (repo / "junk.txt").exists()
    assert not (repo / "nested").exists()
    assert not (repo / "b.txt.rej").exists()


def test_ignored_reject_files_are_reported_dirty(repo):
    ws = GitWorkspace(str(repo))
    (repo / "a.txt.rej").write_text("rejected\n")
    assert ws.dirty_paths() == ["a.txt.rej"]


def test_reset_keeps_checkout_marker(repo):
    ws = GitWorkspace(str(repo), marker_pattern="eks-anywhere-checkout-*")
    marker = repo / "eks-anywhere-checkout-v1.2.3"
    marker.write_text("")
    (repo / "junk.txt").write_text("junk\n")

    ws.reset_clean()

    assert marker.exists()
    assert not (repo / "junk.txt").exists()
    assert ws.is_clean()


def test_revert_is_idempotent(repo):
    ws = GitWorkspace(str(repo))
    _dirty(repo)
    ws.reset_clean()
    first_status = git(repo, "status", "--porcelain", "--ignored")
    first = {p.name: p.read_bytes() for p in repo.iterdir() if p.is_file()}

    ws.reset_clean()
    second_status = git(repo, "status", "--porcelain", "--ignored")
    second = {p.name: p.read_bytes() for p in repo.iterdir() if p.is_file()}

    assert first_status == second_status
    assert first == second


def test_reset_outside_a_repository_is_fatal(tmp_path):
    ws = GitWorkspace(str(tmp_path))
    with pytest.raises(RevertError):
        ws.reset_clean()


def test_strict_apply_is_atomic(repo):
    patch = capture_patch(repo, {
        "a.txt": numbered("a").replace("a line 15\n", "a line 15 patched\n"),
        "b.txt": numbered("b").replace("b line 15\n", "b line 15 patched\n"),
    })
    commit_files(repo, {"a.txt": numbered("a").replace("a line 14\n", "a line fourteen\n")})
    ws = GitWorkspace(str(repo))

    report = ws.apply(patch, reject=False)

    assert not report.clean
    assert "a.txt" in report.failing_files
    # b.txt would apply, but strict mode applies nothing
    assert ws.is_clean()


def test_permissive_apply_leaves_rejects(repo):
    patch = capture_patch(repo, {
        "a.txt": numbered("a").replace("a line 15\n", "a line 15 patched\n"),
        "b.txt": numbered("b").replace("b line 15\n", "b line 15 patched\n"),
    })
    commit_files(repo, {"a.txt": numbered("a").replace("a line 14\n", "a line fourteen\n")})
    ws = GitWorkspace(str(repo))

    report = ws.apply(patch, reject=True)

    assert report.files["a.txt"].rejected_hunks == [1]
    assert "b line 15 patched" in ws.read_file("b.txt")
    assert ws.reject_files() == ["a.txt.rej"]


def test_commit_and_nothing_to_commit(repo):
    ws = GitWorkspace(str(repo), user_name="Fixer", user_email="fixer@example.com")
    (repo / "a.txt").write_text("changed\n")
    ws.stage_all()
    assert ws.commit("Fix patch: 0001-x.patch") is True
    assert git(repo, "log", "-1", "--format=%an %s").strip() == "Fixer Fix patch: 0001-x.patch"
    assert ws.commit("again") is False


def test_read_file_missing_returns_none(repo):
    ws = GitWorkspace(str(repo))
    assert ws.read_file("does/not/exist.txt") is None
    assert ws.read_file("a.txt") == numbered("a")
