"""
Project Layout
==============
Resolves where a project's clone, patches and tag live inside the
build-tooling tree.

    <root>/projects/<org>/<repo>/                 project_path
    <root>/projects/<org>/<repo>/<repo>/          upstream clone
    <root>/projects/<org>/<repo>/patches/         NNNN-*.patch
    <root>/projects/<org>/<repo>/GIT_TAG

Release-branched projects (BINARIES_ARE_RELEASE_BRANCHED=true) keep patches
and GIT_TAG under `<project>/<release-branch>/` instead, where the branch is
the last entry of `<root>/release/SUPPORTED_RELEASE_BRANCHES`.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from fixpatches.core.config import BUILD_TOOLING_ROOT
from fixpatches.core.constants import GIT_TAG_FILENAME, PATCHES_DIRNAME, SUPPORTED_RELEASE_BRANCHES
from fixpatches.core.errors import ConfigurationError
from fixpatches.executor.make_vars import read_make_variable

logger = logging.getLogger(__name__)


@dataclass
class ProjectLayout:
    name: str
    root: str
    project_path: str
    repo_name: str
    repo_path: str
    patches_dir: str
    git_tag_file: str
    release_branch: Optional[str] = None

    @property
    def project_rel(self) -> str:
        return os.path.relpath(self.project_path, self.root)


def latest_release_branch(root: str) -> str:
    path = os.path.join(root, SUPPORTED_RELEASE_BRANCHES)
    if not os.path.isfile(path):
        raise ConfigurationError(f"{SUPPORTED_RELEASE_BRANCHES} not found under {root}")
    with open(path, "r", encoding="utf-8") as f:
        branches = [line.strip() for line in f if line.strip()]
    if not branches:
        raise ConfigurationError(f"no release branches listed in {path}")
    return branches[-1]


def _is_release_branched(project_path: str) -> bool:
    value = read_make_variable(
        project_path, "BINARIES_ARE_RELEASE_BRANCHED", {"RELEASE_BRANCH": "dummy"}
    )
    return value == "true"


def resolve_layout(
    project: str,
    root: str = BUILD_TOOLING_ROOT,
    release_branched: Optional[bool] = None,
) -> ProjectLayout:
    """
    Resolve the layout for ``project`` ("org/repo").

    Parameters
    ----------
    project : str
        Project identity, exactly two path segments.
    root : str
        Build-tooling root holding projects/ and release/.
    release_branched : bool | None
        Override; None asks the project Makefile.

    Raises
    ------
    ConfigurationError
        Malformed project name or missing project directory.
    """
    parts = [p for p in project.strip().split("/") if p]
    if len(parts) != 2:
        raise ConfigurationError(f"project must be <org>/<repo>, got {project!r}")
    org, repo = parts

    root = os.path.abspath(root)
    project_path = os.path.join(root, "projects", org, repo)
    if not os.path.isdir(project_path):
        raise ConfigurationError(f"project directory does not exist: {project_path}")

    if release_branched is None:
        release_branched = _is_release_branched(project_path)

    release_branch = None
    base = project_path
    if release_branched:
        release_branch = latest_release_branch(root)
        base = os.path.join(project_path, release_branch)
        logger.info("Project %s is release-branched, using %s", project, release_branch)

    return ProjectLayout(
        name=f"{org}/{repo}",
        root=root,
        project_path=project_path,
        repo_name=repo,
        repo_path=os.path.join(project_path, repo),
        patches_dir=os.path.join(base, PATCHES_DIRNAME),
        git_tag_file=os.path.join(base, GIT_TAG_FILENAME),
        release_branch=release_branch,
    )
