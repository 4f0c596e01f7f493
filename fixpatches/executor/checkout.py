"""
Upstream Checkout
=================
Checks out the upstream repository at the project's GIT_TAG through the
build-tooling Makefile, without applying any patches.

The make target `<repo>/eks-anywhere-checkout-<tag>` clones the repo and
leaves a marker file inside the clone; GitWorkspace.reset_clean keeps it.
"""
import logging
import os
import subprocess

from fixpatches.core.errors import CheckoutError
from fixpatches.executor.make_vars import read_make_variable
from fixpatches.services.project_layout import ProjectLayout

logger = logging.getLogger(__name__)

CHECKOUT_TARGET_TEMPLATE = "{repo}/eks-anywhere-checkout-{tag}"


class MakeCheckout:
    """Default checkout capability. Tests substitute a double with the same ``checkout``."""

    def git_tag(self, layout: ProjectLayout) -> str:
        tag = read_make_variable(layout.project_path, "GIT_TAG")
        if tag:
            return tag
        if os.path.isfile(layout.git_tag_file):
            with open(layout.git_tag_file, "r", encoding="utf-8") as f:
                tag = f.read().strip()
        if not tag:
            raise CheckoutError(f"cannot determine GIT_TAG for {layout.name}")
        return tag

    def checkout(self, layout: ProjectLayout) -> str:
        """
        Clone/check out the upstream repo at GIT_TAG.

        Returns
        -------
        str
            The tag that was checked out.

        Raises
        ------
        CheckoutError
            If make fails or the clone is missing afterwards.
        """
        tag = self.git_tag(layout)
        target = CHECKOUT_TARGET_TEMPLATE.format(repo=layout.repo_name, tag=tag)
        logger.info("Checking out %s at %s (make %s)", layout.name, tag, target)

        proc = subprocess.run(
            ["make", "-C", layout.project_path, target],
            capture_output=True,
            text=True,
        )
        if proc.returncode != 0:
            raise CheckoutError(
                f"make {target} failed",
                {"output": (proc.stdout + proc.stderr)[-4000:]},
            )
        if not os.path.isdir(layout.repo_path):
            raise CheckoutError(f"cloned repository not found at {layout.repo_path}")
        return tag
