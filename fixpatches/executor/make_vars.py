"""
Make Variables
Reads project Makefile variables through the `var-value-<NAME>` target.
"""
import logging
import os
import subprocess
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def read_make_variable(project_path: str, name: str,
                       extra_env: Optional[Dict[str, str]] = None) -> str:
    """
    Value of ``name`` via the `var-value-<name>` make target.

    Only the last output line is used: make may print warnings first.
    Returns "" when the target fails.
    """
    env = dict(os.environ)
    env.update(extra_env or {})
    try:
        proc = subprocess.run(
            ["make", "--no-print-directory", "-C", project_path, f"var-value-{name}"],
            capture_output=True,
            text=True,
            env=env,
        )
    except OSError as exc:
        logger.warning("Cannot run make for %s: %s", name, exc)
        return ""
    if proc.returncode != 0:
        logger.debug("make var-value-%s failed: %s", name, proc.stderr.strip())
        return ""
    lines = [l.strip() for l in (proc.stdout or "").strip().splitlines() if l.strip()]
    return lines[-1] if lines else ""
