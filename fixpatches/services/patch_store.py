"""
Patch Store
Reads and overwrites the numbered patch files of a project.
"""
import glob
import logging
import os
from typing import List

logger = logging.getLogger(__name__)


def list_patches(patches_dir: str) -> List[str]:
    """Absolute paths of `*.patch` in ``patches_dir``, in apply order (0001, 0002, ...)."""
    if not os.path.isdir(patches_dir):
        return []
    return sorted(glob.glob(os.path.join(patches_dir, "*.patch")))


def read_patch(path: str) -> str:
    """Patch text; a file that is not UTF-8 raises UnicodeDecodeError."""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def write_patch(path: str, content: str) -> None:
    """Overwrite ``path`` in place; content always ends with a newline."""
    if not content.endswith("\n"):
        content += "\n"
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    logger.info("Patch file updated: %s", path)
