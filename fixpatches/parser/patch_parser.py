"""
Patch Parser
============
Converts raw patch text (git format-patch mail or a plain unified diff)
into the immutable PatchSet model.

Pipeline:
    1. Read the mail header (From <sha>, From:, Date:, Subject:, body)
    2. Hand the diff to unidiff for file/hunk decomposition
    3. Recover each file's git extended header lines (diff --git, index, modes, renames)
    4. Build Hunk / PatchFile models (model validation enforces range invariants)

Contract:
    - DETERMINISTIC: same text → same PatchSet.
    - Strict: malformed hunks, hunk counts not satisfied before EOF,
      overlapping hunks or a patch without any file raise PatchParseError.
"""
import logging
import re
from typing import List, Optional

from unidiff import PatchSet as UnifiedDiff
from unidiff.errors import UnidiffParseError

from fixpatches.core.errors import PatchParseError
from fixpatches.models.patch import Hunk, PatchFile, PatchMetadata, PatchSet

logger = logging.getLogger(__name__)


_MBOX_FROM_RE = re.compile(r"^From ([0-9a-f]{7,40}) ")
_HEADER_RE = re.compile(r"^(From|Date|Subject):\s?(.*)$")
_DIFF_START_RE = re.compile(r"^(diff --git |--- (a/|/dev/null|\S))")

# git extended header lines that belong to a file's diff
_EXTENDED_HEADER_PREFIXES = (
    "index ",
    "old mode ",
    "new mode ",
    "deleted file mode ",
    "new file mode ",
    "similarity index ",
    "dissimilarity index ",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
    "Binary files ",
)


# ---------------------------------------------------------------------------
# Mail header
# ---------------------------------------------------------------------------
def parse_metadata(text: str) -> PatchMetadata:
    """
    Parse the git format-patch mail header at the top of ``text``.

    Continuation lines of a folded Subject are joined with a single space.
    The commit message body is everything between the header block and the
    "---" diffstat separator.

    Returns an empty PatchMetadata for plain diffs.
    """
    fields = {"commit": "", "author": "", "date": "", "subject": ""}
    body: List[str] = []
    in_headers = True
    current: Optional[str] = None

    for line in text.splitlines():
        if _DIFF_START_RE.match(line) and not line.startswith("---\t") and line != "---":
            break
        if in_headers:
            mbox = _MBOX_FROM_RE.match(line)
            if mbox and not fields["commit"]:
                fields["commit"] = mbox.group(1)
                continue
            header = _HEADER_RE.match(line)
            if header:
                key = {"From": "author", "Date": "date", "Subject": "subject"}[header.group(1)]
                fields[key] = header.group(2).strip()
                current = key
                continue
            if current and line[:1] in (" ", "\t"):
                fields[current] = f"{fields[current]} {line.strip()}"
                continue
            if line.strip() == "":
                if any(fields.values()):
                    in_headers = False
                current = None
                continue
            if not any(fields.values()):
                # Plain diff preamble, nothing mail-like here
                continue
            in_headers = False
        if line == "---":
            break
        body.append(line)

    return PatchMetadata(body="\n".join(body).strip(), **fields)


# ---------------------------------------------------------------------------
# File / hunk decomposition
# ---------------------------------------------------------------------------
def _strip_prefix(name: Optional[str]) -> Optional[str]:
    if not name or name == "/dev/null":
        return None
    name = name.split("\t", 1)[0]
    if name.startswith(("a/", "b/")):
        return name[2:]
    return name


def _git_header_lines(patched_file) -> List[str]:
    """Recover "diff --git" and the extended header lines for one file."""
    info = [line.rstrip("\r\n") for line in (patched_file.patch_info or [])]
    start = None
    for i, line in enumerate(info):
        if line.startswith("diff --git "):
            start = i
    if start is None:
        return []
    header = [info[start]]
    for line in info[start + 1:]:
        if line.startswith(_EXTENDED_HEADER_PREFIXES):
            header.append(line)
        elif line.startswith(("--- ", "+++ ")):
            continue
        else:
            break
    return header


def _change_kind(patched_file) -> str:
    if patched_file.is_added_file:
        return "add"
    if patched_file.is_removed_file:
        return "delete"
    if patched_file.is_rename:
        return "rename"
    return "modify"


def _convert_hunk(hunk) -> Hunk:
    lines = []
    for line in hunk:
        prefix = line.line_type or " "
        lines.append(prefix + line.value.rstrip("\r\n"))
    return Hunk(
        source_start=hunk.source_start,
        source_length=hunk.source_length,
        target_start=hunk.target_start,
        target_length=hunk.target_length,
        section=(hunk.section_header or "").strip(),
        lines=lines,
    )


def _convert_file(patched_file) -> PatchFile:
    header = _git_header_lines(patched_file)
    old_path = _strip_prefix(patched_file.source_file)
    new_path = _strip_prefix(patched_file.target_file)
    if header and not (old_path or new_path):
        # Header-only diff (mode change / pure rename): names come from diff --git
        parts = header[0][len("diff --git "):].split(" ")
        if len(parts) == 2:
            old_path, new_path = _strip_prefix(parts[0]), _strip_prefix(parts[1])
    path = new_path or old_path or patched_file.path
    return PatchFile(
        path=path,
        old_path=old_path,
        new_path=new_path,
        kind=_change_kind(patched_file),
        header_lines=header,
        hunks=[_convert_hunk(h) for h in patched_file],
    )


def parse_patch(text: str) -> PatchSet:
    """
    Parse ``text`` into a PatchSet.

    Parameters
    ----------
    text : str
        Patch content, format-patch mail or plain unified diff.

    Returns
    -------
    PatchSet
        Metadata, ordered files and the original text.

    Raises
    ------
    PatchParseError
        If the diff is malformed or names no file.
    """
    if not text or not text.strip():
        raise PatchParseError("empty patch")

    try:
        parsed = UnifiedDiff.from_string(text)
    except UnidiffParseError as exc:
        raise PatchParseError(f"malformed patch: {exc}") from exc

    try:
        files = [_convert_file(pf) for pf in parsed]
    except ValueError as exc:
        raise PatchParseError(f"invalid patch structure: {exc}") from exc

    if not files:
        raise PatchParseError("patch contains no file diffs")

    patch = PatchSet(metadata=parse_metadata(text), files=files, text=text)
    logger.debug("Parsed patch: %d file(s), %d hunk(s)", len(files), patch.hunk_count)
    return patch


def count_file_diffs(text: str) -> int:
    """Number of "diff --git" headers, usable on text that does not parse."""
    return sum(1 for line in text.splitlines() if line.startswith("diff --git "))
