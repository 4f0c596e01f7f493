"""
Patch Model
===========
Immutable in-memory representation of a (possibly multi-file) unified diff.

Hierarchy:
    PatchSet      — metadata + ordered PatchFiles + the original text
    PatchFile     — one target file, its change kind and ordered Hunks
    Hunk          — one contiguous change region

Hunk.lines keep their one-character prefix (' ', '+', '-', '\\') and no
trailing newline, so a Hunk renders back to diff text losslessly.

Invariants (checked at construction):
    - all line ranges are non-negative
    - hunk source ranges never overlap within one file
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

CHANGE_KINDS = ("modify", "add", "delete", "rename")


class Hunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_start: int = Field(ge=0)
    source_length: int = Field(ge=0)
    target_start: int = Field(ge=0)
    target_length: int = Field(ge=0)
    section: str = ""
    lines: List[str] = []

    @property
    def header(self) -> str:
        head = (
            f"@@ -{self.source_start},{self.source_length} "
            f"+{self.target_start},{self.target_length} @@"
        )
        return f"{head} {self.section}" if self.section else head

    @property
    def source_end(self) -> int:
        """Last source line touched (inclusive); equals start for empty ranges."""
        return self.source_start + max(self.source_length, 1) - 1

    @property
    def expected_lines(self) -> List[str]:
        """Content the hunk expects to find in the file (context + removed)."""
        return [line[1:] for line in self.lines if line[:1] in (" ", "-")]

    @property
    def changed_line_count(self) -> int:
        return sum(1 for line in self.lines if line[:1] in ("+", "-"))

    def render(self) -> str:
        return "\n".join([self.header] + self.lines)


class PatchFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    kind: str = "modify"
    header_lines: List[str] = []
    hunks: List[Hunk] = []

    @model_validator(mode="after")
    def _check_hunks(self) -> "PatchFile":
        if self.kind not in CHANGE_KINDS:
            raise ValueError(f"unknown change kind {self.kind!r} for {self.path}")
        ordered = sorted(self.hunks, key=lambda h: h.source_start)
        for prev, curr in zip(ordered, ordered[1:]):
            if prev.source_length and curr.source_length and curr.source_start <= prev.source_end:
                raise ValueError(
                    f"overlapping hunks in {self.path}: "
                    f"{prev.header} and {curr.header}"
                )
        return self

    @property
    def changed_line_count(self) -> int:
        return sum(h.changed_line_count for h in self.hunks)


class PatchMetadata(BaseModel):
    """git format-patch mail header. Empty for plain diffs."""
    model_config = ConfigDict(frozen=True)

    commit: str = ""
    author: str = ""
    date: str = ""
    subject: str = ""
    body: str = ""

    @property
    def subject_core(self) -> str:
        """Subject without the leading "[PATCH ...]" tag."""
        subject = self.subject.strip()
        if subject.startswith("["):
            closing = subject.find("]")
            if closing != -1:
                subject = subject[closing + 1:]
        return subject.strip()


class PatchSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    metadata: PatchMetadata = PatchMetadata()
    files: List[PatchFile] = []
    text: str = ""

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]

    @property
    def hunk_count(self) -> int:
        return sum(len(f.hunks) for f in self.files)

    @property
    def changed_line_count(self) -> int:
        return sum(f.changed_line_count for f in self.files)

    def file(self, path: str) -> Optional[PatchFile]:
        for patch_file in self.files:
            if path in (patch_file.path, patch_file.old_path, patch_file.new_path):
                return patch_file
        return None
