"""
Error Taxonomy
==============
Every failure the engine can observe is one of these types.

Fatal (abort the whole run):
    ConfigurationError — bad credentials, missing project, unreadable layout
    CheckoutError      — upstream checkout via make failed
    RevertError        — the working tree cannot be returned to clean
    CommitError        — a validated fix could not be committed

Attempt-consuming (caught by the Orchestrator, reverted, retried):
    ExtractionError, OracleQuotaError, OracleTruncationError,
    OracleParseError, OracleTransportError, PatchApplyError, ValidationError
"""
from typing import Dict, List, Optional


class PatchFixError(Exception):
    """Base class. ``details`` carries structured data for results.json."""

    fatal = False

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigurationError(PatchFixError):
    fatal = True


class CheckoutError(PatchFixError):
    fatal = True


class RevertError(PatchFixError):
    fatal = True


class CommitError(PatchFixError):
    """A validated fix could not be committed; later patches would see a dirty tree."""
    fatal = True


class PatchParseError(PatchFixError):
    """Patch text is not a well-formed unified diff."""


class ExtractionError(PatchFixError):
    """Dirty tree, or no rejections where a failure was expected."""


# ---------------------------------------------------------------------------
# Oracle failures
# ---------------------------------------------------------------------------
class OracleError(PatchFixError):
    pass


class OracleQuotaError(OracleError):
    """Quota still exceeded after all backoff retries."""


class OracleTransportError(OracleError):
    """Timeouts / 5xx responses after all retries."""


class OracleParseError(OracleError):
    """Response did not contain a usable unified diff."""


class OracleTruncationError(OracleError):
    """Response hit the requested ceiling or is missing files."""

    def __init__(
        self,
        message: str,
        output_tokens: int = 0,
        max_tokens: int = 0,
        files_found: int = 0,
        files_expected: int = 0,
    ) -> None:
        super().__init__(message, {
            "output_tokens": output_tokens,
            "max_tokens": max_tokens,
            "files_found": files_found,
            "files_expected": files_expected,
        })
        self.output_tokens = output_tokens
        self.max_tokens = max_tokens
        self.files_found = files_found
        self.files_expected = files_expected


# ---------------------------------------------------------------------------
# Candidate failures
# ---------------------------------------------------------------------------
class PatchApplyError(PatchFixError):
    """Strict apply rejected the candidate. ``rejections`` maps path -> reasons."""

    def __init__(self, message: str, rejections: Optional[Dict[str, List[str]]] = None,
                 output: str = "") -> None:
        super().__init__(message, {"rejections": rejections or {}})
        self.rejections = rejections or {}
        self.output = output

    @property
    def failing_files(self) -> List[str]:
        return sorted(self.rejections)


class ValidationError(PatchFixError):
    """Build or semantic check failed. ``kind`` is "build" or "semantic"."""

    def __init__(self, message: str, kind: str = "build", diagnostic: str = "") -> None:
        super().__init__(message, {"kind": kind})
        self.kind = kind
        self.diagnostic = diagnostic or message
