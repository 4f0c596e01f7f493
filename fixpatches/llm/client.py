"""
Oracle Client
=============
Asynchronous client for the repair oracle (Anthropic Messages API over httpx).

Quota Discipline:
    - Every HTTP request, retries included, first waits on the process-wide
      RequestThrottle (ORACLE_REQUESTS_PER_MINUTE)
    - HTTP 429 / 529 back off exponentially (ORACLE_BACKOFF_BASE_SECONDS * 2^i)
      up to ORACLE_MAX_RETRIES, then raise OracleQuotaError
    - Timeouts and 5xx are retried the same way, then raise OracleTransportError
    - 401 / 403 raise ConfigurationError (fatal)

Truncation:
    - output_tokens >= max_tokens, or stop_reason == "max_tokens", is a
      truncation regardless of whether the text happens to parse
    - A parsed candidate naming fewer files than the prompt expected is a
      truncation as well
    Both raise OracleTruncationError so the Orchestrator can escalate the
    output budget on the next attempt.

Response Parsing:
    - Prefer a fenced block whose content starts with "From " or "diff --git"
    - Otherwise take everything from the first such line
    - The diff must carry "---", "+++" and "@@" markers and parse as a patch
"""
import asyncio
import json
import logging
import os
import time
from typing import Awaitable, Callable, Optional, Tuple

import httpx

from fixpatches.core.config import (
    ANTHROPIC_API_KEY,
    ORACLE_API_VERSION,
    ORACLE_BACKOFF_BASE_SECONDS,
    ORACLE_BASE_URL,
    ORACLE_DEBUG_DIR,
    ORACLE_EXTENDED_OUTPUT,
    ORACLE_MAX_RETRIES,
    ORACLE_MODEL,
    ORACLE_TEMPERATURE,
    ORACLE_TIMEOUT_SECONDS,
)
from fixpatches.core.constants import (
    EXTENDED_OUTPUT_BETA,
    INPUT_COST_PER_1K,
    MESSAGES_PATH,
    OUTPUT_COST_PER_1K,
)
from fixpatches.core.errors import (
    ConfigurationError,
    OracleParseError,
    OracleQuotaError,
    OracleTransportError,
    OracleTruncationError,
    PatchParseError,
)
from fixpatches.llm.prompts import OraclePrompt
from fixpatches.llm.throttle import RequestThrottle, get_throttle
from fixpatches.models.fix_result import CandidateFix
from fixpatches.parser.patch_parser import count_file_diffs, parse_patch

logger = logging.getLogger(__name__)

_QUOTA_STATUSES = (429, 529)
_PATCH_STARTS = ("From ", "diff --git")


# ---------------------------------------------------------------------------
# Response Parsing
# ---------------------------------------------------------------------------
def extract_patch_from_response(text: str) -> Tuple[str, str]:
    """
    Split an oracle response into (patch, rationale).

    Parameters
    ----------
    text : str
        Raw response text.

    Returns
    -------
    tuple of str
        The patch text ("" if none found) and whatever prose surrounded it.
    """
    if not text or not text.strip():
        return "", ""

    if "```" in text:
        pieces = text.split("```")
        # Odd indices are fence contents
        for i in range(1, len(pieces), 2):
            block = pieces[i]
            if block.startswith("diff\n") or block.startswith("patch\n"):
                block = block.split("\n", 1)[1]
            block = block.strip("\n")
            if block.startswith(_PATCH_STARTS):
                rationale = "```".join(pieces[:i]).strip()
                return block, rationale

    lines = text.splitlines()
    for i, line in enumerate(lines):
        if line.startswith(_PATCH_STARTS):
            patch_lines = [ln for ln in lines[i:] if not ln.startswith("```")]
            return "\n".join(patch_lines).rstrip("\n"), "\n".join(lines[:i]).strip()

    return "", text.strip()


def validate_patch_format(patch: str) -> Optional[str]:
    """None when ``patch`` has the markers of a unified diff, else the reason."""
    if not patch.strip():
        return "response contains no patch"
    if "diff --git" not in patch and not patch.startswith("From "):
        return "patch missing required headers (From or diff --git)"
    for marker in ("---", "+++", "@@"):
        if marker not in patch:
            return f"patch missing {marker!r} markers"
    return None


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    return (input_tokens / 1000.0) * INPUT_COST_PER_1K + (output_tokens / 1000.0) * OUTPUT_COST_PER_1K


# ---------------------------------------------------------------------------
# Oracle Client
# ---------------------------------------------------------------------------
class OracleClient:
    """
    Async HTTP client for the repair oracle.

    Usage:
        client = OracleClient()
        candidate = await client.request_fix(prompt, max_tokens=16000)
        await client.close()
    """

    def __init__(
        self,
        api_key: Optional[str] = ANTHROPIC_API_KEY,
        base_url: str = ORACLE_BASE_URL,
        model: str = ORACLE_MODEL,
        max_retries: int = ORACLE_MAX_RETRIES,
        backoff_base: float = ORACLE_BACKOFF_BASE_SECONDS,
        extended_output: bool = ORACLE_EXTENDED_OUTPUT,
        throttle: Optional[RequestThrottle] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        debug_dir: str = ORACLE_DEBUG_DIR,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.extended_output = extended_output
        self.throttle = throttle or get_throttle()
        self._sleep = sleep or asyncio.sleep
        self.debug_dir = debug_dir
        self._http = http
        self._calls = 0

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(ORACLE_TIMEOUT_SECONDS))
        return self._http

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def _backoff(self, retry: int) -> None:
        delay = self.backoff_base * (2 ** retry)
        logger.info("Backing off %.0fs before retry %d/%d", delay, retry + 1, self.max_retries)
        await self._sleep(delay)

    def _headers(self) -> dict:
        headers = {
            "x-api-key": self.api_key or "",
            "anthropic-version": ORACLE_API_VERSION,
            "content-type": "application/json",
        }
        if self.extended_output:
            headers["anthropic-beta"] = EXTENDED_OUTPUT_BETA
        return headers

    async def _post(self, payload: dict) -> dict:
        """POST with throttling and quota / transport retries. Returns the JSON body."""
        if not self.api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set")

        http = await self._get_http()
        url = f"{self.base_url}{MESSAGES_PATH}"
        last_quota = False
        last_error = ""

        for retry in range(self.max_retries + 1):
            if retry > 0:
                await self._backoff(retry - 1)
            await self.throttle.wait()

            try:
                resp = await http.post(url, json=payload, headers=self._headers())
            except httpx.TimeoutException as e:
                last_quota, last_error = False, f"timeout: {e}"
                logger.warning("Oracle request %d: timeout", retry + 1)
                continue
            except httpx.TransportError as e:
                last_quota, last_error = False, f"transport error: {e}"
                logger.warning("Oracle request %d: %s", retry + 1, e)
                continue

            status = resp.status_code
            if status in (401, 403):
                raise ConfigurationError(f"oracle rejected credentials (HTTP {status})")
            if status in _QUOTA_STATUSES:
                last_quota, last_error = True, f"HTTP {status}: {resp.text[:500]}"
                logger.warning("Oracle request %d: quota exceeded (HTTP %d)", retry + 1, status)
                continue
            if status >= 500:
                last_quota, last_error = False, f"HTTP {status}: {resp.text[:500]}"
                logger.warning("Oracle request %d: HTTP %d", retry + 1, status)
                continue
            if status >= 400:
                raise OracleTransportError(
                    f"oracle request failed (HTTP {status})", {"body": resp.text[:2000]}
                )

            try:
                return resp.json()
            except ValueError as e:
                raise OracleParseError(f"oracle returned invalid JSON: {e}") from e

        attempts = self.max_retries + 1
        if last_quota:
            raise OracleQuotaError(f"quota still exceeded after {attempts} requests: {last_error}")
        raise OracleTransportError(f"oracle unreachable after {attempts} requests: {last_error}")

    def _dump(self, prompt: OraclePrompt, text: str, usage: dict) -> None:
        if not self.debug_dir:
            return
        os.makedirs(self.debug_dir, exist_ok=True)
        stem = os.path.join(self.debug_dir, f"oracle-{self._calls:03d}-attempt{prompt.attempt}")
        with open(stem + "-prompt.txt", "w", encoding="utf-8") as f:
            f.write(prompt.system + "\n\n" + prompt.user)
        with open(stem + "-response.txt", "w", encoding="utf-8") as f:
            f.write(text)
        with open(stem + "-usage.json", "w", encoding="utf-8") as f:
            json.dump(usage, f, indent=2)

    async def request_fix(self, prompt: OraclePrompt, max_tokens: int) -> CandidateFix:
        """
        Ask the oracle for a corrected patch.

        Parameters
        ----------
        prompt : OraclePrompt
            Rendered system + user text and the files the fix must cover.
        max_tokens : int
            Output ceiling for this request.

        Returns
        -------
        CandidateFix

        Raises
        ------
        OracleQuotaError, OracleTransportError, OracleTruncationError,
        OracleParseError, ConfigurationError
        """
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": ORACLE_TEMPERATURE,
            "system": prompt.system,
            "messages": [{"role": "user", "content": prompt.user}],
        }
        self._calls += 1
        started = time.time()
        data = await self._post(payload)

        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type", "text") == "text"
        )
        usage = data.get("usage") or {}
        input_tokens = int(usage.get("input_tokens", 0))
        output_tokens = int(usage.get("output_tokens", 0))
        stop_reason = data.get("stop_reason") or ""
        cost = estimate_cost(input_tokens, output_tokens)
        self._dump(prompt, text, usage)

        logger.info(
            "Oracle responded in %.1fs: %d input / %d output tokens (max %d), stop=%s, ~$%.4f",
            time.time() - started, input_tokens, output_tokens, max_tokens, stop_reason or "-", cost,
        )

        expected = len(prompt.expected_files)
        if output_tokens >= max_tokens or stop_reason == "max_tokens":
            raise OracleTruncationError(
                f"response truncated at {output_tokens} tokens (limit {max_tokens})",
                output_tokens=output_tokens,
                max_tokens=max_tokens,
                files_found=count_file_diffs(text),
                files_expected=expected,
            )

        patch_text, rationale = extract_patch_from_response(text)
        problem = validate_patch_format(patch_text)
        if problem:
            raise OracleParseError(problem, {"response": text[:2000]})
        try:
            parsed = parse_patch(patch_text)
        except PatchParseError as e:
            raise OracleParseError(f"oracle patch does not parse: {e}", {"response": text[:2000]}) from e

        if len(parsed.files) < expected:
            raise OracleTruncationError(
                f"response covers {len(parsed.files)} of {expected} files",
                output_tokens=output_tokens,
                max_tokens=max_tokens,
                files_found=len(parsed.files),
                files_expected=expected,
            )

        return CandidateFix(
            patch_text=patch_text + "\n",
            rationale=rationale,
            files=parsed.paths,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            max_tokens=max_tokens,
            stop_reason=stop_reason,
            cost_usd=cost,
        )
