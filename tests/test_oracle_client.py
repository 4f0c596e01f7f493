"""
Oracle Client Tests
===================
HTTP is served by httpx.MockTransport; throttle and backoff never sleep.
"""
import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from fixpatches.core.errors import (
    ConfigurationError,
    OracleParseError,
    OracleQuotaError,
    OracleTransportError,
    OracleTruncationError,
)
from fixpatches.llm.client import OracleClient, extract_patch_from_response, validate_patch_format
from fixpatches.llm.prompts import OraclePrompt
from fixpatches.llm.throttle import RequestThrottle

PATCH = (
    "diff --git a/a.txt b/a.txt\n"
    "--- a/a.txt\n"
    "+++ b/a.txt\n"
    "@@ -1,2 +1,2 @@\n"
    " keep\n"
    "-old\n"
    "+new"
)

PROMPT = OraclePrompt(system="sys", user="fix it", expected_files=["a.txt"], attempt=1)


def _message(text, output_tokens=100, stop_reason="end_turn"):
    return {
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 1000, "output_tokens": output_tokens},
        "stop_reason": stop_reason,
    }


def _client(handler, sleep=None, **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OracleClient(
        api_key="test-key",
        base_url="https://oracle.test",
        model="test-model",
        max_retries=kwargs.pop("max_retries", 2),
        backoff_base=20,
        extended_output=kwargs.pop("extended_output", True),
        throttle=RequestThrottle(0),
        sleep=sleep or AsyncMock(),
        http=http,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------
def test_extract_fenced_patch():
    text = f"The context changed.\n```diff\n{PATCH}\n```\nDone."
    patch, rationale = extract_patch_from_response(text)
    assert patch == PATCH
    assert rationale == "The context changed."


def test_extract_unfenced_patch():
    patch, rationale = extract_patch_from_response(f"Here you go:\n{PATCH}\n")
    assert patch == PATCH
    assert rationale == "Here you go:"


def test_extract_without_patch():
    assert extract_patch_from_response("I cannot help with that.") == ("", "I cannot help with that.")


def test_validate_patch_format():
    assert validate_patch_format(PATCH) is None
    assert validate_patch_format("") == "response contains no patch"
    assert "headers" in validate_patch_format("--- a\n+++ b\n@@ -1 +1 @@\n")
    assert "'@@'" in validate_patch_format("diff --git a/x b/x\n--- a/x\n+++ b/x\n")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
def test_request_fix_success():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        seen["url"] = str(request.url)
        return httpx.Response(200, json=_message(f"```diff\n{PATCH}\n```"))

    async def run_test():
        client = _client(handler)
        fix = await client.request_fix(PROMPT, max_tokens=8192)
        await client.close()
        return fix

    fix = asyncio.run(run_test())
    assert fix.patch_text == PATCH + "\n"
    assert fix.files == ["a.txt"]
    assert fix.input_tokens == 1000
    assert fix.output_tokens == 100
    assert fix.max_tokens == 8192
    assert fix.cost_usd > 0
    assert seen["url"] == "https://oracle.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "test-key"
    assert seen["headers"]["anthropic-beta"] == "output-128k-2025-02-19"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["max_tokens"] == 8192
    assert seen["body"]["system"] == "sys"
    assert seen["body"]["messages"] == [{"role": "user", "content": "fix it"}]


def test_quota_backs_off_then_succeeds():
    responses = [httpx.Response(429, text="rate limited"), httpx.Response(529, text="overloaded"),
                 httpx.Response(200, json=_message(PATCH))]
    sleep = AsyncMock()

    async def run_test():
        client = _client(lambda request: responses.pop(0), sleep=sleep)
        return await client.request_fix(PROMPT, max_tokens=8192)

    fix = asyncio.run(run_test())
    assert fix.files == ["a.txt"]
    assert [c.args[0] for c in sleep.await_args_list] == [20, 40]


def test_quota_exhausted():
    async def run_test():
        client = _client(lambda request: httpx.Response(429), max_retries=1)
        await client.request_fix(PROMPT, max_tokens=8192)

    with pytest.raises(OracleQuotaError):
        asyncio.run(run_test())


def test_server_errors_become_transport_error():
    async def run_test():
        client = _client(lambda request: httpx.Response(503), max_retries=1)
        await client.request_fix(PROMPT, max_tokens=8192)

    with pytest.raises(OracleTransportError):
        asyncio.run(run_test())


def test_timeouts_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json=_message(PATCH))

    async def run_test():
        return await _client(handler).request_fix(PROMPT, max_tokens=8192)

    assert asyncio.run(run_test()).files == ["a.txt"]
    assert len(calls) == 2


def test_bad_credentials_are_fatal():
    async def run_test():
        await _client(lambda request: httpx.Response(401)).request_fix(PROMPT, max_tokens=8192)

    with pytest.raises(ConfigurationError) as exc_info:
        asyncio.run(run_test())
    assert exc_info.value.fatal


def test_missing_api_key():
    async def run_test():
        client = _client(lambda request: httpx.Response(200))
        client.api_key = None
        await client.request_fix(PROMPT, max_tokens=8192)

    with pytest.raises(ConfigurationError):
        asyncio.run(run_test())


def test_output_at_ceiling_is_truncation():
    async def run_test():
        client = _client(lambda request: httpx.Response(200, json=_message(PATCH, output_tokens=8192)))
        await client.request_fix(PROMPT, max_tokens=8192)

    with pytest.raises(OracleTruncationError) as exc_info:
        asyncio.run(run_test())
    assert exc_info.value.max_tokens == 8192


def test_missing_files_is_truncation():
    prompt = OraclePrompt(system="sys", user="fix", expected_files=["a.txt", "b.txt"])

    async def run_test():
        client = _client(lambda request: httpx.Response(200, json=_message(PATCH)))
        await client.request_fix(prompt, max_tokens=8192)

    with pytest.raises(OracleTruncationError) as exc_info:
        asyncio.run(run_test())
    assert exc_info.value.files_found == 1
    assert exc_info.value.files_expected == 2


def test_prose_response_is_parse_error():
    async def run_test():
        client = _client(lambda request: httpx.Response(200, json=_message("Sorry, no idea.")))
        await client.request_fix(PROMPT, max_tokens=8192)

    with pytest.raises(OracleParseError):
        asyncio.run(run_test())


def test_debug_dump(tmp_path):
    async def run_test():
        client = _client(lambda request: httpx.Response(200, json=_message(PATCH)),
                         debug_dir=str(tmp_path))
        await client.request_fix(PROMPT, max_tokens=8192)

    asyncio.run(run_test())
    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == [
        "oracle-001-attempt1-prompt.txt",
        "oracle-001-attempt1-response.txt",
        "oracle-001-attempt1-usage.json",
    ]
