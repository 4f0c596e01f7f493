"""
Constants
Centralised storage for oracle wire values, git apply flags and layout names.
"""
EXTENDED_OUTPUT_BETA = "output-128k-2025-02-19"
MESSAGES_PATH = "/v1/messages"

# Oracle pricing (USD per 1K tokens) used for cost estimates in results
INPUT_COST_PER_1K = 0.003
OUTPUT_COST_PER_1K = 0.015

PERMISSIVE_APPLY_ARGS = ["apply", "-v", "--reject", "--whitespace=fix"]
STRICT_APPLY_ARGS = ["apply", "-v", "--whitespace=fix"]

PATCHES_DIRNAME = "patches"
GIT_TAG_FILENAME = "GIT_TAG"
SUPPORTED_RELEASE_BRANCHES = "release/SUPPORTED_RELEASE_BRANCHES"
REJECT_SUFFIX = ".rej"
COMMIT_PREFIX = "Fix patch:"
