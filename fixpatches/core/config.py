"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    ANTHROPIC_API_KEY          — Repair oracle credentials (required for oracle calls)
    ORACLE_BASE_URL            — Messages endpoint root (default: https://api.anthropic.com)
    ORACLE_MODEL               — Model selector sent with every request
    ORACLE_REQUESTS_PER_MINUTE — Endpoint quota; sets the global throttle interval (default: 4)
    ORACLE_MAX_RETRIES         — Quota/transport retries per oracle call (default: 5)
    ORACLE_EXTENDED_OUTPUT     — Send the extended-output beta flag (default: true)
    MAX_ATTEMPTS               — Fix attempts per patch (default: 3)
    SKIP_VALIDATION            — Skip the make build / checksums check (default: false)
    BUILD_IN_DOCKER            — Run build validation inside a sandbox container (default: false)
    BUILD_TOOLING_ROOT         — Root of the build-tooling checkout holding projects/ (default: cwd)
    LOG_LEVEL                  — Root log level (default: INFO)
    LOG_DIR                    — Directory for the daily log file; empty disables it (default: logs)

Output Budget:
    The oracle is asked for ORACLE_MIN_OUTPUT_TOKENS at least and
    ORACLE_MAX_OUTPUT_TOKENS at most. Inside that window the request scales
    with the number of files in the patch (OUTPUT_TOKENS_PER_FILE each) and
    with the size of the original patch text.

Diagnostics:
    Only the latest failure diagnostic is carried into the next prompt.
    DIAGNOSTIC_HISTORY_DEPTH can raise that to N most recent diagnostics.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Oracle endpoint
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ORACLE_BASE_URL = os.getenv("ORACLE_BASE_URL", "https://api.anthropic.com")
ORACLE_MODEL = os.getenv("ORACLE_MODEL", "claude-3-7-sonnet-20250219")
ORACLE_API_VERSION = os.getenv("ORACLE_API_VERSION", "2023-06-01")
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", 600))
ORACLE_TEMPERATURE = float(os.getenv("ORACLE_TEMPERATURE", 0.1))

# Rate / quota discipline
ORACLE_REQUESTS_PER_MINUTE = int(os.getenv("ORACLE_REQUESTS_PER_MINUTE", 4))
ORACLE_MAX_RETRIES = int(os.getenv("ORACLE_MAX_RETRIES", 5))
ORACLE_BACKOFF_BASE_SECONDS = float(os.getenv("ORACLE_BACKOFF_BASE_SECONDS", 20))

# Output budget
ORACLE_MIN_OUTPUT_TOKENS = int(os.getenv("ORACLE_MIN_OUTPUT_TOKENS", 8192))
ORACLE_MAX_OUTPUT_TOKENS = int(os.getenv("ORACLE_MAX_OUTPUT_TOKENS", 100000))
ORACLE_EXTENDED_OUTPUT = _env_flag("ORACLE_EXTENDED_OUTPUT", "true")
OUTPUT_TOKENS_PER_FILE = int(os.getenv("OUTPUT_TOKENS_PER_FILE", 2000))

# Debug dumps of every prompt / response pair (empty = disabled)
ORACLE_DEBUG_DIR = os.getenv("ORACLE_DEBUG_DIR", "")

# Retry loop
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 3))
COMPLEXITY_THRESHOLD = int(os.getenv("COMPLEXITY_THRESHOLD", 10))
DIAGNOSTIC_HISTORY_DEPTH = int(os.getenv("DIAGNOSTIC_HISTORY_DEPTH", 1))
MAX_DIAGNOSTIC_LINES = int(os.getenv("MAX_DIAGNOSTIC_LINES", 500))
CONTEXT_WINDOW_LINES = int(os.getenv("CONTEXT_WINDOW_LINES", 40))

# Semantic drift: fixed patch may change at most this multiple of the original's lines
SEMANTIC_DRIFT_RATIO = float(os.getenv("SEMANTIC_DRIFT_RATIO", 1.5))

# Build validation
SKIP_VALIDATION = _env_flag("SKIP_VALIDATION")
BUILD_IN_DOCKER = _env_flag("BUILD_IN_DOCKER")
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "public.ecr.aws/eks-distro-build-tooling/builder-base:latest")
BUILD_TIMEOUT_SECONDS = int(os.getenv("BUILD_TIMEOUT_SECONDS", 1800))

# Layout
BUILD_TOOLING_ROOT = os.getenv("BUILD_TOOLING_ROOT", os.getcwd())
CHECKOUT_MARKER_PATTERN = os.getenv("CHECKOUT_MARKER_PATTERN", "eks-anywhere-checkout-*")

# Commit identity used when committing fixed patches into the upstream clone
PATCH_GIT_USER_NAME = os.getenv("PATCH_GIT_USER_NAME", "fix-patches")
PATCH_GIT_USER_EMAIL = os.getenv("PATCH_GIT_USER_EMAIL", "fix-patches@localhost")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")
RESULTS_PATH = os.getenv("RESULTS_PATH", "results.json")
