"""
Build Executor
==============
Runs the project's make targets (build, checksums) for validation, either
directly on the host or inside an ephemeral Docker sandbox container.
Returns structured execution results (logs, exit code, timing).

BOUNDARY RULES:
    - Executor ONLY observes execution.
    - Executor NEVER edits patches or the working tree.
    - Executor NEVER decides pass/fail policy — that is the Validator's job.

DOCKER STRATEGY (BUILD_IN_DOCKER=true):
    - One container per validation (ephemeral).
    - Build-tooling root mounted as volume at /workspace.
    - Container destroyed after execution.
"""
import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import List, Optional

import docker
from docker.errors import APIError, ContainerError, ImageNotFound

from fixpatches.core.config import BUILD_TIMEOUT_SECONDS, DOCKER_IMAGE

logger = logging.getLogger(__name__)

VALIDATION_TARGETS = ["build", "checksums"]


# ---------------------------------------------------------------------------
# Execution Result (returned to the Validator)
# ---------------------------------------------------------------------------
@dataclass
class ExecutionResult:
    """
    Structured output from one validation run.

    Fields
    ------
    exit_code : int
        Exit code of the first failing target, 0 if all passed, -1 on infra failure.
    full_log : str
        Combined stdout + stderr of every target that ran.
    log_excerpt : str
        Abbreviated log (first + last N lines) for results.json.
    failed_target : str
        The make target that failed ("" on success).
    execution_time_seconds : float
        Wall clock duration of the execution.
    environment_metadata : dict
        Runtime info: where it ran, image used, timeout applied.
    error : str | None
        Error message if execution infrastructure failed (not build errors).
    """
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    failed_target: str = ""
    execution_time_seconds: float = 0.0
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and self.error is None


# ---------------------------------------------------------------------------
# Log helpers
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Keep the first ``head`` and last ``tail`` lines of ``full_log``.

    Short logs are returned unchanged.
    """
    lines = full_log.splitlines()
    if len(lines) <= head + tail:
        return full_log
    omitted = len(lines) - head - tail
    return "\n".join(lines[:head] + [f"... ({omitted} lines omitted) ..."] + lines[-tail:])


def tail_lines(text: str, limit: int) -> str:
    """Last ``limit`` lines of ``text``, prefixed with a marker when cut."""
    lines = text.splitlines()
    if limit <= 0 or len(lines) <= limit:
        return text
    return "\n".join(["...(truncated)..."] + lines[-limit:])


# ---------------------------------------------------------------------------
# Host execution
# ---------------------------------------------------------------------------
def run_make_targets(
    project_path: str,
    targets: List[str] = VALIDATION_TARGETS,
    timeout_seconds: int = BUILD_TIMEOUT_SECONDS,
) -> ExecutionResult:
    """
    Run ``make -C <project_path> <target>`` for each target, stopping at the
    first failure.

    Always returns a result; a missing `make` or a timeout is reported
    through ``error`` with exit_code -1.
    """
    result = ExecutionResult(exit_code=0)
    start_time = time.monotonic()
    logs: List[str] = []

    for target in targets:
        logger.info("Running make -C %s %s", project_path, target)
        try:
            proc = subprocess.run(
                ["make", "-C", project_path, target],
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            result.exit_code = -1
            result.failed_target = target
            result.error = f"make {target} timed out after {timeout_seconds}s"
            logger.error(result.error)
            break
        except OSError as e:
            result.exit_code = -1
            result.failed_target = target
            result.error = f"cannot run make: {e}"
            logger.error(result.error)
            break

        logs.append(f">>> make {target}\n{proc.stdout}{proc.stderr}")
        if proc.returncode != 0:
            result.exit_code = proc.returncode
            result.failed_target = target
            break

    result.full_log = "\n".join(logs)
    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    result.log_excerpt = create_log_excerpt(result.full_log)
    result.environment_metadata = {"runner": "host", "timeout_applied": timeout_seconds}

    logger.info(
        "Validation build complete | exit=%d | time=%.2fs | failed_target=%s",
        result.exit_code, result.execution_time_seconds, result.failed_target or "-",
    )
    return result


# ---------------------------------------------------------------------------
# Container execution
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "8g"
_CPU_COUNT = 4


def run_in_container(
    tooling_root: str,
    project_rel: str,
    targets: List[str] = VALIDATION_TARGETS,
    timeout_seconds: int = BUILD_TIMEOUT_SECONDS,
    docker_image: str = DOCKER_IMAGE,
) -> ExecutionResult:
    """
    Run the make targets inside an ephemeral Docker container.

    Parameters
    ----------
    tooling_root : str
        Absolute host path of the build-tooling checkout (mounted at /workspace).
    project_rel : str
        Project directory relative to ``tooling_root`` (e.g. projects/org/repo).
    targets : list[str]
        Make targets, run in order with `set -e`.
    timeout_seconds : int
        Max execution time before the container is killed.
    docker_image : str
        Builder image.

    Returns
    -------
    ExecutionResult
        Always returned. On infrastructure failure, exit_code is -1 and error is set.
    """
    result = ExecutionResult()
    start_time = time.monotonic()
    workdir = f"/workspace/{project_rel.strip('/')}"
    shell_cmd = " && ".join(["set -e"] + [f"echo '>>> make {t}' && make {t}" for t in targets])

    container = None
    try:
        client = docker.from_env()
        logger.info(
            "Starting container | image=%s | workdir=%s | timeout=%ds",
            docker_image, workdir, timeout_seconds,
        )
        container = client.containers.run(
            image=docker_image,
            command=["bash", "-c", shell_cmd],
            volumes={os.path.abspath(tooling_root): {"bind": "/workspace", "mode": "rw"}},
            environment={"CI": "true"},
            working_dir=workdir,
            mem_limit=_MEMORY_LIMIT,
            nano_cpus=_CPU_COUNT * 1_000_000_000,
            name=f"fixpatches-build-{int(time.time())}",
            labels={"project": "fix-patches", "role": "validation"},
            detach=True,
        )
        wait_result = container.wait(timeout=timeout_seconds)
        result.exit_code = wait_result.get("StatusCode", -1)
        result.full_log = container.logs(stdout=True, stderr=True).decode("utf-8", errors="replace")
        if result.exit_code != 0:
            # Last target echoed before the failure
            started = [t for t in targets if f">>> make {t}" in result.full_log]
            result.failed_target = started[-1] if started else targets[0]
        result.environment_metadata = {
            "runner": "docker",
            "image": docker_image,
            "container_id": container.short_id,
            "timeout_applied": timeout_seconds,
        }

    except ImageNotFound:
        result.error = f"Docker image '{docker_image}' not found."
        logger.error(result.error)

    except ContainerError as e:
        result.error = f"Container execution error: {e}"
        result.exit_code = getattr(e, "exit_status", -1)
        result.full_log = str(e)
        logger.error(result.error)

    except APIError as e:
        result.error = f"Docker API error: {e}"
        logger.error(result.error)

    except Exception as e:
        # requests.ReadTimeout from container.wait and similar
        result.error = f"Unexpected executor error: {type(e).__name__}: {e}"
        result.exit_code = -1
        logger.exception(result.error)

    finally:
        if container is not None:
            try:
                container.remove(force=True)
                logger.info("Container %s destroyed", container.short_id)
            except Exception:
                logger.warning("Failed to remove container", exc_info=True)

    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    result.log_excerpt = create_log_excerpt(result.full_log)
    logger.info(
        "Container validation complete | exit=%d | time=%.2fs",
        result.exit_code, result.execution_time_seconds,
    )
    return result
