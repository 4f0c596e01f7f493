"""
POST /fix-patches
=================
Runs the Orchestrator for one project and returns a per-patch summary.

Request:
    project         — "<org>/<repo>" under projects/
    change_request  — PR / change-request id (informational, carried into prompts)
    max_attempts    — optional override, capped at MAX_ATTEMPTS * 2

Only one run at a time: the working tree is owned by the run, so a second
request while one is in flight gets 409.
"""
import logging
import re
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, field_validator

from fixpatches.agents.orchestrator import Orchestrator
from fixpatches.api import status
from fixpatches.core.config import MAX_ATTEMPTS
from fixpatches.llm.client import OracleClient

logger = logging.getLogger(__name__)

router = APIRouter()

_PROJECT_RE = re.compile(r"^[\w.\-]+/[\w.\-]+$")
_MAX_ATTEMPTS_CAP = MAX_ATTEMPTS * 2


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class FixPatchesRequest(BaseModel):
    project: str
    change_request: str = ""
    max_attempts: Optional[int] = None

    @field_validator("project")
    @classmethod
    def validate_project(cls, v: str) -> str:
        if not _PROJECT_RE.match(v.strip()):
            raise ValueError("project must look like <org>/<repo>")
        return v.strip()


class PatchSummary(BaseModel):
    patch_name: str
    status: str
    fixed: bool
    attempts: int
    oracle_calls: int
    diagnostic: str
    failing_files: List[str]


class FixPatchesResponse(BaseModel):
    project: str
    change_request: str
    status: str
    summary: str
    error: Optional[str] = None
    total_cost_usd: float
    patches: List[PatchSummary]


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@router.post("/fix-patches", response_model=FixPatchesResponse)
async def fix_patches(request: FixPatchesRequest):
    if status.is_running():
        raise HTTPException(status_code=409, detail="A fix run is already in progress")

    attempts = min(request.max_attempts or MAX_ATTEMPTS, _MAX_ATTEMPTS_CAP)
    logger.info("Fix run requested: project=%s cr=%s max_attempts=%d",
                request.project, request.change_request or "-", attempts)

    status.mark_running(request.project, request.change_request)
    oracle = OracleClient()
    result = None
    try:
        orchestrator = Orchestrator(oracle=oracle, max_attempts=attempts)
        result = await orchestrator.run(
            project=request.project,
            change_request=request.change_request,
            max_attempts=attempts,
        )
    except Exception as exc:
        logger.error("Fix run crashed: %s", exc, exc_info=True)
        status.mark_finished(None, str(exc))
        raise HTTPException(status_code=500, detail=f"Orchestrator error: {exc}")
    finally:
        await oracle.close()

    status.mark_finished(result)
    return FixPatchesResponse(
        project=result.project,
        change_request=result.change_request,
        status=result.status,
        summary=result.summary,
        error=result.error,
        total_cost_usd=round(result.total_cost_usd, 4),
        patches=[
            PatchSummary(
                patch_name=p.patch_name,
                status=p.status,
                fixed=p.fixed,
                attempts=len(p.attempts),
                oracle_calls=p.oracle_calls,
                diagnostic=p.diagnostic[-2000:],
                failing_files=p.failing_files,
            )
            for p in result.patches
        ],
    )
