"""
GET /status
Progress polling for the current (or last) fix run.

One fix run per build-tooling tree at a time; POST /fix-patches consults
``is_running`` and refuses a second run.
"""
import time
from typing import Optional

from fastapi import APIRouter

from fixpatches.models.run_result import FixRunResult

router = APIRouter()

_state = {
    "status": "idle",
    "project": None,
    "change_request": None,
    "started_at": None,
    "finished_at": None,
    "result_status": None,
    "summary": None,
}


def is_running() -> bool:
    return _state["status"] == "running"


def mark_running(project: str, change_request: str = "") -> None:
    _state.update(
        status="running",
        project=project,
        change_request=change_request,
        started_at=time.time(),
        finished_at=None,
        result_status=None,
        summary=None,
    )


def mark_finished(result: Optional[FixRunResult], error: str = "") -> None:
    _state.update(
        status="finished",
        finished_at=time.time(),
        result_status=result.status if result else "error",
        summary=(result.summary or result.error) if result else error,
    )


def reset() -> None:
    _state.update(status="idle", project=None, change_request=None, started_at=None,
                  finished_at=None, result_status=None, summary=None)


@router.get("/status")
async def get_status():
    return dict(_state)
