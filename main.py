"""
Patch Fixer API
===============
HTTP surface for fix runs.

    POST /fix-patches   start a run in the background (409 while one is active)
    GET  /status        progress of the current / last run
    GET  /results       the last results.json
    GET  /health        liveness

Run with:  uvicorn main:app --port 8000
"""
import logging
import time

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from fixpatches.api.fix_patches import router as fix_patches_router
from fixpatches.api.results import router as results_router
from fixpatches.api.status import router as status_router
from fixpatches.core.config import LOG_LEVEL
from fixpatches.utils.logging_config import setup_logging

setup_logging(level=LOG_LEVEL)
logger = logging.getLogger("fixpatches.http")

app = FastAPI(title="Patch Fixer API")


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One log line per request with status and duration."""

    async def dispatch(self, request: Request, call_next):
        started = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("%s %s raised", request.method, request.url.path)
            raise
        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method, request.url.path, response.status_code, (time.time() - started) * 1000,
        )
        return response


app.add_middleware(RequestLogMiddleware)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


app.include_router(fix_patches_router, tags=["Patches"])
app.include_router(status_router, tags=["Patches"])
app.include_router(results_router, tags=["Patches"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000)
