"""
GET /results
Returns the results.json written by the last fix run.
"""
import json
import os

from fastapi import APIRouter, HTTPException

from fixpatches.core.config import RESULTS_PATH

router = APIRouter()


@router.get("/results")
async def get_results():
    if not os.path.isfile(RESULTS_PATH):
        raise HTTPException(status_code=404, detail="No results yet")
    with open(RESULTS_PATH, "r", encoding="utf-8") as f:
        return json.load(f)
