"""
API Tests
=========
POST /fix-patches, GET /status, GET /results and /health with the
Orchestrator and oracle client mocked.
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from fixpatches.api import status
from fixpatches.models.attempt_record import AttemptRecord
from fixpatches.models.run_result import FixRunResult, PatchFixResult


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    from main import app
    status.reset()
    yield TestClient(app)
    status.reset()


def _fake_result(run_status="success"):
    return FixRunResult(
        project="kubernetes/autoscaler",
        change_request="42",
        status=run_status,
        summary="1/1 patch(es) apply, 1 fixed by the oracle",
        total_cost_usd=0.05,
        patches=[PatchFixResult(
            patch_name="0001-a.patch", status="succeeded", fixed=True, oracle_calls=2,
            attempts=[AttemptRecord(attempt=1, outcome="apply-failed"),
                      AttemptRecord(attempt=2, outcome="succeeded")],
        )],
    )


def _mocks(result=None, error=None):
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(return_value=result, side_effect=error)
    oracle = MagicMock()
    oracle.close = AsyncMock()
    return orchestrator, oracle


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_fix_patches_success(client):
    orchestrator, oracle = _mocks(_fake_result())
    with patch("fixpatches.api.fix_patches.Orchestrator", return_value=orchestrator) as mock_cls, \
         patch("fixpatches.api.fix_patches.OracleClient", return_value=oracle):
        response = client.post("/fix-patches", json={
            "project": "kubernetes/autoscaler", "change_request": "42", "max_attempts": 2,
        })

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["patches"][0]["attempts"] == 2
    assert body["patches"][0]["fixed"] is True
    assert mock_cls.call_args.kwargs["max_attempts"] == 2
    orchestrator.run.assert_awaited_once_with(
        project="kubernetes/autoscaler", change_request="42", max_attempts=2,
    )
    oracle.close.assert_awaited_once()

    state = client.get("/status").json()
    assert state["status"] == "finished"
    assert state["result_status"] == "success"


def test_max_attempts_is_capped(client):
    orchestrator, oracle = _mocks(_fake_result())
    with patch("fixpatches.api.fix_patches.Orchestrator", return_value=orchestrator), \
         patch("fixpatches.api.fix_patches.OracleClient", return_value=oracle), \
         patch("fixpatches.api.fix_patches._MAX_ATTEMPTS_CAP", 6):
        client.post("/fix-patches", json={"project": "org/repo", "max_attempts": 50})
    assert orchestrator.run.call_args.kwargs["max_attempts"] == 6


def test_invalid_project_rejected(client):
    response = client.post("/fix-patches", json={"project": "not a project"})
    assert response.status_code == 422


def test_concurrent_run_conflict(client):
    status.mark_running("org/repo", "1")
    response = client.post("/fix-patches", json={"project": "org/repo"})
    assert response.status_code == 409


def test_orchestrator_crash(client):
    orchestrator, oracle = _mocks(error=RuntimeError("disk full"))
    with patch("fixpatches.api.fix_patches.Orchestrator", return_value=orchestrator), \
         patch("fixpatches.api.fix_patches.OracleClient", return_value=oracle):
        response = client.post("/fix-patches", json={"project": "org/repo"})
    assert response.status_code == 500
    assert "disk full" in response.json()["detail"]
    oracle.close.assert_awaited_once()
    assert client.get("/status").json()["result_status"] == "error"


def test_results_endpoint(client, tmp_path):
    target = tmp_path / "results.json"
    with patch("fixpatches.api.results.RESULTS_PATH", str(target)):
        assert client.get("/results").status_code == 404
        target.write_text(json.dumps({"final_results": {"status": "success"}}))
        assert client.get("/results").json() == {"final_results": {"status": "success"}}
