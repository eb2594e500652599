"""Tests for the swap cycle endpoints.

The router is exercised against a real state machine over the in-memory
repository; only the module-level service getters are patched.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from swapping.data import InMemorySwapRepository
from swapping.errors import DetectionAlreadyRunningError
from swapping.lifecycle import CycleStateMachine
from swapping.models import CycleStatus
from tests.fixtures.builders import seed_cycle


@pytest.fixture
def state_machine(repository: InMemorySwapRepository, fixed_now: datetime) -> CycleStateMachine:
    return CycleStateMachine(repository, clock=lambda: fixed_now)


@pytest.fixture
def scheduler() -> Mock:
    mock = Mock()
    mock.detection_job.is_running = False
    mock.timeout_job.is_running = False
    return mock


@pytest.fixture
def client(state_machine: CycleStateMachine, scheduler: Mock) -> Generator[TestClient, None, None]:
    with patch("api.routers.cycles.get_state_machine", return_value=state_machine):
        with patch("api.routers.cycles.get_scheduler", return_value=scheduler):
            from api.main import create_app

            yield TestClient(create_app())


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


class TestHealth:
    def test_app_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "vitabu-swap-api"}

    def test_cycles_health_reports_jobs(self, client: TestClient, scheduler: Mock):
        scheduler.detection_job.is_running = True

        response = client.get("/api/cycles/health")

        assert response.json() == {
            "status": "healthy",
            "service": "swap-cycles",
            "detection_running": True,
            "timeout_sweep_running": False,
        }


class TestDetect:
    def test_manual_run(self, client: TestClient, scheduler: Mock):
        scheduler.trigger_detection.return_value = 4

        response = client.post("/api/cycles/detect", json={"max_cycle_size": 3, "top_n": 10}, headers=as_user("u1"))

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Successfully detected and saved 4 swap cycles"
        assert body["data"] == {"cycles_detected": 4, "max_cycle_size": 3}
        scheduler.trigger_detection.assert_called_once_with(3, 10)

    def test_defaults_without_body(self, client: TestClient, scheduler: Mock):
        scheduler.trigger_detection.return_value = 0

        response = client.post("/api/cycles/detect", headers=as_user("u1"))

        assert response.status_code == 200
        scheduler.trigger_detection.assert_called_once_with(5, 50)

    def test_busy(self, client: TestClient, scheduler: Mock):
        scheduler.trigger_detection.side_effect = DetectionAlreadyRunningError("cycle-detection is already running")

        response = client.post("/api/cycles/detect", headers=as_user("u1"))

        assert response.status_code == 409
        assert response.json() == {"success": False, "message": "cycle-detection is already running"}

    def test_failure_is_500(self, client: TestClient, scheduler: Mock):
        scheduler.trigger_detection.side_effect = RuntimeError("graph exploded")

        response = client.post("/api/cycles/detect", headers=as_user("u1"))

        assert response.status_code == 500
        assert response.json()["message"] == "Failed to detect cycles"

    @pytest.mark.parametrize("payload", [{"max_cycle_size": 6}, {"max_cycle_size": 1}, {"top_n": 0}])
    def test_rejects_out_of_range_parameters(self, client: TestClient, scheduler: Mock, payload: dict):
        response = client.post("/api/cycles/detect", json=payload, headers=as_user("u1"))

        assert response.status_code == 422
        scheduler.trigger_detection.assert_not_called()


class TestReadEndpoints:
    def test_user_header_is_required(self, client: TestClient):
        assert client.get("/api/cycles").status_code == 422

    def test_list_my_cycles(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.get("/api/cycles", headers=as_user("u1"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["cycles"][0]["cycle"]["id"] == cycle.id
        assert data["cycles"][0]["my_participation"]["collection_qr_code"] == "QR-u1"

    def test_list_filters_by_status(self, client: TestClient, repository, fixed_now):
        seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.get("/api/cycles/", params={"status": "active"}, headers=as_user("u1"))

        assert response.json()["data"]["total"] == 0

    def test_list_rejects_unknown_status(self, client: TestClient):
        response = client.get("/api/cycles", params={"status": "bogus"}, headers=as_user("u1"))

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Invalid status: bogus"}

    @pytest.mark.parametrize("limit", [0, 101])
    def test_list_limit_bounds(self, client: TestClient, limit: int):
        response = client.get("/api/cycles", params={"limit": limit}, headers=as_user("u1"))

        assert response.status_code == 422

    def test_get_cycle(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.get(f"/api/cycles/{cycle.id}", headers=as_user("u2"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["cycle"]["status"] == "pending_confirmation"
        assert [p["user_id"] for p in data["participants"]] == ["u1", "u2"]

    def test_get_cycle_as_stranger(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.get(f"/api/cycles/{cycle.id}", headers=as_user("u9"))

        assert response.status_code == 403
        assert response.json() == {"success": False, "message": "You are not a participant in this cycle"}

    def test_unknown_cycle(self, client: TestClient):
        response = client.get("/api/cycles/does-not-exist", headers=as_user("u1"))

        assert response.status_code == 404
        assert response.json()["message"] == "Cycle not found"


class TestParticipantActions:
    def test_confirm(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now, confirmed_user_ids=("u1",))

        response = client.post(f"/api/cycles/{cycle.id}/confirm", headers=as_user("u2"))

        assert response.status_code == 200
        assert response.json()["data"]["all_confirmed"] is True
        assert repository.get_cycle(cycle.id).status is CycleStatus.CONFIRMED

    def test_confirm_twice_is_400(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now, confirmed_user_ids=("u1",))

        response = client.post(f"/api/cycles/{cycle.id}/confirm", headers=as_user("u1"))

        assert response.status_code == 400

    def test_drop_off_without_body(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now, status=CycleStatus.CONFIRMED)

        response = client.post(f"/api/cycles/{cycle.id}/drop-off", headers=as_user("u1"))

        assert response.status_code == 200
        assert repository.get_cycle(cycle.id).status is CycleStatus.ACTIVE

    def test_collect_wrong_state_is_409(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.post(f"/api/cycles/{cycle.id}/collect", json={"qr_code": "QR-u1"}, headers=as_user("u1"))

        assert response.status_code == 409
        assert response.json()["message"] == "Cannot collect book for cycle with status: pending_confirmation"

    def test_collect_wrong_qr_is_400(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now, status=CycleStatus.ACTIVE)

        response = client.post(f"/api/cycles/{cycle.id}/collect", json={"qr_code": "QR-u2"}, headers=as_user("u1"))

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid QR code"

    def test_collect_completes(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now, status=CycleStatus.ACTIVE)

        client.post(f"/api/cycles/{cycle.id}/collect", json={"qr_code": "QR-u1"}, headers=as_user("u1"))
        response = client.post(f"/api/cycles/{cycle.id}/collect", json={"qr_code": "QR-u2"}, headers=as_user("u2"))

        assert response.json()["data"]["cycle_completed"] is True
        assert repository.get_cycle(cycle.id).status is CycleStatus.COMPLETED

    def test_cancel_requires_reason(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.post(f"/api/cycles/{cycle.id}/cancel", json={}, headers=as_user("u1"))

        assert response.status_code == 400
        assert response.json()["message"] == "Cancellation reason is required"

    def test_cancel(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now)

        response = client.post(
            f"/api/cycles/{cycle.id}/cancel", json={"reason": "Lost the book"}, headers=as_user("u1")
        )

        assert response.status_code == 200
        assert repository.get_cycle(cycle.id).cancellation_reason == "Lost the book"

    def test_condition_report(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2", "u3"], fixed_now, status=CycleStatus.ACTIVE)
        client.post(f"/api/cycles/{cycle.id}/collect", json={"qr_code": "QR-u2"}, headers=as_user("u2"))

        response = client.post(
            f"/api/cycles/{cycle.id}/condition-report",
            json={"expected_condition": "Like New", "actual_condition": "Poor", "notes": "Pages missing"},
            headers=as_user("u2"),
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"mismatch": True, "giver_id": "u3"}

    def test_condition_report_requires_both_conditions(self, client: TestClient, repository, fixed_now):
        cycle, _ = seed_cycle(repository, ["u1", "u2"], fixed_now, status=CycleStatus.ACTIVE)

        response = client.post(
            f"/api/cycles/{cycle.id}/condition-report",
            json={"expected_condition": "Good"},
            headers=as_user("u1"),
        )

        assert response.status_code == 422
