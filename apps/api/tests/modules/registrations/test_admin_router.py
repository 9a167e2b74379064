"""
Tests for the admin HTTP surface: status codes and error tiers.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from maktab.api import api_router
from maktab.core.database import get_db
from maktab.modules.payments.issuer import PaymentSession
from maktab.modules.registrations.errors import (
    CompensationError,
    InvalidStudentStateError,
    OperationWarning,
    StoreWriteError,
    ValidationError,
)
from maktab.modules.registrations.orchestrator import (
    ApprovalResult,
    DecisionResult,
    ManualApprovalResult,
    get_orchestrator,
)


@pytest.fixture
def fake_orchestrator():
    orchestrator = MagicMock()
    for name in (
        "approve_single",
        "approve_group",
        "reject",
        "manual_approve",
        "manual_approve_group",
        "cancel_registration",
        "resend_payment_link",
        "list_pending_registrations",
        "list_pending_payment_students",
        "find_orphaned_students",
    ):
        setattr(orchestrator, name, AsyncMock())
    return orchestrator


@pytest.fixture
def client(fake_orchestrator, mock_db):
    app = FastAPI()
    app.include_router(api_router, prefix="/api/v1")

    async def override_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_orchestrator] = lambda: fake_orchestrator
    return TestClient(app)


class TestApproveEndpoint:
    def test_success_returns_students_sessions_and_warnings(
        self, client, fake_orchestrator, student_factory
    ):
        student = student_factory()
        session = PaymentSession(
            session_id="cs_test_1",
            customer_id="cus_1",
            student_ids=[student.id],
            discount_applied=False,
            url="https://checkout.test/cs_test_1",
        )
        warning = OperationWarning(service="email", message="timed out", student_ids=[student.id])
        fake_orchestrator.approve_single.return_value = ApprovalResult(
            students=[student], payment_sessions=[session], warnings=[warning]
        )

        response = client.post(
            f"/api/v1/admin/registrations/{uuid4()}/approve",
            json={"reviewer_name": "Ustadh Bilal", "assigned_group": "A1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["students"][0]["student_code"] == "MI0100"
        assert body["payment_sessions"][0]["session_id"] == "cs_test_1"
        assert body["warnings"][0]["service"] == "email"
        assert body["warnings"][0]["tier"] == "external_service"

    def test_validation_error_is_invalid_request(self, client, fake_orchestrator):
        fake_orchestrator.approve_single.side_effect = ValidationError(
            "A group must be assigned", error_code="GROUP_REQUIRED"
        )

        response = client.post(
            f"/api/v1/admin/registrations/{uuid4()}/approve",
            json={"reviewer_name": "Ustadh Bilal"},
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "GROUP_REQUIRED"
        assert detail["tier"] == "invalid_request"

    def test_incomplete_rollback_asks_for_manual_cleanup(self, client, fake_orchestrator):
        error = StoreWriteError("Failed to update registration")
        error.compensation_errors.append(CompensationError("delete_student", uuid4(), None))
        fake_orchestrator.approve_group.side_effect = error

        response = client.post(
            "/api/v1/admin/registrations/approve-group",
            json={"application_ids": [str(uuid4())], "reviewer_name": "Ustadh Bilal"},
        )

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["tier"] == "manual_cleanup_required"
        assert detail["cleanup_incomplete"] is True

    def test_unexpected_error_is_internal(self, client, fake_orchestrator):
        fake_orchestrator.approve_single.side_effect = RuntimeError("boom")

        response = client.post(
            f"/api/v1/admin/registrations/{uuid4()}/approve",
            json={"reviewer_name": "Ustadh Bilal", "assigned_group": "A1"},
        )

        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "INTERNAL_ERROR"


class TestDecisionEndpoints:
    def test_cancel_active_student_is_conflict(self, client, fake_orchestrator):
        student_id = uuid4()
        fake_orchestrator.cancel_registration.side_effect = InvalidStudentStateError(
            student_id, "active", "pending_payment"
        )

        response = client.post(
            f"/api/v1/admin/students/{student_id}/cancel",
            json={"canceller_name": "Ustadh Bilal", "reason": "Moved"},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "INVALID_STUDENT_STATE"

    def test_reject(self, client, fake_orchestrator):
        fake_orchestrator.reject.return_value = DecisionResult()

        response = client.post(
            f"/api/v1/admin/registrations/{uuid4()}/reject",
            json={"reviewer_name": "Ustadh Bilal", "reason": "Class is full"},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Registration rejected"

    def test_manual_approve_group_reports_each_student(self, client, fake_orchestrator):
        activated, failed = uuid4(), uuid4()
        fake_orchestrator.manual_approve_group.return_value = ManualApprovalResult(
            activated=[activated], failed={failed: "Student not found"}
        )

        response = client.post(
            "/api/v1/admin/students/manual-approve",
            json={
                "student_ids": [str(activated), str(failed)],
                "approver_name": "Ustadh Bilal",
                "justification": "Hardship",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["activated"] == [str(activated)]
        assert body["failed"] == {str(failed): "Student not found"}

    def test_pending_payment_rejects_unknown_maktab(self, client):
        response = client.get("/api/v1/admin/students/pending-payment?maktab=mixed")

        assert response.status_code == 422
