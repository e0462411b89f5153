from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from crm_workflows.adapters.primary.api.dependencies import (
    get_cancel_enrollment_use_case,
    get_enroll_target_use_case,
    get_enrollment_status_use_case,
    get_resume_due_use_case,
    get_retry_enrollment_use_case,
    get_set_workflow_active_use_case,
    get_submit_workflow_use_case,
    get_workflow_repository,
)
from crm_workflows.adapters.secondary.memory.in_memory_store import (
    InMemoryEnrollmentRepository,
    InMemoryMessageBroker,
    InMemoryRecordStore,
    InMemoryWorkflowRepository,
)
from crm_workflows.application.workflow.use_cases.cancel_enrollment import CancelEnrollmentUseCase
from crm_workflows.application.workflow.use_cases.enroll_target import EnrollTargetUseCase
from crm_workflows.application.workflow.use_cases.get_enrollment_status import GetEnrollmentStatusUseCase
from crm_workflows.application.workflow.use_cases.resume_due_enrollments import ResumeDueEnrollmentsUseCase
from crm_workflows.application.workflow.use_cases.retry_enrollment import RetryEnrollmentUseCase
from crm_workflows.application.workflow.use_cases.submit_workflow import (
    SetWorkflowActiveUseCase,
    SubmitWorkflowUseCase,
)
from crm_workflows.main import app

WORKFLOW = {
    "id": "wf-won",
    "name": "Won deal follow-up",
    "startNodeId": "trigger",
    "runOnce": True,
    "nodes": {
        "trigger": {"type": "trigger", "trigger": "deal_stage_changed", "stageId": "won", "nextId": "task"},
        "task": {
            "type": "action",
            "action": "create_task",
            "config": {"taskTitle": "Send contract to {{record.name}}"},
            "nextId": "done",
        },
        "done": {"type": "end"},
    },
}


@pytest.fixture
def backend():
    workflows = InMemoryWorkflowRepository()
    enrollments = InMemoryEnrollmentRepository()
    records = InMemoryRecordStore({"deals": {"deal-1": {"name": "Acme", "stageId": "won"}}})
    broker = InMemoryMessageBroker()

    overrides = {
        get_workflow_repository: lambda: workflows,
        get_submit_workflow_use_case: lambda: SubmitWorkflowUseCase(workflows),
        get_set_workflow_active_use_case: lambda: SetWorkflowActiveUseCase(workflows),
        get_enroll_target_use_case: lambda: EnrollTargetUseCase(workflows, enrollments, records, broker),
        get_enrollment_status_use_case: lambda: GetEnrollmentStatusUseCase(enrollments),
        get_cancel_enrollment_use_case: lambda: CancelEnrollmentUseCase(enrollments),
        get_retry_enrollment_use_case: lambda: RetryEnrollmentUseCase(enrollments, broker),
        get_resume_due_use_case: lambda: ResumeDueEnrollmentsUseCase(enrollments, broker),
    }
    app.dependency_overrides.update(overrides)
    yield {"workflows": workflows, "enrollments": enrollments, "broker": broker}
    app.dependency_overrides.clear()


@pytest.fixture
def client(backend):
    # No context manager: the lifespan would connect to Postgres and Redis
    return TestClient(app)


def publish(client) -> None:
    response = client.post("/api/v1/workflows", json=WORKFLOW)
    assert response.status_code == 201


class TestWorkflowRoutes:
    def test_publish_workflow(self, client):
        response = client.post("/api/v1/workflows", json=WORKFLOW)

        assert response.status_code == 201
        assert response.json() == {
            "workflow_id": "wf-won",
            "name": "Won deal follow-up",
            "is_active": True,
            "run_once": True,
            "node_count": 3,
        }

    def test_publish_invalid_graph_returns_400(self, client):
        nodes = {**WORKFLOW["nodes"], "task": {**WORKFLOW["nodes"]["task"], "nextId": "ghost"}}
        definition = {**WORKFLOW, "nodes": nodes}

        response = client.post("/api/v1/workflows", json=definition)

        assert response.status_code == 400
        assert response.json()["error"]["error_code"] == "INVALID_WORKFLOW"

    def test_publish_missing_fields_returns_422(self, client):
        response = client.post("/api/v1/workflows", json={"name": "No graph"})

        assert response.status_code == 422

    def test_get_workflow(self, client):
        publish(client)

        response = client.get("/api/v1/workflows/wf-won")

        assert response.status_code == 200
        assert response.json()["startNodeId"] == "trigger"

    def test_get_unknown_workflow(self, client):
        response = client.get("/api/v1/workflows/nope")

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "WORKFLOW_NOT_FOUND"

    def test_deactivate_workflow(self, client):
        publish(client)

        response = client.patch("/api/v1/workflows/wf-won/active", json={"isActive": False})

        assert response.status_code == 200
        assert response.json()["is_active"] is False


class TestEnrollmentRoutes:
    def test_enroll_and_read_back(self, client, backend):
        publish(client)

        response = client.post(
            "/api/v1/enrollments", json={"workflowId": "wf-won", "targetType": "deal", "targetId": "deal-1"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "active"
        assert len(backend["broker"].queued) == 1

        state = client.get(f"/api/v1/enrollments/{body['enrollment_id']}")
        assert state.status_code == 200
        assert state.json()["currentNodeId"] == "trigger"

    def test_run_once_conflict(self, client):
        publish(client)
        payload = {"workflowId": "wf-won", "targetType": "deal", "targetId": "deal-1"}
        client.post("/api/v1/enrollments", json=payload)

        response = client.post("/api/v1/enrollments", json=payload)

        assert response.status_code == 409
        assert response.json()["error"]["error_code"] == "ALREADY_ENROLLED"

    def test_enroll_missing_target(self, client):
        publish(client)

        response = client.post(
            "/api/v1/enrollments", json={"workflowId": "wf-won", "targetType": "deal", "targetId": "ghost"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "TARGET_NOT_FOUND"

    def test_enroll_rejects_unknown_target_type(self, client):
        response = client.post(
            "/api/v1/enrollments", json={"workflowId": "wf-won", "targetType": "invoice", "targetId": "1"}
        )

        assert response.status_code == 422

    def test_cancel_then_cancel_again(self, client):
        publish(client)
        created = client.post(
            "/api/v1/enrollments", json={"workflowId": "wf-won", "targetType": "deal", "targetId": "deal-1"}
        ).json()

        first = client.post(f"/api/v1/enrollments/{created['enrollment_id']}/cancel")
        second = client.post(f"/api/v1/enrollments/{created['enrollment_id']}/cancel")

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409

    def test_retry_active_enrollment_conflicts(self, client):
        publish(client)
        created = client.post(
            "/api/v1/enrollments", json={"workflowId": "wf-won", "targetType": "deal", "targetId": "deal-1"}
        ).json()

        response = client.post(f"/api/v1/enrollments/{created['enrollment_id']}/retry")

        assert response.status_code == 409

    def test_unknown_enrollment(self, client):
        response = client.get("/api/v1/enrollments/nope")

        assert response.status_code == 404

    def test_resume_due_with_nothing_waiting(self, client):
        response = client.post("/api/v1/enrollments/resume-due")

        assert response.status_code == 200
        assert response.json() == {"resumed": 0, "enrollment_ids": []}


class TestEventRoutes:
    def test_matching_event_enrolls(self, client):
        publish(client)

        response = client.post(
            "/api/v1/events",
            json={
                "event": "deal_stage_changed",
                "targetType": "deal",
                "targetId": "deal-1",
                "payload": {"stageId": "won"},
            },
        )

        assert response.status_code == 202
        assert len(response.json()["enrollment_ids"]) == 1

    def test_non_matching_event(self, client):
        publish(client)

        response = client.post(
            "/api/v1/events",
            json={
                "event": "deal_stage_changed",
                "targetType": "deal",
                "targetId": "deal-1",
                "payload": {"stageId": "lost"},
            },
        )

        assert response.status_code == 202
        assert response.json()["enrollment_ids"] == []


class TestUnhandledErrors:
    def test_unexpected_exception_returns_500(self):
        failing = AsyncMock()
        failing.execute.side_effect = RuntimeError("boom")
        app.dependency_overrides[get_enrollment_status_use_case] = lambda: failing
        try:
            response = TestClient(app, raise_server_exceptions=False).get("/api/v1/enrollments/enr-1")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["error"]["context"] == {"type": "RuntimeError"}


class TestHealthRoutes:
    def test_healthy(self):
        mock_redis = AsyncMock()
        mock_engine = MagicMock()
        mock_engine.connect.return_value.__aenter__.return_value = AsyncMock()

        with (
            patch("crm_workflows.adapters.primary.api.routes.health.redis_client", mock_redis),
            patch("crm_workflows.adapters.primary.api.routes.health.engine", mock_engine),
        ):
            response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"] == {"redis": "healthy", "postgres": "healthy"}

    def test_degraded_when_redis_down(self):
        mock_redis = AsyncMock()
        mock_redis.ping.side_effect = ConnectionError("refused")
        mock_engine = MagicMock()
        mock_engine.connect.return_value.__aenter__.return_value = AsyncMock()

        with (
            patch("crm_workflows.adapters.primary.api.routes.health.redis_client", mock_redis),
            patch("crm_workflows.adapters.primary.api.routes.health.engine", mock_engine),
        ):
            response = TestClient(app).get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["dependencies"]["redis"] == "unhealthy"

    def test_metrics_endpoint(self):
        response = TestClient(app).get("/metrics")

        assert response.status_code == 200
