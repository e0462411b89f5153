import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from crm_workflows.adapters.secondary.persistence.models import (
    EnrollmentModel,
    RecordModel,
    WorkflowDefinitionModel,
)
from crm_workflows.adapters.secondary.persistence.pg_enrollment_repository import PostgresEnrollmentRepository
from crm_workflows.adapters.secondary.persistence.pg_record_store import PostgresRecordStore
from crm_workflows.adapters.secondary.persistence.pg_workflow_repository import PostgresWorkflowRepository
from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition
from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError, TargetNotFoundError
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus

DEFINITION = {
    "id": "wf-1",
    "name": "Welcome",
    "startNodeId": "done",
    "nodes": {"done": {"type": "end"}},
}


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.add = MagicMock()
    return session


def enrollment_model(**overrides) -> EnrollmentModel:
    document = {
        "id": "enr-1",
        "workflowId": "wf-1",
        "targetType": "deal",
        "targetId": "deal-1",
        "status": "waiting",
        "currentNodeId": "follow-up",
        "visitedNodes": ["delay"],
        "executionPath": [],
        "context": {"source": "import"},
        "nextExecutionAt": "2024-03-02T09:00:00+00:00",
        "errorCount": 0,
        "retryCount": 0,
    }
    model = EnrollmentModel(
        id="enr-1",
        workflow_id="wf-1",
        target_type="deal",
        target_id="deal-1",
        status="waiting",
        current_node_id="follow-up",
        error_count=overrides.pop("error_count", 2),
        retry_count=overrides.pop("retry_count", 1),
        document=json.dumps(document),
    )
    for key, value in overrides.items():
        setattr(model, key, value)
    return model


class TestPostgresWorkflowRepository:
    @pytest.mark.asyncio
    async def test_save_merges_serialized_definition(self, mock_session):
        repo = PostgresWorkflowRepository(mock_session)
        workflow = WorkflowDefinition.from_dict(DEFINITION)

        await repo.save(workflow)

        mock_session.merge.assert_called_once()
        model = mock_session.merge.call_args[0][0]
        assert model.id == "wf-1"
        assert json.loads(model.definition_json)["startNodeId"] == "done"
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_by_id_rebuilds_entity(self, mock_session):
        model = WorkflowDefinitionModel(
            id="wf-1",
            name="Welcome",
            is_active=False,
            definition_json=json.dumps(DEFINITION),
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=model))

        workflow = await PostgresWorkflowRepository(mock_session).get_by_id("wf-1")

        assert workflow.id == "wf-1"
        assert workflow.is_active is False
        assert workflow.start_node_id == "done"

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, mock_session):
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=None))

        assert await PostgresWorkflowRepository(mock_session).get_by_id("nope") is None


class TestPostgresEnrollmentRepository:
    @pytest.mark.asyncio
    async def test_save_fills_filter_columns(self, mock_session):
        enrollment = WorkflowEnrollment.start("wf-1", "trigger", "contact", "c-1")

        await PostgresEnrollmentRepository(mock_session).save(enrollment)

        model = mock_session.add.call_args[0][0]
        assert model.id == enrollment.id
        assert model.status == "active"
        assert model.current_node_id == "trigger"
        assert model.next_execution_at is None
        assert model.error_count == 0
        assert json.loads(model.document)["targetId"] == "c-1"
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_by_id_takes_counters_from_columns(self, mock_session):
        mock_session.execute.return_value = MagicMock(
            scalar_one_or_none=MagicMock(return_value=enrollment_model())
        )

        enrollment = await PostgresEnrollmentRepository(mock_session).get_by_id("enr-1")

        assert enrollment.status == EnrollmentStatus.WAITING
        assert enrollment.error_count == 2
        assert enrollment.retry_count == 1
        assert enrollment.context == {"source": "import"}

    @pytest.mark.asyncio
    async def test_update_merges_patch_into_document(self, mock_session):
        model = enrollment_model()
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=model))

        await PostgresEnrollmentRepository(mock_session).update(
            "enr-1", {"status": "active", "nextExecutionAt": None}
        )

        assert model.status == "active"
        assert model.next_execution_at is None
        document = json.loads(model.document)
        assert document["status"] == "active"
        assert document["context"] == {"source": "import"}
        assert document["errorCount"] == 2
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_update_sets_next_execution_column(self, mock_session):
        model = enrollment_model(status="active")
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=model))

        await PostgresEnrollmentRepository(mock_session).update(
            "enr-1", {"status": "waiting", "nextExecutionAt": "2024-03-05T09:00:00+00:00"}
        )

        assert model.next_execution_at == datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, mock_session):
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=None))

        with pytest.raises(EnrollmentNotFoundError):
            await PostgresEnrollmentRepository(mock_session).update("nope", {"status": "active"})

        mock_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_increment_runs_update_statement(self, mock_session):
        await PostgresEnrollmentRepository(mock_session).increment("enr-1", "errorCount", 1)

        mock_session.execute.assert_called_once()
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_increment_rejects_unknown_field(self, mock_session):
        with pytest.raises(ValueError):
            await PostgresEnrollmentRepository(mock_session).increment("enr-1", "status", 1)

    @pytest.mark.asyncio
    async def test_find_due_waiting(self, mock_session):
        scalars = MagicMock()
        scalars.all.return_value = [enrollment_model()]
        mock_session.execute.return_value = MagicMock(scalars=MagicMock(return_value=scalars))

        due = await PostgresEnrollmentRepository(mock_session).find_due_waiting(
            datetime(2024, 3, 3, tzinfo=timezone.utc), limit=10
        )

        assert [e.id for e in due] == ["enr-1"]

    @pytest.mark.asyncio
    async def test_exists_for_target(self, mock_session):
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value="enr-1"))

        assert await PostgresEnrollmentRepository(mock_session).exists_for_target("wf-1", "deal", "deal-1")


class TestPostgresRecordStore:
    @pytest.mark.asyncio
    async def test_get_returns_document_with_id(self, mock_session):
        model = RecordModel(collection="deals", id="deal-1", data=json.dumps({"value": 12000}))
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=model))

        record = await PostgresRecordStore(mock_session).get("deals", "deal-1")

        assert record == {"value": 12000, "id": "deal-1"}

    @pytest.mark.asyncio
    async def test_add_generates_id(self, mock_session):
        record_id = await PostgresRecordStore(mock_session).add("tasks", {"title": "Call"})

        model = mock_session.add.call_args[0][0]
        assert model.collection == "tasks"
        assert model.id == record_id
        assert record_id
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, mock_session):
        model = RecordModel(collection="deals", id="deal-1", data=json.dumps({"value": 1, "stageId": "new"}))
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=model))

        await PostgresRecordStore(mock_session).update("deals", "deal-1", {"stageId": "won"})

        assert json.loads(model.data) == {"value": 1, "stageId": "won"}
        mock_session.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_update_missing_record(self, mock_session):
        mock_session.execute.return_value = MagicMock(scalar_one_or_none=MagicMock(return_value=None))

        with pytest.raises(TargetNotFoundError):
            await PostgresRecordStore(mock_session).update("deals", "nope", {"stageId": "won"})
