from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from crm_workflows.adapters.secondary.http.httpx_webhook_client import HttpxWebhookClient
from crm_workflows.adapters.secondary.memory.in_memory_store import (
    InMemoryEnrollmentRepository,
    InMemoryMessageBroker,
    InMemoryRecordStore,
    InMemoryWorkflowRepository,
    RecordingEmailTransport,
)
from crm_workflows.application.workflow.actions.action_executor import ActionExecutor
from crm_workflows.application.workflow.services.node_dispatcher import NodeDispatcher
from crm_workflows.application.workflow.use_cases.enroll_target import EnrollTargetUseCase
from crm_workflows.application.workflow.use_cases.run_enrollment import EngineLimits, RunEnrollmentUseCase
from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class EngineHarness:
    clock: FakeClock
    workflows: InMemoryWorkflowRepository
    enrollments: InMemoryEnrollmentRepository
    records: InMemoryRecordStore
    broker: InMemoryMessageBroker
    mailbox: RecordingEmailTransport
    webhook_requests: list
    engine: RunEnrollmentUseCase
    enroller: EnrollTargetUseCase

    async def publish(self, definition: dict) -> WorkflowDefinition:
        workflow = WorkflowDefinition.from_dict(definition)
        workflow.validate()
        await self.workflows.save(workflow)
        return workflow

    def with_limits(self, limits: EngineLimits) -> RunEnrollmentUseCase:
        self.engine = RunEnrollmentUseCase(
            self.enrollments,
            self.workflows,
            self.records,
            self.engine._dispatcher,
            limits=limits,
            clock=self.clock,
        )
        return self.engine


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def harness(clock):
    """In-memory engine wired with a fake clock and a mocked webhook endpoint."""
    workflows = InMemoryWorkflowRepository()
    enrollments = InMemoryEnrollmentRepository()
    records = InMemoryRecordStore()
    broker = InMemoryMessageBroker()
    mailbox = RecordingEmailTransport()
    webhook_requests = []

    def webhook_endpoint(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(200, json={"received": True})

    webhooks = HttpxWebhookClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(webhook_endpoint)),
        breakers_enabled=False,
        clock=clock,
    )
    executor = ActionExecutor.with_default_handlers(records, mailbox, webhooks, clock)
    engine = RunEnrollmentUseCase(
        enrollments, workflows, records, NodeDispatcher(executor, clock=clock), clock=clock
    )
    enroller = EnrollTargetUseCase(workflows, enrollments, records, broker)
    return EngineHarness(
        clock=clock,
        workflows=workflows,
        enrollments=enrollments,
        records=records,
        broker=broker,
        mailbox=mailbox,
        webhook_requests=webhook_requests,
        engine=engine,
        enroller=enroller,
    )
