#!/usr/bin/env python3
"""
demo_enrollment.py: walk one deal through a workflow with in-memory adapters.

The workflow:
  trigger (deal_stage_changed) -> condition (value >= 10000)
    true:  send_email -> delay 1 day -> create_task -> end
    false: end

No Postgres, Redis or outbound mail is needed. A fake clock jumps forward one
day so the resumer picks the enrollment back up.

Usage:
    python scripts/demo_enrollment.py [--deal-value 25000]
"""

import argparse
import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx

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
from crm_workflows.application.workflow.use_cases.resume_due_enrollments import ResumeDueEnrollmentsUseCase
from crm_workflows.application.workflow.use_cases.run_enrollment import RunEnrollmentUseCase
from crm_workflows.application.workflow.use_cases.submit_workflow import SubmitWorkflowUseCase
from crm_workflows.shared.logger import configure_logging

DEMO_WORKFLOW = {
    "name": "big-deal-follow-up",
    "startNodeId": "trigger",
    "nodes": {
        "trigger": {"type": "trigger", "trigger": "deal_stage_changed", "stageId": "negotiation", "nextId": "is-big"},
        "is-big": {
            "type": "condition",
            "config": {"conditions": [{"field": "value", "operator": "greater_or_equal", "value": 10000}]},
            "trueNextId": "email-owner",
            "falseNextId": "done",
        },
        "email-owner": {
            "type": "action",
            "action": "send_email",
            "config": {
                "emailTo": "{{ownerEmail}}",
                "emailSubject": "{{deal.name}} reached negotiation",
                "emailBody": "<p>{{deal.name}} is worth {{value}}.</p>",
            },
            "nextId": "wait",
        },
        "wait": {"type": "delay", "delayDays": 1, "nextId": "follow-up"},
        "follow-up": {
            "type": "action",
            "action": "create_task",
            "config": {"taskTitle": "Follow up on {{deal.name}}", "taskDueDate": "2 days"},
            "nextId": "done",
        },
        "done": {"type": "end"},
    },
}


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def print_section(title: str) -> None:
    print(f"\n=== {title} ===")


async def drain(broker: InMemoryMessageBroker, engine: RunEnrollmentUseCase) -> None:
    for signal in await broker.consume_signals("demo", "demo-worker", count=100):
        outcome = await engine.execute(signal.enrollment_id, signal.sequence)
        await broker.acknowledge_signal(signal.stream_id)
        print(f"  run {signal.id}: {outcome.value}")


async def main(deal_value: float) -> None:
    clock = FakeClock()
    workflows = InMemoryWorkflowRepository()
    enrollments = InMemoryEnrollmentRepository()
    records = InMemoryRecordStore(
        {"deals": {"deal-1": {"name": "Acme renewal", "value": deal_value, "ownerEmail": "owner@example.com"}}}
    )
    broker = InMemoryMessageBroker()
    mailbox = RecordingEmailTransport()
    webhooks = HttpxWebhookClient(client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(204))))

    executor = ActionExecutor.with_default_handlers(records, mailbox, webhooks, clock)
    engine = RunEnrollmentUseCase(enrollments, workflows, records, NodeDispatcher(executor, clock=clock), clock=clock)

    workflow = await SubmitWorkflowUseCase(workflows).execute(DEMO_WORKFLOW)
    print_section(f"Published workflow {workflow.id}")

    created = await EnrollTargetUseCase(workflows, enrollments, records, broker).handle_event(
        "deal_stage_changed", "deal", "deal-1", {"stageId": "negotiation"}
    )
    print(f"  enrollments created: {[e.id for e in created]}")

    print_section("First engine pass")
    await drain(broker, engine)

    print_section("One day later")
    clock.advance(timedelta(days=1, seconds=1))
    resumed = await ResumeDueEnrollmentsUseCase(enrollments, broker, clock=clock).execute()
    print(f"  resumed: {resumed}")
    await drain(broker, engine)

    print_section("Result")
    for enrollment in enrollments.all():
        print(json.dumps(enrollment.to_dict(), indent=2))
    print(f"  emails sent: {[(m.to, m.subject) for m in mailbox.sent]}")
    print(f"  tasks: {[t['title'] for t in records.list('tasks')]}")
    await webhooks.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a CRM workflow against in-memory adapters.")
    parser.add_argument("--deal-value", type=float, default=25000)
    args = parser.parse_args()

    configure_logging()
    asyncio.run(main(args.deal_value))
