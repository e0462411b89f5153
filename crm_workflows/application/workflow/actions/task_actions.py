import logging
from datetime import timedelta

from crm_workflows.application.workflow.actions.activity_log import ActivityLogger
from crm_workflows.application.workflow.actions.base_action import BaseActionHandler
from crm_workflows.domain.workflow.value_objects.action_configs import ActionKind, CreateTaskConfig
from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.shared.clock import Clock, utc_now

logger = logging.getLogger(__name__)

TASKS_COLLECTION = "tasks"


class CreateTaskHandler(BaseActionHandler):
    def __init__(self, record_store: IRecordStore, activity_logger: ActivityLogger, clock: Clock | None = None):
        self._record_store = record_store
        self._activities = activity_logger
        self._clock = clock or utc_now

    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.CREATE_TASK

    async def run(self, config: CreateTaskConfig, record: dict, context: dict) -> dict:
        now = self._clock()
        due_date = None
        if config.due_in_days is not None:
            due_date = (now + timedelta(days=config.due_in_days)).isoformat()

        task_id = await self._record_store.add(
            TASKS_COLLECTION,
            {
                "title": config.title,
                "description": config.description,
                "status": "pending",
                "assigneeId": config.assignee_id,
                "dealId": record.get("id") if record.get("type") == "deal" else None,
                "contactId": record.get("id") if record.get("type") == "contact" else None,
                "dueDate": due_date,
                "createdAt": now.isoformat(),
                "createdBy": "workflow",
            },
        )
        logger.info(f"Created task {task_id}: {config.title}")

        await self._activities.log(
            "task_created",
            f"Task created: {config.title}",
            record,
            metadata={"taskId": task_id, "taskTitle": config.title},
        )
        return {"lastCreatedTaskId": task_id, "lastCreatedTaskTitle": config.title}
