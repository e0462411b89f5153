from crm_workflows.application.workflow.actions.activity_log import ActivityLogger
from crm_workflows.application.workflow.actions.base_action import BaseActionHandler
from crm_workflows.domain.workflow.value_objects.action_configs import ActionKind, CreateActivityConfig


class CreateActivityHandler(BaseActionHandler):
    def __init__(self, activity_logger: ActivityLogger):
        self._activities = activity_logger

    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.CREATE_ACTIVITY

    async def run(self, config: CreateActivityConfig, record: dict, context: dict) -> dict:
        await self._activities.log(
            config.activity_type,
            config.description,
            record,
            metadata=config.metadata,
        )
        return {"lastActivity": config.activity_type}
