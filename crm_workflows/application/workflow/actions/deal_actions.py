import logging

from crm_workflows.application.workflow.actions.activity_log import ActivityLogger
from crm_workflows.application.workflow.actions.base_action import BaseActionHandler
from crm_workflows.domain.workflow.exceptions import ActionPreconditionError
from crm_workflows.domain.workflow.value_objects.action_configs import (
    ActionKind,
    AssignDealConfig,
    MoveToStageConfig,
    UpdateDealConfig,
)
from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.shared.clock import Clock, utc_now

logger = logging.getLogger(__name__)

DEALS_COLLECTION = "deals"


class _DealHandler(BaseActionHandler):
    def __init__(self, record_store: IRecordStore, activity_logger: ActivityLogger, clock: Clock | None = None):
        self._record_store = record_store
        self._activities = activity_logger
        self._clock = clock or utc_now

    def check_target(self, record: dict, config: dict) -> None:
        if record.get("type") != "deal":
            raise ActionPreconditionError(
                self.action_kind.value, f"{self.action_kind.value} action requires a deal target"
            )


class UpdateDealHandler(_DealHandler):
    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.UPDATE_DEAL

    def check_target(self, record: dict, config: dict) -> None:
        # An explicit dealId lets contact and task workflows update a deal
        if not config.get("dealId"):
            super().check_target(record, config)

    async def run(self, config: UpdateDealConfig, record: dict, context: dict) -> dict:
        deal_id = config.deal_id or record["id"]
        updates = config.updates()
        updates["updatedAt"] = self._clock().isoformat()

        await self._record_store.update(DEALS_COLLECTION, deal_id, updates)
        logger.info(f"Updated deal {deal_id}: {sorted(updates)}")

        await self._activities.log(
            "deal_updated",
            "Deal updated by workflow",
            record,
            metadata=updates,
            target_type="deal",
            target_id=deal_id,
        )
        return {"dealUpdated": True, "dealUpdates": updates}


class AssignDealHandler(_DealHandler):
    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.ASSIGN_DEAL

    async def run(self, config: AssignDealConfig, record: dict, context: dict) -> dict:
        updates = {"updatedAt": self._clock().isoformat()}
        if config.assignee_id:
            updates["assigneeId"] = config.assignee_id
        if config.team_id:
            updates["teamId"] = config.team_id

        await self._record_store.update(DEALS_COLLECTION, record["id"], updates)
        logger.info(f"Assigned deal {record['id']}")

        await self._activities.log(
            "deal_assigned",
            "Deal assigned by workflow",
            record,
            metadata={"assigneeId": config.assignee_id, "teamId": config.team_id},
            target_type="deal",
        )
        return {"dealAssigned": True, "assigneeId": config.assignee_id, "teamId": config.team_id}


class MoveToStageHandler(_DealHandler):
    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.MOVE_TO_STAGE

    async def run(self, config: MoveToStageConfig, record: dict, context: dict) -> dict:
        updates = {"stageId": config.stage_id, "updatedAt": self._clock().isoformat()}
        if config.pipeline_id:
            updates["pipelineId"] = config.pipeline_id

        await self._record_store.update(DEALS_COLLECTION, record["id"], updates)
        logger.info(f"Moved deal {record['id']} to stage {config.stage_id}")

        await self._activities.log(
            "stage_changed",
            "Deal moved to new stage by workflow",
            record,
            metadata={"stageId": config.stage_id, "pipelineId": config.pipeline_id},
            target_type="deal",
        )
        return {"currentStageId": config.stage_id, "stageMoved": True}
