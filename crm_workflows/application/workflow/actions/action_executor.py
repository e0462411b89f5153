from crm_workflows.application.workflow.actions.activity_actions import CreateActivityHandler
from crm_workflows.application.workflow.actions.activity_log import ActivityLogger
from crm_workflows.application.workflow.actions.base_action import BaseActionHandler
from crm_workflows.application.workflow.actions.deal_actions import (
    AssignDealHandler,
    MoveToStageHandler,
    UpdateDealHandler,
)
from crm_workflows.application.workflow.actions.email_actions import SendEmailHandler
from crm_workflows.application.workflow.actions.task_actions import CreateTaskHandler
from crm_workflows.application.workflow.actions.webhook_action import WebhookHandler
from crm_workflows.domain.workflow.exceptions import UnknownActionError
from crm_workflows.domain.workflow.value_objects.action_configs import ActionKind, parse_action_config
from crm_workflows.domain.workflow.value_objects.template import VariableResolver
from crm_workflows.ports.secondary.email_transport import IEmailTransport
from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.ports.secondary.webhook_client import IWebhookClient
from crm_workflows.shared.clock import Clock


class ActionExecutor:
    """
    Runs one action node against the target record.

    Handlers are registered per ActionKind. The executor resolves `{{...}}`
    templates across the whole config, checks target preconditions, parses the
    typed config and hands it to the handler. Failures propagate as exceptions;
    the node dispatcher turns them into node results.
    """

    def __init__(self, handlers: list[BaseActionHandler] | None = None):
        self._handlers: dict[ActionKind, BaseActionHandler] = {}
        for handler in handlers or []:
            self.register_handler(handler)

    def register_handler(self, handler: BaseActionHandler) -> None:
        self._handlers[handler.action_kind] = handler

    @property
    def supported_actions(self) -> set[ActionKind]:
        return set(self._handlers)

    async def execute(self, action: str, config: dict, record: dict, context: dict) -> dict:
        kind = ActionKind.parse(action)
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnknownActionError(kind.value)

        resolved = VariableResolver.resolve_config(config or {}, record, context)
        handler.check_target(record, resolved)
        typed_config = parse_action_config(kind, resolved)
        return await handler.run(typed_config, record, context)

    @classmethod
    def with_default_handlers(
        cls,
        record_store: IRecordStore,
        email_transport: IEmailTransport,
        webhook_client: IWebhookClient,
        clock: Clock | None = None,
    ) -> "ActionExecutor":
        activities = ActivityLogger(record_store, clock)
        return cls(
            [
                SendEmailHandler(email_transport, activities, clock),
                CreateTaskHandler(record_store, activities, clock),
                UpdateDealHandler(record_store, activities, clock),
                AssignDealHandler(record_store, activities, clock),
                MoveToStageHandler(record_store, activities, clock),
                CreateActivityHandler(activities),
                WebhookHandler(webhook_client, activities),
            ]
        )
