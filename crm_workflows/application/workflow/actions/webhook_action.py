import logging

from crm_workflows.application.workflow.actions.activity_log import ActivityLogger
from crm_workflows.application.workflow.actions.base_action import BaseActionHandler
from crm_workflows.domain.workflow.exceptions import WebhookFailedError
from crm_workflows.domain.workflow.value_objects.action_configs import ActionKind, WebhookConfig
from crm_workflows.ports.secondary.webhook_client import IWebhookClient

logger = logging.getLogger(__name__)


class WebhookHandler(BaseActionHandler):
    def __init__(self, webhook_client: IWebhookClient, activity_logger: ActivityLogger):
        self._webhook_client = webhook_client
        self._activities = activity_logger

    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.WEBHOOK

    async def run(self, config: WebhookConfig, record: dict, context: dict) -> dict:
        logger.info(f"Calling webhook: {config.method} {config.url}")
        response = await self._webhook_client.request(
            config.method,
            config.url,
            headers=config.headers,
            body=config.body if config.sends_body else None,
        )
        if not response.ok:
            raise WebhookFailedError(config.url, response.status_code, response.reason)

        await self._activities.log(
            "webhook",
            f"Webhook called: {config.url}",
            record,
            metadata={"url": config.url, "method": config.method, "statusCode": response.status_code},
        )
        return {
            "webhookResponse": response.body if response.body is not None else {},
            "webhookStatusCode": response.status_code,
        }
