import logging

from crm_workflows.application.workflow.actions.activity_log import ActivityLogger
from crm_workflows.application.workflow.actions.base_action import BaseActionHandler
from crm_workflows.domain.workflow.exceptions import ActionPreconditionError
from crm_workflows.domain.workflow.value_objects.action_configs import ActionKind, SendEmailConfig
from crm_workflows.domain.workflow.value_objects.template import VariableResolver
from crm_workflows.ports.secondary.email_transport import EmailMessage, IEmailTransport
from crm_workflows.shared.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class SendEmailHandler(BaseActionHandler):
    def __init__(self, email_transport: IEmailTransport, activity_logger: ActivityLogger, clock: Clock | None = None):
        self._email_transport = email_transport
        self._activities = activity_logger
        self._clock = clock or utc_now

    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.SEND_EMAIL

    async def run(self, config: SendEmailConfig, record: dict, context: dict) -> dict:
        recipient = config.email_to
        if not recipient and record.get("email"):
            recipient = VariableResolver.stringify(record["email"])
        if not recipient:
            raise ActionPreconditionError(self.action_kind.value, "Email recipient not specified")

        logger.info(f"Sending workflow email to {recipient}")
        try:
            await self._email_transport.send(
                EmailMessage(to=[recipient], subject=config.email_subject, html=config.email_body)
            )
        except Exception as e:
            await self._activities.log(
                "email",
                f"Failed to send email: {config.email_subject}",
                record,
                status="failed",
                metadata={"error": str(e)},
            )
            raise

        await self._activities.log(
            "email",
            f"Email sent: {config.email_subject}",
            record,
            metadata={"to": recipient, "subject": config.email_subject},
        )
        return {
            "lastEmailSentAt": self._clock().isoformat(),
            "lastEmailTo": recipient,
        }
