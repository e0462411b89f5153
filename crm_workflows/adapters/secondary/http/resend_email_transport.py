import httpx

from crm_workflows.domain.workflow.exceptions import EmailDeliveryError
from crm_workflows.ports.secondary.email_transport import EmailMessage, IEmailTransport
from crm_workflows.shared.config import settings
from crm_workflows.shared.logger import get_logger

logger = get_logger(__name__)


class ResendEmailTransport(IEmailTransport):
    """
    Sends email through the Resend HTTP API.

    Without an API key the message is only logged, which keeps local runs and
    demos free of outbound mail.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        api_url: str | None = None,
    ):
        self._client = client or httpx.AsyncClient(timeout=settings.EMAIL_TIMEOUT_SECONDS)
        self._api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self._sender = sender or settings.EMAIL_FROM
        self._api_url = api_url or settings.RESEND_API_URL

    async def send(self, message: EmailMessage) -> None:
        if not self._api_key:
            logger.info("email_not_sent_no_api_key", to=message.to, subject=message.subject)
            return

        payload = {
            "from": self._sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }
        if message.tags:
            payload["tags"] = [{"name": k, "value": str(v)} for k, v in message.tags.items()]

        try:
            response = await self._client.post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(str(e)) from e

        if response.status_code >= 400:
            raise EmailDeliveryError(f"{response.status_code} {response.text}")

        logger.info("email_sent", to=message.to, subject=message.subject)

    async def aclose(self) -> None:
        await self._client.aclose()
