from typing import Any
from urllib.parse import urlsplit

import httpx
from cachetools import TTLCache

from crm_workflows.domain.resilience.entities.circuit_breaker import CircuitBreaker, CircuitState
from crm_workflows.domain.resilience.exceptions.resilience_exceptions import CircuitOpenException
from crm_workflows.ports.secondary.webhook_client import IWebhookClient, WebhookResponse
from crm_workflows.shared.clock import Clock, utc_now
from crm_workflows.shared.config import settings
from crm_workflows.shared.logger import get_logger

logger = get_logger(__name__)


class HttpxWebhookClient(IWebhookClient):
    """
    Webhook calls over httpx with one circuit breaker per destination host.

    A host that keeps failing (transport errors or 5xx) is short-circuited for
    the reset timeout so a dead endpoint cannot stall every enrollment that
    calls it. Breakers live in a bounded TTL cache keyed by host.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
        breakers_enabled: bool | None = None,
        clock: Clock | None = None,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds if timeout_seconds is not None else settings.WEBHOOK_TIMEOUT_SECONDS
        )
        self._breakers_enabled = (
            breakers_enabled if breakers_enabled is not None else settings.CIRCUIT_BREAKER_ENABLED
        )
        self._breakers: TTLCache = TTLCache(
            maxsize=settings.CIRCUIT_BREAKER_CACHE_MAX_SIZE,
            ttl=settings.CIRCUIT_BREAKER_CACHE_TTL_SECONDS,
        )
        self._clock = clock or utc_now

    def breaker_for(self, url: str) -> CircuitBreaker:
        host = urlsplit(url).netloc or url
        breaker = self._breakers.get(host)
        if breaker is None:
            breaker = CircuitBreaker(
                name=f"webhook:{host}",
                failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                reset_timeout_seconds=settings.CIRCUIT_BREAKER_RESET_TIMEOUT_SECONDS,
                half_open_max_calls=settings.CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS,
            )
            self._breakers[host] = breaker
        return breaker

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any = None,
    ) -> WebhookResponse:
        breaker = self.breaker_for(url) if self._breakers_enabled else None
        if breaker and not breaker.allow_request(self._clock()):
            logger.warning("webhook_circuit_open", circuit=breaker.name)
            raise CircuitOpenException(breaker.name, breaker.retry_after(self._clock()))

        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                json=body if body is not None else None,
            )
        except httpx.HTTPError as e:
            logger.warning("webhook_transport_error", url=url, error=str(e))
            if breaker:
                breaker.record_failure(self._clock())
            raise

        if breaker:
            if response.status_code >= 500:
                breaker.record_failure(self._clock())
                if breaker.state == CircuitState.OPEN:
                    logger.error("webhook_circuit_opened", circuit=breaker.name)
            else:
                breaker.record_success()

        logger.info("webhook_called", method=method, url=url, status_code=response.status_code)
        return WebhookResponse(
            status_code=response.status_code,
            reason=response.reason_phrase,
            body=_parse_body(response),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}
