from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class WebhookResponse:
    status_code: int
    reason: str = ""
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class IWebhookClient(ABC):
    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any = None,
    ) -> WebhookResponse:
        """
        Issues one HTTP call. `body` is sent as JSON when not None.
        Non-2xx responses are returned, not raised; transport errors raise.
        """
        pass
