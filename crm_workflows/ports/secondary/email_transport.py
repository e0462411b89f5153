from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    tags: dict = field(default_factory=dict)


class IEmailTransport(ABC):
    @abstractmethod
    async def send(self, message: EmailMessage) -> None:
        """Delivers the message. Raises EmailDeliveryError on failure."""
        pass
