"""Shared behavior of alert channels."""

from vigilpy.core.models import Alert, AlertLevel
from vigilpy.core.ports import DeliveryTransport, OutboundMessage


class AlertChannel:
    """Base class for channels without per-recipient rate limiting.

    Subclasses implement render().
    """

    name = "channel"

    def __init__(
        self,
        transport: DeliveryTransport,
        recipients: list[str],
        min_level: AlertLevel = AlertLevel.INFO,
    ) -> None:
        self.transport = transport
        self.min_level = min_level
        self._recipients = list(recipients)

    def recipients(self) -> list[str]:
        return list(self._recipients)

    def is_valid_recipient(self, recipient: str) -> bool:
        return bool(recipient)

    async def admit(self, recipient: str) -> bool:
        return True

    def render(self, alert: Alert, recipient: str) -> OutboundMessage:
        raise NotImplementedError
