"""Generic JSON webhook channel."""

from vigilpy.adapters.channels.base import AlertChannel
from vigilpy.core.encoding.safe_json import to_jsonable
from vigilpy.core.models import Alert
from vigilpy.core.ports import OutboundMessage


class WebhookChannel(AlertChannel):
    """Posts the alert as JSON to each configured URL."""

    name = "webhook"

    def is_valid_recipient(self, recipient: str) -> bool:
        return recipient.startswith(("http://", "https://"))

    def render(self, alert: Alert, recipient: str) -> OutboundMessage:
        payload = {
            "id": alert.id,
            "level": alert.level.value,
            "message": alert.message,
            "source": alert.source,
            "timestamp": alert.timestamp,
            "metadata": to_jsonable(alert.metadata or {}),
        }
        return OutboundMessage(
            recipient=recipient,
            subject=f"[{alert.level.value.upper()}] {alert.source}",
            body=alert.message,
            payload=payload,
        )
