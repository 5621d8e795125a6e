"""Chat (Slack-compatible incoming webhook) alert channel."""

from vigilpy.adapters.channels.base import AlertChannel
from vigilpy.core.encoding.safe_json import safe_dumps
from vigilpy.core.models import Alert, AlertLevel
from vigilpy.core.ports import OutboundMessage

MAX_FIELD_LENGTH = 200
MAX_FIELDS = 8

_LEVEL_COLORS = {
    AlertLevel.CRITICAL: "danger",
    AlertLevel.ERROR: "danger",
    AlertLevel.WARNING: "warning",
    AlertLevel.INFO: "good",
}


def escape_mrkdwn(value: object) -> str:
    """Escape Slack control characters and cap the length."""
    text = value if isinstance(value, str) else safe_dumps(value, None)
    suffix = "..." if len(text) > MAX_FIELD_LENGTH else ""
    text = text[:MAX_FIELD_LENGTH]
    text = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return text + suffix


class ChatChannel(AlertChannel):
    """Posts a Slack attachment message to each configured webhook URL."""

    name = "chat"

    def is_valid_recipient(self, recipient: str) -> bool:
        return recipient.startswith("https://")

    def render(self, alert: Alert, recipient: str) -> OutboundMessage:
        fields = [
            {"title": "Level", "value": alert.level.value.upper(), "short": True},
            {"title": "Source", "value": escape_mrkdwn(alert.source), "short": True},
        ]
        for key, value in list((alert.metadata or {}).items())[:MAX_FIELDS]:
            shown = escape_mrkdwn(value)
            fields.append(
                {"title": escape_mrkdwn(key), "value": shown, "short": len(shown) < 50}
            )
        title = escape_mrkdwn(alert.message)
        payload = {
            "text": f"[{alert.level.value.upper()}] {title}",
            "attachments": [
                {
                    "color": _LEVEL_COLORS[alert.level],
                    "title": title,
                    "fields": fields,
                    "ts": int(alert.timestamp),
                }
            ],
        }
        return OutboundMessage(
            recipient=recipient,
            subject=alert.level.value,
            body=payload["text"],
            payload=payload,
        )
