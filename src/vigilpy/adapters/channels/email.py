"""Email alert channel and an HTTP mail-API transport."""

import datetime
import html
import re

import httpx

from vigilpy.adapters.channels.base import AlertChannel
from vigilpy.adapters.channels.http import HttpJsonTransport
from vigilpy.adapters.channels.rate_limit import SlidingWindowRateLimiter
from vigilpy.core.encoding.safe_json import safe_dumps
from vigilpy.core.models import Alert, AlertLevel
from vigilpy.core.ports import DeliveryTransport, OutboundMessage

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_RATE_LIMIT = 10
DEFAULT_RATE_WINDOW_SECONDS = 3600.0


def is_valid_email(address: str) -> bool:
    return bool(EMAIL_PATTERN.match(address))


def _format_time(timestamp: float) -> str:
    moment = datetime.datetime.fromtimestamp(timestamp, tz=datetime.UTC)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


class EmailChannel(AlertChannel):
    """Sends one HTML email per recipient.

    Recipients are validated and rate limited per address over a sliding
    window; every user-controlled value is HTML-escaped.

    Args:
        transport: Delivery transport (e.g. HttpEmailTransport).
        recipients: Email addresses.
        min_level: Lowest alert level sent by email.
        limiter: Per-recipient rate limiter (10 per hour by default).
    """

    name = "email"

    def __init__(
        self,
        transport: DeliveryTransport,
        recipients: list[str],
        min_level: AlertLevel = AlertLevel.WARNING,
        limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        super().__init__(transport, recipients, min_level)
        self.limiter = limiter or SlidingWindowRateLimiter(
            DEFAULT_RATE_LIMIT, DEFAULT_RATE_WINDOW_SECONDS
        )

    def is_valid_recipient(self, recipient: str) -> bool:
        return is_valid_email(recipient)

    async def admit(self, recipient: str) -> bool:
        result = await self.limiter.check(recipient.lower())
        return result.allowed

    def render(self, alert: Alert, recipient: str) -> OutboundMessage:
        level = alert.level.value.upper()
        subject = f"[{level}] {alert.source}: {alert.message[:80]}"
        rows = "".join(
            f"<tr><td>{html.escape(str(key))}</td>"
            f"<td>{html.escape(safe_dumps(value, 500))}</td></tr>"
            for key, value in (alert.metadata or {}).items()
        )
        body = (
            "<html><body>"
            f"<h2>{html.escape(level)}: {html.escape(alert.source)}</h2>"
            f"<p>{html.escape(alert.message)}</p>"
            f"<p>{html.escape(_format_time(alert.timestamp))}</p>"
            f"<table>{rows}</table>"
            "</body></html>"
        )
        text = "\n\n".join(
            (f"{level}: {alert.source}", alert.message, _format_time(alert.timestamp))
        )
        return OutboundMessage(
            recipient=recipient,
            subject=subject,
            body=body,
            payload={"text": text, "alert_id": alert.id},
        )


class HttpEmailTransport:
    """Delivers email through a JSON mail API (SendGrid v3 request shape).

    Args:
        api_url: Mail-send endpoint.
        api_key: Bearer token for the API.
        from_email: Sender address.
        client: Shared AsyncClient, optional.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_email: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url
        self._from_email = from_email
        self._http = HttpJsonTransport(
            client, headers={"Authorization": f"Bearer {api_key}"}
        )

    async def send(self, message: OutboundMessage) -> bool:
        payload = {
            "personalizations": [
                {"to": [{"email": message.recipient}], "subject": message.subject}
            ],
            "from": {"email": self._from_email},
            "content": [
                {"type": "text/plain", "value": message.payload.get("text", "")},
                {"type": "text/html", "value": message.body},
            ],
        }
        await self._http.post(self._api_url, payload)
        return True

    async def aclose(self) -> None:
        await self._http.aclose()
