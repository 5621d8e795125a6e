"""Alert delivery channels and transports."""

from vigilpy.adapters.channels.base import AlertChannel
from vigilpy.adapters.channels.chat import ChatChannel
from vigilpy.adapters.channels.email import EmailChannel, HttpEmailTransport
from vigilpy.adapters.channels.http import HttpJsonTransport
from vigilpy.adapters.channels.rate_limit import SlidingWindowRateLimiter
from vigilpy.adapters.channels.webhook import WebhookChannel

__all__ = [
    "AlertChannel",
    "ChatChannel",
    "EmailChannel",
    "HttpEmailTransport",
    "HttpJsonTransport",
    "SlidingWindowRateLimiter",
    "WebhookChannel",
]
