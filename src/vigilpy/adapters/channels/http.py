"""httpx-based delivery transports."""

import logging

import httpx

from vigilpy.core.exceptions import DeliveryError, PermanentDeliveryError
from vigilpy.core.ports import OutboundMessage

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def raise_for_delivery(response: httpx.Response) -> None:
    """Translate an HTTP response into the delivery error taxonomy.

    Raises:
        DeliveryError: For 5xx and 429 responses, which may succeed later.
        PermanentDeliveryError: For any other non-2xx response.
    """
    if response.is_success:
        return
    detail = f"HTTP {response.status_code}: {response.text[:200]}"
    if response.status_code >= 500 or response.status_code == 429:
        raise DeliveryError(detail)
    raise PermanentDeliveryError(detail)


class HttpJsonTransport:
    """Posts an outbound message's JSON payload to its recipient URL.

    Args:
        client: Shared AsyncClient; one is created lazily if omitted.
        headers: Extra headers sent with every request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._headers = headers or {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
        return self._client

    async def post(self, url: str, payload: dict) -> None:
        """POST payload to url, raising the delivery error taxonomy."""
        try:
            response = await self._get_client().post(
                url, json=payload, headers=self._headers
            )
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as exc:
            raise PermanentDeliveryError(f"invalid URL {url!r}: {exc}") from exc
        except httpx.TransportError as exc:
            raise DeliveryError(f"{type(exc).__name__}: {exc}") from exc
        raise_for_delivery(response)

    async def send(self, message: OutboundMessage) -> bool:
        await self.post(message.recipient, message.payload)
        return True

    async def aclose(self) -> None:
        """Close the client if this transport created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
