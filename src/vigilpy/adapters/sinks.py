"""Log-aggregation sink adapters."""

import datetime
import json
from collections.abc import Sequence

import httpx

from vigilpy.adapters.channels.http import HttpJsonTransport
from vigilpy.core.encoding.records import encode_record
from vigilpy.core.models import LogEntry


class HttpLogSink:
    """Posts log batches as JSON to an HTTP log-aggregation service.

    The request body is ``{"logs": [...], "source": ..., "timestamp": ...}``.

    Args:
        url: Ingestion endpoint.
        api_key: Bearer token, if the service needs one.
        source: Source name reported with every batch.
        client: Shared AsyncClient, optional.
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        source: str = "vigilpy",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._url = url
        self._source = source
        self._http = HttpJsonTransport(client, headers=headers)

    async def send_batch(self, entries: Sequence[LogEntry]) -> None:
        """Deliver one batch; raises DeliveryError on failure."""
        payload = {
            "logs": [json.loads(encode_record(entry)) for entry in entries],
            "source": self._source,
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
        }
        await self._http.post(self._url, payload)

    async def aclose(self) -> None:
        await self._http.aclose()
