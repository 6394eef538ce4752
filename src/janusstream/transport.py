"""HTTP transport for the Janus REST API.

The transport knows how to reach the gateway and nothing about sessions:
``post`` sends a JSON command and ``get`` performs one long-poll, both
returning the decoded JSON object. Retry policy lives in the session's poll
loop, not here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Final, Protocol

import aiohttp

from janusstream.error import TransportError
from janusstream.ids import TransactionIdSource, new_transaction_id

logger = logging.getLogger(__name__)

URL_ROUTE: Final[str] = "/janus/"


class JanusTransport(Protocol):
    """Interface for the request channel and the event channel.

    Implement this to run sessions against something other than aiohttp,
    e.g. an in-memory fake in tests.
    """

    async def post(
        self, host: str, path: str, body: dict[str, Any], secret: str
    ) -> dict[str, Any]:
        """Send a command. Fills in ``transaction`` if absent and ``apisecret``."""
        ...

    async def get(self, host: str, path: str, secret: str) -> dict[str, Any]:
        """Long-poll for the next event."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class HttpTransport:
    """aiohttp implementation of ``JanusTransport``.

    Example:
        ```python
        transport = HttpTransport()
        try:
            reply = await transport.post("localhost:8088", "", {"janus": "create"}, "s3cret")
        finally:
            await transport.close()
        ```
    """

    def __init__(
        self,
        *,
        scheme: str = "http",
        request_timeout: float = 30.0,
        poll_timeout: float = 65.0,
        id_source: TransactionIdSource = new_transaction_id,
        http_client: aiohttp.ClientSession | None = None,
    ) -> None:
        self.scheme = scheme
        self._request_timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._poll_timeout = aiohttp.ClientTimeout(total=poll_timeout)
        self._id_source = id_source
        self._http_client = http_client
        self._own_client = http_client is None

    def build_url(self, host: str, path: str) -> str:
        return f"{self.scheme}://{host}{URL_ROUTE}{path}"

    def _client(self) -> aiohttp.ClientSession:
        if self._http_client is None or self._http_client.closed:
            self._http_client = aiohttp.ClientSession()
            self._own_client = True
        return self._http_client

    async def post(
        self, host: str, path: str, body: dict[str, Any], secret: str
    ) -> dict[str, Any]:
        """POST ``body`` to the gateway. ``body`` is updated in place."""
        if not body.get("transaction"):
            body["transaction"] = self._id_source()
        body["apisecret"] = secret

        url = self.build_url(host, path)
        logger.debug("POST %s janus=%s transaction=%s", url, body.get("janus"), body["transaction"])
        return await self._request("POST", url, json=body, timeout=self._request_timeout)

    async def get(self, host: str, path: str, secret: str) -> dict[str, Any]:
        url = self.build_url(host, path)
        return await self._request(
            "GET", url, params={"apisecret": secret}, timeout=self._poll_timeout
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with self._client().request(method, url, **kwargs) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(f"{method} {url} failed: {e!r}", cause=e) from e

        if not isinstance(payload, dict):
            raise TransportError(
                f"{method} {url} returned {type(payload).__name__}, expected a JSON object"
            )
        return payload

    async def close(self) -> None:
        if self._http_client is not None and self._own_client:
            await self._http_client.close()
        self._http_client = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
