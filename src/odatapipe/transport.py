"""
HTTP transport used by the send stage and the batch transmitters.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog

log = structlog.get_logger(__name__)


class HttpClient(t.Protocol):
    """
    Fetch-like transport consumed by the pipeline.

    ``fetch`` receives the verb as ``method`` plus any request options
    (``headers``, ``json``, ``content``, ``params``...) and returns a
    response whose body can still be read by a parser.
    """

    async def fetch(self, url: str, *, method: str, **options: t.Any) -> httpx.Response: ...


ClientFactory = t.Callable[[], HttpClient]


class HttpxClient:
    """
    ``HttpClient`` backed by ``httpx.AsyncClient``.

    Parameters
    ----------
    client : httpx.AsyncClient | None, optional
        Shared client. When omitted, a short-lived client is opened per
        request with the given ``timeout`` and ``transport``.
    timeout : float, optional
        Timeout in seconds for short-lived clients.
    transport : httpx.AsyncBaseTransport | None, optional
        Custom transport for short-lived clients, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, url: str, *, method: str, **options: t.Any) -> httpx.Response:
        """
        Send one request and read its body.

        Parameters
        ----------
        url : str
            Absolute request URL.
        method : str
            HTTP verb.
        **options : typing.Any
            Keyword arguments forwarded to ``httpx.AsyncClient.request``.

        Returns
        -------
        httpx.Response
            Response with its body already loaded.
        """
        log.debug(event="Sending HTTP request", method=method, url=url)
        if self._client is not None:
            response = await self._client.request(method=method, url=url, **options)
            await response.aread()
        else:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method=method, url=url, **options)
                # body must be read before the client closes
                await response.aread()
        log.debug(
            event="Received HTTP response",
            method=method,
            url=url,
            status_code=response.status_code,
        )
        return response


def default_client_factory() -> HttpClient:
    return HttpxClient()
