"""
Result parsers turning an ``httpx.Response`` into the value returned to callers.

Parsers may also define ``hydrate(cached_value)``. The caching stage calls it
on cache hits to rebuild a richer value from what the store returned.
"""

from __future__ import annotations

import json
import typing as t
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
import structlog

from odatapipe.exceptions import BODY_NOT_AVAILABLE, ProcessHttpClientResponseException

log = structlog.get_logger(__name__)

T = t.TypeVar(name="T")


class ResultParser(ABC, t.Generic[T]):
    """
    Strategy converting a transport response into a result.
    """

    @abstractmethod
    async def parse(self, response: httpx.Response) -> T:
        """
        Parse a response.

        Parameters
        ----------
        response : httpx.Response
            Response returned by the transport.

        Returns
        -------
        T
            Parsed result.
        """


class HydratingParser(t.Protocol):
    def hydrate(self, cached_value: t.Any) -> t.Any: ...


@dataclass(frozen=True)
class Blob:
    """
    Binary body together with its declared media type.
    """

    data: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


class TextParser(ResultParser[str]):
    async def parse(self, response: httpx.Response) -> str:
        await response.aread()
        return response.text


class BlobParser(ResultParser[Blob]):
    async def parse(self, response: httpx.Response) -> Blob:
        return Blob(
            data=await response.aread(),
            content_type=response.headers.get("content-type"),
        )


class BufferParser(ResultParser[bytes]):
    async def parse(self, response: httpx.Response) -> bytes:
        return await response.aread()


class JSONParser(ResultParser[t.Any]):
    async def parse(self, response: httpx.Response) -> t.Any:
        await response.aread()
        return response.json()


class ODataParserBase(ResultParser[T]):
    """
    JSON parser aware of OData error responses and response envelopes.

    Non-success responses raise ``ProcessHttpClientResponseException``.
    Successful bodies are decoded (an empty body reads as ``{}``) and the
    ``d`` / ``value`` envelope is removed.
    """

    async def parse(self, response: httpx.Response) -> T:
        await self.handle_error(response=response)
        await response.aread()
        text = response.text
        payload = json.loads(s=text) if text.strip() else {}
        result = self.parse_odata_json(payload=payload)
        # httpx.Response.request raises when unset
        request = getattr(response, "_request", None)
        log.debug(
            event="Parsed OData response",
            status_code=response.status_code,
            url=str(object=request.url) if request is not None else None,
        )
        return t.cast(T, result)

    async def handle_error(self, *, response: httpx.Response) -> None:
        """
        Raise for a non-success response, reporting its body and headers.

        Parameters
        ----------
        response : httpx.Response
            Current response.

        Raises
        ------
        ProcessHttpClientResponseException
            When ``response.is_success`` is ``False``.
        """
        if response.is_success:
            return

        # the error body may not be valid json
        try:
            await response.aread()
            body: t.Any = response.json()
        except (ValueError, httpx.StreamError) as error:
            log.warning(
                event="There was an error parsing the error response body",
                status_code=response.status_code,
                error=str(object=error),
            )
            body = BODY_NOT_AVAILABLE

        raise ProcessHttpClientResponseException(
            status=response.status_code,
            status_text=response.reason_phrase,
            data={
                "responseBody": body,
                "responseHeaders": response.headers,
            },
        )

    @staticmethod
    def parse_odata_json(payload: t.Any) -> t.Any:
        """
        Remove the OData v2 (``d``) or v4 (``value``) envelope.

        Parameters
        ----------
        payload : typing.Any
            Decoded JSON body.

        Returns
        -------
        typing.Any
            ``d.results`` or ``d`` when ``d`` is present, else ``value`` when
            present, else the payload unchanged.
        """
        if not isinstance(payload, dict):
            return payload
        if "d" in payload:
            inner = payload["d"]
            if isinstance(inner, dict) and "results" in inner:
                return inner["results"]
            return inner
        if "value" in payload:
            return payload["value"]
        return payload


class ODataDefaultParser(ODataParserBase[t.Any]):
    pass
