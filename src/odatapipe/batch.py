"""
Batch coordinator deferring requests until all batch dependencies are released.

Requests are registered with ``add`` and settled in registration order once
``execute`` has transmitted the batch. Each queryable holds a dependency on
its batch from the moment it builds its request context until the request
is either enqueued or answered from cache, so ``execute`` never transmits a
batch that is still being filled.
"""

from __future__ import annotations

import asyncio
import json
import typing as t
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
import structlog

from odatapipe.parsers import ODataDefaultParser, ResultParser
from odatapipe.transport import ClientFactory, default_client_factory

log = structlog.get_logger(__name__)


@dataclass
class BatchRequest:
    """
    A request waiting for its batch to execute.

    Parameters
    ----------
    url : str
        Absolute request URL.
    method : str
        Upper-cased HTTP verb.
    options : dict[str, typing.Any]
        Transport options captured when the request was added.
    parser : ResultParser
        Parser applied to this request's slice of the batch response.
    future : asyncio.Future[typing.Any]
        Future settled with the parsed result or the failure.
    """

    url: str
    method: str
    options: dict[str, t.Any]
    parser: ResultParser[t.Any]
    future: asyncio.Future[t.Any]

    def resolve(self, value: t.Any) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class ODataBatch(ABC):
    """
    Ordered set of requests transmitted together.

    Parameters
    ----------
    batch_id : str | None, optional
        Batch identifier, a uuid4 when omitted.

    Notes
    -----
    ``add`` and ``add_dependency`` must not be called once ``execute`` has
    started transmitting.
    """

    def __init__(self, batch_id: str | None = None) -> None:
        self._batch_id = batch_id or str(object=uuid.uuid4())
        self._requests: list[BatchRequest] = []
        self._dependencies: list[asyncio.Event] = []

    @property
    def batch_id(self) -> str:
        return self._batch_id

    @property
    def requests(self) -> list[BatchRequest]:
        return self._requests

    @property
    def dependencies(self) -> list[asyncio.Event]:
        return self._dependencies

    def add(
        self,
        url: str,
        method: str,
        options: dict[str, t.Any] | None,
        parser: ResultParser[t.Any],
    ) -> asyncio.Future[t.Any]:
        """
        Register a request and return the future its result will settle.

        Parameters
        ----------
        url : str
            Request URL.
        method : str
            HTTP verb, any case.
        options : dict[str, typing.Any] | None
            Transport options.
        parser : ResultParser
            Parser for this request's response.

        Returns
        -------
        asyncio.Future[typing.Any]
            Future settled when the batch executes.
        """
        future: asyncio.Future[t.Any] = asyncio.get_running_loop().create_future()
        self._requests.append(
            BatchRequest(
                url=url,
                method=str(object=method).upper(),
                options=dict(options or {}),
                parser=parser,
                future=future,
            )
        )
        log.debug(
            event="Added request to batch",
            batch_id=self._batch_id,
            method=str(object=method).upper(),
            url=url,
            position=len(self._requests) - 1,
        )
        return future

    def add_dependency(self) -> t.Callable[[], None]:
        """
        Block ``execute`` until the returned callback is invoked.

        Returns
        -------
        typing.Callable[[], None]
            Release callback; calling it more than once has no effect.
        """
        dependency = asyncio.Event()
        self._dependencies.append(dependency)
        log.debug(
            event="Added batch dependency",
            batch_id=self._batch_id,
            dependency_count=len(self._dependencies),
        )
        return dependency.set

    async def wait_for_dependencies(self) -> int:
        """
        Wait until every dependency, including late ones, is released.

        Releasing a dependency can let its holder register a new one in the
        same tick, so a single pass over a snapshot is not enough. Passes are
        repeated, yielding to the event loop after each, until a pass ends
        with no dependency added since it started. At least two passes run.

        Returns
        -------
        int
            Number of passes performed.
        """
        passes = 0
        while True:
            snapshot = list(self._dependencies)
            await asyncio.gather(*(dependency.wait() for dependency in snapshot))
            await asyncio.sleep(0)
            passes += 1
            log.debug(
                event="Batch dependency pass complete",
                batch_id=self._batch_id,
                pass_number=passes,
                dependency_count=len(snapshot),
            )
            if passes >= 2 and len(self._dependencies) == len(snapshot):
                return passes

    async def execute(self) -> None:
        """
        Wait for all dependencies, then transmit the batch.

        Raises
        ------
        Exception
            Transmission failure. Every request not yet settled receives
            the same exception.
        """
        await self.wait_for_dependencies()
        log.info(
            event="Executing batch",
            batch_id=self._batch_id,
            request_count=len(self._requests),
        )
        try:
            await self._execute_impl()
        except Exception as error:
            log.error(
                event="Batch execution failed",
                batch_id=self._batch_id,
                error=str(object=error),
            )
            for request in self._requests:
                request.reject(error)
            raise
        log.info(event="Batch executed", batch_id=self._batch_id)

    @abstractmethod
    async def _execute_impl(self) -> None:
        """
        Transmit the requests and settle every request future in order.
        """

    @staticmethod
    async def _settle(request: BatchRequest, response: httpx.Response) -> None:
        try:
            value = await request.parser.parse(response)
        except Exception as error:
            log.debug(
                event="Batched request failed",
                method=request.method,
                url=request.url,
                error=str(object=error),
            )
            request.reject(error)
            return
        request.resolve(value)


class SequentialBatch(ODataBatch):
    """
    Batch sending its requests one after another in registration order.

    Useful for services without a ``$batch`` endpoint. A transport failure
    stops the batch and fails the requests not yet sent.

    Parameters
    ----------
    client_factory : ClientFactory, optional
        Builds the transport client.
    batch_id : str | None, optional
        Batch identifier.
    """

    def __init__(
        self,
        client_factory: ClientFactory = default_client_factory,
        batch_id: str | None = None,
    ) -> None:
        super().__init__(batch_id=batch_id)
        self._client_factory = client_factory

    async def _execute_impl(self) -> None:
        client = self._client_factory()
        for request in self._requests:
            options = {**request.options, "method": request.method}
            response = await client.fetch(request.url, **options)
            await self._settle(request=request, response=response)


class JsonBatch(ODataBatch):
    """
    Batch sent as one OData v4 JSON ``$batch`` request.

    Parameters
    ----------
    base_url : str
        Service root; the batch is posted to ``{base_url}/$batch``.
    client_factory : ClientFactory, optional
        Builds the transport client.
    batch_id : str | None, optional
        Batch identifier.
    atomic : bool, optional
        Put every request in one atomicity group named after the batch, so
        the service applies them all or none.
    """

    def __init__(
        self,
        base_url: str,
        client_factory: ClientFactory = default_client_factory,
        batch_id: str | None = None,
        atomic: bool = False,
    ) -> None:
        super().__init__(batch_id=batch_id)
        self._base_url = base_url.rstrip("/")
        self._client_factory = client_factory
        self._atomic = atomic

    @property
    def batch_url(self) -> str:
        return f"{self._base_url}/$batch"

    def build_payload(self) -> dict[str, t.Any]:
        """
        Serialize the registered requests into a JSON batch body.

        Returns
        -------
        dict[str, typing.Any]
            ``{"requests": [...]}`` with ids matching registration positions.
        """
        entries = []
        for index, request in enumerate(self._requests):
            headers = {
                key.lower(): value for key, value in (request.options.get("headers") or {}).items()
            }
            entry: dict[str, t.Any] = {
                "id": str(object=index),
                "method": request.method,
                "url": request.url,
            }
            body = self._request_body(options=request.options)
            if body is not None:
                headers.setdefault("content-type", "application/json")
                entry["body"] = body
            if headers:
                entry["headers"] = headers
            if self._atomic:
                entry["atomicityGroup"] = self._batch_id
            entries.append(entry)
        return {"requests": entries}

    @staticmethod
    def _request_body(*, options: dict[str, t.Any]) -> t.Any:
        if options.get("json") is not None:
            return options["json"]
        content = options.get("content")
        if isinstance(content, bytes):
            return content.decode(encoding="utf-8")
        return content

    async def _execute_impl(self) -> None:
        if not self._requests:
            log.debug(event="Empty batch, nothing to send", batch_id=self._batch_id)
            return

        client = self._client_factory()
        response = await client.fetch(
            self.batch_url,
            method="POST",
            json=self.build_payload(),
            headers={"accept": "application/json"},
        )
        await ODataDefaultParser().handle_error(response=response)
        await response.aread()
        items = response.json().get("responses", [])
        by_id = {str(object=item.get("id")): item for item in items}

        missing = 0
        for index, request in enumerate(self._requests):
            item = by_id.get(str(object=index))
            if item is None:
                missing += 1
                request.reject(
                    RuntimeError(f"Missing result for batched {request.method} {request.url}")
                )
                continue
            response = self._to_response(request=request, item=item)
            await self._settle(request=request, response=response)

        if missing:
            log.error(
                event="Missing batch results",
                batch_id=self._batch_id,
                missing_count=missing,
            )

    @staticmethod
    def _to_response(*, request: BatchRequest, item: dict[str, t.Any]) -> httpx.Response:
        """
        Build a standalone response from one ``$batch`` response entry.

        Parameters
        ----------
        request : BatchRequest
            Request the entry answers.
        item : dict[str, typing.Any]
            Entry of the ``responses`` array.

        Returns
        -------
        httpx.Response
            Response with a synthetic request attached.
        """
        body = item.get("body")
        if body is None:
            content = b""
        elif isinstance(body, str):
            content = body.encode(encoding="utf-8")
        else:
            content = json.dumps(obj=body).encode(encoding="utf-8")
        return httpx.Response(
            status_code=int(item.get("status", 200)),
            headers=item.get("headers") or {},
            content=content,
            request=httpx.Request(method=request.method, url=request.url),
        )
