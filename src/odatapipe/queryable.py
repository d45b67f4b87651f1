"""
Queryable: builds OData request URLs and runs them through the request pipeline.
"""

from __future__ import annotations

import asyncio
import re
import typing as t
from urllib.parse import quote, urlencode

import structlog

from odatapipe.batch import ODataBatch
from odatapipe.caching import CachingOptions
from odatapipe.config import RuntimeConfig, get_default_config
from odatapipe.context import RequestContext, Verb
from odatapipe.exceptions import AlreadyInBatchException
from odatapipe.parsers import ODataDefaultParser, ResultParser
from odatapipe.pipeline import Stage, get_default_pipeline, pipe
from odatapipe.transport import ClientFactory, default_client_factory

log = structlog.get_logger(__name__)

# characters OData query options keep unescaped, e.g. $filter=Title eq 'a'
_QUERY_SAFE_CHARS = "$,'()/:"
_EDGE_SLASH = re.compile(pattern=r"^[\\/]|[\\/]$")


def combine_paths(*paths: str) -> str:
    """
    Join URL segments with one ``/`` between them.

    One leading and one trailing ``/`` (or ``\\``) is removed from each
    segment before joining; empty segments are ignored.

    Parameters
    ----------
    *paths : str
        Segments to join.

    Returns
    -------
    str
        Joined path.
    """
    parts = [_EDGE_SLASH.sub("", path) for path in paths if path]
    return "/".join(part for part in parts if part).replace("\\", "/")


def merge_options(target: dict[str, t.Any], source: dict[str, t.Any] | None) -> dict[str, t.Any]:
    """
    Merge request options into ``target``, merging ``headers`` key by key.

    Parameters
    ----------
    target : dict[str, typing.Any]
        Options updated in place.
    source : dict[str, typing.Any] | None
        Options to merge in; their values win.

    Returns
    -------
    dict[str, typing.Any]
        ``target``.
    """
    if not source:
        return target
    for key, value in source.items():
        if key == "headers" and isinstance(target.get("headers"), dict) and value is not None:
            target["headers"] = {**target["headers"], **value}
        else:
            target[key] = value
    return target


class ODataQueryable:
    """
    Builder for one OData resource request.

    Parameters
    ----------
    url : str, optional
        Absolute resource URL.
    client_factory : ClientFactory, optional
        Transport factory used by the send stage.
    config : RuntimeConfig | None, optional
        Runtime configuration; the shared ``get_default_config()`` when omitted.

    Examples
    --------
    >>> batch = JsonBatch(base_url="https://example.com/odata")
    >>> people = ODataQueryable("https://example.com/odata").append("People")
    >>> pending = people.in_batch(batch).get()
    >>> await batch.execute()
    >>> await pending
    """

    def __init__(
        self,
        url: str = "",
        *,
        client_factory: ClientFactory = default_client_factory,
        config: RuntimeConfig | None = None,
    ) -> None:
        self._url = url
        self._query: dict[str, str] = {}
        self._options: dict[str, t.Any] = {}
        self._batch: ODataBatch | None = None
        self._use_caching = False
        self._caching_options: CachingOptions | None = None
        self._client_factory = client_factory
        self._config = config if config is not None else get_default_config()

    @property
    def query(self) -> dict[str, str]:
        return self._query

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def has_batch(self) -> bool:
        return self._batch is not None

    @property
    def batch(self) -> ODataBatch | None:
        return self._batch

    def concat(self, path_part: str) -> "ODataQueryable":
        """
        Append ``path_part`` to the URL as is, without normalizing ``/``.
        """
        self._url += path_part
        return self

    def append(self, path_part: str) -> "ODataQueryable":
        """
        Append ``path_part`` to the URL with exactly one ``/`` separator.
        """
        self._url = combine_paths(self._url, path_part)
        return self

    def configure(self, **options: t.Any) -> "ODataQueryable":
        """
        Set transport options (``headers``, ``params``...) for this queryable.

        Headers are merged with the ones already configured.
        """
        merge_options(self._options, options)
        return self

    def using_caching(self, options: CachingOptions | None = None) -> "ODataQueryable":
        """
        Enable caching of GET results for this queryable.

        Parameters
        ----------
        options : CachingOptions | None, optional
            Overrides of the default caching policy.

        Notes
        -----
        Ignored when ``config.global_cache_disable`` is set.
        """
        if self._config.global_cache_disable:
            log.debug(event="Caching requested but globally disabled", url=self._url)
            return self
        self._use_caching = True
        if options is not None:
            self._caching_options = options
        return self

    def in_batch(self, batch: ODataBatch) -> "ODataQueryable":
        """
        Send this queryable's requests as part of ``batch``.

        Raises
        ------
        AlreadyInBatchException
            When a batch is already attached.
        """
        if self._batch is not None:
            raise AlreadyInBatchException()
        self._batch = batch
        return self

    def add_batch_dependency(self) -> t.Callable[[], None]:
        """
        Block the attached batch until the returned callback is called.

        Returns
        -------
        typing.Callable[[], None]
            Release callback, a no-op when no batch is attached.
        """
        if self._batch is not None:
            return self._batch.add_dependency()
        return lambda: None

    def to_url(self) -> str:
        return self._url

    def to_url_and_query(self) -> str:
        """
        Build the absolute URL including the query string.
        """
        if not self._query:
            return self._url
        separator = "&" if "?" in self._url else "?"
        query_string = urlencode(self._query, safe=_QUERY_SAFE_CHARS, quote_via=quote)
        return f"{self._url}{separator}{query_string}"

    def to_request_context(
        self,
        verb: Verb,
        options: dict[str, t.Any] | None,
        parser: ResultParser[t.Any],
        pipeline: list[Stage],
    ) -> RequestContext:
        """
        Build the context for one request.

        A dependency is registered on the attached batch; the pipeline
        releases it once the request is enqueued, served from cache, or
        failed.

        Parameters
        ----------
        verb : Verb
            HTTP verb.
        options : dict[str, typing.Any] | None
            Per-request options merged over the configured ones.
        parser : ResultParser
            Result parser.
        pipeline : list[Stage]
            Stages to run.

        Returns
        -------
        RequestContext
            Fresh context.
        """
        dependency = self.add_batch_dependency()
        request_options = merge_options(dict(self._options), options)
        return RequestContext(
            url=self.to_url_and_query(),
            verb=verb,
            parser=parser,
            pipeline=pipeline,
            options=request_options,
            is_cached=self._use_caching,
            caching_options=self._caching_options,
            batch=self._batch,
            batch_dependency=dependency,
            client_factory=self._client_factory,
            config=self._config,
        )

    def _run(
        self,
        verb: Verb,
        options: dict[str, t.Any] | None,
        parser: ResultParser[t.Any] | None,
    ) -> asyncio.Task[t.Any]:
        # the context is built eagerly so the batch dependency is held from the call on
        context = self.to_request_context(
            verb=verb,
            options=options,
            parser=parser or ODataDefaultParser(),
            pipeline=get_default_pipeline(),
        )
        return asyncio.get_running_loop().create_task(
            pipe(context),
            name=f"odata_{verb.lower()}_{context.request_id}",
        )

    def get(
        self,
        parser: ResultParser[t.Any] | None = None,
        options: dict[str, t.Any] | None = None,
    ) -> asyncio.Task[t.Any]:
        """
        Start a GET request.

        Parameters
        ----------
        parser : ResultParser | None, optional
            Result parser, ``ODataDefaultParser`` when omitted.
        options : dict[str, typing.Any] | None, optional
            Per-request transport options.

        Returns
        -------
        asyncio.Task[typing.Any]
            Task resolving to the parsed result. For a batched queryable it
            completes once the batch has executed.
        """
        return self._run(verb=Verb.GET, options=options, parser=parser)

    def post(
        self,
        options: dict[str, t.Any] | None = None,
        parser: ResultParser[t.Any] | None = None,
    ) -> asyncio.Task[t.Any]:
        return self._run(verb=Verb.POST, options=options, parser=parser)

    def patch(
        self,
        options: dict[str, t.Any] | None = None,
        parser: ResultParser[t.Any] | None = None,
    ) -> asyncio.Task[t.Any]:
        return self._run(verb=Verb.PATCH, options=options, parser=parser)

    def delete(
        self,
        options: dict[str, t.Any] | None = None,
        parser: ResultParser[t.Any] | None = None,
    ) -> asyncio.Task[t.Any]:
        return self._run(verb=Verb.DELETE, options=options, parser=parser)
