"""
Caching policy and the parser wrapper that writes parsed results to a store.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta

import httpx
import structlog

from odatapipe.config import RuntimeConfig
from odatapipe.parsers import ResultParser
from odatapipe.storage import CacheStore, StoreName, utcnow

log = structlog.get_logger(__name__)

T = t.TypeVar(name="T")


@dataclass
class CachingOptions:
    """
    Caching policy for one request.

    Parameters
    ----------
    key : str | None
        Cache key. Defaults to the lower-cased absolute request URL.
    expiration : datetime | None
        Absolute expiration. Defaults to now plus the configured timeout.
    store_name : StoreName | None
        ``"local"`` or ``"session"``. Defaults to the configured store.
    storage_override : CacheStore | None
        Store used instead of the named one.

    Notes
    -----
    Fields left to ``None`` are filled by ``resolve_caching_options``. The same type is used
    for per-request overrides, where only non-``None`` fields apply.
    """

    key: str | None = None
    expiration: datetime | None = None
    store_name: StoreName | None = None
    storage_override: CacheStore | None = field(default=None, repr=False)
    _config: RuntimeConfig | None = field(default=None, repr=False, compare=False)

    @classmethod
    def defaults(cls, *, key: str, config: RuntimeConfig) -> "CachingOptions":
        """
        Build the default policy for a request.

        Parameters
        ----------
        key : str
            Cache key, usually the request URL.
        config : RuntimeConfig
            Runtime configuration providing timeout and default store.

        Returns
        -------
        CachingOptions
            Fully populated options.
        """
        return cls(
            key=key,
            expiration=utcnow() + timedelta(seconds=config.default_caching_timeout_seconds),
            store_name=config.default_caching_store,
            _config=config,
        )

    def merged_with(self, overrides: "CachingOptions | None") -> "CachingOptions":
        """
        Overlay the non-``None`` fields of ``overrides`` on these options.

        Parameters
        ----------
        overrides : CachingOptions | None
            Per-request overrides.

        Returns
        -------
        CachingOptions
            New options instance; neither input is mutated.
        """
        if overrides is None:
            return replace(self)
        changes = {
            f.name: getattr(overrides, f.name)
            for f in fields(overrides)
            if f.name != "_config" and getattr(overrides, f.name) is not None
        }
        return replace(self, **changes)

    @property
    def store(self) -> CacheStore | None:
        """
        Store the policy reads from and writes to.

        Returns
        -------
        CacheStore | None
            ``None`` when the named store is disabled or unavailable, in which
            case caching is skipped.
        """
        if self.storage_override is not None:
            return self.storage_override
        if self._config is None:
            return None
        return self._config.storage.get_store(self.store_name or self._config.default_caching_store)


def resolve_caching_options(
    *,
    url: str,
    config: RuntimeConfig,
    overrides: CachingOptions | None = None,
) -> CachingOptions:
    return CachingOptions.defaults(key=url.lower(), config=config).merged_with(overrides)


class CachingParserWrapper(ResultParser[T]):
    """
    Parser decorator storing the inner parser's result before returning it.

    Parameters
    ----------
    parser : ResultParser[T]
        Parser producing the value.
    caching_options : CachingOptions
        Resolved caching policy.
    """

    def __init__(self, parser: ResultParser[T], caching_options: CachingOptions) -> None:
        self._parser = parser
        self._caching_options = caching_options

    @property
    def parser(self) -> ResultParser[T]:
        return self._parser

    @property
    def caching_options(self) -> CachingOptions:
        return self._caching_options

    async def parse(self, response: httpx.Response) -> T:
        data = await self._parser.parse(response)
        store = self._caching_options.store
        if store is not None:
            self._write(store=store, data=data)
        return data

    def hydrate(self, cached_value: t.Any) -> t.Any:
        hydrate = getattr(self._parser, "hydrate", None)
        if hydrate is None:
            return cached_value
        return hydrate(cached_value)

    def _write(self, *, store: CacheStore, data: T) -> None:
        key = t.cast(str, self._caching_options.key)
        try:
            store.put(key, data, self._caching_options.expiration)
        except Exception as error:
            log.warning(event="Failed to write cache entry", key=key, error=str(object=error))
            return
        log.debug(
            event="Stored parsed result in cache",
            key=key,
            expiration=self._caching_options.expiration,
        )
