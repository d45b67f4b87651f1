"""
Mutable unit of work threaded through the request pipeline.
"""

from __future__ import annotations

import typing as t
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from odatapipe.caching import CachingOptions
from odatapipe.config import RuntimeConfig, get_default_config
from odatapipe.parsers import ResultParser
from odatapipe.transport import ClientFactory, default_client_factory

if t.TYPE_CHECKING:
    from odatapipe.batch import ODataBatch
    from odatapipe.pipeline import Stage


class Verb(StrEnum):
    GET = "GET"
    POST = "POST"
    PATCH = "PATCH"
    DELETE = "DELETE"


def _noop_release() -> None:
    return None


@dataclass
class RequestContext:
    """
    State of one API call while its pipeline runs.

    Parameters
    ----------
    url : str
        Absolute request URL.
    verb : Verb
        HTTP verb.
    parser : ResultParser
        Parser applied to the transport response. Stages may replace it.
    pipeline : list[Stage]
        Remaining stages, consumed front to back by ``pipe``.
    options : dict[str, typing.Any]
        Transport options (headers, json, params...).
    is_cached : bool
        Whether the caching stage applies.
    caching_options : CachingOptions | None
        Per-request caching overrides.
    batch : ODataBatch | None
        Batch the request is sent with, if any.
    batch_dependency : typing.Callable[[], None]
        Release callback registered on ``batch`` for this request.
    client_factory : ClientFactory
        Builds the transport used by the send stage.
    config : RuntimeConfig
        Runtime configuration for caching defaults.
    request_id : str
        Identifier correlating the request's log lines.
    """

    url: str
    verb: Verb
    parser: ResultParser[t.Any]
    pipeline: list["Stage"] = field(default_factory=list)
    options: dict[str, t.Any] = field(default_factory=dict)
    is_cached: bool = False
    caching_options: CachingOptions | None = None
    batch: "ODataBatch | None" = None
    batch_dependency: t.Callable[[], None] = _noop_release
    client_factory: ClientFactory = default_client_factory
    config: RuntimeConfig = field(default_factory=get_default_config)
    request_id: str = field(default_factory=lambda: str(object=uuid.uuid4()))
    result: t.Any = None
    has_result: bool = False
    _dependency_released: bool = field(default=False, init=False, repr=False)

    @property
    def is_batched(self) -> bool:
        return self.batch is not None

    def set_result(self, value: t.Any) -> None:
        self.result = value
        self.has_result = True

    def release_batch_dependency(self) -> None:
        """
        Release this request's hold on its batch.

        Only the first call reaches ``batch_dependency``.
        """
        if self._dependency_released:
            return
        self._dependency_released = True
        self.batch_dependency()
