"""
Request pipeline: an ordered list of async stages run against a ``RequestContext``.

Each stage returns ``Continue()`` or ``Produced(value)``. Once a stage has
produced a value, the remaining stages are skipped unless they are flagged
``always_run``. The default pipeline is::

    log_start (always) -> caching -> send -> log_end (always)
"""

from __future__ import annotations

import asyncio
import typing as t
from dataclasses import dataclass

import structlog

from odatapipe.caching import CachingParserWrapper, resolve_caching_options
from odatapipe.context import RequestContext, Verb
from odatapipe.logging import request_logging_context

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Continue:
    """Stage outcome leaving the result untouched."""


@dataclass(frozen=True)
class Produced:
    """Stage outcome setting the pipeline result."""

    value: t.Any


StageOutcome = Continue | Produced
StageFunc = t.Callable[[RequestContext], t.Awaitable[StageOutcome]]


@dataclass(frozen=True)
class Stage:
    """
    One pipeline step.

    Parameters
    ----------
    name : str
        Name used in logs.
    func : StageFunc
        Coroutine function receiving the request context.
    always_run : bool
        Run even when an earlier stage already produced the result.
    """

    name: str
    func: StageFunc
    always_run: bool = False


def stage(*, name: str | None = None, always_run: bool = False) -> t.Callable[[StageFunc], Stage]:
    """
    Wrap a stage coroutine function into a ``Stage``.

    Parameters
    ----------
    name : str | None, optional
        Stage name, defaults to the function name.
    always_run : bool, optional
        Run even when the result is already set.

    Returns
    -------
    typing.Callable[[StageFunc], Stage]
        Decorator building the stage.
    """

    def decorator(func: StageFunc) -> Stage:
        return Stage(name=name or func.__name__, func=func, always_run=always_run)

    return decorator


async def _run_stages(context: RequestContext) -> None:
    while context.pipeline:
        current = context.pipeline.pop(0)
        if context.has_result and not current.always_run:
            log.debug(
                event="Skipping request pipeline stage, existing result in pipeline",
                stage=current.name,
            )
            continue

        log.debug(event="Calling request pipeline stage", stage=current.name)
        outcome = await current.func(context)
        if isinstance(outcome, Produced):
            context.set_result(outcome.value)


async def pipe(context: RequestContext) -> t.Any:
    """
    Run the context's pipeline and return its result.

    Parameters
    ----------
    context : RequestContext
        Context to execute. Its ``pipeline`` is consumed.

    Returns
    -------
    typing.Any
        The produced result, ``None`` when no stage produced one. A batched
        request returns once its batch has executed.

    Raises
    ------
    Exception
        Any stage failure, unchanged.
    """
    with request_logging_context(request_id=context.request_id):
        if not context.pipeline:
            log.warning(event="Request pipeline contains no stages")

        try:
            await _run_stages(context=context)
            result = context.result if context.has_result else None
            if isinstance(result, asyncio.Future):
                result = await result
        except Exception as error:
            log.error(event="Request pipeline failed", error=str(object=error))
            context.release_batch_dependency()
            raise

        log.debug(event="Returning result", result_type=type(result).__name__)
        return result


@stage(always_run=True)
async def log_start(context: RequestContext) -> StageOutcome:
    log.info(
        event=f"Beginning {context.verb} request ({context.url})",
        verb=str(object=context.verb),
        url=context.url,
    )
    return Continue()


@stage()
async def caching(context: RequestContext) -> StageOutcome:
    if context.verb != Verb.GET or not context.is_cached:
        return Continue()

    log.info(event="Caching is enabled for request, checking cache")
    options = resolve_caching_options(
        url=context.url,
        config=context.config,
        overrides=context.caching_options,
    )
    store = options.store
    if store is not None:
        data = store.get(t.cast(str, options.key))
        if data is not None:
            log.info(event="Value returned from cache", key=options.key)
            # a cache hit still holds a slot in the batch
            context.release_batch_dependency()
            hydrate = getattr(context.parser, "hydrate", None)
            if hydrate is not None:
                data = hydrate(data)
            return Produced(value=data)

    log.info(event="Value not found in cache", key=options.key)
    context.parser = CachingParserWrapper(context.parser, options)
    return Continue()


@stage()
async def send(context: RequestContext) -> StageOutcome:
    if context.batch is not None:
        future = context.batch.add(
            url=context.url,
            method=context.verb,
            options=context.options,
            parser=context.parser,
        )
        # released only once the request sits in the batch
        context.release_batch_dependency()
        log.info(event="Batching request", batch_id=context.batch.batch_id)
        return Produced(value=future)

    log.info(event="Sending request")
    client = context.client_factory()
    options = {**context.options, "method": str(object=context.verb)}
    response = await client.fetch(context.url, **options)
    return Produced(value=await context.parser.parse(response))


@stage(always_run=True)
async def log_end(context: RequestContext) -> StageOutcome:
    if context.batch is not None:
        log.info(
            event=f"{context.verb} request will complete in batch {context.batch.batch_id}",
            batch_id=context.batch.batch_id,
        )
    else:
        log.info(event=f"Completing {context.verb} request")
    return Continue()


def get_default_pipeline() -> list[Stage]:
    return [log_start, caching, send, log_end]
