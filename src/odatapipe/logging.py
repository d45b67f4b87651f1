"""
structlog configuration for odatapipe.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_HANDLER_NAME = "odatapipe"


def setup_logging(*, level: int = logging.INFO, json_output: bool = False) -> None:
    """
    Route odatapipe structlog events through the stdlib ``odatapipe`` logger.

    A stream handler writing to stderr is attached to that logger, replacing
    the one installed by a previous call.

    Parameters
    ----------
    level : int, optional
        Level applied to the ``odatapipe`` logger.
    json_output : bool, optional
        Render events as JSON lines instead of the colored console format.
    """
    logger = logging.getLogger(name="odatapipe")
    logger.setLevel(level=level)
    for existing in [h for h in logger.handlers if h.get_name() == _HANDLER_NAME]:
        logger.removeHandler(existing)
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(fmt="%(message)s"))
    logger.addHandler(handler)
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def request_logging_context(*, request_id: str, **fields) -> Iterator[None]:
    """
    Bind ``request_id`` to every log emitted while a pipeline runs.

    Parameters
    ----------
    request_id : str
        Identifier of the request context being executed.
    **fields
        Extra fields to bind. Fields already bound by an outer scope win.
    """
    bound = structlog.contextvars.get_contextvars()
    to_bind = {key: value for key, value in fields.items() if key not in bound}
    with structlog.contextvars.bound_contextvars(request_id=request_id, **to_bind):
        yield
