"""
odatapipe-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t

import structlog

log = structlog.get_logger(__name__)

BODY_NOT_AVAILABLE = "[[body not available]]"


class ProcessHttpClientResponseException(Exception):
    """
    Raised when the transport returned a non-success HTTP response.

    Parameters
    ----------
    status : int
        HTTP status code.
    status_text : str
        HTTP reason phrase.
    data : dict[str, typing.Any]
        Diagnostic payload with ``responseBody`` and ``responseHeaders`` keys.

    Notes
    -----
    Building the exception only stores and logs its arguments, so it never
    raises even when the response body could not be read.
    """

    def __init__(self, status: int, status_text: str, data: dict[str, t.Any]) -> None:
        super().__init__(f"Error making HttpClient request in queryable: [{status}] {status_text}")
        self.status = status
        self.status_text = status_text
        self.data = data
        log.error(
            event="HTTP request failed",
            status=status,
            status_text=status_text,
            error=str(object=self),
        )


class AlreadyInBatchException(RuntimeError):
    """
    Raised when a query is attached to a second batch.
    """

    def __init__(self, message: str = "This query is already part of a batch.") -> None:
        super().__init__(message)
        log.error(event="Query already in batch", error=message)
