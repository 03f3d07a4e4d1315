"""
Error Taxonomy and Global Error Handling

This module defines the application-wide exception types and the FastAPI
exception handlers that translate them into HTTP responses.

Taxonomy
--------
- NotFoundError            unknown page or sync run id
- UpstreamError            document source or model provider failure
- ChunkingValidationError  malformed chunking parameters
- InvalidTransitionError   page status moved along an edge the table forbids
- PartialFailure           a single page failed inside an otherwise healthy run

Design Goals
------------
- Never leak internal exception details to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rca.errors")


# ---------------------------------------------------------------------
# Exception Types
# ---------------------------------------------------------------------

class RcaAnalyzerError(Exception):
    """Base class for all domain errors."""


class NotFoundError(RcaAnalyzerError):
    """Raised when a page or sync run id is unknown."""


class UpstreamError(RcaAnalyzerError):
    """Raised when the document source or a model provider fails."""


class ChunkingValidationError(RcaAnalyzerError, ValueError):
    """Raised when chunk size / overlap do not satisfy 0 <= overlap < size."""


class InvalidTransitionError(RcaAnalyzerError):
    """Raised when a page status change is not in the transition table."""


@dataclass(frozen=True)
class PartialFailure:
    """
    A page that failed inside a sync run.

    Never raised: the orchestrator records one per failed page and keeps going.
    """
    page_id: str
    message: str


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    payload: Dict[str, Any] = {
        "error": error,
        "detail": detail,
    }
    return JSONResponse(status_code=status_code, content=payload)


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, "not_found", str(exc))


async def validation_error_handler(
    request: Request,
    exc: ChunkingValidationError,
) -> JSONResponse:
    return _error_response(422, "validation_failed", str(exc))


async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    """
    Upstream failures are logged with their cause but reported generically.
    """
    logger.error(
        "Upstream failure during request %s %s: %s",
        request.method,
        request.url.path,
        exc,
    )
    return _error_response(502, "upstream_failure", "Upstream service unavailable")


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    return _error_response(500, "internal_server_error", "Internal server error")
