"""
Error Handling

Shared exception base for vidmem and the HTTP exception handlers that turn
those exceptions into deterministic JSON responses.

Design Goals
------------
- Each module owns its exceptions; all of them derive from VidmemError
- Every VidmemError carries a short machine-readable ``code``
- Never leak internal exception details for unexpected failures
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("vidmem.errors")


class VidmemError(RuntimeError):
    """Base class for every error raised by vidmem."""

    code: str = "vidmem_error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message or self.code)
        if code is not None:
            self.code = code


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

def error_handler_for(
    status_code: int,
) -> Callable[[Request, Exception], Awaitable[JSONResponse]]:
    """
    Build a handler that reports a VidmemError with the given status code.

    The payload exposes the error ``code`` and message, which are part of the
    public contract (e.g. ``building_in_progress``).
    """

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        code = getattr(exc, "code", "vidmem_error")
        logger.info(
            "Request %s %s rejected with %s (%s)",
            request.method,
            request.url.path,
            status_code,
            code,
        )
        return JSONResponse(
            status_code=status_code,
            content={"error": code, "detail": str(exc)},
        )

    return _handler


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full traceback and returns a generic 500 with no internal
    details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
