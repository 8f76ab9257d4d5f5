"""Standardised JSON error envelope for the dronectl status gateway.

All errors returned by the gateway share the same shape::

    {"error": "<human-readable message>", "code": "<ERROR_CODE>", "status": <http_status>}

Raise ``DroneCtlAPIError`` inside an endpoint for a structured error, or let
a :class:`~dronectl.errors.StoreError` escape: it is mapped onto the same
envelope using its own code and status (404 not found, 409 conflict, ...).

Call ``register_error_handlers(app)`` once when the application is built.
"""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from dronectl.errors import StoreError

logger = logging.getLogger("DroneCtl.Gateway")


class DroneCtlAPIError(Exception):
    """Raise this to return a structured JSON error from any endpoint."""

    def __init__(self, code: str, message: str, status: int = 400):
        self.code = code
        self.message = message
        self.status = status
        super().__init__(message)


def _envelope(message: str, code: str, status: int) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"error": message, "code": code, "status": status},
    )


def register_error_handlers(app) -> None:
    """Install global exception handlers on the FastAPI *app* instance."""

    @app.exception_handler(DroneCtlAPIError)
    async def _dronectl_error_handler(request: Request, exc: DroneCtlAPIError):
        return _envelope(exc.message, exc.code, exc.status)

    @app.exception_handler(StoreError)
    async def _store_error_handler(request: Request, exc: StoreError):
        return _envelope(exc.message, exc.code, exc.status)

    @app.exception_handler(HTTPException)
    async def _http_error_handler(request: Request, exc: HTTPException):
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        return _envelope(detail, f"HTTP_{exc.status_code}", exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled gateway error on %s %s", request.method, request.url.path)
        return _envelope("Internal server error", "INTERNAL_ERROR", 500)
