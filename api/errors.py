"""
api/errors.py -- Map domain errors onto HTTP responses.

Every BookSwapError becomes the same JSON envelope used for auth failures:

    {"error": {"code": "<stable code>", "message": "<human text>"}}

with the error's status_code. Clients branch on `code` (not_approved vs
invalid_credentials vs expired), never on the message text.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import BookSwapError

logger = logging.getLogger("bookswap.api")


def error_response(exc: BookSwapError) -> JSONResponse:
    resp = JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    resp.headers["Cache-Control"] = "no-store"
    return resp


async def _handle_bookswap_error(request: Request, exc: BookSwapError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return error_response(exc)


def register_error_handlers(app: FastAPI) -> None:
    """Install the BookSwapError handler on an application."""
    app.add_exception_handler(BookSwapError, _handle_bookswap_error)
