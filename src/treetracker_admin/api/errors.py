"""Map domain exceptions to HTTP error responses.

Error bodies follow the shape existing admin clients expect::

    {"error": {"statusCode": 404, "name": "NotFoundError", "message": "..."}}
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from treetracker_admin.core.errors import FilterError, RecordNotFoundError, StoreError

logger = logging.getLogger(__name__)


def error_body(status_code: int, name: str, message: str) -> dict:
    return {"error": {"statusCode": status_code, "name": name, "message": message}}


async def _not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content=error_body(404, "NotFoundError", str(exc)))


async def _bad_filter(request: Request, exc: FilterError) -> JSONResponse:
    return JSONResponse(status_code=400, content=error_body(400, "BadRequestError", str(exc)))


async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Store error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content=error_body(500, "InternalServerError", "Internal Server Error"),
    )


def install_error_handlers(app: FastAPI) -> None:
    # Most specific first: RecordNotFoundError is a StoreError.
    app.add_exception_handler(RecordNotFoundError, _not_found)
    app.add_exception_handler(FilterError, _bad_filter)
    app.add_exception_handler(StoreError, _store_error)
