"""Map tracker errors to fixed HTTP responses with an {"error": ...} body."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pumpwatch.core.errors import IncidentNotFound, ReportValidationError, StorageError

logger = logging.getLogger("pumpwatch.api")


async def _validation_error(request: Request, exc: ReportValidationError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # query/path parameters rejected by FastAPI; report the first one only
    errors = exc.errors()
    if not errors:
        return JSONResponse({"error": "Invalid request"}, status_code=400)
    err = errors[0]
    loc = [str(p) for p in err.get("loc", ())]
    name = ".".join(loc[1:]) or ".".join(loc) or "request"
    return JSONResponse({"error": f"Invalid parameter {name}: {err['msg']}"}, status_code=400)


async def _not_found(request: Request, exc: IncidentNotFound) -> JSONResponse:
    return JSONResponse({"error": "Event not found"}, status_code=404)


async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
    # full detail stays in the server log
    logger.error(
        "Storage error on %s %s: %s", request.method, request.url.path, exc,
        exc_info=exc,
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReportValidationError, _validation_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(IncidentNotFound, _not_found)
    app.add_exception_handler(StorageError, _storage_error)
