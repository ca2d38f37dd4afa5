from __future__ import annotations

import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hostbridge.broker.errors import BrokerError, MalformedResponseError
from hostbridge.logging_config import reset_request_id, set_request_id

_log = logging.getLogger("hostbridge.errors")


def _request_id(request: Request) -> Optional[str]:
    state_rid = getattr(request.state, "request_id", None)
    header_rid = request.headers.get("X-Request-ID")
    return state_rid or header_rid or None


def _activate_context(rid: Optional[str]):
    if not rid:
        return None
    return set_request_id(rid)


def _clear_context(token) -> None:
    if token is None:
        return
    reset_request_id(token)


def error_response(
    request: Request,
    *,
    status: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    rid = _request_id(request)
    body = {"ok": False, "code": code, "message": message}
    if details is not None:
        body["details"] = details
    if rid:
        body["request_id"] = rid

    response = JSONResponse(body, status_code=status)
    if rid:
        response.headers["X-Request-ID"] = rid
    return response


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def _http_exc(request: Request, exc: StarletteHTTPException):
        rid = _request_id(request)
        token = _activate_context(rid)
        try:
            detail = exc.detail
            message = str(detail) if detail else "Request failed"
            details = detail if isinstance(detail, (dict, list)) else None
            return error_response(
                request,
                status=exc.status_code,
                code=f"http_{exc.status_code}",
                message=message,
                details=details,
            )
        finally:
            _clear_context(token)

    @app.exception_handler(RequestValidationError)
    async def _val_exc(request: Request, exc: RequestValidationError):
        rid = _request_id(request)
        token = _activate_context(rid)
        try:
            _log.debug("validation error: %s", exc)
            return error_response(
                request,
                status=422,
                code="validation_error",
                message="Request validation failed",
                details=_plain_errors(exc.errors()),
            )
        finally:
            _clear_context(token)

    @app.exception_handler(MalformedResponseError)
    async def _malformed(request: Request, exc: MalformedResponseError):
        rid = _request_id(request)
        token = _activate_context(rid)
        try:
            _log.warning("Rejected malformed body on %s: %s", request.url.path, exc)
            return error_response(
                request,
                status=400,
                code=exc.code,
                message=str(exc),
                details=exc.details,
            )
        finally:
            _clear_context(token)

    @app.exception_handler(BrokerError)
    async def _broker_exc(request: Request, exc: BrokerError):
        rid = _request_id(request)
        token = _activate_context(rid)
        try:
            _log.error("Broker error on %s: %s", request.url.path, exc)
            return error_response(
                request,
                status=500,
                code=exc.code,
                message=str(exc),
            )
        finally:
            _clear_context(token)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        rid = _request_id(request)
        token = _activate_context(rid)
        err_id = uuid.uuid4().hex
        try:
            tb = "".join(traceback.format_exception(exc))
            _log.error(
                "Unhandled exception [%s]: %s",
                err_id,
                tb,
            )
            return error_response(
                request,
                status=500,
                code="internal_error",
                message="Internal server error",
                details={"error_id": err_id},
            )
        finally:
            _clear_context(token)


def _plain_errors(errors: Any) -> Any:
    """Strip non-JSON values (exception objects in ``ctx``) from pydantic errors."""
    cleaned = []
    for item in errors or []:
        entry = dict(item)
        ctx = entry.get("ctx")
        if isinstance(ctx, dict):
            entry["ctx"] = {key: str(value) for key, value in ctx.items()}
        cleaned.append(entry)
    return cleaned
