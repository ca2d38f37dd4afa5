"""HTTP surface polled by the remote host and called by external callers."""

from __future__ import annotations

import time
from typing import Any, Dict, Type, TypeVar

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ValidationError

from hostbridge.broker.core import CommandBroker
from hostbridge.broker.errors import MalformedResponseError
from hostbridge.broker.models import (
    IDLE_CONTEXT,
    ResponseBody,
    StateReport,
    SubmitRequest,
)

router = APIRouter(tags=["Broker"])

_Body = TypeVar("_Body", bound=BaseModel)


def _broker(request: Request) -> CommandBroker:
    return request.app.state.broker


async def _parse_body(
    request: Request, model: Type[_Body], label: str, code: str
) -> _Body:
    raw = await request.body()
    try:
        return model.model_validate_json(raw or b"null")
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Invalid {label} body",
            code=code,
            details=[
                {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                for err in exc.errors()
            ],
        ) from exc


@router.get("/command")
async def claim_command(request: Request, context: str = IDLE_CONTEXT.value):
    command = _broker(request).poll(context)
    if command is None:
        return Response(status_code=204)
    return command.to_wire()


@router.post("/response")
async def deliver_response(request: Request) -> Dict[str, Any]:
    body = await _parse_body(request, ResponseBody, "response", "malformed_response")
    matched = _broker(request).deliver(body.to_response())
    return {"received": True, "matched": matched}


@router.post("/state")
async def report_state(request: Request) -> Dict[str, Any]:
    report = await _parse_body(request, StateReport, "state", "malformed_state")
    broker = _broker(request)
    broker.report_mode(report.is_playing, source=report.source)
    return {"received": True, "isPlaying": broker.is_playing}


@router.get("/ping")
async def ping() -> Dict[str, Any]:
    return {"status": "ok", "timestamp": int(time.time() * 1000)}


@router.get("/status")
async def broker_status(request: Request) -> Dict[str, Any]:
    return _broker(request).status()


@router.get("/debug")
async def broker_debug(request: Request) -> Dict[str, Any]:
    return _broker(request).debug_snapshot()


@router.post("/submit")
async def submit_command(request: Request, payload: SubmitRequest) -> Dict[str, Any]:
    timeout = payload.timeout_ms / 1000.0 if payload.timeout_ms else None
    response = await _broker(request).submit(
        payload.action,
        payload.payload,
        timeout,
        target_context=payload.target_context,
    )
    return response.to_dict()
