"""Broker data model: commands, responses, contexts, and HTTP wire bodies."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionContext(str, Enum):
    EDIT = "Edit"
    SERVER = "Server"
    CLIENT = "Client"
    ANY = "any"


IDLE_CONTEXT = ExecutionContext.EDIT
ACTIVE_CONTEXT = ExecutionContext.SERVER

_CONTEXT_LOOKUP = {member.value.lower(): member.value for member in ExecutionContext}


def normalise_context(value: Any, default: str = IDLE_CONTEXT.value) -> str:
    """Map a declared context onto its canonical spelling ("edit" -> "Edit")."""
    if isinstance(value, ExecutionContext):
        return value.value
    text = str(value or "").strip()
    if not text:
        return default
    return _CONTEXT_LOOKUP.get(text.lower(), text)


def new_command_id() -> str:
    return str(uuid.uuid4())


def _epoch_ms(ts: float) -> int:
    return int(ts * 1000)


@dataclass(frozen=True)
class Command:
    """A submitted action awaiting a claiming poll. Never mutated once built."""

    id: str
    action: str
    target_context: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.time)
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def age(self, now: Optional[float] = None) -> float:
        return max(0.0, (time.time() if now is None else now) - self.submitted_at)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "payload": dict(self.payload),
            "timestamp": _epoch_ms(self.submitted_at),
            "targetContext": self.target_context,
            "timeoutMs": (
                None if self.timeout is None else round(self.timeout * 1000)
            ),
        }


@dataclass(frozen=True)
class BrokerResponse:
    id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    context: Optional[str] = None
    received_at: float = field(default_factory=time.time)

    @classmethod
    def failure(
        cls, command_id: str, error: str, *, context: Optional[str] = None
    ) -> "BrokerResponse":
        return cls(id=command_id, success=False, error=error, context=context)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"id": self.id, "success": self.success}
        if self.success:
            body["result"] = self.result
        else:
            body["error"] = self.error or "Command failed"
        if self.context:
            body["context"] = self.context
        return body


# ----------------------------------------------------------------------
# HTTP wire bodies
# ----------------------------------------------------------------------
class ResponseBody(BaseModel):
    """Body of ``POST /response`` as sent by the remote host."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    success: bool
    result: Any = None
    error: Optional[str] = None
    context: Optional[str] = None
    timestamp: Optional[float] = None

    def to_response(self) -> BrokerResponse:
        context = normalise_context(self.context) if self.context else None
        return BrokerResponse(
            id=self.id,
            success=self.success,
            result=self.result if self.success else None,
            error=None if self.success else (self.error or "Command failed"),
            context=context,
        )


class StateReport(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    is_playing: bool = Field(default=False, alias="isPlaying")
    # "host" for the host's own reports, anything else for caller overrides
    source: str = "host"


class SubmitRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    action: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    timeout_ms: Optional[int] = Field(default=None, alias="timeoutMs", gt=0)
    target_context: Optional[str] = Field(default=None, alias="targetContext")


__all__ = [
    "ACTIVE_CONTEXT",
    "BrokerResponse",
    "Command",
    "ExecutionContext",
    "IDLE_CONTEXT",
    "ResponseBody",
    "StateReport",
    "SubmitRequest",
    "new_command_id",
    "normalise_context",
]
