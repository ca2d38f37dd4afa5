from __future__ import annotations

from typing import Any, Optional


class BrokerError(Exception):
    """Base class for broker failures."""

    code = "broker_error"


class CommandTimeoutError(BrokerError):
    """No response arrived for a command before its deadline."""

    code = "timeout"

    def __init__(
        self,
        command_id: str,
        action: str,
        elapsed: float,
        target_context: Optional[str] = None,
    ) -> None:
        self.command_id = command_id
        self.action = action
        self.elapsed = elapsed
        self.target_context = target_context
        target = f", target: {target_context}" if target_context else ""
        super().__init__(
            f"Timeout after {elapsed * 1000:.0f}ms waiting for response to "
            f"command {command_id} (action: {action}{target})"
        )


class DuplicateCommandError(BrokerError):
    """A correlation entry already exists for this id; ids must never collide."""

    code = "duplicate_command"

    def __init__(self, command_id: str) -> None:
        self.command_id = command_id
        super().__init__(f"correlation entry already registered for {command_id}")


class MalformedResponseError(BrokerError):
    code = "malformed_response"

    def __init__(
        self, message: str, details: Any = None, *, code: Optional[str] = None
    ) -> None:
        self.details = details
        if code:
            self.code = code
        super().__init__(message)


class BrokerStartupError(BrokerError):
    """The broker could not bind its endpoint."""

    code = "startup_failed"

    def __init__(self, host: str, port: int, message: str) -> None:
        self.host = host
        self.port = port
        super().__init__(message)


class BrokerAlreadyRunningError(BrokerStartupError):
    code = "already_running"

    def __init__(self, host: str, port: int) -> None:
        super().__init__(
            host,
            port,
            f"A hostbridge broker is already serving http://{host}:{port}",
        )


class PortInUseError(BrokerStartupError):
    code = "port_in_use"

    def __init__(self, host: str, port: int, detail: str = "") -> None:
        suffix = f" ({detail})" if detail else ""
        super().__init__(
            host,
            port,
            f"Port {port} on {host} is occupied by another process{suffix}",
        )


__all__ = [
    "BrokerAlreadyRunningError",
    "BrokerError",
    "BrokerStartupError",
    "CommandTimeoutError",
    "DuplicateCommandError",
    "MalformedResponseError",
    "PortInUseError",
]
