"""
Reference implementation of the remote host's side of the broker.

A ``HostPoller`` declares one execution context, polls ``/command`` on a
fixed interval, runs the registered handler for each claimed action and
posts the outcome to ``/response``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from hostbridge.broker.models import normalise_context
from hostbridge.client import BrokerClient

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Mapping[str, Any]], Any]

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_MAX_COMMAND_AGE = 30.0


class CommandFailed(Exception):
    """Raised by a handler to report a failure without the handler-error prefix."""


def _pong(payload: Mapping[str, Any]) -> str:
    return "pong"


class HostPoller:
    def __init__(
        self,
        client: BrokerClient,
        context: str = "Edit",
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_command_age: float = DEFAULT_MAX_COMMAND_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.context = normalise_context(context)
        self.poll_interval = float(poll_interval)
        self.max_command_age = float(max_command_age)
        self._clock = clock
        self._handlers: Dict[str, Handler] = {"ping": _pong}

    def register(self, action: str, handler: Optional[Handler] = None):
        """Register ``handler`` for ``action``; usable as a decorator."""

        def _wrap(fn: Handler) -> Handler:
            self._handlers[action] = fn
            return fn

        if handler is not None:
            return _wrap(handler)
        return _wrap

    def handle(self, command: Mapping[str, Any]) -> Dict[str, Any]:
        command_id = command.get("id")
        action = str(command.get("action") or "")
        body: Dict[str, Any] = {"id": command_id, "context": self.context}
        handler = self._handlers.get(action)
        if handler is None:
            body.update(success=False, error=f"Unknown action: {action}")
            return body
        payload = command.get("payload") or {}
        try:
            result = handler(payload)
        except CommandFailed as exc:
            body.update(success=False, error=str(exc))
        except Exception as exc:  # handler bugs are reported to the caller
            LOGGER.exception("Handler for %s failed", action)
            body.update(success=False, error=f"Handler error: {exc}")
        else:
            body.update(success=True, result=result)
        return body

    def is_stale(self, command: Mapping[str, Any]) -> bool:
        """Same limit the broker queue applies: the caller's deadline wins."""
        timestamp = command.get("timestamp") or 0
        age = self._clock() - float(timestamp) / 1000.0
        deadline = float(command.get("timeoutMs") or 0) / 1000.0
        return age > max(self.max_command_age, deadline)

    def poll_once(self) -> Optional[Dict[str, Any]]:
        """Claim and answer at most one command; return the response sent."""
        command = self.client.poll(self.context)
        if command is None:
            return None
        if self.is_stale(command):
            LOGGER.info("Ignoring stale command %s", command.get("id", "unknown"))
            return None
        LOGGER.info(
            "Handling command %s (id: %s)", command.get("action"), command.get("id")
        )
        body = self.handle(command)
        body["timestamp"] = int(self._clock() * 1000)
        self.client.send_response(body)
        return body

    def report_mode(self, is_playing: bool) -> None:
        self.client.report_state(is_playing)

    def run(self, stop: threading.Event) -> None:
        """Poll until ``stop`` is set; transport errors are logged and retried."""
        connected: Optional[bool] = None
        while not stop.is_set():
            try:
                self.poll_once()
            except httpx.HTTPError as exc:
                if connected is not False:
                    LOGGER.warning(
                        "Lost connection to broker at %s: %s", self.client.base_url, exc
                    )
                connected = False
            else:
                if connected is not True:
                    LOGGER.info("Connected to broker at %s", self.client.base_url)
                connected = True
            stop.wait(self.poll_interval)


__all__ = ["CommandFailed", "Handler", "HostPoller"]
