"""Command broker: caller-facing submit/await and poller-facing claim/report."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from hostbridge.broker.correlation import CorrelationTable
from hostbridge.broker.errors import CommandTimeoutError
from hostbridge.broker.mode import ModeTracker
from hostbridge.broker.models import (
    BrokerResponse,
    Command,
    new_command_id,
    normalise_context,
)
from hostbridge.broker.queue import PendingCommandQueue
from hostbridge.broker.router import ContextRouter
from hostbridge.config.settings import BrokerSettings

LOGGER = logging.getLogger(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class CommandBroker:
    """
    Owns the mode tracker, router, pending queue and correlation table.

    ``submit`` suspends only its own task on a per-command future, so any
    number of callers can wait concurrently while pollers keep claiming.
    """

    def __init__(
        self,
        *,
        default_timeout: float = 30.0,
        mode: Optional[ModeTracker] = None,
        router: Optional[ContextRouter] = None,
        queue: Optional[PendingCommandQueue] = None,
        correlations: Optional[CorrelationTable] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")
        self.default_timeout = float(default_timeout)
        if mode is None:
            mode = router.mode if router is not None else ModeTracker()
        self.mode = mode
        self.router = router if router is not None else ContextRouter(mode)
        if queue is None:
            queue = PendingCommandQueue(targets=self.router.deliverable_targets)
        self.queue = queue
        self.correlations = (
            correlations if correlations is not None else CorrelationTable(clock=clock)
        )
        self._clock = clock
        self._orphans = 0

    @classmethod
    def from_settings(cls, settings: BrokerSettings) -> "CommandBroker":
        mode = ModeTracker()
        router = ContextRouter(
            mode,
            edit_only=settings.edit_only_actions,
            active_preferred=settings.active_preferred_actions,
            any_context=settings.any_context_actions,
        )
        return cls(
            default_timeout=settings.default_timeout,
            mode=mode,
            router=router,
            queue=PendingCommandQueue(
                max_age=settings.max_command_age,
                targets=router.deliverable_targets,
            ),
        )

    # ------------------------------------------------------------------
    # Caller-facing
    # ------------------------------------------------------------------
    async def submit(
        self,
        action: str,
        payload: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        *,
        target_context: Optional[str] = None,
    ) -> BrokerResponse:
        """
        Queue ``action`` for the remote host and wait for its response.

        ``timeout`` is in seconds. Expiry never raises: the caller gets a
        failed response naming the action, id and elapsed time. Cancelling
        the awaiting task withdraws the command if it is still queued.
        """
        if not action:
            raise ValueError("action is required")
        wait = self.default_timeout if timeout is None else float(timeout)
        if wait <= 0:
            raise ValueError("timeout must be positive")

        if target_context:
            target = normalise_context(target_context)
        else:
            target = self.router.resolve_target(action)

        command = Command(
            id=new_command_id(),
            action=action,
            target_context=target,
            payload=dict(payload or {}),
            timeout=wait,
        )
        future = self.correlations.register(
            command.id,
            self._clock() + wait,
            action=action,
            target_context=target,
        )
        self.queue.enqueue(command)
        LOGGER.debug(
            "Submitted command %s (action=%s, target=%s, timeout=%.3fs)",
            command.id,
            action,
            target,
            wait,
            extra={"command_id": command.id, "action": action, "context": target},
        )
        try:
            response = await future
        except CommandTimeoutError as exc:
            return BrokerResponse.failure(command.id, str(exc))
        finally:
            # no-ops unless the command is still queued or the caller was cancelled
            self.queue.discard(command.id)
            self.correlations.discard(command.id)
        LOGGER.debug(
            "Command %s answered by %s (success=%s)",
            command.id,
            response.context or "unknown",
            response.success,
            extra={
                "command_id": command.id,
                "action": action,
                "context": response.context,
            },
        )
        return response

    def submit_blocking(
        self,
        action: str,
        payload: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        *,
        target_context: Optional[str] = None,
    ) -> BrokerResponse:
        """Synchronous wrapper for callers outside any event loop."""
        return asyncio.run(
            self.submit(action, payload, timeout, target_context=target_context)
        )

    # ------------------------------------------------------------------
    # Poller-facing
    # ------------------------------------------------------------------
    def poll(self, context: str) -> Optional[Command]:
        command = self.queue.claim_for(context)
        if command is not None:
            LOGGER.debug(
                "Delivering command %s (action=%s) to %s",
                command.id,
                command.action,
                normalise_context(context),
                extra={
                    "command_id": command.id,
                    "action": command.action,
                    "context": command.target_context,
                },
            )
        return command

    def deliver(self, response: BrokerResponse) -> bool:
        """Hand a host response to its waiting caller; unknown ids are dropped."""
        matched = self.correlations.resolve(response.id, response)
        if not matched:
            self._orphans += 1
            LOGGER.info(
                "Discarding response for unknown or expired command %s",
                response.id,
                extra={"command_id": response.id, "context": response.context},
            )
        return matched

    def report_mode(self, active: bool, *, source: str = "host") -> bool:
        return self.mode.set_active(active, source=source)

    @property
    def is_playing(self) -> bool:
        return self.mode.active

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def status(self) -> Dict[str, Any]:
        pending_ids = self.queue.ids()
        waiting_ids = self.correlations.ids()
        return {
            "status": "running",
            "isPlaying": self.mode.active,
            "pendingCommands": len(pending_ids),
            "pendingCommandIds": pending_ids,
            "pendingResponses": len(waiting_ids),
            "pendingResponseIds": waiting_ids,
            "timestamp": _epoch_ms(),
        }

    def debug_snapshot(self) -> Dict[str, Any]:
        return {
            "gameIsPlaying": self.mode.active,
            "mode": self.mode.snapshot(),
            "pendingCommands": self.queue.snapshot(),
            "pendingCallbacks": self.correlations.ids(),
            "staleDropped": self.queue.stale_dropped,
            "orphanResponses": self._orphans,
            "routing": self.router.describe(),
            "timestamp": _epoch_ms(),
        }


__all__ = ["CommandBroker"]
