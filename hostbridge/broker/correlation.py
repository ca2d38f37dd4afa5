"""Single-resolution registry linking command ids to waiting callers."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from hostbridge.broker.errors import CommandTimeoutError, DuplicateCommandError
from hostbridge.broker.models import BrokerResponse

LOGGER = logging.getLogger(__name__)


@dataclass
class CorrelationEntry:
    id: str
    deadline: float
    future: "asyncio.Future[BrokerResponse]"
    loop: asyncio.AbstractEventLoop
    action: str = ""
    target_context: Optional[str] = None
    registered_at: float = field(default_factory=time.monotonic)
    timer: Optional[asyncio.TimerHandle] = None


class CorrelationTable:
    """
    One-shot future per outstanding command id.

    An entry leaves the table exactly once, under the lock, through
    ``resolve``, ``expire`` or ``discard``; whichever pops it first is the
    only one allowed to settle the caller's future. Deadlines are enforced
    by a timer on the caller's event loop, so expiry fires even when no
    poller ever shows up. ``resolve`` may be called from any thread or loop.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CorrelationEntry] = {}

    def register(
        self,
        command_id: str,
        deadline: float,
        *,
        action: str = "",
        target_context: Optional[str] = None,
    ) -> "asyncio.Future[BrokerResponse]":
        """Create the entry and arm its deadline timer. Must run inside a loop."""
        loop = asyncio.get_running_loop()
        entry = CorrelationEntry(
            id=command_id,
            deadline=deadline,
            future=loop.create_future(),
            loop=loop,
            action=action,
            target_context=target_context,
            registered_at=self._clock(),
        )
        with self._lock:
            if command_id in self._entries:
                raise DuplicateCommandError(command_id)
            self._entries[command_id] = entry
        delay = max(0.0, deadline - self._clock())
        entry.timer = loop.call_later(delay, self.expire, command_id)
        return entry.future

    def resolve(self, command_id: str, response: BrokerResponse) -> bool:
        entry = self._pop(command_id)
        if entry is None:
            return False
        self._fulfil(entry, response=response)
        return True

    def expire(self, command_id: str) -> bool:
        entry = self._pop(command_id)
        if entry is None:
            return False
        elapsed = max(0.0, self._clock() - entry.registered_at)
        LOGGER.warning(
            "Command %s (action=%s) timed out after %.0fms",
            command_id,
            entry.action,
            elapsed * 1000,
            extra={
                "command_id": command_id,
                "action": entry.action,
                "context": entry.target_context,
            },
        )
        self._fulfil(
            entry,
            error=CommandTimeoutError(
                command_id, entry.action, elapsed, entry.target_context
            ),
        )
        return True

    def discard(self, command_id: str) -> bool:
        """Forget an entry whose caller gave up; its future is cancelled."""
        entry = self._pop(command_id)
        if entry is None:
            return False
        self._fulfil(entry)
        return True

    def __contains__(self, command_id: object) -> bool:
        with self._lock:
            return command_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _pop(self, command_id: str) -> Optional[CorrelationEntry]:
        with self._lock:
            return self._entries.pop(command_id, None)

    def _fulfil(
        self,
        entry: CorrelationEntry,
        *,
        response: Optional[BrokerResponse] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is entry.loop:
            _settle(entry, response, error)
            return
        try:
            entry.loop.call_soon_threadsafe(_settle, entry, response, error)
        except RuntimeError:
            # caller's loop already closed; nobody is left to wake
            LOGGER.debug("Loop closed before settling %s", entry.id)


def _settle(
    entry: CorrelationEntry,
    response: Optional[BrokerResponse],
    error: Optional[BaseException],
) -> None:
    if entry.timer is not None:
        entry.timer.cancel()
    future = entry.future
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    elif response is not None:
        future.set_result(response)
    else:
        future.cancel()
