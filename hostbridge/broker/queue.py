"""Pending-command queue with context-filtered, atomic claims."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from hostbridge.broker.models import Command
from hostbridge.broker.router import poller_targets

LOGGER = logging.getLogger(__name__)

_SWEEP_INTERVAL = 1.0


def _fields(command: Command) -> Dict[str, Any]:
    return {
        "command_id": command.id,
        "action": command.action,
        "context": command.target_context,
    }


class PendingCommandQueue:
    """
    Commands waiting for a poll from their target context.

    Commands are bucketed by target context. A poll inspects only the heads
    of the buckets ``targets`` names for the polling context (the router's
    ``deliverable_targets``); the oldest of those heads wins. Every mutation
    happens under one lock, so a command is handed to at most one poller.

    Staleness is a coarse safety net independent of per-call deadlines: a
    command is stale once its age exceeds ``max(max_age, command.timeout)``.
    Stale commands are dropped without resolving their correlation entry.
    """

    def __init__(
        self,
        *,
        max_age: float = 30.0,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = _SWEEP_INTERVAL,
        targets: Callable[[str], Sequence[str]] = poller_targets,
    ) -> None:
        self.max_age = float(max_age)
        self._clock = clock
        self._sweep_interval = float(sweep_interval)
        self._targets = targets
        self._lock = threading.Lock()
        self._commands: Dict[str, Tuple[int, Command]] = {}
        self._buckets: Dict[str, Deque[Tuple[int, str]]] = {}
        self._seq = 0
        self._last_sweep = 0.0
        self._stale_dropped = 0

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------
    def enqueue(self, command: Command) -> None:
        with self._lock:
            if command.id in self._commands:
                raise ValueError(f"command '{command.id}' is already queued")
            self._seq += 1
            self._commands[command.id] = (self._seq, command)
            bucket = self._buckets.setdefault(command.target_context, deque())
            bucket.append((self._seq, command.id))
        LOGGER.debug(
            "Queued command %s (action=%s, target=%s)",
            command.id,
            command.action,
            command.target_context,
            extra=_fields(command),
        )

    def claim_for(self, context: str) -> Optional[Command]:
        """Remove and return the oldest command deliverable to ``context``."""
        buckets = tuple(dict.fromkeys(self._targets(context)))
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep_locked(now)
            while True:
                picked = self._oldest_head_locked(buckets)
                if picked is None:
                    return None
                bucket_name, (_, command_id) = picked
                self._buckets[bucket_name].popleft()
                if not self._buckets[bucket_name]:
                    del self._buckets[bucket_name]
                _, command = self._commands.pop(command_id)
                if self._is_stale(command, now):
                    self._note_stale(command, now)
                    continue
                return command

    def discard(self, command_id: str) -> bool:
        """Drop a still-queued command (caller timed out or gave up)."""
        with self._lock:
            entry = self._commands.pop(command_id, None)
            if entry is None:
                return False
            self._unlink_locked(*entry)
            return True

    def drop_stale(self, now: Optional[float] = None) -> List[Command]:
        with self._lock:
            return self._sweep_locked(self._clock() if now is None else now)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        with self._lock:
            return len(self._commands)

    def __contains__(self, command_id: object) -> bool:
        with self._lock:
            return command_id in self._commands

    def ids(self) -> List[str]:
        with self._lock:
            ordered = sorted(self._commands.values(), key=lambda item: item[0])
            return [command.id for _, command in ordered]

    def snapshot(self) -> List[Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            ordered = sorted(self._commands.values(), key=lambda item: item[0])
            return [
                {
                    "id": command.id,
                    "action": command.action,
                    "targetContext": command.target_context,
                    "age": round(command.age(now) * 1000),
                }
                for _, command in ordered
            ]

    @property
    def stale_dropped(self) -> int:
        with self._lock:
            return self._stale_dropped

    # ------------------------------------------------------------------
    # Internal helpers (lock held)
    # ------------------------------------------------------------------
    def _oldest_head_locked(
        self, buckets: Sequence[str]
    ) -> Optional[Tuple[str, Tuple[int, str]]]:
        best: Optional[Tuple[str, Tuple[int, str]]] = None
        for name in buckets:
            bucket = self._buckets.get(name)
            if not bucket:
                continue
            head = bucket[0]
            if best is None or head[0] < best[1][0]:
                best = (name, head)
        return best

    def _unlink_locked(self, seq: int, command: Command) -> None:
        bucket = self._buckets[command.target_context]
        bucket.remove((seq, command.id))
        if not bucket:
            del self._buckets[command.target_context]

    def _is_stale(self, command: Command, now: float) -> bool:
        limit = max(self.max_age, command.timeout or 0.0)
        return command.age(now) > limit

    def _note_stale(self, command: Command, now: float) -> None:
        self._stale_dropped += 1
        LOGGER.warning(
            "Dropping stale command %s (action=%s, age=%.1fs)",
            command.id,
            command.action,
            command.age(now),
            extra=_fields(command),
        )

    def _sweep_locked(self, now: float) -> List[Command]:
        self._last_sweep = now
        stale = [
            (seq, command)
            for seq, command in self._commands.values()
            if self._is_stale(command, now)
        ]
        for seq, command in stale:
            del self._commands[command.id]
            self._unlink_locked(seq, command)
            self._note_stale(command, now)
        return [command for _, command in stale]
