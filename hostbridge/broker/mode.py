from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)


class ModeTracker:
    """
    Whether the remote host is in active (play) or idle (edit) mode.

    Two writers touch the flag: the host's own ``/state`` reports and
    external overrides from callers that just triggered a mode change and
    do not want to wait for the host's report.
    """

    def __init__(self, active: bool = False) -> None:
        self._lock = threading.Lock()
        self._active = bool(active)
        self._source = "initial"
        self._changed_at: Optional[float] = None

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def set_active(self, active: bool, *, source: str = "host") -> bool:
        """Record a new mode; return True when the value actually changed."""
        value = bool(active)
        with self._lock:
            changed = value != self._active
            self._active = value
            self._source = source
            if changed:
                self._changed_at = time.time()
        if changed:
            LOGGER.info(
                "Host mode changed: isPlaying=%s",
                value,
                extra={"mode_source": source},
            )
        return changed

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "isPlaying": self._active,
                "source": self._source,
                "changedAt": self._changed_at,
            }
