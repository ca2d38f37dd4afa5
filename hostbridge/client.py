"""
Thin HTTP client for the broker endpoint.

Used by the CLI, by the startup ping check and by ``HostPoller`` (the remote
host side). Non-2xx replies raise ``httpx.HTTPStatusError``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from hostbridge.config.settings import get_settings

LOGGER = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 5.0


class BrokerClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._owns_client = http_client is None
        if http_client is not None:
            self._client = http_client
            self.base_url = str(http_client.base_url).rstrip("/")
            return
        self.base_url = (base_url or get_settings().base_url).rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "BrokerClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        response.raise_for_status()
        return response.json()

    # ------------------------------------------------------------------
    # Caller side
    # ------------------------------------------------------------------
    def ping(self) -> bool:
        try:
            data = self._json(self._client.get("/ping"))
        except httpx.HTTPError as exc:
            LOGGER.debug("Ping to %s failed: %s", self.base_url, exc)
            return False
        return data.get("status") == "ok"

    def status(self) -> Dict[str, Any]:
        return self._json(self._client.get("/status"))

    def submit(
        self,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        timeout_ms: Optional[int] = None,
        target_context: Optional[str] = None,
    ) -> Dict[str, Any]:
        if timeout_ms is None:
            timeout_ms = round(get_settings().default_timeout * 1000)
        body: Dict[str, Any] = {
            "action": action,
            "payload": payload or {},
            "timeoutMs": int(timeout_ms),
        }
        if target_context:
            body["targetContext"] = target_context
        # the HTTP wait must outlast the deadline sent to the broker
        return self._json(
            self._client.post(
                "/submit", json=body, timeout=int(timeout_ms) / 1000.0 + 5.0
            )
        )

    # ------------------------------------------------------------------
    # Host side
    # ------------------------------------------------------------------
    def poll(self, context: str) -> Optional[Dict[str, Any]]:
        response = self._client.get("/command", params={"context": context})
        if response.status_code == 204:
            return None
        return self._json(response)

    def send_response(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._json(self._client.post("/response", json=body))

    def report_state(self, is_playing: bool, *, source: str = "host") -> Dict[str, Any]:
        return self._json(
            self._client.post(
                "/state", json={"isPlaying": bool(is_playing), "source": source}
            )
        )


__all__ = ["BrokerClient", "DEFAULT_REQUEST_TIMEOUT"]
