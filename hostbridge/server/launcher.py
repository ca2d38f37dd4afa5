from __future__ import annotations

import errno
import logging
import socket
from typing import Optional

import httpx

from hostbridge.broker.errors import BrokerAlreadyRunningError, PortInUseError
from hostbridge.config.settings import BrokerSettings, get_settings
from hostbridge.server.app import create_app

LOGGER = logging.getLogger(__name__)


def _connect_host(host: str) -> str:
    lowered = host.strip().lower()
    if lowered in {"0.0.0.0", "0", "*"}:
        return "127.0.0.1"
    if lowered in {"::", "[::]", "::0"}:
        return "localhost"
    return host


def broker_responds(
    host: str,
    port: int,
    *,
    timeout: float = 1.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """Return True when a hostbridge broker answers ``/ping`` on host:port."""
    url = f"http://{_connect_host(host)}:{port}/ping"
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        LOGGER.debug("Ping check of %s failed: %s", url, exc)
        return False
    if response.status_code != 200:
        return False
    try:
        data = response.json()
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("status") == "ok"


def ensure_port_available(
    host: str,
    port: int,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> None:
    """
    Fail fast when the broker endpoint cannot be bound.

    Raises ``BrokerAlreadyRunningError`` when another broker owns the port
    and ``PortInUseError`` when some unrelated process does.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, int(port)))
        except OSError as exc:
            if exc.errno not in (errno.EADDRINUSE, errno.EACCES):
                raise
            if exc.errno == errno.EADDRINUSE and broker_responds(
                host, port, transport=transport
            ):
                raise BrokerAlreadyRunningError(host, port) from exc
            raise PortInUseError(host, port, exc.strerror or "") from exc


def serve(settings: Optional[BrokerSettings] = None) -> None:
    """Check the port, then run the broker under uvicorn until interrupted."""
    import uvicorn

    settings = settings or get_settings()
    ensure_port_available(settings.host, settings.port)
    LOGGER.info("Starting hostbridge broker at %s", settings.base_url)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


__all__ = ["ensure_port_available", "broker_responds", "serve"]
