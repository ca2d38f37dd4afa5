from __future__ import annotations

import json
import logging
from typing import Optional

import httpx
import typer

from hostbridge.broker.errors import BrokerStartupError
from hostbridge.client import BrokerClient
from hostbridge.config.settings import BrokerSettings
from hostbridge.logging_config import init_logging

app = typer.Typer(add_completion=False, help="hostbridge command broker utilities.")
logger = logging.getLogger(__name__)


def _emit(data: object) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind."),
    port: Optional[int] = typer.Option(None, help="TCP port to bind."),
    log_level: Optional[str] = typer.Option(None, help="Root log level."),
) -> None:
    """Run the broker endpoint in the foreground."""
    from hostbridge.server.launcher import serve as run_server

    overrides = {
        key: value
        for key, value in (("host", host), ("port", port), ("log_level", log_level))
        if value is not None
    }
    settings = BrokerSettings(**overrides)
    init_logging(settings.log_dir, level=settings.log_level)
    try:
        run_server(settings)
    except BrokerStartupError as exc:
        logger.error("Broker startup failed: %s", exc, extra={"code": exc.code})
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)


@app.command()
def ping(url: Optional[str] = typer.Option(None, help="Broker base URL.")) -> None:
    """Check that a broker is answering."""
    with BrokerClient(url) as client:
        ok = client.ping()
        _emit({"ok": ok, "base_url": client.base_url})
    raise typer.Exit(code=0 if ok else 1)


@app.command()
def status(url: Optional[str] = typer.Option(None, help="Broker base URL.")) -> None:
    """Print the broker's pending command and correlation counts."""
    with BrokerClient(url) as client:
        try:
            _emit(client.status())
        except httpx.HTTPError as exc:
            typer.echo(f"error: {exc}", err=True)
            raise typer.Exit(code=1)


@app.command()
def submit(
    action: str = typer.Argument(..., help="Action name, e.g. ping or execute."),
    payload: str = typer.Option("{}", help="JSON object passed to the handler."),
    timeout_ms: Optional[int] = typer.Option(None, help="Deadline in milliseconds."),
    context: Optional[str] = typer.Option(None, help="Explicit target context."),
    url: Optional[str] = typer.Option(None, help="Broker base URL."),
) -> None:
    """Submit an action and wait for the host's response."""
    try:
        body = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise typer.BadParameter("payload must be a JSON object")
    with BrokerClient(url) as client:
        try:
            result = client.submit(
                action, body, timeout_ms=timeout_ms, target_context=context
            )
        except httpx.HTTPError as exc:
            typer.echo(f"error: {exc}", err=True)
            raise typer.Exit(code=1)
    _emit(result)
    raise typer.Exit(code=0 if result.get("success") else 1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
