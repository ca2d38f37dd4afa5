from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hostbridge.broker.core import CommandBroker  # noqa: E402
from hostbridge.config.settings import BrokerSettings, get_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("HOSTBRIDGE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOSTBRIDGE_CONFIG_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setenv("HOSTBRIDGE_LOG_DIR", str(tmp_path / "logs"))
    get_settings.cache_clear()
    try:
        yield
    finally:
        get_settings.cache_clear()


@pytest.fixture()
def broker_settings(tmp_path) -> BrokerSettings:
    return BrokerSettings(log_dir=tmp_path / "logs", default_timeout=5.0)


@pytest.fixture()
def broker(broker_settings) -> CommandBroker:
    return CommandBroker.from_settings(broker_settings)


@pytest.fixture()
def client(broker_settings, broker):
    from fastapi.testclient import TestClient

    from hostbridge.server.app import create_app

    app = create_app(broker_settings, broker=broker, configure_logging=False)
    with TestClient(app) as test_client:
        yield test_client
