from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Tuple, Type

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

CONFIG_PATH = Path("config/hostbridge.json")
ENV_CONFIG_FILE = "HOSTBRIDGE_CONFIG_FILE"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 28859

DEFAULT_EDIT_ONLY_ACTIONS: tuple[str, ...] = ("reload", "savePlace")
DEFAULT_ACTIVE_PREFERRED_ACTIONS: tuple[str, ...] = ("execute",)
DEFAULT_ANY_CONTEXT_ACTIONS: tuple[str, ...] = ("ping", "diagnostics", "getState")

ActionList = Annotated[Tuple[str, ...], NoDecode]


def _config_file() -> Path:
    override = os.getenv(ENV_CONFIG_FILE)
    if override:
        return Path(override).expanduser()
    return CONFIG_PATH


class BrokerSettings(BaseSettings):
    """
    Broker configuration.

    Resolution order: explicit keyword arguments, ``HOSTBRIDGE_*``
    environment variables, then the JSON config file
    (``config/hostbridge.json`` or ``$HOSTBRIDGE_CONFIG_FILE``).
    """

    model_config = SettingsConfigDict(env_prefix="HOSTBRIDGE_", extra="ignore")

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, gt=0, lt=65536)

    default_timeout: float = Field(default=30.0, gt=0)
    max_command_age: float = Field(default=30.0, gt=0)

    edit_only_actions: ActionList = DEFAULT_EDIT_ONLY_ACTIONS
    active_preferred_actions: ActionList = DEFAULT_ACTIVE_PREFERRED_ACTIONS
    any_context_actions: ActionList = DEFAULT_ANY_CONTEXT_ACTIONS

    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    cors_origins: ActionList = ("*",)

    @field_validator(
        "edit_only_actions",
        "active_preferred_actions",
        "any_context_actions",
        "cors_origins",
        mode="before",
    )
    @classmethod
    def _split_names(cls, value: Any) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            tokens = value.replace(";", ",").split(",")
        else:
            tokens = [str(item) for item in value]
        names: list[str] = []
        for token in tokens:
            token = token.strip()
            if token and token not in names:
                names.append(token)
        return tuple(names)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> str:
        return str(value or "INFO").strip().upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=_config_file()),
        )

    @property
    def base_url(self) -> str:
        host = self.host.strip()
        if host in {"0.0.0.0", "0", "*"}:
            host = "127.0.0.1"
        return f"http://{host}:{self.port}"


@lru_cache(maxsize=1)
def get_settings() -> BrokerSettings:
    return BrokerSettings()


def reload_settings() -> BrokerSettings:
    get_settings.cache_clear()
    return get_settings()


__all__ = [
    "BrokerSettings",
    "DEFAULT_ACTIVE_PREFERRED_ACTIONS",
    "DEFAULT_ANY_CONTEXT_ACTIONS",
    "DEFAULT_EDIT_ONLY_ACTIONS",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "get_settings",
    "reload_settings",
]
