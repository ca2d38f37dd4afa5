"""Broker configuration."""

from hostbridge.config.settings import BrokerSettings, get_settings, reload_settings

__all__ = ["BrokerSettings", "get_settings", "reload_settings"]
