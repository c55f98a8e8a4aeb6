"""Configuration for gatehouse components."""

from .settings import (
    BreakerSettings,
    GatehouseSettings,
    HttpSettings,
    LoggingSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "GatehouseSettings", "HttpSettings", "BreakerSettings", "LoggingSettings",
    "get_settings", "clear_settings_cache",
]
