"""Configuration module for the connection lifecycle service."""

from .database import DatabaseSettings, get_database_settings
from .settings import (
    LinkingSettings,
    RedisSettings,
    ResilienceSettings,
    Settings,
    get_linking_settings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "LinkingSettings",
    "RedisSettings",
    "ResilienceSettings",
    "Settings",
    "get_linking_settings",
    "get_settings",
]
