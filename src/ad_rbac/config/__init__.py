"""Configuration for ad-rbac."""

from .constants import (
    AssignableType,
    AuditEventType,
    CacheKeys,
    CacheTTL,
    DefaultActions,
    HistoryAction,
)
from .logging_config import LoggingConfig, get_logger, setup_logging
from .settings import AdRbacSettings, get_settings

__all__ = [
    "AssignableType",
    "AuditEventType",
    "CacheKeys",
    "CacheTTL",
    "DefaultActions",
    "HistoryAction",
    "LoggingConfig",
    "get_logger",
    "setup_logging",
    "AdRbacSettings",
    "get_settings",
]
