"""Configuration document storage and data models."""

from crossplay.storage.config_store import ConfigStore
from crossplay.storage.models import (
    LogCategory,
    LogEntry,
    ServerConfig,
    ServerState,
    ServerStatus,
    TunnelState,
    WorldDecision,
    WorldDecisionReason,
)

__all__ = [
    "ConfigStore",
    "ServerConfig",
    "ServerState",
    "ServerStatus",
    "TunnelState",
    "LogCategory",
    "LogEntry",
    "WorldDecision",
    "WorldDecisionReason",
]
