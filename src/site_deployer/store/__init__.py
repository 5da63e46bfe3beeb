"""Persistence for deployment configurations and run history."""

from .configs import ConfigNotFound, ConfigStore, DeploymentConfig
from .history import (
    DeploymentHistory,
    HistoryImmutableError,
    HistoryRecorder,
    HistoryStatus,
    HistoryStep,
    HistoryStore,
    InvalidTransition,
)
from .resolver import ConfigResolver, ResolvedConfig

__all__ = [
    "ConfigNotFound",
    "ConfigResolver",
    "ConfigStore",
    "DeploymentConfig",
    "DeploymentHistory",
    "HistoryImmutableError",
    "HistoryRecorder",
    "HistoryStatus",
    "HistoryStep",
    "HistoryStore",
    "InvalidTransition",
    "ResolvedConfig",
]
