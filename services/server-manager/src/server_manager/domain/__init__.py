"""Domain models package."""

from .policies import (
    TERMINAL_UPDATE_STATES,
    Backup,
    BackupConfig,
    ScalingPolicy,
    UpdateRequest,
    UpdateState,
    UpdateStatus,
)
from .server import (
    ALLOWED_TRANSITIONS,
    CreateServerRequest,
    Server,
    ServerFilter,
    ServerStatus,
    ServerType,
    UpdateServerRequest,
    can_transition,
    utcnow,
    validate_name,
)
from .telemetry import HealthCheck, HealthStatus, ServerHealth, ServerStats

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Backup",
    "BackupConfig",
    "CreateServerRequest",
    "HealthCheck",
    "HealthStatus",
    "ScalingPolicy",
    "Server",
    "ServerFilter",
    "ServerHealth",
    "ServerStats",
    "ServerStatus",
    "ServerType",
    "TERMINAL_UPDATE_STATES",
    "UpdateRequest",
    "UpdateServerRequest",
    "UpdateState",
    "UpdateStatus",
    "can_transition",
    "utcnow",
    "validate_name",
]
