"""Scaling, backup and update records.

These are stored and returned by the service; evaluating them is left to
external policy loops.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from .server import utcnow


class ScalingPolicy(BaseModel):
    id: str | None = None
    name: str
    min_servers: int = Field(default=1, ge=0)
    max_servers: int = Field(default=1, ge=0)
    cpu_threshold: float = Field(default=80.0, ge=0, le=100)
    memory_threshold: float = Field(default=80.0, ge=0, le=100)
    scale_up_cooldown: timedelta = timedelta(minutes=5)
    scale_down_cooldown: timedelta = timedelta(minutes=10)
    enabled: bool = True

    @model_validator(mode="after")
    def check_bounds(self) -> "ScalingPolicy":
        if self.max_servers < self.min_servers:
            raise ValueError("max_servers must be greater than or equal to min_servers")
        return self


class BackupConfig(BaseModel):
    id: str | None = None
    server_id: str
    schedule: str  # cron expression
    retention_days: int = Field(default=7, ge=1)
    type: Literal["full", "incremental"] = "full"
    destination: str
    enabled: bool = True
    last_backup: datetime | None = None
    next_backup: datetime | None = None


class Backup(BaseModel):
    id: str
    server_id: str
    status: str = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


TERMINAL_UPDATE_STATES = frozenset(
    {UpdateState.COMPLETED, UpdateState.FAILED, UpdateState.CANCELLED}
)


class UpdateRequest(BaseModel):
    server_id: str
    version: str
    force: bool = False


class UpdateStatus(BaseModel):
    server_id: str
    status: UpdateState = UpdateState.UNKNOWN
    version: str | None = None
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    placeholder: bool = False

    @property
    def is_active(self) -> bool:
        return self.status in (UpdateState.PENDING, UpdateState.IN_PROGRESS)

    @classmethod
    def not_initialized(cls, server_id: str) -> "UpdateStatus":
        return cls(
            server_id=server_id,
            message="update repository not initialized",
            placeholder=True,
        )
