"""Observed runtime facts about a server: stats samples and health."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .server import utcnow


class HealthStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    STARTING = "starting"
    ERROR = "error"
    UNKNOWN = "unknown"


class HealthCheck(BaseModel):
    """One named sub-check (a pod, the container state, a healthcheck)."""

    name: str
    status: str
    message: str = ""


class ServerHealth(BaseModel):
    server_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    message: str = ""
    checks: list[HealthCheck] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    # True when no health source is wired, as opposed to "nothing observed yet"
    placeholder: bool = False

    @classmethod
    def not_initialized(cls, server_id: str) -> "ServerHealth":
        return cls(
            server_id=server_id,
            message="health repository not initialized",
            placeholder=True,
        )


class ServerStats(BaseModel):
    server_id: str
    cpu_usage: float = 0.0  # percent
    memory_usage: float = 0.0  # percent
    disk_usage: float = 0.0  # percent
    network_in: int = 0  # bytes
    network_out: int = 0  # bytes
    connections: int = 0
    request_count: int = 0
    error_count: int = 0
    uptime_seconds: int = 0
    timestamp: datetime = Field(default_factory=utcnow)
    placeholder: bool = False

    @property
    def error_rate(self) -> float:
        if not self.request_count:
            return 0.0
        return self.error_count / self.request_count

    @classmethod
    def not_initialized(cls, server_id: str) -> "ServerStats":
        return cls(server_id=server_id, placeholder=True)
