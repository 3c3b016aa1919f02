"""Server entity and its lifecycle state machine."""

from datetime import UTC, datetime
from enum import Enum
import re
from typing import Any
import uuid

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ConflictError, ValidationError

# Names double as docker container names and kubernetes object names,
# so they follow the stricter DNS-1123 label rules.
NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
NAME_MAX_LENGTH = 63


def utcnow() -> datetime:
    return datetime.now(UTC)


class ServerType(str, Enum):
    """Kind of workload; selects the image and template."""

    VPN = "vpn"
    DPI = "dpi"
    GATEWAY = "gateway"
    ANALYTICS = "analytics"


class ServerStatus(str, Enum):
    """Server status lifecycle."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    DELETING = "deleting"


ALLOWED_TRANSITIONS: dict[ServerStatus, frozenset[ServerStatus]] = {
    ServerStatus.CREATING: frozenset({ServerStatus.RUNNING, ServerStatus.ERROR}),
    ServerStatus.RUNNING: frozenset({ServerStatus.STOPPED, ServerStatus.DELETING}),
    ServerStatus.STOPPED: frozenset({ServerStatus.RUNNING, ServerStatus.DELETING}),
    ServerStatus.ERROR: frozenset({ServerStatus.DELETING}),
    # backend teardown failed
    ServerStatus.DELETING: frozenset({ServerStatus.ERROR}),
}


def can_transition(current: ServerStatus, target: ServerStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_name(name: str) -> None:
    if len(name) > NAME_MAX_LENGTH or not NAME_PATTERN.match(name):
        raise ValidationError(
            f"invalid server name {name!r}: use lowercase letters, digits and '-', "
            f"at most {NAME_MAX_LENGTH} characters"
        )


class Server(BaseModel):
    """A managed VPN/DPI/gateway/analytics instance."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), frozen=True)
    name: str
    type: ServerType
    status: ServerStatus = ServerStatus.CREATING
    region: str

    # Observed network facts, zero-valued when unknown
    ip: str = ""
    port: int = 0

    # Point-in-time gauges; ServerStats is authoritative
    cpu: float = 0.0
    memory: float = 0.0
    disk: float = 0.0
    network: float = 0.0

    config: dict[str, Any] = Field(default_factory=dict)
    backend_ref: str | None = None
    status_message: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    is_deleted: bool = False
    deleted_at: datetime | None = None

    def touch(self) -> None:
        self.updated_at = utcnow()

    def transition_to(self, target: ServerStatus, message: str | None = None) -> None:
        """Move to ``target`` or raise ConflictError if the move is not allowed."""
        target = ServerStatus(target)
        if self.is_deleted:
            raise ConflictError(f"server {self.id} is deleted")
        if target == self.status:
            raise ConflictError(f"server {self.id} is already {target.value}")
        if not can_transition(self.status, target):
            raise ConflictError(
                f"server {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target
        self.status_message = message
        self.touch()

    def mark_deleted(self) -> None:
        """Set the tombstone. Only a server in ``deleting`` may be tombstoned."""
        if self.is_deleted:
            raise ConflictError(f"server {self.id} is already deleted")
        if self.status != ServerStatus.DELETING:
            raise ConflictError(
                f"server {self.id} must be deleting before removal, not {self.status.value}"
            )
        self.is_deleted = True
        self.deleted_at = utcnow()
        self.touch()


class CreateServerRequest(BaseModel):
    """Create server request."""

    name: str = ""
    type: ServerType | None = None
    region: str = ""
    # environment / command overrides for the backend
    config: dict[str, Any] = Field(default_factory=dict)

    def ensure_complete(self) -> None:
        missing = [field for field in ("name", "type", "region") if not getattr(self, field)]
        if missing:
            raise ValidationError(f"missing required fields: {', '.join(missing)}")
        validate_name(self.name)


class UpdateServerRequest(BaseModel):
    """Update server request.

    Only persisted fields change; running backend resources are not reconfigured.
    """

    name: str | None = None
    config: dict[str, Any] | None = None


class ServerFilter(BaseModel):
    """Typed listing filter. All set fields must match."""

    name: str | None = None
    type: ServerType | None = None
    region: str | None = None
    status: ServerStatus | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)

    def matches(self, server: Server) -> bool:
        if server.is_deleted:
            return False
        if self.name is not None and server.name != self.name:
            return False
        if self.type is not None and server.type != self.type:
            return False
        if self.region is not None and server.region != self.region:
            return False
        if self.status is not None and server.status != self.status:
            return False
        return True
