"""Capability contract every infrastructure backend implements."""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel

from ..domain import HealthStatus, Server, ServerHealth, ServerStats

MANAGED_BY_LABEL = "managed"
MANAGED_BY_VALUE = "server-manager"
APP_LABEL = "app"
TYPE_LABEL = "type"
REGION_LABEL = "region"
SERVER_ID_LABEL = "server-id"

CONTROL_PORT = 8080
DATA_PORT = 51820
HEALTH_PATH = "/health"


def server_labels(server: Server) -> dict[str, str]:
    """Labels that mark a backend resource as ours and describe it."""
    return {
        MANAGED_BY_LABEL: MANAGED_BY_VALUE,
        APP_LABEL: server.name,
        TYPE_LABEL: server.type.value,
        REGION_LABEL: server.region,
        SERVER_ID_LABEL: server.id,
    }


def server_environment(server: Server) -> dict[str, str]:
    """Environment passed to every workload, merged with config["environment"]."""
    env = {str(k): str(v) for k, v in (server.config.get("environment") or {}).items()}
    env.update(
        {
            "SERVER_ID": server.id,
            "SERVER_TYPE": server.type.value,
            "REGION": server.region,
        }
    )
    return env


def server_command(server: Server) -> list[str] | None:
    command = server.config.get("command")
    if not command:
        return None
    if isinstance(command, str):
        return command.split()
    return [str(part) for part in command]


class ObservedServer(BaseModel):
    """A backend resource as the backend itself reports it.

    Used for reconciliation listings only; the repository stays the source of truth.
    """

    name: str
    backend_ref: str
    server_id: str | None = None
    type: str | None = None
    region: str | None = None
    status: HealthStatus = HealthStatus.UNKNOWN
    replicas: int = 0
    ready_replicas: int = 0
    created_at: datetime | None = None


class Orchestrator(ABC):
    """Infrastructure operations over one backend.

    ``server_ref`` is the reference returned by ``create_server`` and persisted
    on the server, or the server name when none was recorded.
    """

    kind: str

    @abstractmethod
    async def create_server(self, server: Server) -> str:
        """Provision resources named after ``server.name``.

        Returns:
            Backend reference for later calls.
        """

    @abstractmethod
    async def start_server(self, server_ref: str) -> None:
        """Raises NotFoundError when no matching resource exists."""

    @abstractmethod
    async def stop_server(self, server_ref: str) -> None:
        """Raises NotFoundError when no matching resource exists."""

    @abstractmethod
    async def delete_server(self, server_ref: str) -> None:
        """Remove backend resources. Absence semantics differ per backend."""

    @abstractmethod
    async def get_server_stats(self, server_ref: str) -> ServerStats:
        """Best effort; zero gauges when the resource is absent."""

    @abstractmethod
    async def get_server_health(self, server_ref: str) -> ServerHealth:
        """Best effort; ``unknown`` health when the resource is absent."""

    @abstractmethod
    async def scale_server(self, server_ref: str, replicas: int) -> None:
        """Raises UnsupportedOperationError on backends without replicas."""

    @abstractmethod
    async def list_servers(self) -> list[ObservedServer]:
        """Resources carrying the management label."""

    async def close(self) -> None:
        """Release the backend client."""
