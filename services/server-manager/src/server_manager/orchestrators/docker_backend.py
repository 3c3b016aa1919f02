"""Container-runtime backend: one docker daemon, one container per server."""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import docker
import structlog

from ..domain import HealthCheck, HealthStatus, Server, ServerHealth, ServerStats, ServerType
from ..errors import ConflictError, InfraError, NotFoundError, UnsupportedOperationError
from .base import (
    CONTROL_PORT,
    DATA_PORT,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    REGION_LABEL,
    SERVER_ID_LABEL,
    TYPE_LABEL,
    ObservedServer,
    Orchestrator,
    server_command,
    server_environment,
    server_labels,
)
from .docker_ops import DockerClientWrapper

logger = structlog.get_logger()

CONTAINER_STATES: dict[str, HealthStatus] = {
    "running": HealthStatus.RUNNING,
    "created": HealthStatus.STARTING,
    "restarting": HealthStatus.STARTING,
    "paused": HealthStatus.STOPPED,
    "exited": HealthStatus.STOPPED,
    "removing": HealthStatus.STOPPED,
    "dead": HealthStatus.ERROR,
}


@contextmanager
def docker_errors(operation: str, server_ref: str) -> Iterator[None]:
    """Translate docker-py exceptions into server-manager error kinds."""
    try:
        yield
    except docker.errors.NotFound as e:
        raise NotFoundError(f"container not found: {server_ref}") from e
    except docker.errors.APIError as e:
        if e.status_code == 409:
            raise ConflictError(f"{server_ref} already exists") from e
        raise InfraError(operation, e) from e
    except docker.errors.DockerException as e:
        raise InfraError(operation, e) from e


def parse_container_stats(server_ref: str, raw: dict[str, Any]) -> ServerStats:
    """Build gauges from a one-shot ``docker stats`` payload.

    Missing sections yield zero gauges rather than errors.
    """
    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    cpu_delta = cpu_usage.get("total_usage", 0) - (precpu_stats.get("cpu_usage") or {}).get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get("system_cpu_usage", 0)
    online_cpus = cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1
    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = cpu_delta / system_delta * online_cpus * 100.0

    memory_stats = raw.get("memory_stats") or {}
    # same accounting as the docker CLI: page cache is not "used"
    cache = (memory_stats.get("stats") or {}).get("inactive_file", 0)
    memory_used = max(memory_stats.get("usage", 0) - cache, 0)
    memory_limit = memory_stats.get("limit", 0)
    memory_percent = memory_used / memory_limit * 100.0 if memory_limit else 0.0

    networks = raw.get("networks") or {}
    network_in = sum(iface.get("rx_bytes", 0) for iface in networks.values())
    network_out = sum(iface.get("tx_bytes", 0) for iface in networks.values())

    return ServerStats(
        server_id=server_ref,
        cpu_usage=round(cpu_percent, 2),
        memory_usage=round(memory_percent, 2),
        network_in=network_in,
        network_out=network_out,
    )


def parse_docker_time(value: str | None) -> datetime | None:
    """Docker timestamps carry nanoseconds; keep microseconds."""
    if not value:
        return None
    head, _, fraction = value.rstrip("Z").partition(".")
    if fraction:
        head = f"{head}.{fraction[:6].ljust(6, '0')}"
    try:
        parsed = datetime.fromisoformat(head)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def server_ports(server: Server) -> dict[str, int | None]:
    """Port bindings; unpublished host ports are picked by the daemon.

    ``config["ports"]`` maps container port specs to fixed host ports.
    """
    ports: dict[str, int | None] = {f"{CONTROL_PORT}/tcp": None, f"{DATA_PORT}/udp": None}
    ports.update(server.config.get("ports") or {})
    return ports


class DockerOrchestrator(Orchestrator):
    """Runs each server as a single container on one docker daemon.

    Containers are addressed by the id returned from ``create_server`` or by
    the server name; the daemon resolves either directly.
    """

    kind = "docker"

    def __init__(
        self,
        client: DockerClientWrapper,
        images: dict[ServerType, str],
        stop_timeout: int = 30,
    ):
        self.docker = client
        self.images = images
        self.stop_timeout = stop_timeout

    async def create_server(self, server: Server) -> str:
        image = self.images[server.type]
        create_kwargs: dict[str, Any] = {
            "name": server.name,
            "detach": True,
            "environment": server_environment(server),
            "labels": server_labels(server),
            "ports": server_ports(server),
        }
        command = server_command(server)
        if command:
            create_kwargs["command"] = command

        logger.info("creating_container", server_id=server.id, name=server.name, image=image)
        with docker_errors("create container", server.name):
            container = await self.docker.create_container(image, **create_kwargs)

        try:
            with docker_errors("start container", container.id):
                await self.docker.start_container(container.id)
        except Exception:
            # roll back the created container
            try:
                await self.docker.remove_container(container.id, force=True)
            except docker.errors.DockerException as e:
                logger.warning("container_rollback_failed", container_id=container.id, error=str(e))
            raise

        logger.info("container_started", server_id=server.id, container_id=container.id)
        return container.id

    async def start_server(self, server_ref: str) -> None:
        with docker_errors("start container", server_ref):
            await self.docker.start_container(server_ref)
        logger.info("container_started", container=server_ref)

    async def stop_server(self, server_ref: str) -> None:
        with docker_errors("stop container", server_ref):
            await self.docker.stop_container(server_ref, timeout=self.stop_timeout)
        logger.info("container_stopped", container=server_ref)

    async def delete_server(self, server_ref: str) -> None:
        with docker_errors("remove container", server_ref):
            await self.docker.remove_container(server_ref, force=True)
        logger.info("container_removed", container=server_ref)

    async def get_server_stats(self, server_ref: str) -> ServerStats:
        try:
            with docker_errors("read container stats", server_ref):
                raw = await self.docker.container_stats(server_ref)
        except NotFoundError:
            return ServerStats(server_id=server_ref)
        return parse_container_stats(server_ref, raw)

    async def get_server_health(self, server_ref: str) -> ServerHealth:
        try:
            with docker_errors("inspect container", server_ref):
                attrs = await self.docker.inspect_container(server_ref)
        except NotFoundError:
            return ServerHealth(server_id=server_ref, message="container not found")

        state = attrs.get("State") or {}
        container_state = state.get("Status", "unknown")
        status = CONTAINER_STATES.get(container_state, HealthStatus.UNKNOWN)
        checks = [HealthCheck(name="container", status=container_state, message=state.get("Error", ""))]

        probe = state.get("Health")
        if probe:
            probe_status = probe.get("Status", "unknown")
            log = probe.get("Log") or []
            checks.append(
                HealthCheck(
                    name="healthcheck",
                    status=probe_status,
                    message=(log[-1].get("Output", "") if log else "").strip(),
                )
            )
            if probe_status == "unhealthy":
                status = HealthStatus.ERROR
            elif probe_status == "starting" and status == HealthStatus.RUNNING:
                status = HealthStatus.STARTING

        return ServerHealth(
            server_id=server_ref,
            status=status,
            message=state.get("Error") or f"container is {container_state}",
            checks=checks,
        )

    async def scale_server(self, server_ref: str, replicas: int) -> None:
        raise UnsupportedOperationError("scaling is not supported by the docker backend")

    async def list_servers(self) -> list[ObservedServer]:
        with docker_errors("list containers", "*"):
            containers = await self.docker.list_containers(
                filters={"label": f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"}
            )

        observed = []
        for container in containers:
            labels = container.labels or {}
            status = CONTAINER_STATES.get(container.status, HealthStatus.UNKNOWN)
            running = 1 if status == HealthStatus.RUNNING else 0
            observed.append(
                ObservedServer(
                    name=container.name,
                    backend_ref=container.id,
                    server_id=labels.get(SERVER_ID_LABEL),
                    type=labels.get(TYPE_LABEL),
                    region=labels.get(REGION_LABEL),
                    status=status,
                    replicas=running,
                    ready_replicas=running,
                    created_at=parse_docker_time(container.attrs.get("Created")),
                )
            )
        return observed

    async def close(self) -> None:
        await self.docker.close()
