"""Server lifecycle coordination.

ServerService owns the server repository and the single active orchestrator.
Lifecycle mutations (create, update, delete, start, stop, scale) run under one
process-wide lock, so their repository writes and backend calls never
interleave. Reads go straight to the repositories.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar
import uuid

import structlog

from .domain import (
    Backup,
    BackupConfig,
    CreateServerRequest,
    ScalingPolicy,
    Server,
    ServerFilter,
    ServerHealth,
    ServerStats,
    ServerStatus,
    UpdateRequest,
    UpdateServerRequest,
    UpdateState,
    UpdateStatus,
    utcnow,
    validate_name,
)
from .errors import ConflictError, InfraError, NotFoundError, ServerManagerError, UnconfiguredError, ValidationError
from .orchestrators import ObservedServer, Orchestrator
from .ports import (
    BackupRepository,
    HealthRepository,
    ScalingRepository,
    ServerRepository,
    StatsRepository,
    UpdateRepository,
)

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


def _require(repository: R | None, component: str) -> R:
    if repository is None:
        raise UnconfiguredError(component)
    return repository


def _backend_ref(server: Server) -> str:
    return server.backend_ref or server.name


class ServerService:
    """Coordinates the server repository and the active orchestrator."""

    def __init__(
        self,
        repository: ServerRepository,
        orchestrator: Orchestrator,
        *,
        stats_repository: StatsRepository | None = None,
        health_repository: HealthRepository | None = None,
        scaling_repository: ScalingRepository | None = None,
        backup_repository: BackupRepository | None = None,
        update_repository: UpdateRepository | None = None,
        backend_call_timeout: float = 60.0,
        restart_settle_delay: float = 2.0,
    ):
        self.repository = repository
        self.orchestrator = orchestrator
        self.stats_repository = stats_repository
        self.health_repository = health_repository
        self.scaling_repository = scaling_repository
        self.backup_repository = backup_repository
        self.update_repository = update_repository
        self.backend_call_timeout = backend_call_timeout
        self.restart_settle_delay = restart_settle_delay
        self._lock = asyncio.Lock()

    async def _backend(self, operation: str, call: Awaitable[T]) -> T:
        """Await an orchestrator call with the configured deadline.

        Errors already in the server-manager vocabulary pass through; anything
        else, timeouts included, becomes InfraError.
        """
        try:
            return await asyncio.wait_for(call, timeout=self.backend_call_timeout)
        except ServerManagerError:
            raise
        except TimeoutError as e:
            raise InfraError(operation, f"timed out after {self.backend_call_timeout}s") from e
        except Exception as e:
            raise InfraError(operation, e) from e

    async def _ensure_name_free(self, name: str, server_id: str | None = None) -> None:
        for other in await self.repository.list(ServerFilter(name=name)):
            if other.id != server_id:
                raise ConflictError(f"server name {name!r} is already used by {other.id}")

    async def _teardown_ref(self, server: Server) -> str | None:
        if server.backend_ref:
            return server.backend_ref
        for observed in await self._backend("list backend servers", self.orchestrator.list_servers()):
            if observed.server_id == server.id:
                return observed.backend_ref
        return None

    async def _record_failure(self, server: Server, error: ServerManagerError) -> None:
        """Persist status=error after a backend failure. Best effort, never retried."""
        try:
            server.transition_to(ServerStatus.ERROR, message=error.message)
            await self.repository.update(server)
        except Exception as persist_error:
            logger.error(
                "server_error_status_persist_failed",
                server_id=server.id,
                error=str(persist_error),
                backend_error=error.message,
            )

    # Lifecycle

    async def create_server(self, request: CreateServerRequest) -> Server:
        """Persist a new server and provision it on the backend.

        Raises:
            ValidationError: Missing name, type or region, or an invalid name.
            ConflictError: Another server already uses the name.
            InfraError: The backend failed; the server is left in ``error``.
        """
        request.ensure_complete()

        async with self._lock:
            await self._ensure_name_free(request.name)
            server = Server(
                name=request.name,
                type=request.type,
                region=request.region,
                config=dict(request.config),
            )
            server = await self.repository.create(server)
            logger.info("server_creating", server_id=server.id, name=server.name, type=server.type.value)

            try:
                backend_ref = await self._backend("create server", self.orchestrator.create_server(server))
            except ServerManagerError as e:
                error = e if isinstance(e, InfraError) else InfraError("create server", e.message)
                await self._record_failure(server, error)
                logger.error("server_create_failed", server_id=server.id, error=error.message)
                if error is e:
                    raise
                raise error from e

            server.backend_ref = backend_ref
            server.transition_to(ServerStatus.RUNNING)
            server = await self.repository.update(server)

        logger.info("server_created", server_id=server.id, backend_ref=backend_ref)
        return server

    async def get_server(self, server_id: str) -> Server:
        return await self.repository.get_by_id(server_id)

    async def list_servers(self, filters: ServerFilter | None = None) -> list[Server]:
        return await self.repository.list(filters)

    async def update_server(self, server_id: str, request: UpdateServerRequest) -> Server:
        """Patch persisted fields. Backend resources are not reconfigured."""
        async with self._lock:
            server = await self.repository.get_by_id(server_id)
            if request.name is not None:
                validate_name(request.name)
                await self._ensure_name_free(request.name, server_id)
                server.name = request.name
            if request.config is not None:
                server.config = {**server.config, **request.config}
            server.touch()
            server = await self.repository.update(server)

        logger.info("server_updated", server_id=server_id)
        return server

    async def delete_server(self, server_id: str) -> None:
        """Tear down backend resources, then soft-delete the server.

        Backend resources that are already gone count as torn down. Without a
        recorded reference, only a resource labelled with this server's id is
        torn down; the name alone may point at another server's resources.

        Raises:
            ConflictError: The server is still being created.
            InfraError: Teardown failed; the server is left in ``error``.
        """
        async with self._lock:
            server = await self.repository.get_by_id(server_id)
            server.transition_to(ServerStatus.DELETING)
            server = await self.repository.update(server)

            try:
                ref = await self._teardown_ref(server)
                if ref is not None:
                    await self._backend("delete server", self.orchestrator.delete_server(ref))
                else:
                    logger.info(
                        "backend_teardown_skipped", server_id=server_id, reason="no resource carries this server id"
                    )
            except NotFoundError:
                logger.info("backend_resources_already_absent", server_id=server_id)
            except ServerManagerError as e:
                error = e if isinstance(e, InfraError) else InfraError("delete server", e.message)
                await self._record_failure(server, error)
                logger.error("server_delete_failed", server_id=server_id, error=error.message)
                if error is e:
                    raise
                raise error from e

            await self.repository.delete(server_id)

        logger.info("server_deleted", server_id=server_id)

    async def _switch(self, server_id: str, target: ServerStatus) -> Server:
        async with self._lock:
            server = await self.repository.get_by_id(server_id)
            if server.status == ServerStatus.CREATING:
                raise ConflictError(f"server {server_id} is still being created")

            # stored entity stays untouched if the backend call fails
            candidate = server.model_copy(deep=True)
            candidate.transition_to(target)

            ref = _backend_ref(server)
            if target == ServerStatus.RUNNING:
                await self._backend("start server", self.orchestrator.start_server(ref))
            else:
                await self._backend("stop server", self.orchestrator.stop_server(ref))

            return await self.repository.update(candidate)

    async def start_server(self, server_id: str) -> Server:
        """Raises ConflictError if the server is not stopped."""
        server = await self._switch(server_id, ServerStatus.RUNNING)
        logger.info("server_started", server_id=server_id)
        return server

    async def stop_server(self, server_id: str) -> Server:
        """Raises ConflictError if the server is not running."""
        server = await self._switch(server_id, ServerStatus.STOPPED)
        logger.info("server_stopped", server_id=server_id)
        return server

    async def restart_server(self, server_id: str) -> Server:
        """Stop, wait for the settle delay, start. Nothing is started if stop fails."""
        await self.stop_server(server_id)
        await asyncio.sleep(self.restart_settle_delay)
        return await self.start_server(server_id)

    async def scale_server(self, server_id: str, replicas: int) -> None:
        """Raises UnsupportedOperationError on backends without replicas."""
        async with self._lock:
            server = await self.repository.get_by_id(server_id)
            await self._backend("scale server", self.orchestrator.scale_server(_backend_ref(server), replicas))
        logger.info("server_scaled", server_id=server_id, replicas=replicas)

    async def recover_interrupted(self) -> list[Server]:
        """Move servers stuck in ``creating`` or ``deleting`` to ``error``.

        Those states only outlive a call when the process died between the
        repository write and the backend call. Run it when no other process
        is mutating servers.
        """
        recovered = []
        async with self._lock:
            for status in (ServerStatus.CREATING, ServerStatus.DELETING):
                for server in await self.repository.get_by_status(status):
                    server.transition_to(ServerStatus.ERROR, message=f"interrupted while {status.value}")
                    recovered.append(await self.repository.update(server))
                    logger.warning("server_recovered_as_error", server_id=server.id, was=status.value)
        return recovered

    async def list_backend_servers(self) -> list[ObservedServer]:
        """What the backend currently runs, for operator-driven reconciliation."""
        return await self._backend("list backend servers", self.orchestrator.list_servers())

    # Stats and health

    async def get_server_stats(self, server_id: str) -> ServerStats:
        """Latest stored sample, or a placeholder when no stats store is wired."""
        if self.stats_repository is None:
            return ServerStats.not_initialized(server_id)
        await self.repository.get_by_id(server_id)
        latest = await self.stats_repository.get_latest_stats(server_id)
        return latest or ServerStats(server_id=server_id)

    async def get_stats_history(self, server_id: str, limit: int = 100) -> list[ServerStats]:
        if self.stats_repository is None:
            return []
        return await self.stats_repository.get_stats(server_id, limit=limit)

    async def get_server_health(self, server_id: str) -> ServerHealth:
        """Latest stored health, or a placeholder when no health store is wired."""
        if self.health_repository is None:
            return ServerHealth.not_initialized(server_id)
        await self.repository.get_by_id(server_id)
        health = await self.health_repository.get_health(server_id)
        return health or ServerHealth(server_id=server_id)

    async def get_all_servers_health(self) -> list[ServerHealth]:
        if self.health_repository is None:
            return []
        return await self.health_repository.get_all_health()

    async def refresh_server_health(self, server_id: str) -> ServerHealth:
        """Observe health on the backend and store it when a health store is wired."""
        server = await self.repository.get_by_id(server_id)
        observed = await self._backend("read server health", self.orchestrator.get_server_health(_backend_ref(server)))
        health = observed.model_copy(update={"server_id": server.id})
        if self.health_repository is not None:
            await self.health_repository.save_health(health)
        return health

    async def collect_server_stats(self, server_id: str) -> ServerStats:
        """Sample stats on the backend and store them when a stats store is wired."""
        server = await self.repository.get_by_id(server_id)
        observed = await self._backend("read server stats", self.orchestrator.get_server_stats(_backend_ref(server)))
        stats = observed.model_copy(update={"server_id": server.id})
        if self.stats_repository is not None:
            await self.stats_repository.save_stats(stats)
        return stats

    # Scaling policies

    async def create_scaling_policy(self, policy: ScalingPolicy) -> ScalingPolicy:
        repository = _require(self.scaling_repository, "scaling")
        if not policy.id:
            policy = policy.model_copy(update={"id": str(uuid.uuid4())})
        await repository.save_policy(policy)
        logger.info("scaling_policy_created", policy_id=policy.id, name=policy.name)
        return policy

    async def get_scaling_policy(self, policy_id: str) -> ScalingPolicy:
        return await _require(self.scaling_repository, "scaling").get_policy(policy_id)

    async def list_scaling_policies(self) -> list[ScalingPolicy]:
        if self.scaling_repository is None:
            return []
        return await self.scaling_repository.list_policies()

    async def update_scaling_policy(self, policy: ScalingPolicy) -> ScalingPolicy:
        repository = _require(self.scaling_repository, "scaling")
        if not policy.id:
            raise ValidationError("scaling policy id is required")
        await repository.update_policy(policy)
        return policy

    async def delete_scaling_policy(self, policy_id: str) -> None:
        await _require(self.scaling_repository, "scaling").delete_policy(policy_id)
        logger.info("scaling_policy_deleted", policy_id=policy_id)

    async def evaluate_scaling(self) -> None:
        """Policies are stored here and evaluated by an external loop."""
        policies = await self.list_scaling_policies()
        logger.info("scaling_evaluation_skipped", policies=len(policies))

    # Backups

    async def create_backup_config(self, config: BackupConfig) -> BackupConfig:
        repository = _require(self.backup_repository, "backup")
        await self.repository.get_by_id(config.server_id)
        if not config.id:
            config = config.model_copy(update={"id": str(uuid.uuid4())})
        await repository.save_config(config)
        logger.info("backup_config_created", config_id=config.id, server_id=config.server_id)
        return config

    async def get_backup_config(self, config_id: str) -> BackupConfig:
        return await _require(self.backup_repository, "backup").get_config(config_id)

    async def list_backup_configs(self) -> list[BackupConfig]:
        if self.backup_repository is None:
            return []
        return await self.backup_repository.list_configs()

    async def update_backup_config(self, config: BackupConfig) -> BackupConfig:
        repository = _require(self.backup_repository, "backup")
        if not config.id:
            raise ValidationError("backup config id is required")
        await repository.update_config(config)
        return config

    async def delete_backup_config(self, config_id: str) -> None:
        await _require(self.backup_repository, "backup").delete_config(config_id)

    async def create_backup(self, server_id: str) -> Backup:
        """Record a pending backup; an external worker performs it."""
        repository = _require(self.backup_repository, "backup")
        await self.repository.get_by_id(server_id)
        backup = Backup(id=str(uuid.uuid4()), server_id=server_id)
        await repository.save_backup(backup)
        logger.info("backup_requested", server_id=server_id, backup_id=backup.id)
        return backup

    async def list_backups(self, server_id: str) -> list[Backup]:
        if self.backup_repository is None:
            return []
        return await self.backup_repository.get_backups(server_id)

    async def restore_backup(self, server_id: str, backup_id: str) -> Backup:
        repository = _require(self.backup_repository, "backup")
        for backup in await repository.get_backups(server_id):
            if backup.id == backup_id:
                logger.info("backup_restore_requested", server_id=server_id, backup_id=backup_id)
                return backup
        raise NotFoundError(f"backup {backup_id} not found for server {server_id}")

    # Updates

    async def get_update_status(self, server_id: str) -> UpdateStatus:
        if self.update_repository is None:
            return UpdateStatus.not_initialized(server_id)
        status = await self.update_repository.get_update_status(server_id)
        return status or UpdateStatus(server_id=server_id)

    async def start_update(self, request: UpdateRequest) -> UpdateStatus:
        """Record a pending update; an external worker rolls it out.

        Raises:
            ConflictError: Another update is active and ``force`` is not set.
        """
        repository = _require(self.update_repository, "update")
        await self.repository.get_by_id(request.server_id)

        current = await repository.get_update_status(request.server_id)
        if current is not None and current.is_active and not request.force:
            raise ConflictError(f"update {current.version} is already {current.status.value}")

        status = UpdateStatus(
            server_id=request.server_id,
            status=UpdateState.PENDING,
            version=request.version,
            message="update scheduled",
        )
        await repository.save_update_status(status)
        logger.info("update_scheduled", server_id=request.server_id, version=request.version)
        return status

    async def cancel_update(self, server_id: str) -> UpdateStatus:
        repository = _require(self.update_repository, "update")
        current = await repository.get_update_status(server_id)
        if current is None or not current.is_active:
            raise ConflictError(f"no active update for server {server_id}")

        cancelled = current.model_copy(
            update={
                "status": UpdateState.CANCELLED,
                "message": "cancelled by operator",
                "completed_at": utcnow(),
            }
        )
        await repository.save_update_status(cancelled)
        logger.info("update_cancelled", server_id=server_id, version=current.version)
        return cancelled

    async def close(self) -> None:
        await self.orchestrator.close()
