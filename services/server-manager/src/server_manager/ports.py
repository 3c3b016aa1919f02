"""Persistence interfaces consumed by the server service.

Implementations live in ``server_manager.db`` (SQL) and
``server_manager.telemetry_store`` (Redis). Any secondary repository may be
absent; the service degrades when it is.
"""

from __future__ import annotations

from typing import Protocol

from .domain import (
    Backup,
    BackupConfig,
    ScalingPolicy,
    Server,
    ServerFilter,
    ServerHealth,
    ServerStats,
    ServerStatus,
    ServerType,
    UpdateStatus,
)


class ServerRepository(Protocol):
    """CRUD over servers. Soft-deleted rows are invisible to every query."""

    async def create(self, server: Server) -> Server: ...

    async def get_by_id(self, server_id: str) -> Server:
        """Raises NotFoundError for unknown or soft-deleted ids."""
        ...

    async def list(self, filters: ServerFilter | None = None) -> list[Server]:
        """Most recent first."""
        ...

    async def update(self, server: Server) -> Server: ...

    async def delete(self, server_id: str) -> None:
        """Soft delete."""
        ...

    async def get_by_type(self, server_type: ServerType) -> list[Server]: ...

    async def get_by_region(self, region: str) -> list[Server]: ...

    async def get_by_status(self, status: ServerStatus) -> list[Server]: ...


class StatsRepository(Protocol):
    async def save_stats(self, stats: ServerStats) -> None: ...

    async def get_stats(self, server_id: str, limit: int = 100) -> list[ServerStats]: ...

    async def get_latest_stats(self, server_id: str) -> ServerStats | None: ...


class HealthRepository(Protocol):
    async def save_health(self, health: ServerHealth) -> None: ...

    async def get_health(self, server_id: str) -> ServerHealth | None: ...

    async def get_all_health(self) -> list[ServerHealth]: ...

    async def get_health_history(self, server_id: str, limit: int = 100) -> list[ServerHealth]: ...


class ScalingRepository(Protocol):
    async def save_policy(self, policy: ScalingPolicy) -> None: ...

    async def get_policy(self, policy_id: str) -> ScalingPolicy: ...

    async def list_policies(self) -> list[ScalingPolicy]: ...

    async def update_policy(self, policy: ScalingPolicy) -> None: ...

    async def delete_policy(self, policy_id: str) -> None: ...


class BackupRepository(Protocol):
    async def save_config(self, config: BackupConfig) -> None: ...

    async def get_config(self, config_id: str) -> BackupConfig: ...

    async def list_configs(self) -> list[BackupConfig]: ...

    async def update_config(self, config: BackupConfig) -> None: ...

    async def delete_config(self, config_id: str) -> None: ...

    async def save_backup(self, backup: Backup) -> None: ...

    async def get_backups(self, server_id: str) -> list[Backup]: ...

    async def delete_backup(self, backup_id: str) -> None: ...


class UpdateRepository(Protocol):
    async def save_update_status(self, status: UpdateStatus) -> None: ...

    async def get_update_status(self, server_id: str) -> UpdateStatus | None: ...

    async def update_progress(self, server_id: str, progress: int, message: str) -> None: ...

    async def complete_update(self, server_id: str, success: bool, message: str) -> None: ...
