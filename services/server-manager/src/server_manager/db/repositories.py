"""SQL implementations of the persistence ports."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from ..domain import (
    Backup,
    BackupConfig,
    ScalingPolicy,
    Server,
    ServerFilter,
    ServerStatus,
    ServerType,
    UpdateState,
    UpdateStatus,
    utcnow,
)
from ..errors import NotFoundError, ValidationError
from .models import BackupConfigRecord, BackupRecord, ScalingPolicyRecord, ServerRecord, UpdateStatusRecord

logger = structlog.get_logger()


def _aware(value: datetime | None) -> datetime | None:
    """Some drivers (sqlite) drop the offset; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def server_from_record(record: ServerRecord) -> Server:
    return Server(
        id=record.id,
        name=record.name,
        type=ServerType(record.type),
        status=ServerStatus(record.status),
        region=record.region,
        ip=record.ip or "",
        port=record.port or 0,
        cpu=record.cpu or 0.0,
        memory=record.memory or 0.0,
        disk=record.disk or 0.0,
        network=record.network or 0.0,
        config=dict(record.config or {}),
        backend_ref=record.backend_ref,
        status_message=record.status_message,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        is_deleted=record.is_deleted,
        deleted_at=_aware(record.deleted_at),
    )


def _copy_server(server: Server, record: ServerRecord) -> None:
    record.name = server.name
    record.type = server.type.value
    record.status = server.status.value
    record.region = server.region
    record.ip = server.ip
    record.port = server.port
    record.cpu = server.cpu
    record.memory = server.memory
    record.disk = server.disk
    record.network = server.network
    record.config = dict(server.config)
    record.backend_ref = server.backend_ref
    record.status_message = server.status_message
    record.created_at = server.created_at
    record.updated_at = server.updated_at
    record.is_deleted = server.is_deleted
    record.deleted_at = server.deleted_at


class SqlServerRepository:
    """Servers in a SQL table; tombstoned rows are excluded from every read."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _get_active(self, session: AsyncSession, server_id: str) -> ServerRecord:
        record = await session.get(ServerRecord, server_id)
        if record is None or record.is_deleted:
            raise NotFoundError(f"server not found: {server_id}")
        return record

    async def create(self, server: Server) -> Server:
        async with self.session_maker() as session:
            record = ServerRecord(id=server.id)
            _copy_server(server, record)
            session.add(record)
            await session.commit()
        logger.debug("server_row_created", server_id=server.id)
        return server

    async def get_by_id(self, server_id: str) -> Server:
        async with self.session_maker() as session:
            return server_from_record(await self._get_active(session, server_id))

    async def list(self, filters: ServerFilter | None = None) -> list[Server]:
        filters = filters or ServerFilter()
        stmt = select(ServerRecord).where(ServerRecord.is_deleted.is_(False))
        if filters.name is not None:
            stmt = stmt.where(ServerRecord.name == filters.name)
        if filters.type is not None:
            stmt = stmt.where(ServerRecord.type == filters.type.value)
        if filters.region is not None:
            stmt = stmt.where(ServerRecord.region == filters.region)
        if filters.status is not None:
            stmt = stmt.where(ServerRecord.status == filters.status.value)
        stmt = stmt.order_by(ServerRecord.created_at.desc(), ServerRecord.id)
        if filters.offset:
            stmt = stmt.offset(filters.offset)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)

        async with self.session_maker() as session:
            records = (await session.scalars(stmt)).all()
        return [server_from_record(record) for record in records]

    async def update(self, server: Server) -> Server:
        server.touch()
        async with self.session_maker() as session:
            record = await self._get_active(session, server.id)
            _copy_server(server, record)
            await session.commit()
        return server

    async def delete(self, server_id: str) -> None:
        now = utcnow()
        async with self.session_maker() as session:
            record = await self._get_active(session, server_id)
            record.is_deleted = True
            record.deleted_at = now
            record.updated_at = now
            await session.commit()
        logger.debug("server_row_tombstoned", server_id=server_id)

    async def get_by_type(self, server_type: ServerType) -> list[Server]:
        return await self.list(ServerFilter(type=server_type))

    async def get_by_region(self, region: str) -> list[Server]:
        return await self.list(ServerFilter(region=region))

    async def get_by_status(self, status: ServerStatus) -> list[Server]:
        return await self.list(ServerFilter(status=status))


def _policy_from_record(record: ScalingPolicyRecord) -> ScalingPolicy:
    return ScalingPolicy(
        id=record.id,
        name=record.name,
        min_servers=record.min_servers,
        max_servers=record.max_servers,
        cpu_threshold=record.cpu_threshold,
        memory_threshold=record.memory_threshold,
        scale_up_cooldown=timedelta(seconds=record.scale_up_cooldown_seconds),
        scale_down_cooldown=timedelta(seconds=record.scale_down_cooldown_seconds),
        enabled=record.enabled,
    )


def _copy_policy(policy: ScalingPolicy, record: ScalingPolicyRecord) -> None:
    record.name = policy.name
    record.min_servers = policy.min_servers
    record.max_servers = policy.max_servers
    record.cpu_threshold = policy.cpu_threshold
    record.memory_threshold = policy.memory_threshold
    record.scale_up_cooldown_seconds = policy.scale_up_cooldown.total_seconds()
    record.scale_down_cooldown_seconds = policy.scale_down_cooldown.total_seconds()
    record.enabled = policy.enabled


class SqlScalingRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _get(self, session: AsyncSession, policy_id: str) -> ScalingPolicyRecord:
        record = await session.get(ScalingPolicyRecord, policy_id)
        if record is None:
            raise NotFoundError(f"scaling policy not found: {policy_id}")
        return record

    async def save_policy(self, policy: ScalingPolicy) -> None:
        if not policy.id:
            raise ValidationError("scaling policy id is required")
        async with self.session_maker() as session:
            record = ScalingPolicyRecord(id=policy.id, created_at=utcnow(), updated_at=utcnow())
            _copy_policy(policy, record)
            session.add(record)
            await session.commit()

    async def get_policy(self, policy_id: str) -> ScalingPolicy:
        async with self.session_maker() as session:
            return _policy_from_record(await self._get(session, policy_id))

    async def list_policies(self) -> list[ScalingPolicy]:
        stmt = select(ScalingPolicyRecord).order_by(ScalingPolicyRecord.created_at.desc())
        async with self.session_maker() as session:
            records = (await session.scalars(stmt)).all()
        return [_policy_from_record(record) for record in records]

    async def update_policy(self, policy: ScalingPolicy) -> None:
        async with self.session_maker() as session:
            record = await self._get(session, policy.id)
            _copy_policy(policy, record)
            record.updated_at = utcnow()
            await session.commit()

    async def delete_policy(self, policy_id: str) -> None:
        async with self.session_maker() as session:
            await session.delete(await self._get(session, policy_id))
            await session.commit()


def _config_from_record(record: BackupConfigRecord) -> BackupConfig:
    return BackupConfig(
        id=record.id,
        server_id=record.server_id,
        schedule=record.schedule,
        retention_days=record.retention_days,
        type=record.type,
        destination=record.destination,
        enabled=record.enabled,
        last_backup=_aware(record.last_backup),
        next_backup=_aware(record.next_backup),
    )


def _copy_config(config: BackupConfig, record: BackupConfigRecord) -> None:
    record.server_id = config.server_id
    record.schedule = config.schedule
    record.retention_days = config.retention_days
    record.type = config.type
    record.destination = config.destination
    record.enabled = config.enabled
    record.last_backup = config.last_backup
    record.next_backup = config.next_backup


class SqlBackupRepository:
    """Backup configurations and the backups recorded against them."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _get_config(self, session: AsyncSession, config_id: str) -> BackupConfigRecord:
        record = await session.get(BackupConfigRecord, config_id)
        if record is None:
            raise NotFoundError(f"backup config not found: {config_id}")
        return record

    async def save_config(self, config: BackupConfig) -> None:
        if not config.id:
            raise ValidationError("backup config id is required")
        async with self.session_maker() as session:
            record = BackupConfigRecord(id=config.id, created_at=utcnow(), updated_at=utcnow())
            _copy_config(config, record)
            session.add(record)
            await session.commit()

    async def get_config(self, config_id: str) -> BackupConfig:
        async with self.session_maker() as session:
            return _config_from_record(await self._get_config(session, config_id))

    async def list_configs(self) -> list[BackupConfig]:
        stmt = select(BackupConfigRecord).order_by(BackupConfigRecord.created_at.desc())
        async with self.session_maker() as session:
            records = (await session.scalars(stmt)).all()
        return [_config_from_record(record) for record in records]

    async def update_config(self, config: BackupConfig) -> None:
        async with self.session_maker() as session:
            record = await self._get_config(session, config.id)
            _copy_config(config, record)
            record.updated_at = utcnow()
            await session.commit()

    async def delete_config(self, config_id: str) -> None:
        async with self.session_maker() as session:
            await session.delete(await self._get_config(session, config_id))
            await session.commit()

    async def save_backup(self, backup: Backup) -> None:
        async with self.session_maker() as session:
            session.add(
                BackupRecord(
                    id=backup.id,
                    server_id=backup.server_id,
                    status=backup.status,
                    meta=dict(backup.metadata),
                    created_at=backup.created_at,
                    updated_at=backup.created_at,
                )
            )
            await session.commit()

    async def get_backups(self, server_id: str) -> list[Backup]:
        stmt = (
            select(BackupRecord)
            .where(BackupRecord.server_id == server_id)
            .order_by(BackupRecord.created_at.desc())
        )
        async with self.session_maker() as session:
            records = (await session.scalars(stmt)).all()
        return [
            Backup(
                id=record.id,
                server_id=record.server_id,
                status=record.status,
                created_at=_aware(record.created_at),
                metadata=dict(record.meta or {}),
            )
            for record in records
        ]

    async def delete_backup(self, backup_id: str) -> None:
        async with self.session_maker() as session:
            record = await session.get(BackupRecord, backup_id)
            if record is None:
                raise NotFoundError(f"backup not found: {backup_id}")
            await session.delete(record)
            await session.commit()


def _update_from_record(record: UpdateStatusRecord) -> UpdateStatus:
    return UpdateStatus(
        server_id=record.server_id,
        status=UpdateState(record.status),
        version=record.version,
        progress=record.progress,
        message=record.message or "",
        started_at=_aware(record.started_at),
        completed_at=_aware(record.completed_at),
    )


class SqlUpdateRepository:
    """Keeps the latest update status per server."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _get(self, session: AsyncSession, server_id: str) -> UpdateStatusRecord:
        record = await session.get(UpdateStatusRecord, server_id)
        if record is None:
            raise NotFoundError(f"no update recorded for server {server_id}")
        return record

    async def save_update_status(self, status: UpdateStatus) -> None:
        async with self.session_maker() as session:
            await session.merge(
                UpdateStatusRecord(
                    server_id=status.server_id,
                    status=status.status.value,
                    version=status.version,
                    progress=status.progress,
                    message=status.message,
                    started_at=status.started_at,
                    completed_at=status.completed_at,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

    async def get_update_status(self, server_id: str) -> UpdateStatus | None:
        async with self.session_maker() as session:
            record = await session.get(UpdateStatusRecord, server_id)
            return _update_from_record(record) if record is not None else None

    async def update_progress(self, server_id: str, progress: int, message: str) -> None:
        if not 0 <= progress <= 100:
            raise ValidationError(f"progress must be within 0..100, got {progress}")
        async with self.session_maker() as session:
            record = await self._get(session, server_id)
            record.status = UpdateState.IN_PROGRESS.value
            record.progress = progress
            record.message = message
            record.updated_at = utcnow()
            await session.commit()

    async def complete_update(self, server_id: str, success: bool, message: str) -> None:
        async with self.session_maker() as session:
            record = await self._get(session, server_id)
            record.status = (UpdateState.COMPLETED if success else UpdateState.FAILED).value
            if success:
                record.progress = 100
            record.message = message
            record.completed_at = utcnow()
            record.updated_at = record.completed_at
            await session.commit()
