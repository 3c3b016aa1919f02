"""Database models."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model instance to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class ServerRecord(Base):
    """A managed server. Rows are never removed; ``is_deleted`` marks tombstones."""

    __tablename__ = "servers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(63), index=True)
    type: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    region: Mapped[str] = mapped_column(String(64), index=True)

    ip: Mapped[str] = mapped_column(String(64), default="")
    port: Mapped[int] = mapped_column(Integer, default=0)

    cpu: Mapped[float] = mapped_column(Float, default=0.0)
    memory: Mapped[float] = mapped_column(Float, default=0.0)
    disk: Mapped[float] = mapped_column(Float, default=0.0)
    network: Mapped[float] = mapped_column(Float, default=0.0)

    config: Mapped[dict] = mapped_column(JSON, default=dict)
    # container id or workload name
    backend_ref: Mapped[Optional[str]] = mapped_column(String(255))
    status_message: Mapped[Optional[str]] = mapped_column(Text)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class ScalingPolicyRecord(Base):
    __tablename__ = "scaling_policies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    min_servers: Mapped[int] = mapped_column(Integer, default=1)
    max_servers: Mapped[int] = mapped_column(Integer, default=1)
    cpu_threshold: Mapped[float] = mapped_column(Float, default=80.0)
    memory_threshold: Mapped[float] = mapped_column(Float, default=80.0)
    scale_up_cooldown_seconds: Mapped[float] = mapped_column(Float, default=300.0)
    scale_down_cooldown_seconds: Mapped[float] = mapped_column(Float, default=600.0)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)


class BackupConfigRecord(Base):
    __tablename__ = "backup_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    server_id: Mapped[str] = mapped_column(String(36), index=True)
    schedule: Mapped[str] = mapped_column(String(100))
    retention_days: Mapped[int] = mapped_column(Integer, default=7)
    type: Mapped[str] = mapped_column(String(20), default="full")
    destination: Mapped[str] = mapped_column(String(1024))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    last_backup: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    next_backup: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class BackupRecord(Base):
    __tablename__ = "backups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    server_id: Mapped[str] = mapped_column(String(36), index=True)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)


class UpdateStatusRecord(Base):
    """Latest update per server."""

    __tablename__ = "update_statuses"

    server_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(String(32))
    version: Mapped[Optional[str]] = mapped_column(String(100))
    progress: Mapped[int] = mapped_column(Integer, default=0)
    message: Mapped[str] = mapped_column(Text, default="")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
