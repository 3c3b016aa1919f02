"""SQL persistence: models, sessions and repositories."""

from .models import Base
from .repositories import (
    SqlBackupRepository,
    SqlScalingRepository,
    SqlServerRepository,
    SqlUpdateRepository,
)
from .session import create_engine, create_session_maker, init_models

__all__ = [
    "Base",
    "SqlBackupRepository",
    "SqlScalingRepository",
    "SqlServerRepository",
    "SqlUpdateRepository",
    "create_engine",
    "create_session_maker",
    "init_models",
]
