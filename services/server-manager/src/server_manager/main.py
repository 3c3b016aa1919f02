"""Composition root: settings, orchestrator, repositories, service."""

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

import structlog

from .config import Settings, get_settings
from .db import (
    SqlBackupRepository,
    SqlScalingRepository,
    SqlServerRepository,
    SqlUpdateRepository,
    create_engine,
    create_session_maker,
    init_models,
)
from .errors import UnconfiguredError
from .orchestrators import create_orchestrator, orchestrator_config_from_settings
from .service import ServerService
from .telemetry_store import RedisHealthRepository, RedisStatsRepository, connect

logger = structlog.get_logger()


async def build_service(
    settings: Settings | None = None,
    stack: AsyncExitStack | None = None,
    configure_logging: bool = True,
) -> ServerService:
    """Wire a ready ServerService from settings.

    Cleanup callbacks for the database engine, the redis client and the
    orchestrator are pushed onto ``stack`` when one is given.

    Raises:
        UnconfiguredError: DATABASE_URL is not set.
        UnsupportedBackendError: ORCHESTRATOR_TYPE names no known backend.
        InfraError: The backend client could not be built.
    """
    settings = settings or get_settings()
    if configure_logging:
        settings.configure_logging()

    if not settings.database_url:
        raise UnconfiguredError("server")

    orchestrator = create_orchestrator(orchestrator_config_from_settings(settings))
    if stack is not None:
        stack.push_async_callback(orchestrator.close)

    engine = create_engine(settings.database_url)
    if stack is not None:
        stack.push_async_callback(engine.dispose)
    await init_models(engine)
    session_maker = create_session_maker(engine)

    stats_repository = health_repository = None
    if settings.redis_url:
        redis_client = connect(settings.redis_url)
        if stack is not None:
            stack.push_async_callback(redis_client.aclose)
        stats_repository = RedisStatsRepository(redis_client, settings.stats_history_size)
        health_repository = RedisHealthRepository(redis_client, settings.stats_history_size)
    else:
        logger.info("telemetry_store_disabled", reason="REDIS_URL not set")

    service = ServerService(
        SqlServerRepository(session_maker),
        orchestrator,
        stats_repository=stats_repository,
        health_repository=health_repository,
        scaling_repository=SqlScalingRepository(session_maker),
        backup_repository=SqlBackupRepository(session_maker),
        update_repository=SqlUpdateRepository(session_maker),
        backend_call_timeout=settings.backend_call_timeout,
        restart_settle_delay=settings.restart_settle_delay,
    )
    logger.info("server_service_ready", backend=orchestrator.kind)
    return service


@asynccontextmanager
async def service_scope(
    settings: Settings | None = None,
    configure_logging: bool = True,
) -> AsyncIterator[ServerService]:
    """Build a service and release every client it opened on exit."""
    async with AsyncExitStack() as stack:
        yield await build_service(settings, stack, configure_logging=configure_logging)
