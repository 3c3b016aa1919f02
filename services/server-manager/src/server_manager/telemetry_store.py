"""Redis-backed stats and health repositories.

Per server: one latest-wins key plus a history list capped at
``history_size`` entries, newest first. Payloads are pydantic JSON.
"""

import redis.asyncio as redis
import structlog

from .domain import ServerHealth, ServerStats

logger = structlog.get_logger()

KEY_PREFIX = "server-manager"
HEALTH_INDEX_KEY = f"{KEY_PREFIX}:health:servers"


def stats_key(server_id: str) -> str:
    return f"{KEY_PREFIX}:stats:{server_id}:latest"


def stats_history_key(server_id: str) -> str:
    return f"{KEY_PREFIX}:stats:{server_id}:history"


def health_key(server_id: str) -> str:
    return f"{KEY_PREFIX}:health:{server_id}:latest"


def health_history_key(server_id: str) -> str:
    return f"{KEY_PREFIX}:health:{server_id}:history"


def connect(redis_url: str) -> redis.Redis:
    client = redis.from_url(redis_url, decode_responses=True)
    logger.info("redis_connected", redis_url=redis_url)
    return client


class RedisStatsRepository:
    def __init__(self, client: redis.Redis, history_size: int = 1000):
        self.redis = client
        self.history_size = history_size

    async def save_stats(self, stats: ServerStats) -> None:
        payload = stats.model_dump_json()
        history = stats_history_key(stats.server_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(stats_key(stats.server_id), payload)
            pipe.lpush(history, payload)
            pipe.ltrim(history, 0, self.history_size - 1)
            await pipe.execute()
        logger.debug("stats_saved", server_id=stats.server_id)

    async def get_stats(self, server_id: str, limit: int = 100) -> list[ServerStats]:
        """Most recent samples first."""
        if limit <= 0:
            return []
        raw = await self.redis.lrange(stats_history_key(server_id), 0, limit - 1)
        return [ServerStats.model_validate_json(item) for item in raw]

    async def get_latest_stats(self, server_id: str) -> ServerStats | None:
        raw = await self.redis.get(stats_key(server_id))
        return ServerStats.model_validate_json(raw) if raw else None


class RedisHealthRepository:
    def __init__(self, client: redis.Redis, history_size: int = 1000):
        self.redis = client
        self.history_size = history_size

    async def save_health(self, health: ServerHealth) -> None:
        payload = health.model_dump_json()
        history = health_history_key(health.server_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(health_key(health.server_id), payload)
            pipe.sadd(HEALTH_INDEX_KEY, health.server_id)
            pipe.lpush(history, payload)
            pipe.ltrim(history, 0, self.history_size - 1)
            await pipe.execute()
        logger.debug("health_saved", server_id=health.server_id, status=health.status.value)

    async def get_health(self, server_id: str) -> ServerHealth | None:
        raw = await self.redis.get(health_key(server_id))
        return ServerHealth.model_validate_json(raw) if raw else None

    async def get_all_health(self) -> list[ServerHealth]:
        """Latest health of every server seen so far, ordered by server id."""
        server_ids = sorted(await self.redis.smembers(HEALTH_INDEX_KEY))
        if not server_ids:
            return []
        raw = await self.redis.mget([health_key(server_id) for server_id in server_ids])
        return [ServerHealth.model_validate_json(item) for item in raw if item]

    async def get_health_history(self, server_id: str, limit: int = 100) -> list[ServerHealth]:
        if limit <= 0:
            return []
        raw = await self.redis.lrange(health_history_key(server_id), 0, limit - 1)
        return [ServerHealth.model_validate_json(item) for item in raw]
