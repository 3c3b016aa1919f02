"""Server-manager configuration.

Required: nothing; every field has a default suitable for a local docker host.
Optional: DATABASE_URL (SQL repositories), REDIS_URL (stats/health repositories).
"""

from functools import lru_cache

from pydantic import Field

from shared.config import BaseSettings, url_field

from .domain import ServerType

IMAGE_NAMES: dict[ServerType, str] = {
    ServerType.VPN: "vpn-core",
    ServerType.DPI: "dpi-bypass",
    ServerType.GATEWAY: "gateway",
    ServerType.ANALYTICS: "analytics",
}


class Settings(BaseSettings):
    """Server-manager settings."""

    service_name: str = "server-manager"

    # Backend selector, validated by the orchestrator factory
    orchestrator_type: str = Field(default="docker", description="docker or kubernetes")

    # Container backend
    docker_host: str = "unix:///var/run/docker.sock"
    docker_api_version: str = "auto"
    docker_timeout: int = Field(default=30, ge=1, description="Docker API timeout in seconds")

    # Cluster backend; empty kubeconfig means in-cluster config
    kubeconfig: str = ""
    kubernetes_namespace: str = "default"

    # Images: <registry>/<name>:<tag>
    image_registry: str = "silence"
    image_tag: str = "latest"

    # Lifecycle
    backend_call_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single backend call made under the mutation lock",
    )
    restart_settle_delay: float = Field(default=2.0, ge=0)

    # Storage
    database_url: str | None = url_field(
        "Async SQLAlchemy URL for the server, policy, backup and update tables",
        "postgresql+asyncpg://user:pass@db:5432/server_manager",
    )
    redis_url: str | None = url_field("Redis URL for the stats and health stores", "redis://redis:6379/0")
    stats_history_size: int = Field(default=1000, ge=1)

    def image_for(self, server_type: ServerType) -> str:
        return f"{self.image_registry}/{IMAGE_NAMES[ServerType(server_type)]}:{self.image_tag}"

    def images(self) -> dict[ServerType, str]:
        return {server_type: self.image_for(server_type) for server_type in ServerType}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
