import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import docker
import structlog

logger = structlog.get_logger()


class DockerClientWrapper:
    """
    Async wrapper around the blocking docker-py client.
    Calls run in a small thread pool so the event loop never blocks on the daemon.
    """

    def __init__(
        self,
        base_url: str | None = None,
        version: str = "auto",
        timeout: int = 30,
        client: docker.DockerClient | None = None,
        max_workers: int = 5,
    ):
        if client is not None:
            self._client = client
        elif base_url:
            self._client = docker.DockerClient(base_url=base_url, version=version, timeout=timeout)
        else:
            self._client = docker.from_env(version=version, timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="docker")

    async def _run(self, func, *args, **kwargs):
        """Run blocking function in thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    async def create_container(self, image: str, **kwargs) -> Any:
        """Create a container without starting it."""
        return await self._run(self._client.containers.create, image, **kwargs)

    async def get_container(self, container_ref: str) -> Any:
        """Get a container by ID or name."""
        return await self._run(self._client.containers.get, container_ref)

    async def list_containers(self, filters: dict[str, Any] | None = None, all: bool = True) -> list[Any]:
        """List containers, stopped ones included by default."""
        return await self._run(self._client.containers.list, all=all, filters=filters)

    async def start_container(self, container_ref: str) -> None:
        container = await self.get_container(container_ref)
        await self._run(container.start)

    async def stop_container(self, container_ref: str, timeout: int = 30) -> None:
        container = await self.get_container(container_ref)
        await self._run(container.stop, timeout=timeout)

    async def remove_container(self, container_ref: str, force: bool = False, v: bool = False) -> None:
        """Remove a container. Raises docker.errors.NotFound if it is gone."""
        container = await self.get_container(container_ref)
        await self._run(container.remove, force=force, v=v)

    async def container_stats(self, container_ref: str) -> dict[str, Any]:
        """One-shot stats sample as returned by the daemon."""
        container = await self.get_container(container_ref)
        return await self._run(container.stats, stream=False)

    async def inspect_container(self, container_ref: str) -> dict[str, Any]:
        """Fresh inspect payload; get() always re-fetches from the daemon."""
        container = await self.get_container(container_ref)
        return container.attrs

    async def ping(self) -> bool:
        return await self._run(self._client.ping)

    async def close(self) -> None:
        await self._run(self._client.close)
        self._executor.shutdown(wait=False)
        logger.info("docker_client_closed")
