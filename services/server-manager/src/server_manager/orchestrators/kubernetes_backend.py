"""Cluster backend: one Deployment plus one LoadBalancer Service per server."""

import asyncio
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager

from kubernetes import client, config
from kubernetes.client.rest import ApiException
import structlog

from ..domain import HealthCheck, HealthStatus, Server, ServerHealth, ServerStats, ServerType, utcnow
from ..errors import ConflictError, InfraError, NotFoundError, ValidationError
from .base import (
    APP_LABEL,
    CONTROL_PORT,
    DATA_PORT,
    HEALTH_PATH,
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

logger = structlog.get_logger()

SERVICE_PORT = 80
RESOURCE_REQUESTS = {"cpu": "100m", "memory": "128Mi"}
RESOURCE_LIMITS = {"cpu": "500m", "memory": "512Mi"}


def load_api_client(kubeconfig: str = "") -> client.ApiClient:
    """API client from a kubeconfig file, or the in-cluster service account."""
    if kubeconfig:
        return config.new_client_from_config(config_file=kubeconfig)
    config.load_incluster_config()
    return client.ApiClient()


@contextmanager
def kube_errors(operation: str, server_ref: str) -> Iterator[None]:
    try:
        yield
    except ApiException as e:
        if e.status == 404:
            raise NotFoundError(f"deployment not found: {server_ref}") from e
        if e.status == 409:
            raise ConflictError(f"{server_ref} already exists") from e
        raise InfraError(operation, e.reason or e) from e


def build_deployment(server: Server, image: str) -> client.V1Deployment:
    labels = server_labels(server)
    container = client.V1Container(
        name=server.name,
        image=image,
        command=server_command(server),
        ports=[
            client.V1ContainerPort(name="http", container_port=CONTROL_PORT, protocol="TCP"),
            client.V1ContainerPort(name="vpn", container_port=DATA_PORT, protocol="UDP"),
        ],
        env=[client.V1EnvVar(name=k, value=v) for k, v in sorted(server_environment(server).items())],
        resources=client.V1ResourceRequirements(
            requests=dict(RESOURCE_REQUESTS),
            limits=dict(RESOURCE_LIMITS),
        ),
        liveness_probe=client.V1Probe(
            http_get=client.V1HTTPGetAction(path=HEALTH_PATH, port=CONTROL_PORT),
            initial_delay_seconds=30,
            period_seconds=10,
        ),
        readiness_probe=client.V1Probe(
            http_get=client.V1HTTPGetAction(path=HEALTH_PATH, port=CONTROL_PORT),
            initial_delay_seconds=5,
            period_seconds=5,
        ),
    )
    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(name=server.name, labels=labels),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels={APP_LABEL: server.name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(containers=[container]),
            ),
        ),
    )


def build_service(server: Server) -> client.V1Service:
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(name=server.name, labels=server_labels(server)),
        spec=client.V1ServiceSpec(
            type="LoadBalancer",
            selector={APP_LABEL: server.name},
            ports=[
                client.V1ServicePort(name="http", port=SERVICE_PORT, target_port=CONTROL_PORT, protocol="TCP"),
                client.V1ServicePort(name="vpn", port=DATA_PORT, target_port=DATA_PORT, protocol="UDP"),
            ],
        ),
    )


def replica_status(replicas: int | None, ready_replicas: int | None) -> HealthStatus:
    if (ready_replicas or 0) > 0:
        return HealthStatus.RUNNING
    if not replicas:
        return HealthStatus.STOPPED
    return HealthStatus.STARTING


class KubernetesOrchestrator(Orchestrator):
    """Manages servers as Deployments in a single namespace.

    The workload name is the server name; it is also the backend reference.
    Blocking client calls run in a thread pool.
    """

    kind = "kubernetes"

    def __init__(
        self,
        api_client: client.ApiClient,
        images: dict[ServerType, str],
        namespace: str = "default",
        max_workers: int = 5,
    ):
        self.api_client = api_client
        self.apps = client.AppsV1Api(api_client)
        self.core = client.CoreV1Api(api_client)
        self.images = images
        self.namespace = namespace
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="kubernetes")

    async def _run(self, func, *args, **kwargs):
        """Run blocking function in thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    async def create_server(self, server: Server) -> str:
        deployment = build_deployment(server, self.images[server.type])
        with kube_errors("create deployment", server.name):
            await self._run(self.apps.create_namespaced_deployment, self.namespace, deployment)
        logger.info("deployment_created", server_id=server.id, name=server.name, namespace=self.namespace)

        try:
            with kube_errors("create service", server.name):
                await self._run(self.core.create_namespaced_service, self.namespace, build_service(server))
        except Exception:
            # roll back the deployment
            try:
                await self._run(self.apps.delete_namespaced_deployment, server.name, self.namespace)
            except ApiException as e:
                logger.warning("deployment_rollback_failed", name=server.name, error=str(e))
            raise

        logger.info("service_created", server_id=server.id, name=server.name)
        return server.name

    async def _set_replicas(self, server_ref: str, replicas: int) -> None:
        with kube_errors("scale deployment", server_ref):
            await self._run(
                self.apps.patch_namespaced_deployment_scale,
                server_ref,
                self.namespace,
                {"spec": {"replicas": replicas}},
            )
        logger.info("deployment_scaled", name=server_ref, replicas=replicas)

    async def start_server(self, server_ref: str) -> None:
        await self._set_replicas(server_ref, 1)

    async def stop_server(self, server_ref: str) -> None:
        await self._set_replicas(server_ref, 0)

    async def scale_server(self, server_ref: str, replicas: int) -> None:
        if replicas < 0:
            raise ValidationError(f"replicas must be non-negative, got {replicas}")
        await self._set_replicas(server_ref, replicas)

    async def delete_server(self, server_ref: str) -> None:
        """Delete the deployment, then the service. Already-absent objects are fine."""
        failures: list[tuple[str, ApiException]] = []
        for kind, delete in (
            ("deployment", self.apps.delete_namespaced_deployment),
            ("service", self.core.delete_namespaced_service),
        ):
            try:
                await self._run(delete, server_ref, self.namespace)
            except ApiException as e:
                if e.status == 404:
                    logger.debug("delete_target_absent", kind=kind, name=server_ref)
                    continue
                logger.error("delete_failed", kind=kind, name=server_ref, error=str(e))
                failures.append((kind, e))

        if failures:
            kind, error = failures[0]
            raise InfraError(f"delete {kind}", error.reason or error) from error
        logger.info("deployment_deleted", name=server_ref, namespace=self.namespace)

    async def _list_pods(self, server_ref: str):
        with kube_errors("list pods", server_ref):
            pods = await self._run(
                self.core.list_namespaced_pod,
                self.namespace,
                label_selector=f"{APP_LABEL}={server_ref}",
            )
        return pods.items or []

    async def get_server_stats(self, server_ref: str) -> ServerStats:
        # TODO: read cpu/memory gauges from the metrics.k8s.io API
        pods = await self._list_pods(server_ref)
        started = [pod.status.start_time for pod in pods if pod.status and pod.status.start_time]
        uptime = int((utcnow() - min(started)).total_seconds()) if started else 0
        return ServerStats(server_id=server_ref, uptime_seconds=max(uptime, 0))

    async def get_server_health(self, server_ref: str) -> ServerHealth:
        try:
            with kube_errors("read deployment", server_ref):
                deployment = await self._run(self.apps.read_namespaced_deployment, server_ref, self.namespace)
        except NotFoundError:
            return ServerHealth(server_id=server_ref, message="deployment not found")

        replicas = deployment.spec.replicas or 0
        ready = (deployment.status.ready_replicas if deployment.status else 0) or 0
        status = replica_status(replicas, ready)

        checks = []
        for pod in await self._list_pods(server_ref):
            phase = (pod.status.phase if pod.status else None) or "Unknown"
            checks.append(
                HealthCheck(
                    name=pod.metadata.name,
                    status=phase,
                    message=(pod.status.message if pod.status else None) or "",
                )
            )
            if phase == "Failed":
                status = HealthStatus.ERROR

        return ServerHealth(
            server_id=server_ref,
            status=status,
            message=f"{ready}/{replicas} replicas ready",
            checks=checks,
        )

    async def list_servers(self) -> list[ObservedServer]:
        with kube_errors("list deployments", "*"):
            deployments = await self._run(
                self.apps.list_namespaced_deployment,
                self.namespace,
                label_selector=f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}",
            )

        observed = []
        for deployment in deployments.items or []:
            labels = deployment.metadata.labels or {}
            replicas = deployment.spec.replicas or 0
            ready = (deployment.status.ready_replicas if deployment.status else 0) or 0
            observed.append(
                ObservedServer(
                    name=deployment.metadata.name,
                    backend_ref=deployment.metadata.name,
                    server_id=labels.get(SERVER_ID_LABEL),
                    type=labels.get(TYPE_LABEL),
                    region=labels.get(REGION_LABEL),
                    status=replica_status(replicas, ready),
                    replicas=replicas,
                    ready_replicas=ready,
                    created_at=deployment.metadata.creation_timestamp,
                )
            )
        return observed

    async def close(self) -> None:
        await self._run(self.api_client.close)
        self._executor.shutdown(wait=False)
        logger.info("kubernetes_client_closed")
