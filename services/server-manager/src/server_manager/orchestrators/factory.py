"""Orchestrator selection.

The set of backends is closed: a config variant per backend, and one switch
that turns a variant into a ready orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum

import structlog

from ..config import Settings
from ..domain import ServerType
from ..errors import InfraError, UnsupportedBackendError
from .base import Orchestrator
from .docker_backend import DockerOrchestrator
from .docker_ops import DockerClientWrapper
from .kubernetes_backend import KubernetesOrchestrator, load_api_client

logger = structlog.get_logger()


class OrchestratorKind(str, Enum):
    DOCKER = "docker"
    KUBERNETES = "kubernetes"


@dataclass(frozen=True)
class DockerBackendConfig:
    images: dict[ServerType, str] = field(default_factory=dict)
    host: str = ""
    api_version: str = "auto"
    timeout: int = 30

    kind = OrchestratorKind.DOCKER


@dataclass(frozen=True)
class KubernetesBackendConfig:
    images: dict[ServerType, str] = field(default_factory=dict)
    kubeconfig: str = ""
    namespace: str = "default"

    kind = OrchestratorKind.KUBERNETES


BackendConfig = DockerBackendConfig | KubernetesBackendConfig


def orchestrator_config_from_settings(settings: Settings) -> BackendConfig:
    """Pick the backend variant named by ``settings.orchestrator_type``.

    Raises:
        UnsupportedBackendError: If the selector names no known backend.
    """
    try:
        kind = OrchestratorKind(settings.orchestrator_type.strip().lower())
    except ValueError:
        raise UnsupportedBackendError(settings.orchestrator_type) from None

    if kind == OrchestratorKind.DOCKER:
        return DockerBackendConfig(
            images=settings.images(),
            host=settings.docker_host,
            api_version=settings.docker_api_version,
            timeout=settings.docker_timeout,
        )
    return KubernetesBackendConfig(
        images=settings.images(),
        kubeconfig=settings.kubeconfig,
        namespace=settings.kubernetes_namespace,
    )


def create_orchestrator(backend: BackendConfig) -> Orchestrator:
    """Construct the orchestrator for a backend config.

    Raises:
        UnsupportedBackendError: For an object that is not a known config variant.
        InfraError: If the backend client cannot be built (daemon or cluster unreachable).
    """
    if isinstance(backend, DockerBackendConfig):
        try:
            client = DockerClientWrapper(
                base_url=backend.host or None,
                version=backend.api_version,
                timeout=backend.timeout,
            )
        except Exception as e:
            raise InfraError("connect to docker", e) from e
        orchestrator: Orchestrator = DockerOrchestrator(client, backend.images, stop_timeout=backend.timeout)

    elif isinstance(backend, KubernetesBackendConfig):
        try:
            api_client = load_api_client(backend.kubeconfig)
        except Exception as e:
            raise InfraError("load kubernetes config", e) from e
        orchestrator = KubernetesOrchestrator(api_client, backend.images, namespace=backend.namespace)

    else:
        raise UnsupportedBackendError(type(backend).__name__)

    logger.info("orchestrator_created", backend=orchestrator.kind)
    return orchestrator
