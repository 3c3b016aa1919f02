"""Infrastructure backends behind one orchestrator contract."""

from .base import ObservedServer, Orchestrator
from .factory import (
    BackendConfig,
    DockerBackendConfig,
    KubernetesBackendConfig,
    OrchestratorKind,
    create_orchestrator,
    orchestrator_config_from_settings,
)

__all__ = [
    "BackendConfig",
    "DockerBackendConfig",
    "KubernetesBackendConfig",
    "ObservedServer",
    "Orchestrator",
    "OrchestratorKind",
    "create_orchestrator",
    "orchestrator_config_from_settings",
]
