"""Error kinds raised by the server-manager core.

Transport adapters map these to protocol codes by ``isinstance`` checks.
"""


class ServerManagerError(Exception):
    """Base class for all server-manager errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServerManagerError):
    """Request is missing required fields or carries invalid values."""


class NotFoundError(ServerManagerError):
    """Entity or backend resource does not exist."""


class ConflictError(ServerManagerError):
    """Requested transition conflicts with the current state."""


class UnsupportedOperationError(ConflictError):
    """Backend has no notion of the requested operation."""


class InfraError(ServerManagerError):
    """A backend call failed. Keeps the original exception as ``cause``."""

    def __init__(self, operation: str, cause: BaseException | str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class UnconfiguredError(ServerManagerError):
    """A secondary repository is not wired into the service."""

    def __init__(self, component: str):
        self.component = component
        super().__init__(f"{component} repository not initialized")


class UnsupportedBackendError(ServerManagerError):
    """Orchestrator selector names a backend this build does not know."""

    def __init__(self, backend: str):
        self.backend = backend
        super().__init__(f"unsupported orchestrator type: {backend}")
