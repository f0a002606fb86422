"""Error taxonomy shared by bootstrap, client and resource code.

Every error raised across a module boundary derives from
``ClusterFedError``.  The bootstrap orchestrator stamps ``phase`` on the
error before re-raising so callers can tell which step aborted the install.
"""

from __future__ import annotations


class ClusterFedError(Exception):
    """Base class for all clusterfed errors."""

    def __init__(self, message: str = "", *, phase: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase

    def __str__(self) -> str:
        message = super().__str__()
        if self.phase:
            return f"[{self.phase}] {message}"
        return message


class ConfigError(ClusterFedError):
    """Raised when configuration cannot be loaded or merged."""


class CertGenerationError(ClusterFedError):
    """Raised when key generation, signing or encoding fails."""


class CRDPrepareError(ClusterFedError):
    """Raised when the CRD bundle cannot be downloaded or extracted."""


class WaitTimeoutError(ClusterFedError, TimeoutError):
    """Raised when a readiness wait exceeds its deadline."""


class WaitCancelledError(ClusterFedError):
    """Raised when a readiness wait is cancelled by its caller."""


class TransportError(ClusterFedError):
    """Raised when a cluster API call fails for a reason other than a timeout."""

    def __init__(
        self,
        message: str = "",
        *,
        status: int | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase)
        self.status = status


class NotFoundError(TransportError):
    """Raised when the cluster API answers 404 for the requested object."""


class InvalidQueryError(ClusterFedError):
    """Raised when a caller-supplied list query does not validate."""


class ResourceNotSupportedError(ClusterFedError):
    """Raised when no provider is registered for a resource kind."""


class ClusterUnreachableError(ClusterFedError):
    """Raised when an API client for a cluster cannot be obtained."""


class NoAvailableHostError(ClusterFedError):
    """Raised when the target cluster has no node to serve the API server."""


class NodeSelectorNotFoundError(ClusterFedError):
    """Raised when no node matches the configured etcd node selector."""


class NodePortConflictError(ClusterFedError):
    """Raised when an existing service already claims the API server NodePort."""
