"""clusterfed: bootstrap and operate a multi-cluster Kubernetes federation."""

__version__ = "0.1.0"

from clusterfed.bootstrap.options import BootstrapConfig, merge_bootstrap_config
from clusterfed.bootstrap.orchestrator import BootstrapOrchestrator, install_control_plane
from clusterfed.bootstrap.teardown import teardown_control_plane
from clusterfed.clients.registry import ClusterClientRegistry, ClusterClients
from clusterfed.config import ClusterFedConfig, find_config, load_config
from clusterfed.errors import (
    CertGenerationError,
    ClusterFedError,
    ClusterUnreachableError,
    NoAvailableHostError,
    NodePortConflictError,
    NodeSelectorNotFoundError,
    NotFoundError,
    ResourceNotSupportedError,
    TransportError,
    WaitCancelledError,
    WaitTimeoutError,
)
from clusterfed.federation.membership import KubeMembershipOperations, join, unjoin
from clusterfed.models import (
    BootstrapResult,
    Cluster,
    ClusterConnection,
    ListResult,
    ResourceQuery,
)
from clusterfed.pki.generator import PKIHierarchy, generate_hierarchy
from clusterfed.resources.processor import ResourceProcessor
from clusterfed.resources.registry import build_default_registry

__all__ = [
    "BootstrapConfig",
    "BootstrapOrchestrator",
    "BootstrapResult",
    "CertGenerationError",
    "Cluster",
    "ClusterClientRegistry",
    "ClusterClients",
    "ClusterConnection",
    "ClusterFedConfig",
    "ClusterFedError",
    "ClusterUnreachableError",
    "KubeMembershipOperations",
    "ListResult",
    "NoAvailableHostError",
    "NodePortConflictError",
    "NodeSelectorNotFoundError",
    "NotFoundError",
    "PKIHierarchy",
    "ResourceNotSupportedError",
    "ResourceProcessor",
    "ResourceQuery",
    "TransportError",
    "WaitCancelledError",
    "WaitTimeoutError",
    "build_default_registry",
    "find_config",
    "generate_hierarchy",
    "install_control_plane",
    "join",
    "load_config",
    "merge_bootstrap_config",
    "teardown_control_plane",
    "unjoin",
]
