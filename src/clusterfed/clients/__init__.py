"""Per-cluster Kubernetes API clients."""

from clusterfed.clients.kube import KubeClient, build_api_client
from clusterfed.clients.registry import ClusterClientRegistry, ClusterClients

__all__ = [
    "ClusterClientRegistry",
    "ClusterClients",
    "KubeClient",
    "build_api_client",
]
