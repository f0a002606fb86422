"""Cluster Client Registry: resolves (region, cluster) to a live API client.

The registry is the one shared mutable structure in the multi-cluster
read path.  Clients are created lazily, once per cluster: the first caller
for an unseen key builds the client while holding that key's lock, and
concurrent callers for the same key wait on it instead of building a
duplicate.  Cached clients are read under the registry lock only.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from clusterfed.clients.kube import KubeClient, build_api_client
from clusterfed.config import DEFAULT_HOST_CLUSTER_NAME
from clusterfed.errors import ClusterFedError, ClusterUnreachableError
from clusterfed.inventory.loader import ClusterInventory
from clusterfed.models import Cluster, ClusterConnection

logger = logging.getLogger(__name__)


@runtime_checkable
class ClusterClients(Protocol):
    """Protocol for anything that hands out per-cluster API clients.

    Any object with ``get_api_client()`` satisfies it.
    """

    def get_api_client(self, region: str, cluster: str) -> Any:
        """Return the ApiClient for *cluster* in *region*.

        Raises:
            ClusterUnreachableError: If no client can be obtained.
        """
        ...


class ClusterClientRegistry:
    """Lazily built, cached ApiClients for inventory clusters.

    An empty cluster name resolves to the host cluster.  An empty region
    matches any region; a non-empty region must match the cluster's
    region label.
    """

    def __init__(
        self,
        inventory: ClusterInventory,
        host_cluster_name: str = DEFAULT_HOST_CLUSTER_NAME,
        client_factory: Callable[[ClusterConnection], Any] = build_api_client,
    ) -> None:
        self._inventory = inventory
        self._host_cluster_name = host_cluster_name
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._clients: dict[tuple[str, str], Any] = {}
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}

    @property
    def host_cluster_name(self) -> str:
        return self._host_cluster_name

    def resolve_cluster(self, region: str, cluster: str) -> Cluster:
        """Find the inventory record for (region, cluster)."""
        name = cluster or self._host_cluster_name
        target = self._inventory.get(name)
        if target is None:
            raise ClusterUnreachableError(f"Cluster not registered: {name}")
        if region and target.region != region:
            raise ClusterUnreachableError(
                f"Cluster {name} is not in region {region} (region: {target.region or '-'})"
            )
        if not target.enable:
            raise ClusterUnreachableError(f"Cluster {name} is disabled")
        return target

    def get_api_client(self, region: str, cluster: str) -> Any:
        target = self.resolve_cluster(region, cluster)
        key = (target.region, target.name)

        with self._lock:
            cached = self._clients.get(key)
            if cached is not None:
                return cached
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                cached = self._clients.get(key)
            if cached is not None:
                return cached

            try:
                api_client = self._client_factory(target.connection)
            except ClusterUnreachableError:
                raise
            except ClusterFedError as exc:
                raise ClusterUnreachableError(str(exc)) from exc
            except Exception as exc:
                raise ClusterUnreachableError(
                    f"Cannot build client for cluster {target.name}: {exc}"
                ) from exc

            with self._lock:
                self._clients[key] = api_client
            logger.info("Created API client for cluster %s (region %s)", target.name, target.region or "-")
            return api_client

    def get_kube_client(self, region: str, cluster: str) -> KubeClient:
        return KubeClient(self.get_api_client(region, cluster))

    def invalidate(self, region: str, cluster: str) -> None:
        """Drop a cached client, e.g. after the cluster is unjoined."""
        name = cluster or self._host_cluster_name
        with self._lock:
            for key in [k for k in self._clients if k[1] == name and (not region or k[0] == region)]:
                del self._clients[key]
                logger.debug("Dropped cached client for %s", name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


class ControlPlaneClients:
    """One ApiClient for a federation control plane, read from a kubeconfig file.

    Federation kinds live on the control plane itself, so region and
    cluster are ignored.  The file is only read on first use, which lets
    native-kind lookups run without a control plane.
    """

    def __init__(
        self,
        kubeconfig_path: Path,
        client_factory: Callable[[ClusterConnection], Any] = build_api_client,
    ) -> None:
        self._path = kubeconfig_path
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._client: Any = None

    @property
    def kubeconfig_path(self) -> Path:
        return self._path

    def get_api_client(self, region: str, cluster: str) -> Any:
        with self._lock:
            if self._client is None:
                if not self._path.is_file():
                    raise ClusterUnreachableError(f"Control-plane kubeconfig not found: {self._path}")
                connection = ClusterConnection(kubeconfig=self._path.read_bytes())
                self._client = self._client_factory(connection)
                logger.info("Created control-plane API client from %s", self._path)
            return self._client
