"""Per-kind resource providers backed by the kubernetes Python client.

Native kinds are described by a ``ResourceMapping`` table and served by
one generic ``NativeResourceProvider``; federation kinds go through
``CustomObjectsApi`` via ``CustomResourceProvider``.  Both resolve the
target cluster's client through a ``ClusterClients`` registry on every
call and push the label selector down to the API server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from clusterfed.clients.kube import KubeClient
from clusterfed.clients.registry import ClusterClients
from clusterfed.errors import ClusterFedError, ClusterUnreachableError
from clusterfed.models import ListResult, ResourceQuery
from clusterfed.resources.query import Filter, SortKey, default_filter, default_list, default_sort_key

logger = logging.getLogger(__name__)


@runtime_checkable
class ResourceProvider(Protocol):
    """Get/List for one resource kind across member clusters."""

    def get(self, region: str, cluster: str, namespace: str, name: str) -> Any:
        ...

    def list(self, region: str, cluster: str, namespace: str, query: ResourceQuery) -> ListResult:
        ...


@dataclass(frozen=True)
class ResourceMapping:
    """Maps a resource kind to its kubernetes client API calls."""

    api_class: str
    get_method: str
    list_method: str
    list_all_method: str = ""
    namespaced: bool = True
    group: str = ""
    version: str = "v1"


RESOURCE_MAP: dict[str, ResourceMapping] = {
    "deployment": ResourceMapping(
        api_class="AppsV1Api",
        get_method="read_namespaced_deployment",
        list_method="list_namespaced_deployment",
        list_all_method="list_deployment_for_all_namespaces",
        group="apps",
    ),
    "statefulset": ResourceMapping(
        api_class="AppsV1Api",
        get_method="read_namespaced_stateful_set",
        list_method="list_namespaced_stateful_set",
        list_all_method="list_stateful_set_for_all_namespaces",
        group="apps",
    ),
    "daemonset": ResourceMapping(
        api_class="AppsV1Api",
        get_method="read_namespaced_daemon_set",
        list_method="list_namespaced_daemon_set",
        list_all_method="list_daemon_set_for_all_namespaces",
        group="apps",
    ),
    "replicaset": ResourceMapping(
        api_class="AppsV1Api",
        get_method="read_namespaced_replica_set",
        list_method="list_namespaced_replica_set",
        list_all_method="list_replica_set_for_all_namespaces",
        group="apps",
    ),
    "job": ResourceMapping(
        api_class="BatchV1Api",
        get_method="read_namespaced_job",
        list_method="list_namespaced_job",
        list_all_method="list_job_for_all_namespaces",
        group="batch",
    ),
    "cronjob": ResourceMapping(
        api_class="BatchV1Api",
        get_method="read_namespaced_cron_job",
        list_method="list_namespaced_cron_job",
        list_all_method="list_cron_job_for_all_namespaces",
        group="batch",
    ),
    "pod": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_namespaced_pod",
        list_method="list_namespaced_pod",
        list_all_method="list_pod_for_all_namespaces",
    ),
    "service": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_namespaced_service",
        list_method="list_namespaced_service",
        list_all_method="list_service_for_all_namespaces",
    ),
    "configmap": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_namespaced_config_map",
        list_method="list_namespaced_config_map",
        list_all_method="list_config_map_for_all_namespaces",
    ),
    "secret": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_namespaced_secret",
        list_method="list_namespaced_secret",
        list_all_method="list_secret_for_all_namespaces",
    ),
    "persistentvolumeclaim": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_namespaced_persistent_volume_claim",
        list_method="list_namespaced_persistent_volume_claim",
        list_all_method="list_persistent_volume_claim_for_all_namespaces",
    ),
    "ingress": ResourceMapping(
        api_class="NetworkingV1Api",
        get_method="read_namespaced_ingress",
        list_method="list_namespaced_ingress",
        list_all_method="list_ingress_for_all_namespaces",
        group="networking.k8s.io",
    ),
    "persistentvolume": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_persistent_volume",
        list_method="list_persistent_volume",
        namespaced=False,
    ),
    "node": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_node",
        list_method="list_node",
        namespaced=False,
    ),
    "namespace": ResourceMapping(
        api_class="CoreV1Api",
        get_method="read_namespace",
        list_method="list_namespace",
        namespaced=False,
    ),
    "storageclass": ResourceMapping(
        api_class="StorageV1Api",
        get_method="read_storage_class",
        list_method="list_storage_class",
        namespaced=False,
        group="storage.k8s.io",
    ),
}


@dataclass(frozen=True)
class CustomResourceMapping:
    """A federation kind served through ``CustomObjectsApi``."""

    group: str
    version: str
    plural: str
    namespaced: bool = True


CUSTOM_RESOURCE_MAP: dict[str, CustomResourceMapping] = {
    "propagationpolicy": CustomResourceMapping("policy.karmada.io", "v1alpha1", "propagationpolicies"),
    "overridepolicy": CustomResourceMapping("policy.karmada.io", "v1alpha1", "overridepolicies"),
    "clusterpropagationpolicy": CustomResourceMapping(
        "policy.karmada.io", "v1alpha1", "clusterpropagationpolicies", namespaced=False,
    ),
    "clusteroverridepolicy": CustomResourceMapping(
        "policy.karmada.io", "v1alpha1", "clusteroverridepolicies", namespaced=False,
    ),
    "cluster": CustomResourceMapping("cluster.karmada.io", "v1alpha1", "clusters", namespaced=False),
}


class _ClusterProvider:
    """Resolves per-call cluster clients and runs the shared list pipeline."""

    def __init__(
        self,
        kind: str,
        clients: ClusterClients,
        sort_key: SortKey = default_sort_key,
        filter_fn: Filter = default_filter,
    ) -> None:
        self.kind = kind
        self._clients = clients
        self._sort_key = sort_key
        self._filter_fn = filter_fn

    def _kube(self, region: str, cluster: str) -> KubeClient:
        try:
            api_client = self._clients.get_api_client(region, cluster)
        except ClusterUnreachableError:
            raise
        except ClusterFedError as exc:
            raise ClusterUnreachableError(str(exc)) from exc
        except Exception as exc:
            raise ClusterUnreachableError(
                f"Cannot get client for cluster {cluster or '-'} (region {region or '-'}): {exc}"
            ) from exc
        return KubeClient(api_client)

    def _finish(self, items: list[Any], query: ResourceQuery) -> ListResult:
        return default_list(items, query, self._sort_key, self._filter_fn)


class NativeResourceProvider(_ClusterProvider):
    """Provider for a built-in kind described by a ``ResourceMapping``."""

    def __init__(self, kind: str, mapping: ResourceMapping, clients: ClusterClients, **kwargs: Any) -> None:
        super().__init__(kind, clients, **kwargs)
        self.mapping = mapping

    @property
    def namespaced(self) -> bool:
        return self.mapping.namespaced

    def get(self, region: str, cluster: str, namespace: str, name: str) -> Any:
        kube = self._kube(region, cluster)
        fn = getattr(kube.api(self.mapping.api_class), self.mapping.get_method)
        kwargs: dict[str, Any] = {"name": name}
        if self.mapping.namespaced:
            kwargs["namespace"] = namespace
        return kube.call(f"get {self.kind} {name}", fn, **kwargs)

    def list(self, region: str, cluster: str, namespace: str, query: ResourceQuery) -> ListResult:
        kube = self._kube(region, cluster)
        api = kube.api(self.mapping.api_class)
        kwargs: dict[str, Any] = {}
        if query.label_selector:
            kwargs["label_selector"] = query.label_selector

        if not self.mapping.namespaced:
            method = self.mapping.list_method
        elif namespace:
            method = self.mapping.list_method
            kwargs["namespace"] = namespace
        else:
            method = self.mapping.list_all_method

        result = kube.call(f"list {self.kind}", getattr(api, method), **kwargs)
        items = list(getattr(result, "items", None) or [])
        logger.debug("Listed %d %s objects from cluster %s", len(items), self.kind, cluster or "-")
        return self._finish(items, query)


class CustomResourceProvider(_ClusterProvider):
    """Provider for a federation kind served through ``CustomObjectsApi``."""

    def __init__(
        self, kind: str, mapping: CustomResourceMapping, clients: ClusterClients, **kwargs: Any,
    ) -> None:
        super().__init__(kind, clients, **kwargs)
        self.mapping = mapping

    @property
    def namespaced(self) -> bool:
        return self.mapping.namespaced

    def get(self, region: str, cluster: str, namespace: str, name: str) -> Any:
        kube = self._kube(region, cluster)
        m = self.mapping
        if m.namespaced:
            return kube.call(
                f"get {self.kind} {name}", kube.custom.get_namespaced_custom_object,
                group=m.group, version=m.version, namespace=namespace, plural=m.plural, name=name,
            )
        return kube.call(
            f"get {self.kind} {name}", kube.custom.get_cluster_custom_object,
            group=m.group, version=m.version, plural=m.plural, name=name,
        )

    def list(self, region: str, cluster: str, namespace: str, query: ResourceQuery) -> ListResult:
        kube = self._kube(region, cluster)
        m = self.mapping
        kwargs: dict[str, Any] = {"group": m.group, "version": m.version, "plural": m.plural}
        if query.label_selector:
            kwargs["label_selector"] = query.label_selector

        if m.namespaced and namespace:
            result = kube.call(
                f"list {self.kind}", kube.custom.list_namespaced_custom_object,
                namespace=namespace, **kwargs,
            )
        else:
            # Cluster-wide list also covers namespaced kinds across all namespaces.
            result = kube.call(f"list {self.kind}", kube.custom.list_cluster_custom_object, **kwargs)
        items = list((result or {}).get("items") or [])
        return self._finish(items, query)
