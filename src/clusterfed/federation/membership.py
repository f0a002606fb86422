"""Federation membership: joining and unjoining member clusters.

``join``/``unjoin`` build the options from a ``Cluster`` record and hand
them to a ``MembershipOperations`` implementation.  The bundled
``KubeMembershipOperations`` registers members as
``cluster.karmada.io/v1alpha1`` ``Cluster`` objects in Push mode.
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

import yaml

from clusterfed.clients.kube import KubeClient
from clusterfed.clients.registry import ClusterClientRegistry
from clusterfed.errors import ClusterFedError, NotFoundError, WaitCancelledError, WaitTimeoutError
from clusterfed.models import Cluster, ClusterConnection, ConnectionType, JoinOptions, UnjoinOptions

logger = logging.getLogger(__name__)

MEMBERSHIP_NAMESPACE = "karmada-cluster"
DEFAULT_UNJOIN_WAIT = timedelta(seconds=60)

CLUSTER_GROUP = "cluster.karmada.io"
CLUSTER_VERSION = "v1alpha1"
CLUSTER_PLURAL = "clusters"


@runtime_checkable
class MembershipOperations(Protocol):
    """The operations that actually add or remove a member cluster."""

    def join_cluster(self, host_config: Any, member_config: Any, options: JoinOptions) -> None:
        ...

    def unjoin_cluster(self, host_config: Any, member_config: Any, options: UnjoinOptions) -> None:
        ...


def join_options(cluster: Cluster) -> JoinOptions:
    return JoinOptions(
        cluster_name=cluster.name,
        cluster_namespace=MEMBERSHIP_NAMESPACE,
        cluster_provider=cluster.provider,
        cluster_region=cluster.region,
        cluster_zone=cluster.zone,
    )


def unjoin_options(cluster: Cluster, wait: timedelta = DEFAULT_UNJOIN_WAIT) -> UnjoinOptions:
    return UnjoinOptions(
        cluster_name=cluster.name,
        cluster_namespace=MEMBERSHIP_NAMESPACE,
        wait=wait,
    )


def join(host_config: Any, cluster_config: Any, cluster: Cluster, ops: MembershipOperations) -> None:
    """Join *cluster* to the federation and mark it joined."""
    opts = join_options(cluster)
    logger.info("Joining cluster %s (namespace %s, provider %s, region %s)",
                opts.cluster_name, opts.cluster_namespace,
                opts.cluster_provider or "-", opts.cluster_region or "-")
    ops.join_cluster(host_config, cluster_config, opts)
    cluster.status.joined = True


def unjoin(
    host_config: Any,
    cluster_config: Any,
    cluster: Cluster,
    ops: MembershipOperations,
    wait: timedelta = DEFAULT_UNJOIN_WAIT,
    clients: ClusterClientRegistry | None = None,
) -> None:
    """Remove *cluster* from the federation. An absent member counts as success.

    When *clients* is given, its cached client for the member is dropped.
    """
    opts = unjoin_options(cluster, wait)
    logger.info("Unjoining cluster %s (namespace %s)", opts.cluster_name, opts.cluster_namespace)
    try:
        ops.unjoin_cluster(host_config, cluster_config, opts)
    except NotFoundError:
        logger.info("Cluster %s is not a federation member, nothing to unjoin", opts.cluster_name)
    cluster.status.joined = False
    if clients is not None:
        clients.invalidate(cluster.region, cluster.name)


# --- Kubernetes-backed implementation ---


def member_credentials(connection: ClusterConnection) -> dict[str, str]:
    """Extract ``apiEndpoint``, ``caBundle`` and ``token`` from a connection.

    Missing values are omitted.  For direct connections the kubeconfig's
    current context is used.
    """
    if connection.type == ConnectionType.TOKEN:
        creds = {"apiEndpoint": connection.kubernetes_api_endpoint, "token": connection.token}
        if connection.ca_data:
            creds["caBundle"] = base64.b64encode(connection.ca_data).decode("ascii")
        return {k: v for k, v in creds.items() if v}

    if not connection.kubeconfig:
        raise ClusterFedError("Member connection has no kubeconfig")
    try:
        kubeconfig = yaml.safe_load(connection.kubeconfig) or {}
    except yaml.YAMLError as e:
        raise ClusterFedError(f"Invalid member kubeconfig: {e}") from e

    contexts = {c["name"]: c.get("context", {}) for c in kubeconfig.get("contexts") or []}
    clusters = {c["name"]: c.get("cluster", {}) for c in kubeconfig.get("clusters") or []}
    users = {u["name"]: u.get("user", {}) for u in kubeconfig.get("users") or []}
    context = contexts.get(kubeconfig.get("current-context", ""))
    if context is None and contexts:
        context = next(iter(contexts.values()))
    context = context or {}
    cluster = clusters.get(context.get("cluster", ""), {})
    user = users.get(context.get("user", ""), {})

    creds = {
        "apiEndpoint": cluster.get("server", ""),
        "caBundle": cluster.get("certificate-authority-data", ""),
        "token": user.get("token", ""),
    }
    return {k: v for k, v in creds.items() if v}


def cluster_object(options: JoinOptions, api_endpoint: str, insecure: bool = False) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "syncMode": "Push",
        "apiEndpoint": api_endpoint,
        "secretRef": {"namespace": options.cluster_namespace, "name": options.cluster_name},
    }
    if insecure:
        spec["insecureSkipTLSVerification"] = True
    if options.cluster_provider:
        spec["provider"] = options.cluster_provider
    if options.cluster_region:
        spec["region"] = options.cluster_region
    if options.cluster_zone:
        spec["zone"] = options.cluster_zone
    return {
        "apiVersion": f"{CLUSTER_GROUP}/{CLUSTER_VERSION}",
        "kind": "Cluster",
        "metadata": {"name": options.cluster_name},
        "spec": spec,
    }


class KubeMembershipOperations:
    """Membership operations against an installed federation control plane.

    ``host_config`` is a ``KubeClient`` for the control plane and
    ``member_config`` the member's ``ClusterConnection``.
    """

    def __init__(
        self,
        poll_interval: float = 2.0,
        _clock: Callable[[], float] | None = None,
        _sleep: Callable[[float], None] | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self._poll_interval = poll_interval
        self._clock = _clock or time.monotonic
        self._sleep = _sleep or time.sleep
        self._cancel = cancel

    def join_cluster(
        self, host_config: KubeClient, member_config: ClusterConnection, options: JoinOptions,
    ) -> None:
        kube = host_config
        creds = member_credentials(member_config)
        endpoint = creds.pop("apiEndpoint", "")
        if not endpoint:
            raise ClusterFedError(f"Cannot determine API endpoint of cluster {options.cluster_name}")

        kube.create_or_skip(
            f"create namespace {options.cluster_namespace}",
            kube.core.create_namespace,
            body={"apiVersion": "v1", "kind": "Namespace",
                  "metadata": {"name": options.cluster_namespace}},
        )
        kube.create_or_skip(
            f"create secret {options.cluster_name}",
            kube.core.create_namespaced_secret,
            namespace=options.cluster_namespace,
            body={
                "apiVersion": "v1",
                "kind": "Secret",
                "type": "Opaque",
                "metadata": {"name": options.cluster_name, "namespace": options.cluster_namespace},
                "stringData": creds,
            },
        )
        kube.create_or_skip(
            f"create cluster {options.cluster_name}",
            kube.custom.create_cluster_custom_object,
            group=CLUSTER_GROUP,
            version=CLUSTER_VERSION,
            plural=CLUSTER_PLURAL,
            body=cluster_object(options, endpoint, member_config.insecure),
        )
        logger.info("Cluster %s joined at %s", options.cluster_name, endpoint)

    def unjoin_cluster(
        self, host_config: KubeClient, member_config: ClusterConnection, options: UnjoinOptions,
    ) -> None:
        """Delete the member's Cluster object and credentials.

        Raises:
            NotFoundError: If the cluster is not a member.
            WaitTimeoutError: If the object is still present after ``options.wait``.
        """
        kube = host_config
        name = options.cluster_name
        kube.call(
            f"delete cluster {name}",
            kube.custom.delete_cluster_custom_object,
            group=CLUSTER_GROUP, version=CLUSTER_VERSION, plural=CLUSTER_PLURAL, name=name,
        )
        self._wait_gone(kube, name, options.wait.total_seconds())
        try:
            kube.call(
                f"delete secret {name}",
                kube.core.delete_namespaced_secret,
                name=name, namespace=options.cluster_namespace,
            )
        except NotFoundError:
            logger.debug("Secret %s/%s already removed", options.cluster_namespace, name)
        logger.info("Cluster %s unjoined", name)

    def _wait_gone(self, kube: KubeClient, name: str, timeout: float) -> None:
        deadline = self._clock() + timeout
        while True:
            try:
                kube.call(
                    f"get cluster {name}",
                    kube.custom.get_cluster_custom_object,
                    group=CLUSTER_GROUP, version=CLUSTER_VERSION, plural=CLUSTER_PLURAL, name=name,
                )
            except NotFoundError:
                return
            if self._clock() >= deadline:
                raise WaitTimeoutError(f"Cluster {name} still present after {timeout:.0f}s")
            if self._cancel is not None:
                if self._cancel.wait(self._poll_interval):
                    raise WaitCancelledError(f"Unjoin of cluster {name} cancelled")
            else:
                self._sleep(self._poll_interval)
