"""Bootstrap Orchestrator: stands up a federation control plane.

Lifecycle:
  0. Pre-flight (NodePort collision, API server IPs, etcd placement)
  1. Generate certificates
  2. Prepare CRDs
  3. Create the admin kubeconfig
  4. Create namespace, service accounts and RBAC
  5. Create secrets
  6. Deploy the API server tier (etcd, API server, aggregated API server)
  7. Install CRDs and mint a bootstrap token in the new control plane
  8. Deploy the controller tier

Phases run strictly in order on the calling thread.  The first fatal
error is tagged with its phase name and re-raised; nothing already
created is rolled back, and re-running the bootstrap is the recovery
path since every create tolerates "already exists".
"""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kubernetes.client.exceptions import ApiException

from clusterfed.bootstrap import manifests
from clusterfed.bootstrap.crds import install_crds, prepare_crds
from clusterfed.bootstrap.kubeconfig import build_kubeconfig, server_url
from clusterfed.bootstrap.options import BootstrapConfig, merge_bootstrap_config
from clusterfed.bootstrap.preflight import run_preflight
from clusterfed.bootstrap.token import create_bootstrap_token
from clusterfed.bootstrap.waiter import ReadinessWaiter
from clusterfed.clients.kube import KubeClient, api_error, build_api_client
from clusterfed.clients.registry import ClusterClientRegistry
from clusterfed.errors import ClusterFedError, WaitTimeoutError
from clusterfed.models import BootstrapResult, Cluster, ClusterConnection
from clusterfed.pki.generator import PKIHierarchy, generate_hierarchy

logger = logging.getLogger(__name__)


def _control_plane_client(kubeconfig: bytes) -> KubeClient:
    return KubeClient(build_api_client(ClusterConnection(kubeconfig=kubeconfig)))


@dataclass
class BootstrapState:
    """Data handed from one phase to the next."""

    certs: PKIHierarchy | None = None
    crd_dir: Path | None = None
    kubeconfig: bytes | None = None
    bootstrap_token: str = ""
    degraded: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BootstrapContext:
    """Read-only collaborators shared by every phase."""

    config: BootstrapConfig
    kube: KubeClient
    waiter: ReadinessWaiter
    cancel: threading.Event | None = None
    control_plane_client: Callable[[bytes], KubeClient] = _control_plane_client


Phase = Callable[[BootstrapContext, BootstrapState], BootstrapState]


# --- Helpers ---


def _wait(
    ctx: BootstrapContext,
    state: BootstrapState,
    component: str,
    labels: dict[str, str],
    replicas: int,
    timeout: float,
    *,
    fatal: bool,
) -> None:
    """Wait for *component*; a timeout is fatal only when *fatal* is set.

    Transport errors and cancellation always propagate.
    """
    try:
        ctx.waiter.wait_ready(
            manifests.label_selector(labels), replicas, timeout, cancel=ctx.cancel,
        )
    except WaitTimeoutError as exc:
        if fatal:
            raise
        logger.warning("%s not ready, continuing: %s", component, exc)
        state.degraded.append(component)


def _wait_etcd(ctx: BootstrapContext, state: BootstrapState) -> None:
    """Wait for the etcd stateful set to report its replicas, then for its pods.

    Both waits are non-fatal; the pod wait is skipped once the stateful
    set has already timed out.
    """
    config = ctx.config
    try:
        ctx.waiter.wait_statefulset_ready(
            manifests.ETCD_SERVICE, config.etcd_replicas, config.etcd_wait_timeout, cancel=ctx.cancel,
        )
    except WaitTimeoutError as exc:
        logger.warning("etcd not ready, continuing: %s", exc)
        state.degraded.append("etcd")
        return
    _wait(ctx, state, "etcd", manifests.ETCD_LABELS,
          config.etcd_replicas, config.etcd_wait_timeout, fatal=False)


def _create_service(ctx: BootstrapContext, body: dict[str, Any]) -> None:
    kube = ctx.kube
    kube.create_or_skip(
        f"create service {body['metadata']['name']}",
        kube.core.create_namespaced_service,
        namespace=ctx.config.namespace,
        body=body,
    )


def _create_deployment(ctx: BootstrapContext, body: dict[str, Any]) -> None:
    kube = ctx.kube
    kube.create_or_skip(
        f"create deployment {body['metadata']['name']}",
        kube.apps.create_namespaced_deployment,
        namespace=ctx.config.namespace,
        body=body,
    )


def _create_secret(ctx: BootstrapContext, name: str, data: dict[str, str]) -> None:
    kube = ctx.kube
    kube.create_or_skip(
        f"create secret {name}",
        kube.core.create_namespaced_secret,
        namespace=ctx.config.namespace,
        body=manifests.opaque_secret(name, ctx.config, data),
    )


def _require_certs(state: BootstrapState) -> PKIHierarchy:
    if state.certs is None:
        raise ClusterFedError("Certificates have not been generated")
    return state.certs


def _pem_entries(*pairs: Any) -> dict[str, str]:
    data: dict[str, str] = {}
    for pair in pairs:
        data[f"{pair.name}.crt"] = pair.cert.decode("utf-8")
        data[f"{pair.name}.key"] = pair.key.decode("utf-8")
    return data


# --- Phases ---


def generate_certs(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    state.certs = generate_hierarchy(ctx.config)
    logger.info("Generated control-plane PKI (%d pairs)", len(list(state.certs.pairs())))
    return state


def prepare_crd_bundle(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    state.crd_dir = prepare_crds(ctx.config)
    return state


def create_kubeconfig(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    certs = _require_certs(state)
    if not ctx.config.host_ips:
        raise ClusterFedError("No API server host IP resolved")
    try:
        url = server_url(ctx.config.host_ips[0], ctx.config.api_server_node_port)
    except ValueError as exc:
        raise ClusterFedError(f"Invalid API server host IP: {exc}") from exc
    state.kubeconfig = build_kubeconfig(url, certs.ca.cert, certs.admin.cert, certs.admin.key)
    logger.info("Created control-plane kubeconfig for %s", url)
    return state


def create_namespace(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    kube, config = ctx.kube, ctx.config
    kube.create_or_skip(
        f"create namespace {config.namespace}",
        kube.core.create_namespace,
        body=manifests.namespace(config),
    )
    for name in manifests.SERVICE_ACCOUNTS:
        kube.create_or_skip(
            f"create service account {name}",
            kube.core.create_namespaced_service_account,
            namespace=config.namespace,
            body=manifests.service_account(name, config),
        )
    kube.create_or_skip(
        f"create cluster role {manifests.CONTROLLER_MANAGER_CLUSTER_ROLE}",
        kube.rbac.create_cluster_role,
        body=manifests.controller_manager_cluster_role(),
    )
    kube.create_or_skip(
        f"create cluster role binding {manifests.CONTROLLER_MANAGER_CLUSTER_ROLE}",
        kube.rbac.create_cluster_role_binding,
        body=manifests.controller_manager_cluster_role_binding(config),
    )
    return state


def create_secrets(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    certs = _require_certs(state)
    config = ctx.config

    in_cluster_url = (
        f"https://{manifests.API_SERVER_SERVICE}.{config.namespace}.svc.cluster.local:"
        f"{manifests.API_SERVER_PORT}"
    )
    in_cluster_kubeconfig = build_kubeconfig(
        in_cluster_url, certs.ca.cert, certs.admin.cert, certs.admin.key,
    )
    _create_secret(
        ctx, manifests.KUBECONFIG_SECRET,
        {manifests.KUBECONFIG_SECRET: in_cluster_kubeconfig.decode("utf-8")},
    )
    _create_secret(ctx, manifests.ETCD_CERT_SECRET, _pem_entries(certs.etcd_ca, certs.etcd_server))
    _create_secret(ctx, manifests.CERTS_SECRET, _pem_entries(*certs.pairs()))
    _create_secret(
        ctx, manifests.WEBHOOK_CERT_SECRET,
        {
            "tls.crt": certs.admin.cert.decode("utf-8"),
            "tls.key": certs.admin.key.decode("utf-8"),
        },
    )
    return state


def deploy_api_server_tier(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    kube, config = ctx.kube, ctx.config

    _create_service(ctx, manifests.etcd_service(config))
    kube.create_or_skip(
        "create statefulset etcd",
        kube.apps.create_namespaced_stateful_set,
        namespace=config.namespace,
        body=manifests.etcd_stateful_set(config),
    )
    _wait_etcd(ctx, state)

    _create_service(ctx, manifests.api_server_service(config))
    _create_deployment(ctx, manifests.api_server_deployment(config))
    _wait(ctx, state, "karmada-apiserver", manifests.API_SERVER_LABELS,
          config.api_server_replicas, config.api_server_wait_timeout, fatal=True)

    _create_service(ctx, manifests.aggregated_api_server_service(config))
    _create_deployment(ctx, manifests.aggregated_api_server_deployment(config))
    _wait(ctx, state, "karmada-aggregated-apiserver", manifests.AGGREGATED_API_SERVER_LABELS,
          config.aggregated_api_server_replicas, config.aggregated_api_server_wait_timeout, fatal=False)
    return state


def install_resources_and_bootstrap_token(
    ctx: BootstrapContext, state: BootstrapState,
) -> BootstrapState:
    certs = _require_certs(state)
    if state.kubeconfig is None or state.crd_dir is None:
        raise ClusterFedError("Kubeconfig and CRD bundle must be prepared first")

    control_plane = ctx.control_plane_client(state.kubeconfig)
    ca_bundle = base64.b64encode(certs.ca.cert).decode("ascii")
    install_crds(control_plane, state.crd_dir, ca_bundle, ctx.config.namespace)
    state.bootstrap_token = create_bootstrap_token(control_plane)
    return state


def deploy_controller_tier(ctx: BootstrapContext, state: BootstrapState) -> BootstrapState:
    config = ctx.config
    timeout = config.component_wait_timeout

    _create_service(ctx, manifests.kube_controller_manager_service(config))
    _create_deployment(ctx, manifests.kube_controller_manager_deployment(config))
    _wait(ctx, state, manifests.KUBE_CONTROLLER_MANAGER, manifests.KUBE_CONTROLLER_MANAGER_LABELS,
          config.kube_controller_manager_replicas, timeout, fatal=False)

    _create_deployment(ctx, manifests.scheduler_deployment(config))
    _wait(ctx, state, manifests.SCHEDULER, manifests.SCHEDULER_LABELS,
          config.scheduler_replicas, timeout, fatal=False)

    _create_deployment(ctx, manifests.controller_manager_deployment(config))
    _wait(ctx, state, manifests.CONTROLLER_MANAGER, manifests.CONTROLLER_MANAGER_LABELS,
          config.controller_manager_replicas, timeout, fatal=False)

    _create_service(ctx, manifests.webhook_service(config))
    _create_deployment(ctx, manifests.webhook_deployment(config))
    _wait(ctx, state, manifests.WEBHOOK_SERVICE, manifests.WEBHOOK_LABELS,
          config.webhook_replicas, timeout, fatal=False)
    return state


PHASES: list[tuple[str, Phase]] = [
    ("generate-certs", generate_certs),
    ("prepare-crds", prepare_crd_bundle),
    ("create-kubeconfig", create_kubeconfig),
    ("create-namespace", create_namespace),
    ("create-secrets", create_secrets),
    ("deploy-api-server-tier", deploy_api_server_tier),
    ("install-resources", install_resources_and_bootstrap_token),
    ("deploy-controller-tier", deploy_controller_tier),
]


class BootstrapOrchestrator:
    """Runs pre-flight and the ordered bootstrap phases against one cluster."""

    def __init__(
        self,
        kube: KubeClient,
        config: BootstrapConfig,
        *,
        waiter: ReadinessWaiter | None = None,
        cancel: threading.Event | None = None,
        control_plane_client: Callable[[bytes], KubeClient] | None = None,
        phases: list[tuple[str, Phase]] | None = None,
    ) -> None:
        self._kube = kube
        self._config = config
        self._waiter = waiter or ReadinessWaiter(kube, config.namespace, interval=config.poll_interval)
        self._cancel = cancel
        self._control_plane_client = control_plane_client or _control_plane_client
        self._phases = list(phases if phases is not None else PHASES)

    @property
    def phases(self) -> list[str]:
        return [name for name, _ in self._phases]

    def run(self) -> BootstrapResult:
        """Install the control plane and return its kubeconfig and token.

        Raises:
            ClusterFedError: The first fatal failure, with ``phase`` set.
        """
        try:
            config = run_preflight(self._kube, self._config)
        except ClusterFedError as exc:
            exc.phase = exc.phase or "preflight"
            logger.error("Bootstrap pre-flight failed: %s", exc)
            raise
        logger.info("API server will be served on %s", ", ".join(config.host_ips))

        ctx = BootstrapContext(
            config=config,
            kube=self._kube,
            waiter=self._waiter,
            cancel=self._cancel,
            control_plane_client=self._control_plane_client,
        )
        state = BootstrapState()
        for name, phase in self._phases:
            logger.info("Bootstrap phase %s", name)
            try:
                state = phase(ctx, state)
            except ClusterFedError as exc:
                exc.phase = exc.phase or name
                logger.error("Bootstrap phase %s failed: %s", name, exc)
                raise
            except ApiException as exc:
                error = api_error(exc, name)
                error.phase = name
                logger.error("Bootstrap phase %s failed: %s", name, error)
                raise error from exc

        if state.degraded:
            logger.warning("Control plane installed with components not yet ready: %s",
                           ", ".join(state.degraded))
        else:
            logger.info("Control plane installed")

        if not state.kubeconfig or not state.bootstrap_token:
            raise ClusterFedError("Bootstrap finished without a kubeconfig and bootstrap token")
        return BootstrapResult(kubeconfig=state.kubeconfig, bootstrap_token=state.bootstrap_token)


def install_control_plane(
    cluster: Cluster,
    registry: ClusterClientRegistry,
    defaults: BootstrapConfig | None = None,
    cancel: threading.Event | None = None,
) -> BootstrapResult:
    """Bootstrap a control plane on *cluster* and record the result on it.

    Merges the cluster's control-plane overrides over *defaults*.
    """
    kube = registry.get_kube_client(cluster.region, cluster.name)
    config = merge_bootstrap_config(defaults or BootstrapConfig(), cluster.control_plane.overrides)
    logger.info("Installing federation control plane on cluster %s", cluster.name)
    result = BootstrapOrchestrator(kube, config, cancel=cancel).run()
    cluster.status.control_plane_installed = True
    cluster.status.control_plane_kubeconfig = result.kubeconfig
    cluster.status.bootstrap_token = result.bootstrap_token
    return result
