"""Pre-flight checks run before any bootstrap resource is created.

Each check either returns, raises, or (for host-path etcd with no
selector) labels a node.  The result is a ``BootstrapConfig`` with the
API server host IPs and the etcd node selector resolved.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.clients.kube import KubeClient
from clusterfed.errors import (
    NoAvailableHostError,
    NodePortConflictError,
    NodeSelectorNotFoundError,
)
from clusterfed.models import StorageMode

logger = logging.getLogger(__name__)

CONTROL_PLANE_NODE_LABELS = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)
ETCD_NODE_LABEL = "karmada.io/etcd"
MAX_FALLBACK_NODES = 3


def check_node_port_free(kube: KubeClient, node_port: int) -> None:
    """Fail if any NodePort service in the cluster already uses *node_port*.

    Raises:
        NodePortConflictError: On a collision.
    """
    services = kube.call(
        "list services", kube.core.list_service_for_all_namespaces,
    )
    for svc in services.items:
        if svc.spec is None or svc.spec.type != "NodePort":
            continue
        for port in svc.spec.ports or []:
            if port.node_port == node_port:
                raise NodePortConflictError(
                    f"NodePort {node_port} is already used by service "
                    f"{svc.metadata.namespace}/{svc.metadata.name}"
                )


def _node_ip(node: Any) -> str | None:
    """Prefer the InternalIP address, else the first reported address."""
    addresses = (node.status.addresses if node.status else None) or []
    for address in addresses:
        if address.type == "InternalIP":
            return address.address
    return addresses[0].address if addresses else None


def resolve_api_server_ips(kube: KubeClient) -> tuple[str, ...]:
    """IPs the API server NodePort will be reached on.

    All control-plane nodes if the cluster labels any, else the first
    three nodes.

    Raises:
        NoAvailableHostError: If no node reports an address.
    """
    for label in CONTROL_PLANE_NODE_LABELS:
        nodes = kube.call(
            f"list nodes {label}", kube.core.list_node, label_selector=label,
        )
        ips = [ip for ip in (_node_ip(n) for n in nodes.items) if ip]
        if ips:
            logger.info("API server IPs from %s nodes: %s", label, ", ".join(ips))
            return tuple(dict.fromkeys(ips))

    logger.warning("Cluster has no control-plane nodes, selecting up to %d nodes", MAX_FALLBACK_NODES)
    nodes = kube.call("list nodes", kube.core.list_node)
    ips = [ip for ip in (_node_ip(n) for n in nodes.items[:MAX_FALLBACK_NODES]) if ip]
    if not ips:
        raise NoAvailableHostError("No node available to serve the federation API server")
    logger.info("API server IPs: %s", ", ".join(ips))
    return tuple(dict.fromkeys(ips))


def ensure_etcd_placement(kube: KubeClient, config: BootstrapConfig) -> BootstrapConfig:
    """Pin host-path etcd to a node.

    With no selector configured, label the first node and record the
    selector.  With a selector configured, verify a node matches it.

    Raises:
        NodeSelectorNotFoundError: If the configured selector matches nothing.
        NoAvailableHostError: If there is no node to label.
    """
    if config.etcd_storage_mode != StorageMode.HOST_PATH:
        return config

    if config.etcd_node_selector_labels:
        selector = ",".join(
            f"{k}={v}" if v else k for k, v in config.etcd_node_selector().items()
        )
        nodes = kube.call(
            f"list nodes {selector}", kube.core.list_node, label_selector=selector,
        )
        if not nodes.items:
            raise NodeSelectorNotFoundError(
                f"No node found by label {config.etcd_node_selector_labels}"
            )
        logger.info("Found node %s by label %s", nodes.items[0].metadata.name, selector)
        return config

    nodes = kube.call("list nodes", kube.core.list_node)
    if not nodes.items:
        raise NoAvailableHostError("No node available to host etcd")
    node_name = nodes.items[0].metadata.name
    kube.call(
        f"label node {node_name}",
        kube.core.patch_node,
        name=node_name,
        body={"metadata": {"labels": {ETCD_NODE_LABEL: ""}}},
    )
    logger.info("Labelled node %s with %s for etcd placement", node_name, ETCD_NODE_LABEL)
    return replace(config, etcd_node_selector_labels=f"{ETCD_NODE_LABEL}=")


def run_preflight(kube: KubeClient, config: BootstrapConfig) -> BootstrapConfig:
    """Run every pre-flight check in order and return the resolved config.

    The NodePort and host checks only read; the etcd node label is the
    one write, and it is applied after both have passed.
    """
    check_node_port_free(kube, config.api_server_node_port)
    host_ips = resolve_api_server_ips(kube)
    config = replace(config, host_ips=host_ips)
    return ensure_etcd_placement(kube, config)
