"""Remove an installed control plane from its host cluster."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from clusterfed.bootstrap import manifests
from clusterfed.clients.kube import KubeClient
from clusterfed.errors import NotFoundError

logger = logging.getLogger(__name__)


def _delete_ignoring_missing(kube: KubeClient, description: str, fn: Callable[..., Any], **kwargs: Any) -> bool:
    try:
        kube.call(description, fn, **kwargs)
    except NotFoundError:
        logger.info("%s: not found, skipping", description)
        return False
    logger.info("%s: deleted", description)
    return True


def teardown_control_plane(kube: KubeClient, namespace: str = "karmada-system") -> bool:
    """Delete the control-plane RBAC and namespace.

    Returns ``False`` when *namespace* does not exist (nothing to do).

    Raises:
        TransportError: If a delete fails for any reason other than 404.
    """
    try:
        kube.call(f"read namespace {namespace}", kube.core.read_namespace, name=namespace)
    except NotFoundError:
        logger.info("Namespace %s not found, control plane already removed", namespace)
        return False

    role = manifests.CONTROLLER_MANAGER_CLUSTER_ROLE
    _delete_ignoring_missing(
        kube, f"delete cluster role binding {role}",
        kube.rbac.delete_cluster_role_binding, name=role,
    )
    _delete_ignoring_missing(
        kube, f"delete cluster role {role}",
        kube.rbac.delete_cluster_role, name=role,
    )
    _delete_ignoring_missing(
        kube, f"delete namespace {namespace}",
        kube.core.delete_namespace, name=namespace,
    )
    return True
