"""Bootstrap token minting for member cluster registration.

Tokens follow the Kubernetes bootstrap token format
``[a-z0-9]{6}.[a-z0-9]{16}`` and are stored as
``bootstrap.kubernetes.io/token`` secrets in ``kube-system``.  The
bootstrappers group is bound to the roles needed to submit and
auto-approve client CSRs.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import UTC, datetime, timedelta
from typing import Any

from clusterfed.clients.kube import KubeClient

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=24)
TOKEN_NAMESPACE = "kube-system"
BOOTSTRAPPERS_GROUP = "system:bootstrappers:karmada:default-cluster-token"
TOKEN_PATTERN = re.compile(r"^[a-z0-9]{6}\.[a-z0-9]{16}$")

_ALPHABET = string.ascii_lowercase + string.digits

_BINDINGS = (
    ("karmada:agent-bootstrap", "system:node-bootstrapper"),
    ("karmada:agent-autoapprove-bootstrap", "system:certificates.k8s.io:certificatesigningrequests:nodeclient"),
)


def generate_token() -> tuple[str, str]:
    """Return ``(token_id, token_secret)``."""
    token_id = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    token_secret = "".join(secrets.choice(_ALPHABET) for _ in range(16))
    return token_id, token_secret


def token_secret_body(
    token_id: str,
    token_secret: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> dict[str, Any]:
    expiration = (now or datetime.now(tz=UTC)) + ttl
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "bootstrap.kubernetes.io/token",
        "metadata": {"name": f"bootstrap-token-{token_id}", "namespace": TOKEN_NAMESPACE},
        "stringData": {
            "description": "Bootstrap token for member cluster registration",
            "token-id": token_id,
            "token-secret": token_secret,
            "expiration": expiration.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "usage-bootstrap-authentication": "true",
            "usage-bootstrap-signing": "true",
            "auth-extra-groups": BOOTSTRAPPERS_GROUP,
        },
    }


def _binding(name: str, cluster_role: str) -> dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {"name": name},
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": cluster_role,
        },
        "subjects": [
            {"apiGroup": "rbac.authorization.k8s.io", "kind": "Group", "name": BOOTSTRAPPERS_GROUP},
        ],
    }


def create_bootstrap_token(kube: KubeClient, ttl: timedelta = DEFAULT_TOKEN_TTL) -> str:
    """Mint a bootstrap token in the control plane and return it.

    Raises:
        TransportError: If the secret or bindings cannot be created.
    """
    token_id, token_secret = generate_token()
    kube.call(
        "create bootstrap token secret",
        kube.core.create_namespaced_secret,
        namespace=TOKEN_NAMESPACE,
        body=token_secret_body(token_id, token_secret, ttl),
    )
    for name, cluster_role in _BINDINGS:
        kube.create_or_skip(
            f"create cluster role binding {name}",
            kube.rbac.create_cluster_role_binding,
            body=_binding(name, cluster_role),
        )
    logger.info("Created bootstrap token %s (expires in %s)", token_id, ttl)
    return f"{token_id}.{token_secret}"
