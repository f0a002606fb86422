"""Kubeconfig generation for the new control plane."""

from __future__ import annotations

import base64
import ipaddress
from typing import Any

import yaml

DEFAULT_CLUSTER_NAME = "karmada-apiserver"
DEFAULT_USER_NAME = "karmada-admin"


def server_url(host: str, port: int) -> str:
    """``https://host:port``, bracketing IPv6 literals.

    Raises:
        ValueError: If *host* is not an IP address.
    """
    ip = ipaddress.ip_address(host)
    if ip.version == 6:
        return f"https://[{host}]:{port}"
    return f"https://{host}:{port}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def build_kubeconfig_dict(
    server: str,
    ca_cert: bytes,
    client_cert: bytes,
    client_key: bytes,
    cluster_name: str = DEFAULT_CLUSTER_NAME,
    user_name: str = DEFAULT_USER_NAME,
) -> dict[str, Any]:
    """A single-context kubeconfig with embedded certificate data."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": cluster_name,
                "cluster": {
                    "server": server,
                    "certificate-authority-data": _b64(ca_cert),
                },
            }
        ],
        "users": [
            {
                "name": user_name,
                "user": {
                    "client-certificate-data": _b64(client_cert),
                    "client-key-data": _b64(client_key),
                },
            }
        ],
        "contexts": [
            {
                "name": cluster_name,
                "context": {"cluster": cluster_name, "user": user_name},
            }
        ],
        "current-context": cluster_name,
        "preferences": {},
    }


def build_kubeconfig(
    server: str,
    ca_cert: bytes,
    client_cert: bytes,
    client_key: bytes,
    cluster_name: str = DEFAULT_CLUSTER_NAME,
    user_name: str = DEFAULT_USER_NAME,
) -> bytes:
    """Serialize ``build_kubeconfig_dict`` to YAML bytes."""
    data = build_kubeconfig_dict(
        server, ca_cert, client_cert, client_key, cluster_name, user_name,
    )
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False).encode("utf-8")
