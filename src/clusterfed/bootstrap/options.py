"""Bootstrap configuration value object and its explicit merge.

``BootstrapConfig`` is built once (defaults, then operator overrides, then
the host IPs discovered at pre-flight) and read by every bootstrap phase.
It is frozen; each step that adds information produces a new instance
with ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from clusterfed.errors import ConfigError
from clusterfed.models import StorageMode

IMAGE_REPOSITORIES: dict[str, str] = {
    "global": "k8s.gcr.io",
    "cn": "registry.cn-hangzhou.aliyuncs.com/google_containers",
}

DEFAULT_ETCD_IMAGE = "etcd:3.5.3-0"
DEFAULT_KUBE_APISERVER_IMAGE = "kube-apiserver:v1.24.2"
DEFAULT_KUBE_CONTROLLER_MANAGER_IMAGE = "kube-controller-manager:v1.24.2"


@dataclass(frozen=True)
class BootstrapConfig:
    """Everything the bootstrap phases need to stand up a control plane."""

    # images
    kube_image_registry: str = ""
    kube_image_mirror_country: str = ""
    etcd_image: str = ""
    etcd_init_image: str = "docker.io/alpine:3.15.1"
    api_server_image: str = ""
    kube_controller_manager_image: str = ""
    scheduler_image: str = "docker.io/karmada/karmada-scheduler:v1.2.0"
    controller_manager_image: str = "docker.io/karmada/karmada-controller-manager:v1.2.0"
    webhook_image: str = "docker.io/karmada/karmada-webhook:v1.2.0"
    aggregated_api_server_image: str = "docker.io/karmada/karmada-aggregated-apiserver:v1.2.0"

    # replicas
    etcd_replicas: int = 1
    api_server_replicas: int = 1
    kube_controller_manager_replicas: int = 1
    scheduler_replicas: int = 1
    controller_manager_replicas: int = 1
    webhook_replicas: int = 1
    aggregated_api_server_replicas: int = 1

    # placement and storage
    namespace: str = "karmada-system"
    etcd_storage_mode: StorageMode = StorageMode.HOST_PATH
    etcd_host_data_path: str = "/var/lib/karmada-etcd"
    etcd_node_selector_labels: str = ""
    etcd_pvc_size: str = "5Gi"
    storage_class_name: str = ""

    # control plane endpoint
    crds: str = "/root/crds.tar.gz"
    data_path: str = "/etc/karmada"
    api_server_node_port: int = 32443
    external_ips: tuple[str, ...] = ()
    external_dns: tuple[str, ...] = ()
    host_ips: tuple[str, ...] = ()

    # readiness waits, in seconds
    etcd_wait_timeout: float = 30.0
    api_server_wait_timeout: float = 120.0
    aggregated_api_server_wait_timeout: float = 30.0
    component_wait_timeout: float = 30.0
    poll_interval: float = 2.0

    def kube_registry(self) -> str:
        """Registry for upstream Kubernetes component images."""
        if self.kube_image_registry:
            return self.kube_image_registry
        country = self.kube_image_mirror_country.lower()
        if country and country in IMAGE_REPOSITORIES:
            return IMAGE_REPOSITORIES[country]
        return IMAGE_REPOSITORIES["global"]

    def resolved_etcd_image(self) -> str:
        return self.etcd_image or f"{self.kube_registry()}/{DEFAULT_ETCD_IMAGE}"

    def resolved_api_server_image(self) -> str:
        return self.api_server_image or f"{self.kube_registry()}/{DEFAULT_KUBE_APISERVER_IMAGE}"

    def resolved_kube_controller_manager_image(self) -> str:
        return (
            self.kube_controller_manager_image
            or f"{self.kube_registry()}/{DEFAULT_KUBE_CONTROLLER_MANAGER_IMAGE}"
        )

    def etcd_node_selector(self) -> dict[str, str]:
        """Parse ``key=value`` (or bare ``key``) into a node selector dict."""
        if not self.etcd_node_selector_labels:
            return {}
        key, _, value = self.etcd_node_selector_labels.partition("=")
        return {key.strip(): value.strip()}


_STRING_FIELDS = (
    "kube_image_registry",
    "kube_image_mirror_country",
    "etcd_image",
    "etcd_init_image",
    "api_server_image",
    "kube_controller_manager_image",
    "scheduler_image",
    "controller_manager_image",
    "webhook_image",
    "aggregated_api_server_image",
    "namespace",
    "etcd_host_data_path",
    "etcd_node_selector_labels",
    "etcd_pvc_size",
    "storage_class_name",
    "crds",
    "data_path",
)

_REPLICA_FIELDS = (
    "etcd_replicas",
    "api_server_replicas",
    "kube_controller_manager_replicas",
    "scheduler_replicas",
    "controller_manager_replicas",
    "webhook_replicas",
    "aggregated_api_server_replicas",
)

_TIMEOUT_FIELDS = (
    "etcd_wait_timeout",
    "api_server_wait_timeout",
    "aggregated_api_server_wait_timeout",
    "component_wait_timeout",
    "poll_interval",
)

_LIST_FIELDS = ("external_ips", "external_dns")

_KNOWN_KEYS = frozenset(
    _STRING_FIELDS
    + _REPLICA_FIELDS
    + _TIMEOUT_FIELDS
    + _LIST_FIELDS
    + ("etcd_storage_mode", "api_server_node_port")
)


def merge_bootstrap_config(
    base: BootstrapConfig,
    overrides: dict[str, Any] | None,
) -> BootstrapConfig:
    """Return *base* with every non-empty value from *overrides* applied.

    Empty strings, ``None``, zero counts and empty lists keep the base
    value.  ``host_ips`` is never taken from overrides; it is discovered
    at pre-flight.

    Raises:
        ConfigError: On unknown keys or values of the wrong shape.
    """
    if not overrides:
        return base

    unknown = sorted(set(overrides) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"Unknown bootstrap option(s): {', '.join(unknown)}")

    changes: dict[str, Any] = {}

    for key in _STRING_FIELDS:
        value = overrides.get(key)
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            raise ConfigError(f"Bootstrap option '{key}' must be a string")
        changes[key] = value

    for key in _REPLICA_FIELDS:
        value = overrides.get(key)
        if not value:
            continue
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"Bootstrap option '{key}' must be a positive integer")
        changes[key] = value

    for key in _TIMEOUT_FIELDS:
        value = overrides.get(key)
        if not value:
            continue
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
            raise ConfigError(f"Bootstrap option '{key}' must be a positive number")
        changes[key] = float(value)

    for key in _LIST_FIELDS:
        value = overrides.get(key)
        if not value:
            continue
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        if not isinstance(value, (list, tuple)):
            raise ConfigError(f"Bootstrap option '{key}' must be a list")
        changes[key] = tuple(str(v).strip() for v in value)

    mode = overrides.get("etcd_storage_mode")
    if mode:
        try:
            changes["etcd_storage_mode"] = StorageMode(mode)
        except ValueError as e:
            raise ConfigError(
                f"Invalid etcd_storage_mode '{mode}': expected one of "
                f"{[m.value for m in StorageMode]}"
            ) from e

    port = overrides.get("api_server_node_port")
    if port:
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            raise ConfigError("Bootstrap option 'api_server_node_port' must be a port number")
        changes["api_server_node_port"] = port

    return replace(base, **changes)
