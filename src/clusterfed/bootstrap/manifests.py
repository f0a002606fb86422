"""Manifest builders for the federation control plane.

Every builder returns a plain dict body, which the kubernetes client
serializes as-is.  Component labels double as the selectors the
readiness waiter polls, so ``*_LABELS`` and the pod template labels must
stay in sync.
"""

from __future__ import annotations

from typing import Any

from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.models import StorageMode
from clusterfed.pki.generator import (
    AGGREGATED_API_SERVER_SERVICE,
    API_SERVER_SERVICE,
    ETCD_SERVICE,
    WEBHOOK_SERVICE,
)

# --- Names ---

KUBE_CONTROLLER_MANAGER = "kube-controller-manager"
SCHEDULER = "karmada-scheduler"
CONTROLLER_MANAGER = "karmada-controller-manager"

KUBECONFIG_SECRET = "kubeconfig"
ETCD_CERT_SECRET = "etcd-cert"
CERTS_SECRET = "karmada-cert"
WEBHOOK_CERT_SECRET = "karmada-webhook-cert"

CONTROLLER_MANAGER_CLUSTER_ROLE = "karmada-controller-manager"

SERVICE_ACCOUNTS = (
    ETCD_SERVICE,
    API_SERVER_SERVICE,
    AGGREGATED_API_SERVER_SERVICE,
    KUBE_CONTROLLER_MANAGER,
    SCHEDULER,
    CONTROLLER_MANAGER,
    WEBHOOK_SERVICE,
)

# --- Ports and paths ---

API_SERVER_PORT = 5443
ETCD_CLIENT_PORT = 2379
ETCD_PEER_PORT = 2380
WEBHOOK_TARGET_PORT = 8443
KUBE_CONTROLLER_MANAGER_PORT = 10257

PKI_MOUNT = "/etc/karmada/pki"
KUBECONFIG_MOUNT = "/etc/kubeconfig"
WEBHOOK_CERT_MOUNT = "/var/serving-cert"
ETCD_DATA_MOUNT = "/var/lib/etcd"

SERVICE_CLUSTER_IP_RANGE = "10.254.0.0/16"

# --- Labels ---

ETCD_LABELS = {"app": ETCD_SERVICE}
API_SERVER_LABELS = {"app": API_SERVER_SERVICE}
AGGREGATED_API_SERVER_LABELS = {"app": AGGREGATED_API_SERVER_SERVICE, "apiserver": "true"}
KUBE_CONTROLLER_MANAGER_LABELS = {"app": KUBE_CONTROLLER_MANAGER}
SCHEDULER_LABELS = {"app": SCHEDULER}
CONTROLLER_MANAGER_LABELS = {"app": CONTROLLER_MANAGER}
WEBHOOK_LABELS = {"app": WEBHOOK_SERVICE}


def label_selector(labels: dict[str, str]) -> str:
    """Render a label dict as a ``k=v,k=v`` selector (sorted for stability)."""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


# --- Shared pieces ---


def _metadata(name: str, namespace: str | None = None, labels: dict[str, str] | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": name}
    if namespace:
        meta["namespace"] = namespace
    if labels:
        meta["labels"] = dict(labels)
    return meta


def _pki_volume() -> dict[str, Any]:
    return {"name": CERTS_SECRET, "secret": {"secretName": CERTS_SECRET}}


def _pki_mount() -> dict[str, Any]:
    return {"name": CERTS_SECRET, "mountPath": PKI_MOUNT, "readOnly": True}


def _kubeconfig_volume() -> dict[str, Any]:
    return {"name": KUBECONFIG_SECRET, "secret": {"secretName": KUBECONFIG_SECRET}}


def _kubeconfig_mount() -> dict[str, Any]:
    return {"name": KUBECONFIG_SECRET, "mountPath": KUBECONFIG_MOUNT, "subPath": KUBECONFIG_SECRET}


def _pki(name: str) -> str:
    return f"{PKI_MOUNT}/{name}"


def etcd_servers(config: BootstrapConfig) -> str:
    return ",".join(
        f"https://{ETCD_SERVICE}-{i}.{ETCD_SERVICE}.{config.namespace}.svc.cluster.local:{ETCD_CLIENT_PORT}"
        for i in range(config.etcd_replicas)
    )


def _deployment(
    name: str,
    config: BootstrapConfig,
    labels: dict[str, str],
    replicas: int,
    container: dict[str, Any],
    volumes: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(name, config.namespace, labels),
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": dict(labels)},
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": {
                    "serviceAccountName": name,
                    "automountServiceAccountToken": False,
                    "tolerations": [
                        {"key": "node-role.kubernetes.io/master", "operator": "Exists"},
                        {"key": "node-role.kubernetes.io/control-plane", "operator": "Exists"},
                    ],
                    "containers": [container],
                    "volumes": volumes,
                },
            },
        },
    }


def _service(
    name: str,
    namespace: str,
    labels: dict[str, str],
    ports: list[dict[str, Any]],
    service_type: str = "ClusterIP",
    headless: bool = False,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"type": service_type, "selector": dict(labels), "ports": ports}
    if headless:
        spec["clusterIP"] = "None"
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(name, namespace, labels),
        "spec": spec,
    }


# --- Namespace, service accounts, RBAC, secrets ---


def namespace(config: BootstrapConfig) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": _metadata(config.namespace)}


def service_account(name: str, config: BootstrapConfig) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(name, config.namespace),
    }


def controller_manager_cluster_role() -> dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": _metadata(CONTROLLER_MANAGER_CLUSTER_ROLE),
        "rules": [
            {"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]},
            {"nonResourceURLs": ["*"], "verbs": ["get"]},
        ],
    }


def controller_manager_cluster_role_binding(config: BootstrapConfig) -> dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": _metadata(CONTROLLER_MANAGER_CLUSTER_ROLE),
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": CONTROLLER_MANAGER_CLUSTER_ROLE,
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": CONTROLLER_MANAGER,
                "namespace": config.namespace,
            }
        ],
    }


def opaque_secret(name: str, config: BootstrapConfig, data: dict[str, str]) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": _metadata(name, config.namespace),
        "stringData": data,
    }


# --- etcd ---


def etcd_service(config: BootstrapConfig) -> dict[str, Any]:
    return _service(
        ETCD_SERVICE,
        config.namespace,
        ETCD_LABELS,
        [
            {"name": "client", "port": ETCD_CLIENT_PORT, "targetPort": ETCD_CLIENT_PORT},
            {"name": "peer", "port": ETCD_PEER_PORT, "targetPort": ETCD_PEER_PORT},
        ],
        headless=True,
    )


def etcd_stateful_set(config: BootstrapConfig) -> dict[str, Any]:
    ns = config.namespace
    peer_host = f"$(POD_NAME).{ETCD_SERVICE}.{ns}.svc.cluster.local"
    initial_cluster = ",".join(
        f"{ETCD_SERVICE}-{i}=http://{ETCD_SERVICE}-{i}.{ETCD_SERVICE}.{ns}.svc.cluster.local:{ETCD_PEER_PORT}"
        for i in range(config.etcd_replicas)
    )
    container = {
        "name": ETCD_SERVICE,
        "image": config.resolved_etcd_image(),
        "command": [
            "/usr/local/bin/etcd",
            "--name=$(POD_NAME)",
            f"--data-dir={ETCD_DATA_MOUNT}",
            f"--listen-client-urls=https://0.0.0.0:{ETCD_CLIENT_PORT}",
            f"--advertise-client-urls=https://{peer_host}:{ETCD_CLIENT_PORT}",
            f"--listen-peer-urls=http://0.0.0.0:{ETCD_PEER_PORT}",
            f"--initial-advertise-peer-urls=http://{peer_host}:{ETCD_PEER_PORT}",
            f"--initial-cluster={initial_cluster}",
            "--initial-cluster-state=new",
            "--client-cert-auth=true",
            f"--trusted-ca-file={_pki('etcd-ca.crt')}",
            f"--cert-file={_pki('etcd-server.crt')}",
            f"--key-file={_pki('etcd-server.key')}",
        ],
        "env": [
            {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
        ],
        "ports": [
            {"name": "client", "containerPort": ETCD_CLIENT_PORT},
            {"name": "peer", "containerPort": ETCD_PEER_PORT},
        ],
        "volumeMounts": [
            {"name": "etcd-data", "mountPath": ETCD_DATA_MOUNT},
            {"name": ETCD_CERT_SECRET, "mountPath": PKI_MOUNT, "readOnly": True},
        ],
    }
    init_container = {
        "name": "etcd-init-data",
        "image": config.etcd_init_image,
        "command": ["sh", "-c", f"mkdir -p {ETCD_DATA_MOUNT} && chmod 700 {ETCD_DATA_MOUNT}"],
        "volumeMounts": [{"name": "etcd-data", "mountPath": ETCD_DATA_MOUNT}],
    }

    volumes: list[dict[str, Any]] = [
        {"name": ETCD_CERT_SECRET, "secret": {"secretName": ETCD_CERT_SECRET}},
    ]
    pod_spec: dict[str, Any] = {
        "serviceAccountName": ETCD_SERVICE,
        "initContainers": [init_container],
        "containers": [container],
        "volumes": volumes,
        "tolerations": [
            {"key": "node-role.kubernetes.io/master", "operator": "Exists"},
            {"key": "node-role.kubernetes.io/control-plane", "operator": "Exists"},
        ],
    }
    spec: dict[str, Any] = {
        "replicas": config.etcd_replicas,
        "serviceName": ETCD_SERVICE,
        "podManagementPolicy": "Parallel",
        "selector": {"matchLabels": dict(ETCD_LABELS)},
        "template": {"metadata": {"labels": dict(ETCD_LABELS)}, "spec": pod_spec},
    }

    match config.etcd_storage_mode:
        case StorageMode.HOST_PATH:
            volumes.append({
                "name": "etcd-data",
                "hostPath": {"path": config.etcd_host_data_path, "type": "DirectoryOrCreate"},
            })
            pod_spec["nodeSelector"] = config.etcd_node_selector()
        case StorageMode.EMPTY_DIR:
            volumes.append({"name": "etcd-data", "emptyDir": {}})
        case StorageMode.PVC:
            claim_spec: dict[str, Any] = {
                "accessModes": ["ReadWriteOnce"],
                "resources": {"requests": {"storage": config.etcd_pvc_size}},
            }
            if config.storage_class_name:
                claim_spec["storageClassName"] = config.storage_class_name
            spec["volumeClaimTemplates"] = [
                {"metadata": {"name": "etcd-data"}, "spec": claim_spec},
            ]

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": _metadata(ETCD_SERVICE, ns, ETCD_LABELS),
        "spec": spec,
    }


# --- API server tier ---


def api_server_service(config: BootstrapConfig) -> dict[str, Any]:
    return _service(
        API_SERVER_SERVICE,
        config.namespace,
        API_SERVER_LABELS,
        [{
            "name": "https",
            "port": API_SERVER_PORT,
            "targetPort": API_SERVER_PORT,
            "nodePort": config.api_server_node_port,
            "protocol": "TCP",
        }],
        service_type="NodePort",
    )


def api_server_deployment(config: BootstrapConfig) -> dict[str, Any]:
    container = {
        "name": API_SERVER_SERVICE,
        "image": config.resolved_api_server_image(),
        "command": [
            "kube-apiserver",
            "--allow-privileged=true",
            "--authorization-mode=Node,RBAC",
            "--bind-address=0.0.0.0",
            f"--client-ca-file={_pki('ca.crt')}",
            "--enable-admission-plugins=NodeRestriction",
            "--disable-admission-plugins=StorageObjectInUseProtection,ServiceAccount",
            "--enable-bootstrap-token-auth=true",
            f"--etcd-cafile={_pki('etcd-ca.crt')}",
            f"--etcd-certfile={_pki('etcd-client.crt')}",
            f"--etcd-keyfile={_pki('etcd-client.key')}",
            f"--etcd-servers={etcd_servers(config)}",
            f"--kubelet-client-certificate={_pki('karmada.crt')}",
            f"--kubelet-client-key={_pki('karmada.key')}",
            "--kubelet-preferred-address-types=InternalIP,ExternalIP,Hostname",
            f"--proxy-client-cert-file={_pki('front-proxy-client.crt')}",
            f"--proxy-client-key-file={_pki('front-proxy-client.key')}",
            "--requestheader-allowed-names=front-proxy-client",
            f"--requestheader-client-ca-file={_pki('front-proxy-ca.crt')}",
            "--requestheader-extra-headers-prefix=X-Remote-Extra-",
            "--requestheader-group-headers=X-Remote-Group",
            "--requestheader-username-headers=X-Remote-User",
            f"--secure-port={API_SERVER_PORT}",
            "--service-account-issuer=https://kubernetes.default.svc.cluster.local",
            f"--service-account-key-file={_pki('karmada.key')}",
            f"--service-account-signing-key-file={_pki('karmada.key')}",
            f"--service-cluster-ip-range={SERVICE_CLUSTER_IP_RANGE}",
            f"--tls-cert-file={_pki('apiserver.crt')}",
            f"--tls-private-key-file={_pki('apiserver.key')}",
        ],
        "ports": [{"name": "https", "containerPort": API_SERVER_PORT}],
        "readinessProbe": {
            "tcpSocket": {"port": API_SERVER_PORT},
            "initialDelaySeconds": 5,
            "periodSeconds": 5,
        },
        "volumeMounts": [_pki_mount()],
    }
    return _deployment(
        API_SERVER_SERVICE, config, API_SERVER_LABELS,
        config.api_server_replicas, container, [_pki_volume()],
    )


def aggregated_api_server_service(config: BootstrapConfig) -> dict[str, Any]:
    return _service(
        AGGREGATED_API_SERVER_SERVICE,
        config.namespace,
        AGGREGATED_API_SERVER_LABELS,
        [{"port": 443, "targetPort": 443, "protocol": "TCP"}],
    )


def aggregated_api_server_deployment(config: BootstrapConfig) -> dict[str, Any]:
    container = {
        "name": AGGREGATED_API_SERVER_SERVICE,
        "image": config.aggregated_api_server_image,
        "command": [
            "/bin/karmada-aggregated-apiserver",
            f"--kubeconfig={KUBECONFIG_MOUNT}",
            f"--authentication-kubeconfig={KUBECONFIG_MOUNT}",
            f"--authorization-kubeconfig={KUBECONFIG_MOUNT}",
            f"--karmada-config={KUBECONFIG_MOUNT}",
            f"--etcd-servers={etcd_servers(config)}",
            f"--etcd-cafile={_pki('etcd-ca.crt')}",
            f"--etcd-certfile={_pki('etcd-client.crt')}",
            f"--etcd-keyfile={_pki('etcd-client.key')}",
            f"--tls-cert-file={_pki('karmada.crt')}",
            f"--tls-private-key-file={_pki('karmada.key')}",
            "--audit-log-path=-",
            "--audit-log-maxage=0",
            "--audit-log-maxbackup=0",
        ],
        "volumeMounts": [_kubeconfig_mount(), _pki_mount()],
    }
    return _deployment(
        AGGREGATED_API_SERVER_SERVICE, config, AGGREGATED_API_SERVER_LABELS,
        config.aggregated_api_server_replicas, container,
        [_kubeconfig_volume(), _pki_volume()],
    )


# --- Controller tier ---


def kube_controller_manager_service(config: BootstrapConfig) -> dict[str, Any]:
    return _service(
        KUBE_CONTROLLER_MANAGER,
        config.namespace,
        KUBE_CONTROLLER_MANAGER_LABELS,
        [{
            "name": KUBE_CONTROLLER_MANAGER,
            "port": KUBE_CONTROLLER_MANAGER_PORT,
            "targetPort": KUBE_CONTROLLER_MANAGER_PORT,
            "protocol": "TCP",
        }],
    )


def kube_controller_manager_deployment(config: BootstrapConfig) -> dict[str, Any]:
    container = {
        "name": KUBE_CONTROLLER_MANAGER,
        "image": config.resolved_kube_controller_manager_image(),
        "command": [
            "kube-controller-manager",
            "--allocate-node-cidrs=true",
            f"--authentication-kubeconfig={KUBECONFIG_MOUNT}",
            f"--authorization-kubeconfig={KUBECONFIG_MOUNT}",
            "--bind-address=0.0.0.0",
            f"--client-ca-file={_pki('ca.crt')}",
            "--cluster-cidr=10.244.0.0/16",
            "--cluster-name=karmada",
            f"--cluster-signing-cert-file={_pki('ca.crt')}",
            f"--cluster-signing-key-file={_pki('ca.key')}",
            "--controllers=namespace,garbagecollector,serviceaccount-token",
            f"--kubeconfig={KUBECONFIG_MOUNT}",
            "--leader-elect=true",
            "--node-cidr-mask-size=24",
            f"--root-ca-file={_pki('ca.crt')}",
            f"--service-account-private-key-file={_pki('karmada.key')}",
            f"--service-cluster-ip-range={SERVICE_CLUSTER_IP_RANGE}",
            "--use-service-account-credentials=true",
            "--v=4",
        ],
        "ports": [{"name": "metrics", "containerPort": KUBE_CONTROLLER_MANAGER_PORT}],
        "volumeMounts": [_kubeconfig_mount(), _pki_mount()],
    }
    return _deployment(
        KUBE_CONTROLLER_MANAGER, config, KUBE_CONTROLLER_MANAGER_LABELS,
        config.kube_controller_manager_replicas, container,
        [_kubeconfig_volume(), _pki_volume()],
    )


def scheduler_deployment(config: BootstrapConfig) -> dict[str, Any]:
    container = {
        "name": SCHEDULER,
        "image": config.scheduler_image,
        "command": [
            "/bin/karmada-scheduler",
            f"--kubeconfig={KUBECONFIG_MOUNT}",
            "--bind-address=0.0.0.0",
            "--secure-port=10351",
            "--enable-scheduler-estimator=false",
            "--v=4",
        ],
        "volumeMounts": [_kubeconfig_mount()],
    }
    return _deployment(
        SCHEDULER, config, SCHEDULER_LABELS,
        config.scheduler_replicas, container, [_kubeconfig_volume()],
    )


def controller_manager_deployment(config: BootstrapConfig) -> dict[str, Any]:
    container = {
        "name": CONTROLLER_MANAGER,
        "image": config.controller_manager_image,
        "command": [
            "/bin/karmada-controller-manager",
            f"--kubeconfig={KUBECONFIG_MOUNT}",
            "--bind-address=0.0.0.0",
            "--cluster-status-update-frequency=10s",
            "--secure-port=10357",
            "--v=4",
        ],
        "volumeMounts": [_kubeconfig_mount()],
    }
    return _deployment(
        CONTROLLER_MANAGER, config, CONTROLLER_MANAGER_LABELS,
        config.controller_manager_replicas, container, [_kubeconfig_volume()],
    )


def webhook_service(config: BootstrapConfig) -> dict[str, Any]:
    return _service(
        WEBHOOK_SERVICE,
        config.namespace,
        WEBHOOK_LABELS,
        [{"port": 443, "targetPort": WEBHOOK_TARGET_PORT, "protocol": "TCP"}],
    )


def webhook_deployment(config: BootstrapConfig) -> dict[str, Any]:
    container = {
        "name": WEBHOOK_SERVICE,
        "image": config.webhook_image,
        "command": [
            "/bin/karmada-webhook",
            f"--kubeconfig={KUBECONFIG_MOUNT}",
            "--bind-address=0.0.0.0",
            f"--secure-port={WEBHOOK_TARGET_PORT}",
            f"--cert-dir={WEBHOOK_CERT_MOUNT}",
            "--v=4",
        ],
        "ports": [{"containerPort": WEBHOOK_TARGET_PORT}],
        "readinessProbe": {
            "httpGet": {"path": "/readyz", "port": WEBHOOK_TARGET_PORT, "scheme": "HTTPS"},
        },
        "volumeMounts": [
            _kubeconfig_mount(),
            {"name": WEBHOOK_CERT_SECRET, "mountPath": WEBHOOK_CERT_MOUNT, "readOnly": True},
        ],
    }
    return _deployment(
        WEBHOOK_SERVICE, config, WEBHOOK_LABELS,
        config.webhook_replicas, container,
        [
            _kubeconfig_volume(),
            {"name": WEBHOOK_CERT_SECRET, "secret": {"secretName": WEBHOOK_CERT_SECRET}},
        ],
    )
