"""Tests for the control-plane manifest builders."""

from __future__ import annotations

from clusterfed.bootstrap import manifests
from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.models import StorageMode


def _pod_spec(obj: dict) -> dict:
    return obj["spec"]["template"]["spec"]


def _volume_names(obj: dict) -> set[str]:
    return {v["name"] for v in _pod_spec(obj)["volumes"]}


class TestLabelSelector:
    def test_sorted_and_joined(self):
        assert manifests.label_selector({"b": "2", "a": "1"}) == "a=1,b=2"


class TestWorkloadsMatchWaiterSelectors:
    def test_every_workload_selects_its_labels(self):
        cfg = BootstrapConfig()
        pairs = [
            (manifests.etcd_stateful_set(cfg), manifests.ETCD_LABELS),
            (manifests.api_server_deployment(cfg), manifests.API_SERVER_LABELS),
            (manifests.aggregated_api_server_deployment(cfg), manifests.AGGREGATED_API_SERVER_LABELS),
            (manifests.kube_controller_manager_deployment(cfg), manifests.KUBE_CONTROLLER_MANAGER_LABELS),
            (manifests.scheduler_deployment(cfg), manifests.SCHEDULER_LABELS),
            (manifests.controller_manager_deployment(cfg), manifests.CONTROLLER_MANAGER_LABELS),
            (manifests.webhook_deployment(cfg), manifests.WEBHOOK_LABELS),
        ]
        for obj, labels in pairs:
            assert obj["spec"]["selector"]["matchLabels"] == labels
            assert obj["spec"]["template"]["metadata"]["labels"] == labels
            assert obj["metadata"]["namespace"] == "karmada-system"

    def test_service_accounts_exist_for_every_workload(self):
        cfg = BootstrapConfig()
        for obj in (
            manifests.etcd_stateful_set(cfg),
            manifests.api_server_deployment(cfg),
            manifests.webhook_deployment(cfg),
            manifests.scheduler_deployment(cfg),
        ):
            assert _pod_spec(obj)["serviceAccountName"] in manifests.SERVICE_ACCOUNTS

    def test_replicas_from_config(self):
        cfg = BootstrapConfig(api_server_replicas=3, scheduler_replicas=2)
        assert manifests.api_server_deployment(cfg)["spec"]["replicas"] == 3
        assert manifests.scheduler_deployment(cfg)["spec"]["replicas"] == 2


class TestEtcd:
    def test_host_path_storage(self):
        cfg = BootstrapConfig(etcd_node_selector_labels="karmada.io/etcd=")
        sts = manifests.etcd_stateful_set(cfg)
        data = next(v for v in _pod_spec(sts)["volumes"] if v["name"] == "etcd-data")
        assert data["hostPath"]["path"] == "/var/lib/karmada-etcd"
        assert _pod_spec(sts)["nodeSelector"] == {"karmada.io/etcd": ""}

    def test_empty_dir_storage(self):
        sts = manifests.etcd_stateful_set(BootstrapConfig(etcd_storage_mode=StorageMode.EMPTY_DIR))
        data = next(v for v in _pod_spec(sts)["volumes"] if v["name"] == "etcd-data")
        assert data == {"name": "etcd-data", "emptyDir": {}}
        assert "nodeSelector" not in _pod_spec(sts)

    def test_pvc_storage(self):
        cfg = BootstrapConfig(
            etcd_storage_mode=StorageMode.PVC, etcd_pvc_size="10Gi", storage_class_name="fast",
        )
        sts = manifests.etcd_stateful_set(cfg)
        claim = sts["spec"]["volumeClaimTemplates"][0]
        assert claim["metadata"]["name"] == "etcd-data"
        assert claim["spec"]["resources"]["requests"]["storage"] == "10Gi"
        assert claim["spec"]["storageClassName"] == "fast"
        assert "etcd-data" not in _volume_names(sts)

    def test_headless_service(self):
        svc = manifests.etcd_service(BootstrapConfig())
        assert svc["spec"]["clusterIP"] == "None"

    def test_etcd_servers_per_replica(self):
        servers = manifests.etcd_servers(BootstrapConfig(namespace="fed", etcd_replicas=2)).split(",")
        assert servers == [
            "https://etcd-0.etcd.fed.svc.cluster.local:2379",
            "https://etcd-1.etcd.fed.svc.cluster.local:2379",
        ]


class TestApiServer:
    def test_node_port_service(self):
        svc = manifests.api_server_service(BootstrapConfig(api_server_node_port=31000))
        assert svc["spec"]["type"] == "NodePort"
        assert svc["spec"]["ports"][0]["nodePort"] == 31000
        assert svc["spec"]["ports"][0]["port"] == manifests.API_SERVER_PORT

    def test_mounts_pki_secret(self):
        dep = manifests.api_server_deployment(BootstrapConfig())
        assert manifests.CERTS_SECRET in _volume_names(dep)
        command = _pod_spec(dep)["containers"][0]["command"]
        assert "--enable-bootstrap-token-auth=true" in command


class TestControllerTier:
    def test_webhook_mounts_cert_secret(self):
        dep = manifests.webhook_deployment(BootstrapConfig())
        assert manifests.WEBHOOK_CERT_SECRET in _volume_names(dep)

    def test_controllers_mount_kubeconfig(self):
        cfg = BootstrapConfig()
        for dep in (
            manifests.scheduler_deployment(cfg),
            manifests.controller_manager_deployment(cfg),
            manifests.kube_controller_manager_deployment(cfg),
        ):
            assert manifests.KUBECONFIG_SECRET in _volume_names(dep)


class TestRbacAndSecrets:
    def test_binding_targets_controller_manager(self):
        binding = manifests.controller_manager_cluster_role_binding(BootstrapConfig(namespace="fed"))
        assert binding["roleRef"]["name"] == manifests.CONTROLLER_MANAGER_CLUSTER_ROLE
        assert binding["subjects"][0] == {
            "kind": "ServiceAccount", "name": manifests.CONTROLLER_MANAGER, "namespace": "fed",
        }

    def test_opaque_secret(self):
        secret = manifests.opaque_secret("s", BootstrapConfig(namespace="fed"), {"k": "v"})
        assert secret["type"] == "Opaque"
        assert secret["metadata"] == {"name": "s", "namespace": "fed"}
        assert secret["stringData"] == {"k": "v"}
