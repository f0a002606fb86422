"""Tests for bootstrap pre-flight checks."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.bootstrap.preflight import (
    check_node_port_free,
    ensure_etcd_placement,
    resolve_api_server_ips,
    run_preflight,
)
from clusterfed.errors import NoAvailableHostError, NodePortConflictError, NodeSelectorNotFoundError
from clusterfed.models import StorageMode

from conftest import MockKube, make_list, make_node


def _service(name: str, svc_type: str, node_port: int | None) -> MagicMock:
    svc = MagicMock()
    svc.metadata.name = name
    svc.metadata.namespace = "default"
    svc.spec.type = svc_type
    svc.spec.ports = [MagicMock(node_port=node_port)]
    return svc


class TestCheckNodePortFree:
    def test_free(self, kube: MockKube):
        kube.core.list_service_for_all_namespaces.return_value = make_list([
            _service("a", "ClusterIP", None),
            _service("b", "NodePort", 30080),
        ])
        check_node_port_free(kube, 32443)

    def test_conflict(self, kube: MockKube):
        kube.core.list_service_for_all_namespaces.return_value = make_list([
            _service("taken", "NodePort", 32443),
        ])
        with pytest.raises(NodePortConflictError, match="default/taken"):
            check_node_port_free(kube, 32443)

    def test_cluster_ip_with_same_port_ignored(self, kube: MockKube):
        kube.core.list_service_for_all_namespaces.return_value = make_list([
            _service("lb", "ClusterIP", 32443),
        ])
        check_node_port_free(kube, 32443)


class TestResolveApiServerIps:
    def test_prefers_control_plane_nodes(self, kube: MockKube):
        kube.core.list_node.side_effect = [
            make_list([make_node("cp1", internal_ip="10.0.0.1", external_ip="1.1.1.1")]),
        ]
        assert resolve_api_server_ips(kube) == ("10.0.0.1",)
        kube.core.list_node.assert_called_once_with(
            label_selector="node-role.kubernetes.io/control-plane",
        )

    def test_falls_back_to_master_label(self, kube: MockKube):
        kube.core.list_node.side_effect = [
            make_list([]),
            make_list([make_node("m1", internal_ip="10.0.0.2")]),
        ]
        assert resolve_api_server_ips(kube) == ("10.0.0.2",)

    def test_falls_back_to_three_nodes(self, kube: MockKube):
        workers = [make_node(f"w{i}", internal_ip=f"10.0.1.{i}") for i in range(5)]
        kube.core.list_node.side_effect = [make_list([]), make_list([]), make_list(workers)]
        assert resolve_api_server_ips(kube) == ("10.0.1.0", "10.0.1.1", "10.0.1.2")

    def test_uses_first_address_without_internal_ip(self, kube: MockKube):
        kube.core.list_node.side_effect = [make_list([make_node("cp", external_ip="1.2.3.4")])]
        assert resolve_api_server_ips(kube) == ("1.2.3.4",)

    def test_no_nodes(self, kube: MockKube):
        kube.core.list_node.side_effect = [make_list([]), make_list([]), make_list([])]
        with pytest.raises(NoAvailableHostError):
            resolve_api_server_ips(kube)


class TestEnsureEtcdPlacement:
    def test_non_host_path_untouched(self, kube: MockKube):
        cfg = BootstrapConfig(etcd_storage_mode=StorageMode.PVC)
        assert ensure_etcd_placement(kube, cfg) is cfg
        kube.core.list_node.assert_not_called()

    def test_labels_first_node_without_selector(self, kube: MockKube):
        kube.core.list_node.return_value = make_list([make_node("n1"), make_node("n2")])
        cfg = ensure_etcd_placement(kube, BootstrapConfig())
        kube.core.patch_node.assert_called_once_with(
            name="n1", body={"metadata": {"labels": {"karmada.io/etcd": ""}}},
        )
        assert cfg.etcd_node_selector_labels == "karmada.io/etcd="

    def test_selector_matches(self, kube: MockKube):
        kube.core.list_node.return_value = make_list([make_node("ssd1")])
        cfg = BootstrapConfig(etcd_node_selector_labels="disk=ssd")
        assert ensure_etcd_placement(kube, cfg) is cfg
        kube.core.list_node.assert_called_once_with(label_selector="disk=ssd")
        kube.core.patch_node.assert_not_called()

    def test_selector_matches_nothing(self, kube: MockKube):
        kube.core.list_node.return_value = make_list([])
        with pytest.raises(NodeSelectorNotFoundError, match="disk=ssd"):
            ensure_etcd_placement(kube, BootstrapConfig(etcd_node_selector_labels="disk=ssd"))

    def test_no_node_to_label(self, kube: MockKube):
        kube.core.list_node.return_value = make_list([])
        with pytest.raises(NoAvailableHostError):
            ensure_etcd_placement(kube, BootstrapConfig())


class TestRunPreflight:
    def test_resolves_host_ips_and_selector(self, kube: MockKube):
        kube.core.list_service_for_all_namespaces.return_value = make_list([])
        kube.core.list_node.side_effect = [
            make_list([make_node("cp1", internal_ip="10.0.0.1")]),
            make_list([make_node("cp1", internal_ip="10.0.0.1")]),
        ]
        cfg = run_preflight(kube, BootstrapConfig())
        assert cfg.host_ips == ("10.0.0.1",)
        assert cfg.etcd_node_selector_labels == "karmada.io/etcd="

    def test_node_port_conflict_stops_before_writes(self, kube: MockKube):
        kube.core.list_service_for_all_namespaces.return_value = make_list([
            _service("taken", "NodePort", 32443),
        ])
        with pytest.raises(NodePortConflictError):
            run_preflight(kube, BootstrapConfig())
        kube.core.list_node.assert_not_called()
        kube.core.patch_node.assert_not_called()
