"""Tests for the bootstrap orchestrator and control-plane teardown."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest
import yaml
from conftest import MockKube, api_exception, make_list, make_node
from kubernetes.client.exceptions import ApiException

from clusterfed.bootstrap import orchestrator
from clusterfed.bootstrap.manifests import API_SERVER_LABELS, ETCD_LABELS, label_selector
from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.bootstrap.orchestrator import (
    PHASES,
    BootstrapOrchestrator,
    install_control_plane,
)
from clusterfed.bootstrap.teardown import teardown_control_plane
from clusterfed.bootstrap.token import TOKEN_PATTERN
from clusterfed.bootstrap.waiter import ReadinessWaiter
from clusterfed.clients.registry import ClusterClientRegistry
from clusterfed.errors import CRDPrepareError, NodePortConflictError, TransportError, WaitTimeoutError
from clusterfed.models import BootstrapResult, Cluster, ControlPlaneSpec
from clusterfed.pki.generator import generate_hierarchy


@pytest.fixture(scope="module")
def certs():
    return generate_hierarchy(BootstrapConfig(host_ips=("10.0.0.1",)))


@pytest.fixture()
def host(kube):
    kube.core.list_service_for_all_namespaces.return_value = make_list([])
    kube.core.list_node.return_value = make_list([make_node("node-1", internal_ip="10.0.0.1")])
    return kube


@pytest.fixture()
def control_plane():
    return MockKube()


@pytest.fixture()
def waiter():
    return MagicMock(spec=ReadinessWaiter)


@pytest.fixture(autouse=True)
def _offline_phases(monkeypatch, certs, tmp_path):
    monkeypatch.setattr(orchestrator, "generate_hierarchy", lambda config: certs)
    monkeypatch.setattr(orchestrator, "prepare_crds", lambda config: tmp_path)


def _orchestrator(host, waiter, control_plane, **kwargs):
    return BootstrapOrchestrator(
        host, BootstrapConfig(), waiter=waiter,
        control_plane_client=lambda kubeconfig: control_plane, **kwargs,
    )


def _created_secret_names(kube):
    return [c.kwargs["body"]["metadata"]["name"] for c in kube.core.create_namespaced_secret.call_args_list]


class TestPhaseOrder:
    def test_names(self):
        assert [name for name, _ in PHASES] == [
            "generate-certs",
            "prepare-crds",
            "create-kubeconfig",
            "create-namespace",
            "create-secrets",
            "deploy-api-server-tier",
            "install-resources",
            "deploy-controller-tier",
        ]

    def test_orchestrator_exposes_phases(self, host, waiter, control_plane):
        assert _orchestrator(host, waiter, control_plane).phases == [name for name, _ in PHASES]


class TestRun:
    def test_success(self, host, waiter, control_plane):
        result = _orchestrator(host, waiter, control_plane).run()

        kubeconfig = yaml.safe_load(result.kubeconfig)
        assert kubeconfig["clusters"][0]["cluster"]["server"] == "https://10.0.0.1:32443"
        assert TOKEN_PATTERN.match(result.bootstrap_token)

        host.core.create_namespace.assert_called_once()
        assert _created_secret_names(host) == ["kubeconfig", "etcd-cert", "karmada-cert", "karmada-webhook-cert"]
        assert waiter.wait_ready.call_count == 7
        host.core.patch_node.assert_called_once()
        control_plane.core.create_namespaced_secret.assert_called_once()

    def test_in_cluster_kubeconfig_secret(self, host, waiter, control_plane):
        _orchestrator(host, waiter, control_plane).run()
        body = host.core.create_namespaced_secret.call_args_list[0].kwargs["body"]
        inner = yaml.safe_load(body["stringData"]["kubeconfig"])
        assert inner["clusters"][0]["cluster"]["server"] == (
            "https://karmada-apiserver.karmada-system.svc.cluster.local:5443"
        )

    def test_node_port_conflict_stops_before_any_write(self, host, waiter, control_plane):
        svc = MagicMock()
        svc.spec.type = "NodePort"
        svc.spec.ports = [MagicMock(node_port=32443)]
        host.core.list_service_for_all_namespaces.return_value = make_list([svc])

        with pytest.raises(NodePortConflictError) as excinfo:
            _orchestrator(host, waiter, control_plane).run()
        assert excinfo.value.phase == "preflight"
        host.core.create_namespace.assert_not_called()
        host.core.patch_node.assert_not_called()

    def test_api_server_timeout_is_fatal(self, host, waiter, control_plane):
        def wait_ready(selector, *args, **kwargs):
            if selector == label_selector(API_SERVER_LABELS):
                raise WaitTimeoutError("api server not ready")

        waiter.wait_ready.side_effect = wait_ready
        with pytest.raises(WaitTimeoutError) as excinfo:
            _orchestrator(host, waiter, control_plane).run()
        assert excinfo.value.phase == "deploy-api-server-tier"
        control_plane.core.create_namespaced_secret.assert_not_called()

    def test_etcd_timeout_is_not_fatal(self, host, waiter, control_plane, caplog):
        def wait_ready(selector, *args, **kwargs):
            if selector == label_selector(ETCD_LABELS):
                raise WaitTimeoutError("etcd not ready")

        waiter.wait_ready.side_effect = wait_ready
        with caplog.at_level(logging.WARNING, logger="clusterfed.bootstrap.orchestrator"):
            result = _orchestrator(host, waiter, control_plane).run()
        assert result.bootstrap_token
        assert "etcd not ready, continuing" in caplog.text
        assert "components not yet ready: etcd" in caplog.text

    def test_etcd_statefulset_waited_before_pods(self, host, waiter, control_plane):
        calls = MagicMock()
        waiter.wait_statefulset_ready.side_effect = lambda *a, **kw: calls("statefulset")
        waiter.wait_ready.side_effect = lambda selector, *a, **kw: calls(selector)

        _orchestrator(host, waiter, control_plane).run()
        waiter.wait_statefulset_ready.assert_called_once_with("etcd", 1, 30.0, cancel=None)
        order = [c.args[0] for c in calls.call_args_list]
        assert order.index("statefulset") < order.index(label_selector(ETCD_LABELS))

    def test_etcd_statefulset_timeout_is_not_fatal(self, host, waiter, control_plane, caplog):
        waiter.wait_statefulset_ready.side_effect = WaitTimeoutError("statefulset etcd not ready")
        with caplog.at_level(logging.WARNING, logger="clusterfed.bootstrap.orchestrator"):
            result = _orchestrator(host, waiter, control_plane).run()
        assert result.bootstrap_token
        assert "components not yet ready: etcd" in caplog.text
        selectors = [c.args[0] for c in waiter.wait_ready.call_args_list]
        assert label_selector(ETCD_LABELS) not in selectors
        assert waiter.wait_ready.call_count == 6

    def test_transport_error_tagged_with_phase(self, host, waiter, control_plane):
        host.core.create_namespace.side_effect = api_exception(403, "Forbidden")
        with pytest.raises(TransportError) as excinfo:
            _orchestrator(host, waiter, control_plane).run()
        assert excinfo.value.phase == "create-namespace"
        assert excinfo.value.status == 403
        assert str(excinfo.value).startswith("[create-namespace]")

    def test_raw_api_exception_translated(self, host, waiter, control_plane):
        def boom(ctx, state):
            raise ApiException(status=500, reason="Internal")

        orch = _orchestrator(host, waiter, control_plane, phases=[("boom", boom)])
        with pytest.raises(TransportError) as excinfo:
            orch.run()
        assert excinfo.value.phase == "boom"
        assert excinfo.value.status == 500

    def test_existing_objects_are_tolerated(self, host, waiter, control_plane):
        host.core.create_namespace.side_effect = api_exception(409)
        host.apps.create_namespaced_deployment.side_effect = api_exception(409)
        assert _orchestrator(host, waiter, control_plane).run().kubeconfig

    def test_unreadable_crd_manifest_fails_install_resources(self, host, waiter, control_plane, tmp_path):
        (tmp_path / "bases").mkdir()
        (tmp_path / "bases" / "broken.yaml").write_bytes(b"\xff\xfe\x00bad")
        with pytest.raises(CRDPrepareError) as excinfo:
            _orchestrator(host, waiter, control_plane).run()
        assert excinfo.value.phase == "install-resources"


class TestInstallControlPlane:
    def test_records_result_on_cluster(self, monkeypatch, kube):
        result = BootstrapResult(kubeconfig=b"apiVersion: v1\n", bootstrap_token="abcdef.0123456789abcdef")
        orch_cls = MagicMock()
        orch_cls.return_value.run.return_value = result
        monkeypatch.setattr(orchestrator, "BootstrapOrchestrator", orch_cls)

        registry = MagicMock(spec=ClusterClientRegistry)
        registry.get_kube_client.return_value = kube
        cluster = Cluster(
            name="host",
            labels={"cluster.clusterfed.io/region": "eu"},
            control_plane=ControlPlaneSpec(install=True, overrides={"namespace": "fed-system"}),
        )

        assert install_control_plane(cluster, registry) is result
        registry.get_kube_client.assert_called_once_with("eu", "host")
        config = orch_cls.call_args.args[1]
        assert config.namespace == "fed-system"
        assert cluster.status.control_plane_installed
        assert cluster.status.control_plane_kubeconfig == result.kubeconfig
        assert cluster.status.bootstrap_token == result.bootstrap_token


class TestTeardown:
    def test_deletes_rbac_and_namespace(self, kube):
        assert teardown_control_plane(kube, "fed-system")
        kube.rbac.delete_cluster_role_binding.assert_called_once()
        kube.rbac.delete_cluster_role.assert_called_once()
        kube.core.delete_namespace.assert_called_once_with(name="fed-system")

    def test_missing_namespace(self, kube):
        kube.core.read_namespace.side_effect = api_exception(404)
        assert not teardown_control_plane(kube)
        kube.core.delete_namespace.assert_not_called()

    def test_missing_rbac_ignored(self, kube):
        kube.rbac.delete_cluster_role.side_effect = api_exception(404)
        assert teardown_control_plane(kube)
        kube.core.delete_namespace.assert_called_once()

    def test_other_failures_propagate(self, kube):
        kube.core.delete_namespace.side_effect = api_exception(500)
        with pytest.raises(TransportError):
            teardown_control_plane(kube)
