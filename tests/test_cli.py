"""Tests for the clusterfed CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from click.testing import CliRunner

from clusterfed.cli import main
from clusterfed.cli.main import cli
from clusterfed.clients.registry import ClusterClientRegistry
from clusterfed.errors import ClusterFedError, ResourceNotSupportedError
from clusterfed.models import BootstrapResult, ListResult
from clusterfed.resources import providers

INVENTORY = {
    "clusters": [
        {"name": "host", "control_plane": {"install": True, "overrides": {"namespace": "fed-system"}}},
        {"name": "member-1", "labels": {"cluster.clusterfed.io/region": "eu"}},
    ]
}


def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    (tmp_path / "clusters.yaml").write_text(yaml.safe_dump(INVENTORY))
    (tmp_path / "clusterfed.yaml").write_text(yaml.safe_dump({"inventory": "clusters.yaml"}))
    return tmp_path


def invoke(project: Path, *args: str):
    return runner().invoke(cli, ["--config", str(project / "clusterfed.yaml"), *args])


# --- root group ---


class TestRootGroup:
    def test_missing_config(self, tmp_path: Path):
        result = runner().invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "validate"])
        assert result.exit_code == 1
        assert "Error: Config file not found" in result.output

    def test_version(self):
        result = runner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


# --- bootstrap / teardown ---


class TestBootstrapCommand:
    def test_writes_kubeconfig_and_prints_token(self, project: Path, monkeypatch):
        install = MagicMock(return_value=BootstrapResult(
            kubeconfig=b"apiVersion: v1\n", bootstrap_token="abcdef.0123456789abcdef",
        ))
        monkeypatch.setattr(main, "install_control_plane", install)
        out = project / "host.kubeconfig"

        result = invoke(project, "bootstrap", "host", "-o", str(out), "--crds", "/tmp/crds.tar.gz")
        assert result.exit_code == 0, result.output
        assert out.read_bytes() == b"apiVersion: v1\n"
        assert "abcdef.0123456789abcdef" in result.output

        cluster, _, defaults = install.call_args.args
        assert cluster.name == "host"
        assert defaults.crds == "/tmp/crds.tar.gz"

    def test_failure_reports_phase(self, project: Path, monkeypatch):
        monkeypatch.setattr(main, "install_control_plane", MagicMock(
            side_effect=ClusterFedError("secret create failed", phase="create-secrets"),
        ))
        result = invoke(project, "bootstrap", "host")
        assert result.exit_code == 1
        assert "Error: [create-secrets] secret create failed" in result.output

    def test_unknown_cluster(self, project: Path):
        result = invoke(project, "bootstrap", "nowhere")
        assert result.exit_code == 1
        assert "Cluster not found: nowhere" in result.output


class TestTeardownCommand:
    def test_removed(self, project: Path, monkeypatch):
        monkeypatch.setattr(main, "ClusterClientRegistry", MagicMock())
        teardown = MagicMock(return_value=True)
        monkeypatch.setattr(main, "teardown_control_plane", teardown)
        result = invoke(project, "teardown", "host", "--namespace", "fed-system")
        assert result.exit_code == 0
        assert "control plane removed from host" in result.output
        assert teardown.call_args.args[1] == "fed-system"

    def test_nothing_installed(self, project: Path, monkeypatch):
        monkeypatch.setattr(main, "ClusterClientRegistry", MagicMock())
        monkeypatch.setattr(main, "teardown_control_plane", MagicMock(return_value=False))
        result = invoke(project, "teardown", "host")
        assert result.exit_code == 0
        assert "No control plane installed on host" in result.output


# --- join / unjoin ---


class TestMembershipCommands:
    def test_join(self, project: Path, monkeypatch):
        control_plane = MagicMock(name="control-plane")
        monkeypatch.setattr(main, "_control_plane_client", MagicMock(return_value=control_plane))
        join = MagicMock()
        monkeypatch.setattr(main, "join", join)

        result = invoke(project, "join", "member-1")
        assert result.exit_code == 0, result.output
        assert "member-1 joined" in result.output
        host_config, _, cluster, _ = join.call_args.args
        assert host_config is control_plane
        assert cluster.name == "member-1"

    def test_join_default_kubeconfig_path(self, project: Path, monkeypatch):
        client = MagicMock()
        monkeypatch.setattr(main, "_control_plane_client", client)
        monkeypatch.setattr(main, "join", MagicMock())
        invoke(project, "join", "member-1")
        assert client.call_args.args[0] == Path("./host-federation.kubeconfig")

    def test_join_without_control_plane_kubeconfig(self, project: Path):
        result = invoke(project, "join", "member-1", "--kubeconfig", str(project / "missing"))
        assert result.exit_code == 1
        assert "Control-plane kubeconfig not found" in result.output

    def test_unjoin_wait(self, project: Path, monkeypatch):
        monkeypatch.setattr(main, "_control_plane_client", MagicMock())
        unjoin = MagicMock()
        monkeypatch.setattr(main, "unjoin", unjoin)
        result = invoke(project, "unjoin", "member-1", "--wait", "5")
        assert result.exit_code == 0
        assert unjoin.call_args.kwargs["wait"].total_seconds() == 5

    def test_unjoin_drops_cached_member_client(self, project: Path, monkeypatch):
        monkeypatch.setattr(main, "_control_plane_client", MagicMock())
        unjoin = MagicMock()
        monkeypatch.setattr(main, "unjoin", unjoin)
        result = invoke(project, "unjoin", "member-1")
        assert result.exit_code == 0, result.output
        assert isinstance(unjoin.call_args.kwargs["clients"], ClusterClientRegistry)


# --- get / list ---


class TestResourceCommands:
    def test_list_prints_envelope(self, project: Path, monkeypatch):
        processor = MagicMock()
        processor.list.return_value = ListResult(items=[{"metadata": {"name": "web"}}], total=4)
        monkeypatch.setattr(main, "_processor", MagicMock(return_value=processor))

        result = invoke(
            project, "list", "deployment", "-n", "default", "-l", "app=web",
            "--sort", "name", "--ascending", "--offset", "1", "--limit", "1",
            "--cluster", "member-1",
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"items": [{"metadata": {"name": "web"}}], "total": 4}

        resource, namespace, query = processor.list.call_args.args
        assert (resource, namespace) == ("deployment", "default")
        assert query.label_selector == "app=web"
        assert query.sort_by == "name"
        assert query.ascending
        assert (query.page.offset, query.page.limit) == (1, 1)
        assert processor.list.call_args.kwargs == {"region": "", "cluster": "member-1"}

    def test_list_without_limit_is_unpaged(self, project: Path, monkeypatch):
        processor = MagicMock()
        processor.list.return_value = ListResult()
        monkeypatch.setattr(main, "_processor", MagicMock(return_value=processor))
        invoke(project, "list", "node")
        assert processor.list.call_args.args[2].page is None

    def test_list_offset_without_limit(self, project: Path, monkeypatch):
        processor = MagicMock()
        processor.list.return_value = ListResult()
        monkeypatch.setattr(main, "_processor", MagicMock(return_value=processor))
        result = invoke(project, "list", "node", "--offset", "2")
        assert result.exit_code == 0, result.output
        page = processor.list.call_args.args[2].page
        assert (page.offset, page.limit) == (2, None)

    def test_list_federation_kind_reads_control_plane(self, project: Path, monkeypatch, kube):
        kubeconfig = project / "fed.kubeconfig"
        kubeconfig.write_bytes(b"apiVersion: v1\nkind: Config\n")
        control_plane = object()
        connections = []

        def build(connection):
            connections.append(connection)
            return control_plane

        bound = []

        def bind(api_client):
            bound.append(api_client)
            return kube

        monkeypatch.setattr(main, "build_api_client", build)
        monkeypatch.setattr(providers, "KubeClient", bind)
        kube.custom.list_namespaced_custom_object.return_value = {"items": [{"metadata": {"name": "pp"}}]}

        result = invoke(
            project, "list", "propagationpolicy", "-n", "default", "--kubeconfig", str(kubeconfig),
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["items"] == [{"metadata": {"name": "pp"}}]
        assert bound == [control_plane]
        assert connections[0].kubeconfig == kubeconfig.read_bytes()
        assert kube.custom.list_namespaced_custom_object.call_args.kwargs["namespace"] == "default"

    def test_federation_kind_without_control_plane_kubeconfig(self, project: Path):
        result = invoke(project, "get", "propagationpolicy", "pp", "-n", "default",
                        "--kubeconfig", str(project / "missing"))
        assert result.exit_code == 1
        assert "Control-plane kubeconfig not found" in result.output

    def test_get_unsupported(self, project: Path, monkeypatch):
        processor = MagicMock()
        processor.get.side_effect = ResourceNotSupportedError("Resource is not supported: deployment")
        monkeypatch.setattr(main, "_processor", MagicMock(return_value=processor))
        result = invoke(project, "get", "deployment", "web")
        assert result.exit_code == 1
        assert "Error: Resource is not supported" in result.output

    def test_get_prints_object(self, project: Path, monkeypatch):
        processor = MagicMock()
        processor.get.return_value = {"metadata": {"name": "node-1"}}
        monkeypatch.setattr(main, "_processor", MagicMock(return_value=processor))
        result = invoke(project, "get", "node", "node-1")
        assert result.exit_code == 0
        assert json.loads(result.output)["metadata"]["name"] == "node-1"


# --- validate ---


class TestValidateCommand:
    def test_valid(self, project: Path):
        result = invoke(project, "validate")
        assert result.exit_code == 0, result.output
        assert "2 cluster(s) loaded" in result.output
        assert "Configuration valid." in result.output

    def test_bad_override(self, project: Path):
        inventory = {"clusters": [{"name": "host", "control_plane": {"install": True, "overrides": {"bogus": 1}}}]}
        (project / "clusters.yaml").write_text(yaml.safe_dump(inventory))
        result = invoke(project, "validate")
        assert result.exit_code == 1
        assert "FAIL" in result.output
        assert "bogus" in result.output

    def test_missing_host_cluster(self, project: Path):
        (project / "clusters.yaml").write_text(yaml.safe_dump({"clusters": [{"name": "member-1"}]}))
        result = invoke(project, "validate")
        assert result.exit_code == 1
        assert "host cluster: host not found" in result.output
