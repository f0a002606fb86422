"""CRD bundle preparation and installation into the new control plane.

The bundle is a ``.tar.gz`` that unpacks to ``crds/bases`` (one CRD per
document) and ``crds/patches`` (webhook-conversion patches carrying a
``{{caBundle}}`` placeholder).  It is either downloaded from an HTTP(S)
URL or read from a local path.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any

import yaml

from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.clients.kube import KubeClient
from clusterfed.errors import CRDPrepareError
from clusterfed.pki.generator import AGGREGATED_API_SERVER_SERVICE, WEBHOOK_SERVICE

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60.0
CA_BUNDLE_PLACEHOLDER = "{{caBundle}}"
DEFAULT_CONTROL_PLANE_NAMESPACE = "karmada-system"
AGGREGATED_API_GROUP = "cluster.karmada.io"
AGGREGATED_API_VERSION = "v1alpha1"


# --- Preparation ---


def _download(url: str, dest: Path, timeout: float) -> None:
    req = urllib.request.Request(url, method="GET")
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        with dest.open("wb") as f:
            shutil.copyfileobj(resp, f)


def _extract(archive: Path, dest: Path) -> None:
    """Extract *archive* into *dest*, refusing members that escape it."""
    root = dest.resolve()
    with tarfile.open(archive, "r:*") as tar:
        members = tar.getmembers()
        for member in members:
            target = (root / member.name).resolve()
            if target != root and root not in target.parents:
                raise CRDPrepareError(f"Unsafe path in CRD archive {archive}: {member.name}")
            if member.issym() or member.islnk():
                raise CRDPrepareError(f"Links are not allowed in CRD archive {archive}: {member.name}")
        if hasattr(tarfile, "data_filter"):
            tar.extractall(root, members=members, filter="data")
        else:
            tar.extractall(root, members=members)


def prepare_crds(config: BootstrapConfig, timeout: float = DOWNLOAD_TIMEOUT) -> Path:
    """Fetch (if remote) and unpack the CRD bundle into ``config.data_path``.

    Returns the unpacked ``crds`` directory.

    Raises:
        CRDPrepareError: If the download or extraction fails, or the
            archive does not contain a ``crds`` directory.
    """
    data_path = Path(config.data_path)
    crd_dir = data_path / "crds"
    try:
        data_path.mkdir(parents=True, exist_ok=True)
        if crd_dir.exists():
            shutil.rmtree(crd_dir)

        if config.crds.startswith(("http://", "https://")):
            filename = Path(urllib.parse.urlparse(config.crds).path).name or "crds.tar.gz"
            archive = data_path / filename
            logger.info("Downloading CRD bundle %s to %s", config.crds, archive)
            _download(config.crds, archive, timeout)
        else:
            archive = Path(config.crds)
            logger.info("Using local CRD bundle %s", archive)
            if not archive.is_file():
                raise CRDPrepareError(f"CRD bundle not found: {archive}")

        _extract(archive, data_path)
    except CRDPrepareError:
        raise
    except (urllib.error.URLError, tarfile.TarError, OSError) as exc:
        raise CRDPrepareError(f"Cannot prepare CRD bundle {config.crds}: {exc}") from exc

    if not crd_dir.is_dir():
        raise CRDPrepareError(f"CRD bundle {config.crds} has no 'crds' directory")
    return crd_dir


# --- Installation ---


def _load_documents(path: Path, substitutions: dict[str, str] | None = None) -> list[dict[str, Any]]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CRDPrepareError(f"Cannot read CRD manifest {path}: {e}") from e
    for old, new in (substitutions or {}).items():
        text = text.replace(old, new)
    try:
        return [doc for doc in yaml.safe_load_all(text) if isinstance(doc, dict)]
    except yaml.YAMLError as e:
        raise CRDPrepareError(f"Invalid YAML in {path}: {e}") from e


def _yaml_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(list(directory.glob("*.yaml")) + list(directory.glob("*.yml")))


def aggregated_api_service(ca_bundle: str) -> dict[str, Any]:
    return {
        "apiVersion": "apiregistration.k8s.io/v1",
        "kind": "APIService",
        "metadata": {
            "name": f"{AGGREGATED_API_VERSION}.{AGGREGATED_API_GROUP}",
            "labels": {"app": AGGREGATED_API_SERVER_SERVICE, "apiserver": "true"},
        },
        "spec": {
            "insecureSkipTLSVerify": False,
            "caBundle": ca_bundle,
            "group": AGGREGATED_API_GROUP,
            "groupPriorityMinimum": 2000,
            "service": {"name": AGGREGATED_API_SERVER_SERVICE, "namespace": DEFAULT_CONTROL_PLANE_NAMESPACE},
            "version": AGGREGATED_API_VERSION,
            "versionPriority": 10,
        },
    }


def aggregated_api_external_service(namespace: str) -> dict[str, Any]:
    """ExternalName service inside the control plane pointing at the host service."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": AGGREGATED_API_SERVER_SERVICE, "namespace": DEFAULT_CONTROL_PLANE_NAMESPACE},
        "spec": {
            "type": "ExternalName",
            "externalName": f"{AGGREGATED_API_SERVER_SERVICE}.{namespace}.svc.cluster.local",
        },
    }


def _webhook(name: str, path: str, resources: list[str], namespace: str, ca_bundle: str) -> dict[str, Any]:
    return {
        "name": name,
        "rules": [{
            "operations": ["CREATE", "UPDATE"],
            "apiGroups": ["policy.karmada.io"],
            "apiVersions": ["*"],
            "resources": resources,
            "scope": "*",
        }],
        "clientConfig": {
            "url": f"https://{WEBHOOK_SERVICE}.{namespace}.svc:443/{path}",
            "caBundle": ca_bundle,
        },
        "failurePolicy": "Fail",
        "sideEffects": "None",
        "admissionReviewVersions": ["v1"],
        "timeoutSeconds": 3,
    }


def webhook_configurations(namespace: str, ca_bundle: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """Mutating and validating webhook configurations for federation policies."""
    mutating = {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "MutatingWebhookConfiguration",
        "metadata": {"name": "mutating-config", "labels": {"app": "mutating-config"}},
        "webhooks": [
            _webhook("propagationpolicy.karmada.io", "mutate-propagationpolicy",
                     ["propagationpolicies"], namespace, ca_bundle),
            _webhook("clusterpropagationpolicy.karmada.io", "mutate-clusterpropagationpolicy",
                     ["clusterpropagationpolicies"], namespace, ca_bundle),
            _webhook("overridepolicy.karmada.io", "mutate-overridepolicy",
                     ["overridepolicies"], namespace, ca_bundle),
        ],
    }
    validating = {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": "ValidatingWebhookConfiguration",
        "metadata": {"name": "validating-config", "labels": {"app": "validating-config"}},
        "webhooks": [
            _webhook("propagationpolicy.karmada.io", "validate-propagationpolicy",
                     ["propagationpolicies"], namespace, ca_bundle),
            _webhook("clusterpropagationpolicy.karmada.io", "validate-clusterpropagationpolicy",
                     ["clusterpropagationpolicies"], namespace, ca_bundle),
            _webhook("overridepolicy.karmada.io", "validate-overridepolicy",
                     ["overridepolicies"], namespace, ca_bundle),
        ],
    }
    return mutating, validating


def install_crds(kube: KubeClient, crd_dir: Path, ca_bundle: str, namespace: str) -> int:
    """Install the bundle and supporting registrations into the control plane.

    *kube* must talk to the new control plane, not the host cluster.
    *ca_bundle* is the base64-encoded federation CA certificate.
    Returns the number of CRDs created (existing ones are skipped).
    """
    created = 0
    for path in _yaml_files(crd_dir / "bases"):
        for doc in _load_documents(path):
            name = (doc.get("metadata") or {}).get("name") or path.stem
            if kube.create_or_skip(
                f"create CRD {name}",
                kube.apiextensions.create_custom_resource_definition,
                body=doc,
            ):
                created += 1

    substitutions = {
        CA_BUNDLE_PLACEHOLDER: ca_bundle,
        f"{WEBHOOK_SERVICE}.{DEFAULT_CONTROL_PLANE_NAMESPACE}.svc": f"{WEBHOOK_SERVICE}.{namespace}.svc",
    }
    for path in _yaml_files(crd_dir / "patches"):
        for doc in _load_documents(path, substitutions):
            name = (doc.get("metadata") or {}).get("name")
            if not name:
                logger.warning("Skipping CRD patch without metadata.name in %s", path)
                continue
            kube.call(
                f"patch CRD {name}",
                kube.apiextensions.patch_custom_resource_definition,
                name=name,
                body=doc,
            )

    mutating, validating = webhook_configurations(namespace, ca_bundle)
    kube.create_or_skip(
        "create mutating webhook configuration",
        kube.admission.create_mutating_webhook_configuration,
        body=mutating,
    )
    kube.create_or_skip(
        "create validating webhook configuration",
        kube.admission.create_validating_webhook_configuration,
        body=validating,
    )

    kube.create_or_skip(
        f"create namespace {DEFAULT_CONTROL_PLANE_NAMESPACE} in control plane",
        kube.core.create_namespace,
        body={"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": DEFAULT_CONTROL_PLANE_NAMESPACE}},
    )
    kube.create_or_skip(
        "create aggregated API service",
        kube.core.create_namespaced_service,
        namespace=DEFAULT_CONTROL_PLANE_NAMESPACE,
        body=aggregated_api_external_service(namespace),
    )
    kube.create_or_skip(
        "register aggregated API",
        kube.custom.create_cluster_custom_object,
        group="apiregistration.k8s.io",
        version="v1",
        plural="apiservices",
        body=aggregated_api_service(ca_bundle),
    )
    logger.info("Installed %d CRDs into the control plane", created)
    return created
