"""Kubernetes API client construction and a thin typed facade.

``build_api_client`` turns a ``ClusterConnection`` into a
``kubernetes.client.ApiClient``.  ``KubeClient`` wraps one ApiClient and
exposes the typed API groups that bootstrap and membership code need,
plus ``call``/``create_or_skip`` helpers that translate ``ApiException``
into the clusterfed error taxonomy.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import yaml
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from clusterfed.errors import (
    ClusterFedError,
    ClusterUnreachableError,
    NotFoundError,
    TransportError,
)
from clusterfed.models import ClusterConnection, ConnectionType

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_api_client(connection: ClusterConnection) -> client.ApiClient:
    """Build a kubernetes ApiClient from a cluster connection descriptor.

    Raises:
        ClusterUnreachableError: If the descriptor is incomplete or the
            kubeconfig cannot be loaded.
    """
    if connection.type == ConnectionType.DIRECT:
        if not connection.kubeconfig:
            raise ClusterUnreachableError("Direct connection has no kubeconfig")
        try:
            kubeconfig = yaml.safe_load(connection.kubeconfig)
        except yaml.YAMLError as e:
            raise ClusterUnreachableError(f"Invalid kubeconfig: {e}") from e
        if not isinstance(kubeconfig, dict):
            raise ClusterUnreachableError("Kubeconfig must be a YAML mapping")
        try:
            return config.new_client_from_config_dict(kubeconfig)
        except config.ConfigException as e:
            raise ClusterUnreachableError(f"Cannot load kubeconfig: {e}") from e

    if not connection.kubernetes_api_endpoint or not connection.token:
        raise ClusterUnreachableError(
            "Token connection requires kubernetes_api_endpoint and token"
        )

    try:
        return config.new_client_from_config_dict(_token_kubeconfig(connection))
    except config.ConfigException as e:
        raise ClusterUnreachableError(f"Cannot load token connection: {e}") from e


def _token_kubeconfig(connection: ClusterConnection) -> dict[str, Any]:
    """Describe a token connection as a one-context kubeconfig.

    The kubernetes config loader then owns the CA bundle file: one file per
    distinct bundle, removed when the process exits.
    """
    cluster: dict[str, Any] = {"server": connection.kubernetes_api_endpoint}
    if connection.insecure:
        cluster["insecure-skip-tls-verify"] = True
    elif connection.ca_data:
        cluster["certificate-authority-data"] = base64.b64encode(connection.ca_data).decode()
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "member", "cluster": cluster}],
        "users": [{"name": "member", "user": {"token": connection.token}}],
        "contexts": [{"name": "member", "context": {"cluster": "member", "user": "member"}}],
        "current-context": "member",
    }


def api_error(exc: ApiException, description: str) -> TransportError:
    """Translate an ApiException into NotFoundError or TransportError."""
    message = f"{description}: K8s API error ({exc.status}): {exc.reason}"
    if exc.status == 404:
        return NotFoundError(message, status=exc.status)
    return TransportError(message, status=exc.status)


class KubeClient:
    """Typed facade over one cluster's ApiClient."""

    def __init__(self, api_client: Any) -> None:
        self._api_client = api_client
        self._apis: dict[str, Any] = {}

    @property
    def api_client(self) -> Any:
        return self._api_client

    def _get_api_instance(self, api_class_name: str) -> Any:
        """Instantiate (once) the named API class from ``kubernetes.client``."""
        api = self._apis.get(api_class_name)
        if api is None:
            api_cls = getattr(client, api_class_name)
            api = api_cls(self._api_client)
            self._apis[api_class_name] = api
        return api

    def api(self, api_class_name: str) -> Any:
        """Return the named ``kubernetes.client`` API bound to this cluster."""
        return self._get_api_instance(api_class_name)

    @property
    def core(self) -> Any:
        return self._get_api_instance("CoreV1Api")

    @property
    def apps(self) -> Any:
        return self._get_api_instance("AppsV1Api")

    @property
    def rbac(self) -> Any:
        return self._get_api_instance("RbacAuthorizationV1Api")

    @property
    def apiextensions(self) -> Any:
        return self._get_api_instance("ApiextensionsV1Api")

    @property
    def admission(self) -> Any:
        return self._get_api_instance("AdmissionregistrationV1Api")

    @property
    def custom(self) -> Any:
        return self._get_api_instance("CustomObjectsApi")

    def call(self, description: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke an API method, translating failures into TransportError."""
        try:
            return fn(*args, **kwargs)
        except ApiException as exc:
            raise api_error(exc, description) from exc
        except ClusterFedError:
            raise
        except Exception as exc:
            raise TransportError(f"{description}: {exc}") from exc

    def create_or_skip(
        self,
        description: str,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> bool:
        """Create an object, treating "already exists" as success.

        Returns ``True`` when the object was created, ``False`` when it
        already existed.
        """
        try:
            self.call(description, fn, *args, **kwargs)
        except TransportError as exc:
            if exc.status == 409:
                logger.info("%s: already exists, skipping", description)
                return False
            raise
        logger.info("%s: created", description)
        return True
