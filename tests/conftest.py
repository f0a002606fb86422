"""Shared fixtures: a KubeClient whose API groups are MagicMocks.

No test talks to a real cluster.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from clusterfed.clients.kube import KubeClient


class MockKube(KubeClient):
    """KubeClient with one MagicMock per API class, created on first use."""

    def __init__(self) -> None:
        super().__init__(api_client=MagicMock(name="ApiClient"))

    def _get_api_instance(self, api_class_name: str) -> Any:
        return self._apis.setdefault(api_class_name, MagicMock(name=api_class_name))


@pytest.fixture()
def kube() -> MockKube:
    return MockKube()


def api_exception(status: int, reason: str = "") -> ApiException:
    return ApiException(status=status, reason=reason or f"HTTP {status}")


def make_pod(ready: bool = True, phase: str = "Running") -> MagicMock:
    pod = MagicMock()
    pod.status.phase = phase
    container = MagicMock()
    container.ready = ready
    pod.status.container_statuses = [container]
    return pod


def make_node(name: str, internal_ip: str | None = None, external_ip: str | None = None) -> MagicMock:
    node = MagicMock()
    node.metadata.name = name
    addresses = []
    if external_ip:
        addresses.append(MagicMock(type="ExternalIP", address=external_ip))
    if internal_ip:
        addresses.append(MagicMock(type="InternalIP", address=internal_ip))
    node.status.addresses = addresses
    return node


def make_list(items: list[Any]) -> MagicMock:
    result = MagicMock()
    result.items = items
    return result
