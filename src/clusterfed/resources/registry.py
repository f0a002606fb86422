"""Resource provider registry and kind lookup.

The registry is two read-only partitions keyed by
``GroupVersionResource``: cluster-scoped kinds and namespaced kinds.  It
is built once; supporting a new kind means building a new registry.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import NamedTuple, Protocol, runtime_checkable

from clusterfed.clients.registry import ClusterClients
from clusterfed.resources.providers import (
    CUSTOM_RESOURCE_MAP,
    RESOURCE_MAP,
    CustomResourceProvider,
    NativeResourceProvider,
    ResourceProvider,
)

logger = logging.getLogger(__name__)


class GroupVersionResource(NamedTuple):
    group: str
    version: str
    resource: str


class ProviderRegistry:
    """Immutable (cluster-scoped, namespaced) provider partitions."""

    def __init__(
        self,
        cluster_scoped: Mapping[GroupVersionResource, ResourceProvider] | None = None,
        namespaced: Mapping[GroupVersionResource, ResourceProvider] | None = None,
    ) -> None:
        self._cluster_scoped = MappingProxyType(dict(cluster_scoped or {}))
        self._namespaced = MappingProxyType(dict(namespaced or {}))

    @property
    def cluster_scoped(self) -> Mapping[GroupVersionResource, ResourceProvider]:
        return self._cluster_scoped

    @property
    def namespaced(self) -> Mapping[GroupVersionResource, ResourceProvider]:
        return self._namespaced

    def partition(self, cluster_scope: bool) -> Mapping[GroupVersionResource, ResourceProvider]:
        return self._cluster_scoped if cluster_scope else self._namespaced

    def __len__(self) -> int:
        return len(self._cluster_scoped) + len(self._namespaced)


@runtime_checkable
class ProviderLookup(Protocol):
    """Strategy for finding a provider by resource name within one partition."""

    def find(
        self, registry: ProviderRegistry, cluster_scope: bool, resource: str,
    ) -> ResourceProvider | None:
        ...


class KindNameLookup:
    """Linear scan matching on the resource name only.

    Group and version are ignored, so two kinds that share a name across
    API groups cannot be told apart; the first registered one wins.
    """

    def find(
        self, registry: ProviderRegistry, cluster_scope: bool, resource: str,
    ) -> ResourceProvider | None:
        for gvr, provider in registry.partition(cluster_scope).items():
            if gvr.resource == resource:
                return provider
        return None


def build_default_registry(
    clients: ClusterClients,
    control_plane_clients: ClusterClients | None = None,
) -> ProviderRegistry:
    """Register every native and federation kind.

    Federation kinds are read from *control_plane_clients* when given,
    otherwise from *clients*.
    """
    cluster_scoped: dict[GroupVersionResource, ResourceProvider] = {}
    namespaced: dict[GroupVersionResource, ResourceProvider] = {}

    for kind, mapping in RESOURCE_MAP.items():
        gvr = GroupVersionResource(mapping.group, mapping.version, kind)
        target = namespaced if mapping.namespaced else cluster_scoped
        target[gvr] = NativeResourceProvider(kind, mapping, clients)

    for kind, custom in CUSTOM_RESOURCE_MAP.items():
        gvr = GroupVersionResource(custom.group, custom.version, kind)
        target = namespaced if custom.namespaced else cluster_scoped
        target[gvr] = CustomResourceProvider(kind, custom, control_plane_clients or clients)

    registry = ProviderRegistry(cluster_scoped, namespaced)
    logger.debug("Built provider registry with %d kinds", len(registry))
    return registry
