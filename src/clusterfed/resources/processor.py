"""ResourceProcessor: routes Get/List to the provider for a resource kind."""

from __future__ import annotations

import logging
from typing import Any

from clusterfed.errors import ResourceNotSupportedError
from clusterfed.models import ListResult, ResourceQuery
from clusterfed.resources.providers import ResourceProvider
from clusterfed.resources.registry import KindNameLookup, ProviderLookup, ProviderRegistry

logger = logging.getLogger(__name__)


class ResourceProcessor:
    """Scope-aware dispatch over a ``ProviderRegistry``.

    An empty namespace selects the cluster-scoped partition and nothing
    else; a namespaced kind requested without a namespace is unsupported.
    An empty region/cluster targets the host cluster.
    """

    def __init__(self, registry: ProviderRegistry, lookup: ProviderLookup | None = None) -> None:
        self._registry = registry
        self._lookup = lookup or KindNameLookup()

    def try_resource(self, cluster_scope: bool, resource: str) -> ResourceProvider | None:
        return self._lookup.find(self._registry, cluster_scope, resource)

    def _provider(self, resource: str, namespace: str) -> ResourceProvider:
        provider = self.try_resource(not namespace, resource)
        if provider is None:
            scope = "cluster-scoped" if not namespace else "namespaced"
            raise ResourceNotSupportedError(f"Resource is not supported: {resource} ({scope})")
        return provider

    def get(
        self,
        resource: str,
        namespace: str,
        name: str,
        region: str = "",
        cluster: str = "",
    ) -> Any:
        provider = self._provider(resource, namespace)
        return provider.get(region, cluster, namespace, name)

    def list(
        self,
        resource: str,
        namespace: str,
        query: ResourceQuery | None = None,
        region: str = "",
        cluster: str = "",
    ) -> ListResult:
        provider = self._provider(resource, namespace)
        result = provider.list(region, cluster, namespace, query or ResourceQuery())
        logger.debug("Listed %s in %s: %d of %d", resource, namespace or "<cluster>",
                     len(result.items), result.total)
        return result
