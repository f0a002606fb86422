"""Multi-cluster resource Get/List.

ResourceProcessor dispatches to per-kind providers held in a ProviderRegistry.
"""

from clusterfed.resources.processor import ResourceProcessor
from clusterfed.resources.providers import (
    CustomResourceProvider,
    NativeResourceProvider,
    ResourceMapping,
    ResourceProvider,
)
from clusterfed.resources.query import default_list
from clusterfed.resources.registry import (
    GroupVersionResource,
    KindNameLookup,
    ProviderLookup,
    ProviderRegistry,
    build_default_registry,
)

__all__ = [
    "CustomResourceProvider",
    "GroupVersionResource",
    "KindNameLookup",
    "NativeResourceProvider",
    "ProviderLookup",
    "ProviderRegistry",
    "ResourceMapping",
    "ResourceProcessor",
    "ResourceProvider",
    "build_default_registry",
    "default_list",
]
