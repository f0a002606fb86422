"""Cluster inventory loader.

Loads and validates member cluster records from a YAML file.
Provides lookup by cluster name for the client registry and the CLI.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from clusterfed.models import Cluster


class InventoryError(Exception):
    """Raised when the inventory file is invalid or cannot be loaded."""


class ClusterInventory:
    """In-memory cluster inventory loaded from YAML.

    Provides O(1) lookup by cluster name and filtering by region.
    """

    def __init__(self, clusters: list[Cluster]) -> None:
        self._clusters: dict[str, Cluster] = {}
        for cluster in clusters:
            if cluster.name in self._clusters:
                raise InventoryError(f"Duplicate cluster name: {cluster.name}")
            self._clusters[cluster.name] = cluster

    @property
    def clusters(self) -> list[Cluster]:
        return list(self._clusters.values())

    def __len__(self) -> int:
        return len(self._clusters)

    def get(self, name: str) -> Cluster | None:
        """Look up a cluster by name. Returns None if not found."""
        return self._clusters.get(name)

    def get_or_raise(self, name: str) -> Cluster:
        """Look up a cluster by name. Raises InventoryError if not found."""
        cluster = self._clusters.get(name)
        if cluster is None:
            raise InventoryError(f"Cluster not found: {name}")
        return cluster

    def list_by_region(self, region: str) -> list[Cluster]:
        """Return all clusters labelled with the given region."""
        return [c for c in self._clusters.values() if c.region == region]

    def control_plane_hosts(self) -> list[Cluster]:
        """Return clusters configured to host the federation control plane."""
        return [c for c in self._clusters.values() if c.control_plane.install]


def _read_kubeconfig_file(entry: dict[str, Any], base: Path) -> dict[str, Any]:
    """Inline ``kubeconfig_file`` (relative to the inventory) as bytes."""
    kubeconfig_file = entry.pop("kubeconfig_file", None)
    if kubeconfig_file is None:
        return entry

    path = (base / kubeconfig_file).resolve()
    if not path.is_file():
        raise InventoryError(f"Kubeconfig file not found for {entry.get('name')}: {path}")

    connection = dict(entry.get("connection") or {})
    connection["kubeconfig"] = path.read_bytes()
    entry["connection"] = connection
    return entry


def load_inventory(path: str | Path) -> ClusterInventory:
    """Load and validate a cluster inventory from a YAML file.

    The YAML file must have a top-level 'clusters' key containing a list
    of cluster records.

    Raises:
        InventoryError: If the file cannot be read, parsed, or validated.
    """
    path = Path(path)
    if not path.exists():
        raise InventoryError(f"Inventory file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise InventoryError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict) or "clusters" not in raw:
        raise InventoryError(f"Inventory file must have a top-level 'clusters' key: {path}")

    raw_clusters: Any = raw["clusters"]
    if not isinstance(raw_clusters, list):
        raise InventoryError(f"'clusters' must be a list: {path}")

    clusters: list[Cluster] = []
    for i, entry in enumerate(raw_clusters):
        if not isinstance(entry, dict):
            raise InventoryError(f"Invalid cluster at index {i} in {path}: expected a mapping")
        try:
            clusters.append(Cluster(**_read_kubeconfig_file(dict(entry), path.parent)))
        except (ValidationError, TypeError) as e:
            raise InventoryError(f"Invalid cluster at index {i} in {path}: {e}") from e

    return ClusterInventory(clusters)
