"""Core data models for clusterfed.

Defines the schemas for:
- Member clusters (identity, connection, control-plane install settings)
- Resource queries and the uniform list envelope
- Bootstrap results
- Federation membership (join/unjoin) options
"""

from __future__ import annotations

import enum
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from clusterfed.errors import InvalidQueryError

CLUSTER_REGION_LABEL = "cluster.clusterfed.io/region"
CLUSTER_ZONE_LABEL = "cluster.clusterfed.io/zone"

# --- Enums ---


class ConnectionType(enum.StrEnum):
    DIRECT = "direct"
    TOKEN = "token"


class StorageMode(enum.StrEnum):
    PVC = "PVC"
    EMPTY_DIR = "emptyDir"
    HOST_PATH = "hostPath"


# --- Cluster Schema ---


class ClusterConnection(BaseModel):
    """How to reach a member cluster's API server.

    ``direct`` connections carry a full kubeconfig; ``token`` connections
    carry the API endpoint plus a bearer token and optional CA bundle.
    """

    type: ConnectionType = ConnectionType.DIRECT
    kubeconfig: bytes | None = None
    kubernetes_api_endpoint: str = ""
    token: str = ""
    ca_data: bytes | None = None
    insecure: bool = False


class ControlPlaneSpec(BaseModel):
    """Whether this cluster hosts the federation control plane.

    ``overrides`` are merged over the configured bootstrap defaults
    for this cluster only.
    """

    install: bool = False
    overrides: dict[str, Any] = Field(default_factory=dict)


class ClusterStatus(BaseModel):
    joined: bool = False
    control_plane_installed: bool = False
    control_plane_kubeconfig: bytes | None = None
    bootstrap_token: str = ""


class Cluster(BaseModel):
    """A registered member cluster."""

    name: str = Field(..., pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    labels: dict[str, str] = Field(default_factory=dict)
    provider: str = ""
    enable: bool = True
    connection: ClusterConnection = Field(default_factory=ClusterConnection)
    control_plane: ControlPlaneSpec = Field(default_factory=ControlPlaneSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def region(self) -> str:
        return self.labels.get(CLUSTER_REGION_LABEL, "")

    @property
    def zone(self) -> str:
        return self.labels.get(CLUSTER_ZONE_LABEL, "")


# --- Resource Query Schema ---


class PageWindow(BaseModel):
    """An offset/limit pagination window.

    A ``limit`` of ``None`` returns every item from ``offset`` onwards.
    """

    offset: int = Field(0, ge=0)
    limit: int | None = Field(10, ge=1)


class ResourceQuery(BaseModel):
    """Selector, ordering and pagination for a List call.

    ``label_selector`` is passed to the cluster API server-side; sorting,
    filtering and pagination are applied client-side so every resource
    kind exposes the same list semantics.
    """

    label_selector: str = ""
    sort_by: str = "createTime"
    ascending: bool = False
    filters: dict[str, str] = Field(default_factory=dict)
    page: PageWindow | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any] | None) -> ResourceQuery:
        """Parse the caller-facing shape ``{labelSelector, sort, page}``."""
        data = data or {}
        page = data.get("page")
        try:
            return cls(
                label_selector=data.get("labelSelector", ""),
                sort_by=data.get("sort") or "createTime",
                ascending=bool(data.get("ascending", False)),
                filters=data.get("filters") or {},
                page=PageWindow(**page) if page else None,
            )
        except (ValidationError, TypeError) as e:
            raise InvalidQueryError(f"Invalid list query: {e}") from e


class ListResult(BaseModel):
    """Uniform list envelope, independent of the provider that built it."""

    items: list[Any] = Field(default_factory=list)
    total: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "items": [_to_plain(item) for item in self.items],
            "total": self.total,
        }


def _to_plain(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


# --- Bootstrap Result ---


class BootstrapResult(BaseModel):
    """What a successful control-plane install hands back to registration."""

    kubeconfig: bytes
    bootstrap_token: str


# --- Federation Membership ---


class JoinOptions(BaseModel):
    cluster_name: str
    cluster_namespace: str = "karmada-cluster"
    cluster_provider: str = ""
    cluster_region: str = ""
    cluster_zone: str = ""


class UnjoinOptions(BaseModel):
    cluster_name: str
    cluster_namespace: str = "karmada-cluster"
    wait: timedelta = timedelta(seconds=60)
