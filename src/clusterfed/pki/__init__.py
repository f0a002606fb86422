"""In-memory PKI generation for control-plane bootstrap."""

from clusterfed.pki.generator import (
    AltNames,
    CertConfig,
    CertificatePair,
    PKIHierarchy,
    build_apiserver_alt_names,
    build_etcd_alt_names,
    generate_hierarchy,
)

__all__ = [
    "AltNames",
    "CertConfig",
    "CertificatePair",
    "PKIHierarchy",
    "build_apiserver_alt_names",
    "build_etcd_alt_names",
    "generate_hierarchy",
]
