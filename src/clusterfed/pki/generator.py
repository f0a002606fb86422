"""PKI generator for a federation control plane.

Builds three independent roots (federation API, front proxy, etcd) and the
leaf pairs each one signs.  Everything stays in memory; the orchestrator
decides which pairs are persisted into secrets.

Uses the ``cryptography`` x509 builder with RSA-2048 keys and SHA-256
signatures.  Certificates are PEM, keys are PEM/PKCS#8.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from clusterfed.bootstrap.options import BootstrapConfig
from clusterfed.errors import CertGenerationError

CERT_VALIDITY = timedelta(days=365)
KEY_SIZE = 2048

# Pair names double as secret key prefixes (``<name>.crt`` / ``<name>.key``).
CA_NAME = "ca"
ADMIN_NAME = "karmada"
APISERVER_NAME = "apiserver"
FRONT_PROXY_CA_NAME = "front-proxy-ca"
FRONT_PROXY_CLIENT_NAME = "front-proxy-client"
ETCD_CA_NAME = "etcd-ca"
ETCD_SERVER_NAME = "etcd-server"
ETCD_CLIENT_NAME = "etcd-client"

# Service names the control plane is reached by, inside the namespace.
API_SERVER_SERVICE = "karmada-apiserver"
WEBHOOK_SERVICE = "karmada-webhook"
AGGREGATED_API_SERVER_SERVICE = "karmada-aggregated-apiserver"
ETCD_SERVICE = "etcd"

SERVICE_NETWORK_IP = "10.254.0.1"
LOOPBACK_IP = "127.0.0.1"


@dataclass(frozen=True)
class AltNames:
    dns_names: tuple[str, ...] = ()
    ips: tuple[str, ...] = ()


@dataclass(frozen=True)
class CertConfig:
    """Subject and SANs for a leaf certificate."""

    common_name: str
    organizations: tuple[str, ...] = ()
    alt_names: AltNames = field(default_factory=AltNames)


@dataclass(frozen=True)
class CertificatePair:
    """A PEM certificate and its PEM private key.

    ``issuer`` names the CA pair that signed a leaf; it is ``None`` for a
    self-signed CA.
    """

    name: str
    cert: bytes
    key: bytes
    issuer: str | None = None

    @property
    def is_ca(self) -> bool:
        return self.issuer is None


@dataclass(frozen=True)
class PKIHierarchy:
    ca: CertificatePair
    admin: CertificatePair
    apiserver: CertificatePair
    front_proxy_ca: CertificatePair
    front_proxy_client: CertificatePair
    etcd_ca: CertificatePair
    etcd_server: CertificatePair
    etcd_client: CertificatePair

    def pairs(self) -> Iterator[CertificatePair]:
        """All pairs, CAs first within each chain."""
        yield self.ca
        yield self.etcd_ca
        yield self.etcd_server
        yield self.etcd_client
        yield self.admin
        yield self.apiserver
        yield self.front_proxy_ca
        yield self.front_proxy_client

    def signed_by(self, ca: CertificatePair) -> list[CertificatePair]:
        return [pair for pair in self.pairs() if pair.issuer == ca.name]


# --- SAN construction ---


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return tuple(seen)


def build_apiserver_alt_names(
    namespace: str,
    external_ips: Iterable[str] = (),
    external_dns: Iterable[str] = (),
    host_ips: Iterable[str] = (),
) -> AltNames:
    """SANs for every name and address the API server tier is reached by.

    Deterministic for a given input: fixed names first, then external DNS,
    then external IPs, loopback, the service-network IP and host IPs.
    """
    dns = [
        "localhost",
        "kubernetes",
        "kubernetes.default",
        "kubernetes.default.svc",
        API_SERVER_SERVICE,
        WEBHOOK_SERVICE,
        AGGREGATED_API_SERVER_SERVICE,
        f"{API_SERVER_SERVICE}.{namespace}.svc.cluster.local",
        f"{WEBHOOK_SERVICE}.{namespace}.svc.cluster.local",
        f"{WEBHOOK_SERVICE}.{namespace}.svc",
        f"{AGGREGATED_API_SERVER_SERVICE}.{namespace}.svc.cluster.local",
        f"*.{namespace}.svc.cluster.local",
        f"*.{namespace}.svc",
    ]
    dns.extend(name.strip() for name in external_dns)

    ips = [ip.strip() for ip in external_ips]
    ips.extend([LOOPBACK_IP, SERVICE_NETWORK_IP])
    ips.extend(host_ips)

    return AltNames(dns_names=_dedupe(dns), ips=_dedupe(ips))


def build_etcd_alt_names(namespace: str, replicas: int) -> AltNames:
    """SANs for each etcd member's stable network identity."""
    dns = ["localhost"]
    dns.extend(
        f"{ETCD_SERVICE}-{ordinal}.{ETCD_SERVICE}.{namespace}.svc.cluster.local"
        for ordinal in range(replicas)
    )
    return AltNames(dns_names=_dedupe(dns), ips=(LOOPBACK_IP,))


# --- Certificate building ---


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)


def _encode_key(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _subject(common_name: str, organizations: Iterable[str] = ()) -> x509.Name:
    attributes = [
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, org)
        for org in organizations
        if org
    ]
    attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    return x509.Name(attributes)


def _san(alt_names: AltNames) -> x509.SubjectAlternativeName | None:
    general_names: list[x509.GeneralName] = [
        x509.DNSName(name) for name in alt_names.dns_names
    ]
    general_names.extend(
        x509.IPAddress(ipaddress.ip_address(ip)) for ip in alt_names.ips
    )
    if not general_names:
        return None
    return x509.SubjectAlternativeName(general_names)


@dataclass
class _CA:
    pair: CertificatePair
    cert: x509.Certificate
    key: rsa.RSAPrivateKey


def _new_ca(name: str, common_name: str, now: datetime) -> _CA:
    key = _new_key()
    subject = _subject(common_name)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    pair = CertificatePair(
        name=name,
        cert=cert.public_bytes(serialization.Encoding.PEM),
        key=_encode_key(key),
    )
    return _CA(pair=pair, cert=cert, key=key)


def _new_leaf(name: str, ca: _CA, cfg: CertConfig, now: datetime) -> CertificatePair:
    key = _new_key()
    builder = (
        x509.CertificateBuilder()
        .subject_name(_subject(cfg.common_name, cfg.organizations))
        .issuer_name(ca.cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
            ),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.key.public_key()),
            critical=False,
        )
    )
    san = _san(cfg.alt_names)
    if san is not None:
        builder = builder.add_extension(san, critical=False)

    cert = builder.sign(ca.key, hashes.SHA256())
    return CertificatePair(
        name=name,
        cert=cert.public_bytes(serialization.Encoding.PEM),
        key=_encode_key(key),
        issuer=ca.pair.name,
    )


def generate_hierarchy(
    config: BootstrapConfig,
    *,
    now: datetime | None = None,
) -> PKIHierarchy:
    """Generate the full control-plane PKI for *config*.

    ``config.host_ips`` must already be resolved; they end up in the API
    server SANs.

    Raises:
        CertGenerationError: On any key generation, signing or encoding
            failure.  No partial hierarchy is returned.
    """
    issued_at = (now or datetime.now(tz=UTC)).astimezone(UTC)

    apiserver_alt_names = build_apiserver_alt_names(
        config.namespace,
        external_ips=config.external_ips,
        external_dns=config.external_dns,
        host_ips=config.host_ips,
    )
    etcd_alt_names = build_etcd_alt_names(config.namespace, config.etcd_replicas)

    try:
        ca = _new_ca(CA_NAME, "karmada", issued_at)
        admin = _new_leaf(
            ADMIN_NAME,
            ca,
            CertConfig("system:admin", ("system:masters",), apiserver_alt_names),
            issued_at,
        )
        apiserver = _new_leaf(
            APISERVER_NAME,
            ca,
            CertConfig("karmada-apiserver", (), apiserver_alt_names),
            issued_at,
        )

        front_proxy_ca = _new_ca(FRONT_PROXY_CA_NAME, "front-proxy-ca", issued_at)
        front_proxy_client = _new_leaf(
            FRONT_PROXY_CLIENT_NAME,
            front_proxy_ca,
            CertConfig("front-proxy-client"),
            issued_at,
        )

        etcd_ca = _new_ca(ETCD_CA_NAME, "etcd-ca", issued_at)
        etcd_server = _new_leaf(
            ETCD_SERVER_NAME,
            etcd_ca,
            CertConfig("karmada-etcd-server", (), etcd_alt_names),
            issued_at,
        )
        etcd_client = _new_leaf(
            ETCD_CLIENT_NAME,
            etcd_ca,
            CertConfig("karmada-etcd-client"),
            issued_at,
        )
    except Exception as exc:
        raise CertGenerationError(f"Certificate generation failed: {exc}") from exc

    return PKIHierarchy(
        ca=ca.pair,
        admin=admin,
        apiserver=apiserver,
        front_proxy_ca=front_proxy_ca.pair,
        front_proxy_client=front_proxy_client,
        etcd_ca=etcd_ca.pair,
        etcd_server=etcd_server,
        etcd_client=etcd_client,
    )
