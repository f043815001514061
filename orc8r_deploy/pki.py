"""PKI Material Builder.

Generates the self-signed key/certificate material the orchestrator needs,
one set per trust role. Material is regenerated on every run and re-synced
into the cluster afterwards.

Roles and the files they produce:
    endpoint   — controller.crt, controller.key        (CN = domain)
    certifier  — certifier.pem, certifier.key          (CN = certifier.magma.com)
    bootstrap  — bootstrapper.key
    root       — rootCA.pem (self-signed with the bootstrapper key)
    operator   — admin_operator.pem, admin_operator.key.pem
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

KEY_SIZE = 2048
VALIDITY_DAYS = 365

ENDPOINT = "endpoint"
CERTIFIER = "certifier"
BOOTSTRAP = "bootstrap"
ROOT = "root"
OPERATOR = "operator"

ROLES = (ENDPOINT, CERTIFIER, BOOTSTRAP, ROOT, OPERATOR)


@dataclass(frozen=True)
class PkiMaterial:
    """Key and/or certificate for one role, PEM-encoded."""

    role: str
    key_pem: Optional[bytes] = None
    cert_pem: Optional[bytes] = None


@dataclass(frozen=True)
class PkiMaterialSet:
    materials: dict[str, PkiMaterial]

    def __getitem__(self, role: str) -> PkiMaterial:
        return self.materials[role]

    def files(self) -> dict[str, bytes]:
        """The eight named files consumed by the orchestrator certs secret."""
        endpoint = self[ENDPOINT]
        certifier = self[CERTIFIER]
        operator = self[OPERATOR]
        return {
            "controller.crt": endpoint.cert_pem,
            "controller.key": endpoint.key_pem,
            "rootCA.pem": self[ROOT].cert_pem,
            "certifier.pem": certifier.cert_pem,
            "certifier.key": certifier.key_pem,
            "bootstrapper.key": self[BOOTSTRAP].key_pem,
            "admin_operator.pem": operator.cert_pem,
            "admin_operator.key.pem": operator.key_pem,
        }


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)


def _key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _cert_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _build_cert(
    subject: str,
    key: rsa.RSAPrivateKey,
    *,
    issuer: Optional[x509.Name] = None,
    signing_key: Optional[rsa.RSAPrivateKey] = None,
    is_ca: bool = False,
    dns_names: Optional[list[str]] = None,
) -> x509.Certificate:
    now = dt.datetime.now(dt.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(issuer or _name(subject))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(minutes=5))
        .not_valid_after(now + dt.timedelta(days=VALIDITY_DAYS))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    if dns_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]),
            critical=False,
        )
    return builder.sign(signing_key or key, hashes.SHA256())


def _self_signed(role: str, common_name: str, *, is_ca: bool = False) -> PkiMaterial:
    key = _new_key()
    cert = _build_cert(common_name, key, is_ca=is_ca)
    return PkiMaterial(role=role, key_pem=_key_pem(key), cert_pem=_cert_pem(cert))


def build_pki(domain: str) -> PkiMaterialSet:
    """Generate the five role materials for ``domain``."""
    bootstrap_key = _new_key()
    root_cert = _build_cert("rootCA", bootstrap_key, is_ca=True)

    materials = {
        ENDPOINT: _self_signed(ENDPOINT, domain),
        CERTIFIER: _self_signed(CERTIFIER, "certifier.magma.com", is_ca=True),
        BOOTSTRAP: PkiMaterial(role=BOOTSTRAP, key_pem=_key_pem(bootstrap_key)),
        ROOT: PkiMaterial(role=ROOT, key_pem=_key_pem(bootstrap_key), cert_pem=_cert_pem(root_cert)),
        OPERATOR: _self_signed(OPERATOR, "admin_operator"),
    }
    return PkiMaterialSet(materials)


def build_store_tls(pki: PkiMaterialSet, db_namespace: str) -> dict[str, bytes]:
    """Issue a store transport certificate from the root authority.

    Returns ``tls.crt``, ``tls.key`` and ``ca.crt`` for the TLS bundle.
    """
    root = pki[ROOT]
    root_key = serialization.load_pem_private_key(root.key_pem, password=None)
    root_cert = x509.load_pem_x509_certificate(root.cert_pem)

    key = _new_key()
    wildcard = f"*.{db_namespace}.svc.cluster.local"
    cert = _build_cert(
        wildcard,
        key,
        issuer=root_cert.subject,
        signing_key=root_key,
        dns_names=[wildcard, f"*.{db_namespace}.svc", f"*.{db_namespace}"],
    )
    return {
        "tls.crt": _cert_pem(cert),
        "tls.key": _key_pem(key),
        "ca.crt": root.cert_pem,
    }
