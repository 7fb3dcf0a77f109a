"""TLS material for the in-cluster admission agent."""

from __future__ import annotations

import datetime
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

# Service DNS name the agent webhook is reached at
AGENT_HOST = "agent-hook.zarf.svc"

ORGANIZATION = "Zarf Cluster"
CA_COMMON_NAME = "Zarf Private Certificate Authority"
RSA_BITS = 2048
VALID_FOR = datetime.timedelta(days=397)


@dataclass
class GeneratedPKI:
    """PEM-encoded CA certificate, leaf certificate and leaf key."""

    ca: str
    cert: str
    key: str

    @classmethod
    def from_dict(cls, data: dict[str, str] | None) -> GeneratedPKI:
        data = data or {}
        return cls(ca=data.get("ca", ""), cert=data.get("cert", ""), key=data.get("key", ""))

    def to_dict(self) -> dict[str, str]:
        return {"ca": self.ca, "cert": self.cert, "key": self.key}

    @property
    def empty(self) -> bool:
        return not (self.ca and self.cert and self.key)


def _name(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def generate_pki(host: str = AGENT_HOST, now: datetime.datetime | None = None) -> GeneratedPKI:
    """Create a private CA and a server certificate for ``host`` signed by it.

    Args:
        host: DNS name placed in the leaf certificate's SAN
        now: Issue time (defaults to the current UTC time)

    Returns:
        GeneratedPKI with PEM strings
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    not_after = now + VALID_FOR

    ca_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_BITS)
    ca_name = _name(CA_COMMON_NAME)
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(not_after)
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
        .sign(ca_key, hashes.SHA256())
    )

    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_BITS)
    leaf_cert = (
        x509.CertificateBuilder()
        .subject_name(_name(host))
        .issuer_name(ca_name)
        .public_key(leaf_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(not_after)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(host)]), critical=False)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    return GeneratedPKI(
        ca=ca_cert.public_bytes(serialization.Encoding.PEM).decode(),
        cert=leaf_cert.public_bytes(serialization.Encoding.PEM).decode(),
        key=leaf_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ).decode(),
    )
