"""
Self-signed TLS material for PostgreSQL containers started with SSL enabled.
"""
import datetime
import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger("pgcontainer.tls")

VALIDITY = datetime.timedelta(days=365)


@dataclass
class Certificate:
    cert: x509.Certificate
    key: ec.EllipticCurvePrivateKey
    cert_path: Optional[Path] = None
    key_path: Optional[Path] = None

    @property
    def cert_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)

    @property
    def key_pem(self) -> bytes:
        return self.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )


def _subject_alt_names(host: str):
    names = []
    try:
        names.append(x509.IPAddress(ipaddress.ip_address(host)))
    except ValueError:
        names.append(x509.DNSName(host))
        if host == "localhost":
            names.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))
    return names


def self_signed_from_request(host: str, name: str, parent: Optional[Certificate] = None, parent_dir=None) -> Certificate:
    """
    Generate a key and certificate for `host`. Without `parent` the result is
    a self-signed CA, otherwise a leaf signed by `parent`. With `parent_dir`
    the PEM files <name>.pem and <name>.key are written there.
    """
    if not host:
        raise ValueError("host must not be empty")
    if not name:
        raise ValueError("name must not be empty")

    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "pgcontainer"),
        x509.NameAttribute(NameOID.COMMON_NAME, host),
    ])
    is_ca = parent is None
    issuer = subject if is_ca else parent.cert.subject
    signing_key = key if is_ca else parent.key
    now = datetime.datetime.now(datetime.timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + VALIDITY)
        .add_extension(x509.SubjectAlternativeName(_subject_alt_names(host)), critical=False)
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    if is_ca:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
    else:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )

    certificate = Certificate(cert=builder.sign(signing_key, hashes.SHA256()), key=key)

    if parent_dir is not None:
        directory = Path(parent_dir)
        directory.mkdir(parents=True, exist_ok=True)
        certificate.cert_path = directory / f"{name}.pem"
        certificate.key_path = directory / f"{name}.key"
        certificate.cert_path.write_bytes(certificate.cert_pem)
        certificate.key_path.write_bytes(certificate.key_pem)
        certificate.key_path.chmod(0o600)
        logger.info(f"Wrote {name} certificate for {host} to {directory}")

    return certificate


def create_ssl_certs(directory, host: str = "localhost") -> Tuple[Certificate, Certificate]:
    """CA plus a server certificate signed by it, both written to `directory`."""
    ca = self_signed_from_request(host, "ca-cert", parent_dir=directory)
    server = self_signed_from_request(host, "server-cert", parent=ca, parent_dir=directory)
    return ca, server
