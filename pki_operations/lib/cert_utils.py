"""Certificate utility functions for key generation, serialization, SANs and bundles."""

import ipaddress
import os
import re
import tempfile
import uuid
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .errors import InvalidConfiguration
from .models import CertificateRecord

PrivateKey = RSAPrivateKey | EllipticCurvePrivateKey

EC_CURVES: dict[int, type[ec.EllipticCurve]] = {
    256: ec.SECP256R1,
    384: ec.SECP384R1,
    521: ec.SECP521R1,
}

_DOTTED_QUAD = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+$")


def generate_private_key(key_size: int = 4096, key_algo: str = "rsa") -> PrivateKey:
    """Generate an RSA key of ``key_size`` bits or an ECDSA key on the P-``key_size`` curve."""
    if key_algo == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    if key_algo == "ecdsa":
        try:
            curve = EC_CURVES[key_size]
        except KeyError:
            raise ValueError(f"unsupported ECDSA curve size: {key_size}") from None
        return ec.generate_private_key(curve())
    raise ValueError(f"unsupported key algorithm: {key_algo}")


def serialize_private_key(key: PrivateKey) -> bytes:
    """Serialize private key to PEM format (PKCS8, no encryption)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def deserialize_private_key(pem_data: bytes) -> PrivateKey:
    """Deserialize private key from PEM bytes."""
    key = serialization.load_pem_private_key(pem_data, password=None)
    if not isinstance(key, (RSAPrivateKey, EllipticCurvePrivateKey)):
        raise ValueError("expected RSA or ECDSA private key")
    return key


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def deserialize_csr(pem_data: bytes) -> x509.CertificateSigningRequest:
    """Deserialize CSR from PEM bytes."""
    return x509.load_pem_x509_csr(pem_data)


def generate_serial_number() -> int:
    """Generate certificate serial number from UUID4 (~122 bits of entropy)."""
    return uuid.uuid4().int


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def extract_certificate_record(cert: x509.Certificate) -> CertificateRecord:
    """Derive the subject/validity/issuer record straight from the certificate."""
    return CertificateRecord(
        subject=cert.subject.rfc4514_string(),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        issuer=cert.issuer.rfc4514_string(),
        serial_number=get_certificate_serial_hex(cert),
    )


def get_path_length(cert: x509.Certificate) -> int | None:
    """BasicConstraints path length, None for leaves or unconstrained CAs."""
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return None
    return bc.path_length


def build_bundle(*cert_pems: bytes) -> bytes:
    """Concatenate PEM certificates in the given order.

    Each member is normalized to end with exactly one newline so repeated
    builds from the same inputs are byte-identical.
    """
    return b"".join(pem.rstrip() + b"\n" for pem in cert_pems)


def split_bundle(bundle_pem: bytes) -> list[x509.Certificate]:
    return x509.load_pem_x509_certificates(bundle_pem)


def validate_certificate_chain(cert: x509.Certificate, *issuers: x509.Certificate) -> bool:
    """Verify signatures along cert -> issuers[0] -> issuers[1] ...

    Returns True if chain is valid, False otherwise.
    """
    chain = [cert, *issuers]
    try:
        for child, parent in zip(chain, chain[1:]):
            child.verify_directly_issued_by(parent)
        return True
    except (ValueError, TypeError, InvalidSignature):
        return False


def validate_csr_signature(csr: x509.CertificateSigningRequest) -> bool:
    """Verify CSR self-signature to prove private key possession."""
    try:
        return csr.is_signature_valid
    except (ValueError, TypeError):
        return False


def is_ip_literal(host: str) -> bool:
    """True for IPv4 or IPv6 literals.

    Dotted-quad strings that are not valid IPv4 addresses are rejected rather
    than silently treated as host names.
    """
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        if _DOTTED_QUAD.match(host):
            raise InvalidConfiguration(f"invalid IPv4 address: {host}") from None
        return False


def build_subject_alt_names(common_name: str, hosts: list[str]) -> list[x509.GeneralName]:
    """SAN entries for a leaf request: the CN first, then each extra host.

    Returns an empty list when no extra hosts are given.
    """
    if not hosts:
        return []

    names: list[x509.GeneralName] = []
    seen: set[str] = set()
    for host in [common_name, *hosts]:
        host = host.strip()
        if not host or host in seen:
            continue
        seen.add(host)
        if is_ip_literal(host):
            names.append(x509.IPAddress(ipaddress.ip_address(host)))
        else:
            names.append(x509.DNSName(host))
    return names


def write_private_file(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Write key material so it is never readable beyond ``mode``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.chmod(0o600)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)
    path.chmod(mode)


def write_atomic(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Replace ``path`` with ``data`` in one rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        tmp_path.chmod(mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
