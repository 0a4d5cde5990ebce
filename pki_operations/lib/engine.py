"""CA engine adapter: the signing primitive the orchestrator drives.

All inputs and outputs at this boundary are PEM bytes; the engine keeps no
state between calls.
"""

from datetime import datetime, timezone
from typing import Protocol

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes

from .cert_utils import (
    build_subject_alt_names,
    deserialize_certificate,
    deserialize_csr,
    deserialize_private_key,
    generate_private_key,
    get_path_length,
    serialize_certificate,
    serialize_csr,
    serialize_private_key,
)
from .certificate_builder import CertificateBuilder
from .errors import EngineRejected, EngineUnavailable, InvalidConfiguration
from .logging_config import LOGGER
from .policy import CertificateAuthority, CSRSpec


class CAEngine(Protocol):
    """Capability the orchestrator needs from a signing backend."""

    def generate_self_signed(self, csr_spec: CSRSpec) -> tuple[bytes, bytes]:
        """Return (cert_pem, key_pem) for a self-signed CA."""
        ...

    def generate_csr(self, csr_spec: CSRSpec) -> tuple[bytes, bytes]:
        """Return (csr_pem, key_pem)."""
        ...

    def sign(
        self,
        csr_pem: bytes,
        issuer_cert_pem: bytes,
        issuer_key_pem: bytes,
        policy: CertificateAuthority,
        profile: str,
    ) -> bytes:
        """Return the signed certificate PEM."""
        ...

    def is_valid_at(self, cert_pem: bytes, instant: datetime) -> bool:
        """True if the certificate has not expired at ``instant``."""
        ...


class CryptographyEngine:
    """CA engine backed by the ``cryptography`` X.509 implementation."""

    def generate_self_signed(self, csr_spec: CSRSpec) -> tuple[bytes, bytes]:
        if not csr_spec.is_ca or csr_spec.path_length is None or not csr_spec.expiry_hours:
            raise EngineRejected("self-signed generation requires a CA spec with pathlen and expiry")

        try:
            key = generate_private_key(csr_spec.key_size, csr_spec.key_algo)
            cert = CertificateBuilder.build_root_ca(
                subject_dn=csr_spec.subject,
                private_key=key,
                validity_hours=csr_spec.expiry_hours,
                path_length=csr_spec.path_length,
            )
        except UnsupportedAlgorithm as e:
            raise EngineUnavailable(f"engine cannot generate key: {e}") from e
        except ValueError as e:
            raise EngineRejected(f"self-signed generation rejected: {e}") from e

        LOGGER.debug("Generated self-signed CA %s", csr_spec.subject.common_name)
        return serialize_certificate(cert), serialize_private_key(key)

    def generate_csr(self, csr_spec: CSRSpec) -> tuple[bytes, bytes]:
        try:
            key = generate_private_key(csr_spec.key_size, csr_spec.key_algo)
            builder = x509.CertificateSigningRequestBuilder().subject_name(
                csr_spec.subject.to_x509_name()
            )
            sans = build_subject_alt_names(csr_spec.subject.common_name, list(csr_spec.hosts))
            if sans:
                builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
            csr = builder.sign(key, hashes.SHA256())
        except UnsupportedAlgorithm as e:
            raise EngineUnavailable(f"engine cannot generate key: {e}") from e
        except (ValueError, InvalidConfiguration) as e:
            raise EngineRejected(f"CSR generation rejected: {e}") from e

        return serialize_csr(csr), serialize_private_key(key)

    def sign(
        self,
        csr_pem: bytes,
        issuer_cert_pem: bytes,
        issuer_key_pem: bytes,
        policy: CertificateAuthority,
        profile: str,
    ) -> bytes:
        if profile not in policy.profiles:
            raise EngineRejected(f"profile '{profile}' is not exposed by CA '{policy.label}'")
        signing_profile = policy.profiles[profile]

        try:
            csr = deserialize_csr(csr_pem)
            issuer_cert = deserialize_certificate(issuer_cert_pem)
            issuer_key = deserialize_private_key(issuer_key_pem)
        except ValueError as e:
            raise EngineRejected(f"unreadable signing input: {e}") from e

        issuer_pathlen = get_path_length(issuer_cert)
        if signing_profile.is_ca and issuer_pathlen is not None:
            if signing_profile.max_path_len is None or signing_profile.max_path_len >= issuer_pathlen:
                raise EngineRejected(
                    f"profile '{profile}' pathlen {signing_profile.max_path_len} "
                    f"not allowed under issuer pathlen {issuer_pathlen}"
                )

        try:
            cert = CertificateBuilder.build_from_csr(
                csr=csr,
                issuer_cert=issuer_cert,
                issuer_key=issuer_key,
                profile=signing_profile,
            )
        except UnsupportedAlgorithm as e:
            raise EngineUnavailable(f"engine cannot sign: {e}") from e
        except (ValueError, TypeError) as e:
            raise EngineRejected(f"signing rejected: {e}") from e

        return serialize_certificate(cert)

    def is_valid_at(self, cert_pem: bytes, instant: datetime) -> bool:
        # Only the not-after bound is checked.
        try:
            cert = deserialize_certificate(cert_pem)
        except ValueError as e:
            raise EngineRejected(f"unreadable certificate: {e}") from e
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant < cert.not_valid_after_utc
