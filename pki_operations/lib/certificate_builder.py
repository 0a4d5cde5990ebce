"""Certificate builder for X.509 certificate construction."""

from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID

from .cert_utils import PrivateKey, generate_serial_number, validate_csr_signature
from .config import DistinguishedName
from .policy import SigningProfile

KEY_USAGE_FLAGS = {
    "signing": "digital_signature",
    "digital signature": "digital_signature",
    "content commitment": "content_commitment",
    "key encipherment": "key_encipherment",
    "data encipherment": "data_encipherment",
    "key agreement": "key_agreement",
    "cert sign": "key_cert_sign",
    "crl sign": "crl_sign",
}

EXTENDED_KEY_USAGES = {
    "server auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "code signing": ExtendedKeyUsageOID.CODE_SIGNING,
    "email protection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
}


def build_key_usage(usages: tuple[str, ...]) -> x509.KeyUsage:
    """Map profile usage names to a KeyUsage extension value.

    Raises:
        ValueError: If a usage name is not recognised
    """
    flags = dict.fromkeys(
        (
            "digital_signature",
            "content_commitment",
            "key_encipherment",
            "data_encipherment",
            "key_agreement",
            "key_cert_sign",
            "crl_sign",
        ),
        False,
    )
    for usage in usages:
        if usage in EXTENDED_KEY_USAGES:
            continue
        try:
            flags[KEY_USAGE_FLAGS[usage]] = True
        except KeyError:
            raise ValueError(f"unknown key usage '{usage}'") from None
    return x509.KeyUsage(**flags, encipher_only=False, decipher_only=False)


def build_extended_key_usage(usages: tuple[str, ...]) -> x509.ExtendedKeyUsage | None:
    oids = [EXTENDED_KEY_USAGES[u] for u in usages if u in EXTENDED_KEY_USAGES]
    return x509.ExtendedKeyUsage(oids) if oids else None


class CertificateBuilder:
    """Builds X.509 certificates for the CA hierarchy and leaf certificates."""

    @staticmethod
    def build_root_ca(
        subject_dn: DistinguishedName,
        private_key: PrivateKey,
        validity_hours: int,
        path_length: int,
        now: datetime | None = None,
    ) -> x509.Certificate:
        """Build self-signed Root CA certificate.

        Args:
            subject_dn: Distinguished name for certificate subject
            private_key: Private key for signing
            validity_hours: Certificate validity period in hours
            path_length: Maximum number of subordinate CA levels
            now: Issuance instant (defaults to current UTC time)

        Returns:
            Self-signed X.509 certificate with CA extensions
        """
        subject = subject_dn.to_x509_name()
        not_before = now or datetime.now(timezone.utc)
        not_after = not_before + timedelta(hours=validity_hours)
        public_key = private_key.public_key()

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(public_key)
            .serial_number(generate_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=path_length),
                critical=True,
            )
            .add_extension(
                build_key_usage(("digital signature", "cert sign", "crl sign")),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        )

        return builder.sign(private_key, hashes.SHA256())

    @staticmethod
    def build_from_csr(
        csr: x509.CertificateSigningRequest,
        issuer_cert: x509.Certificate,
        issuer_key: PrivateKey,
        profile: SigningProfile,
        now: datetime | None = None,
    ) -> x509.Certificate:
        """Build a certificate from a CSR under a signing profile.

        The CSR's subject, public key and SAN extension are carried over; the
        profile decides CA constraints, usages and expiry. The result never
        outlives its issuer.

        Args:
            csr: Certificate signing request
            issuer_cert: Issuing CA certificate
            issuer_key: Issuing CA private key
            profile: Signing profile to apply
            now: Issuance instant (defaults to current UTC time)

        Returns:
            X.509 certificate signed by the issuer

        Raises:
            ValueError: If CSR signature is invalid
        """
        if not validate_csr_signature(csr):
            raise ValueError("CSR signature validation failed")

        public_key = csr.public_key()
        not_before = now or datetime.now(timezone.utc)
        not_after = min(not_before + profile.expiry, issuer_cert.not_valid_after_utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(issuer_cert.subject)
            .public_key(public_key)
            .serial_number(generate_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(
                x509.BasicConstraints(
                    ca=profile.is_ca,
                    path_length=profile.max_path_len if profile.is_ca else None,
                ),
                critical=True,
            )
            .add_extension(build_key_usage(profile.usages), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                critical=False,
            )
        )

        extended_key_usage = build_extended_key_usage(profile.usages)
        if extended_key_usage is not None:
            builder = builder.add_extension(extended_key_usage, critical=False)

        try:
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            builder = builder.add_extension(san.value, critical=False)
        except x509.ExtensionNotFound:
            pass

        return builder.sign(issuer_key, hashes.SHA256())
