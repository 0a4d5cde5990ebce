"""Leaf certificate lifecycle on a requesting host: new, renew, check."""

import shutil
from datetime import datetime
from pathlib import Path

from .cert_utils import (
    build_bundle,
    deserialize_certificate,
    get_certificate_serial_hex,
    write_atomic,
    write_private_file,
)
from .config import ClientConfig
from .engine import CAEngine, CryptographyEngine
from .errors import CertAlreadyExists, CertNotFound, CertValid
from .expiry import check_certificate, days_remaining, needs_renewal
from .logging_config import LOGGER
from .models import ExpiryReport, LeafCertResult
from .policy import CSRSpec
from .signing_client import SigningClient

LEAF_KEY_MODE = 0o600


class LeafCertificateManager:
    """Issues and renews one leaf certificate through the signing endpoint.

    The private key is generated and kept on this host; only the CSR is sent.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: SigningClient | None = None,
        engine: CAEngine | None = None,
    ) -> None:
        self.config = config
        self.client = client or SigningClient(
            host=config.pki_host,
            port=config.pki_port,
            ca_bundle_path=config.ca_bundle_path,
        )
        self.engine = engine or CryptographyEngine()

    @property
    def bundle_copy_path(self) -> Path:
        return self.config.cert_dir / "ca-bundle.crt"

    @property
    def backup_dir(self) -> Path:
        return self.config.cert_dir / "backup"

    def _issue(self) -> LeafCertResult:
        config = self.config
        config.cert_dir.mkdir(parents=True, exist_ok=True)

        spec = CSRSpec(
            subject=config.subject,
            key_algo=config.key_algo,
            key_size=config.key_size,
            hosts=tuple(config.cert_hosts),
        )
        LOGGER.info("Generating %s key (%d) and CSR for %s", config.key_algo, config.key_size, config.cert_cn)
        csr_pem, key_pem = self.engine.generate_csr(spec)

        LOGGER.info("Requesting certificate from %s (CA %s, profile %s)", config.pki_host, config.ca_label, config.profile)
        cert_pem = self.client.sign(
            csr_pem, config.ca_label, config.profile, config.read_auth_secret()
        ).encode("ascii")

        # Active key and cert are only replaced once the new pair exists
        bundle_pem = config.ca_bundle_path.read_bytes()
        write_private_file(config.key_file, key_pem, LEAF_KEY_MODE)
        write_atomic(config.csr_file, csr_pem)
        write_atomic(config.cert_file, build_bundle(cert_pem))
        write_atomic(config.chain_file, build_bundle(cert_pem, bundle_pem))
        shutil.copyfile(config.ca_bundle_path, self.bundle_copy_path)

        LOGGER.info("Certificate saved to %s", config.cert_file)
        return LeafCertResult(
            key_path=config.key_file,
            csr_path=config.csr_file,
            cert_path=config.cert_file,
            chain_path=config.chain_file,
            bundle_path=self.bundle_copy_path,
            serial_number=get_certificate_serial_hex(deserialize_certificate(cert_pem)),
        )

    def new_certificate(self, force: bool = False) -> LeafCertResult:
        """Request a brand-new certificate.

        Raises:
            CertAlreadyExists: If the certificate exists and ``force`` is not set
        """
        if self.config.cert_file.exists() and not force:
            raise CertAlreadyExists(
                f"certificate already exists: {self.config.cert_file} (use force to overwrite)"
            )
        return self._issue()

    def backup_existing(self, now: datetime | None = None) -> Path:
        """Copy key/CSR/cert/chain into ``backup/<file>.<timestamp>``."""
        stamp = f"{now or datetime.now():%Y%m%d_%H%M%S}"
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        for path in (
            self.config.key_file,
            self.config.csr_file,
            self.config.cert_file,
            self.config.chain_file,
        ):
            if path.is_file():
                shutil.copy2(path, self.backup_dir / f"{path.name}.{stamp}")
        LOGGER.info("Backed up existing certificates to %s", self.backup_dir)
        return self.backup_dir

    def renew_certificate(self, force: bool = False, now: datetime | None = None) -> LeafCertResult:
        """Renew the certificate when inside the renewal window.

        Raises:
            CertNotFound: If there is no certificate to renew
            CertValid: If renewal is not needed and ``force`` is not set
        """
        cert_file = self.config.cert_file
        if not cert_file.is_file():
            raise CertNotFound(f"certificate not found: {cert_file} (use new instead)")

        days = days_remaining(cert_file.read_bytes(), engine=self.engine)
        if not needs_renewal(days, force):
            raise CertValid(
                f"certificate is still valid for {days} days, renewal not needed", days
            )

        LOGGER.info("Renewing certificate (%d days remaining)", days)
        backup_dir = self.backup_existing(now)
        result = self._issue()
        result.backup_dir = backup_dir
        return result

    def check_certificate(self, cert_path: Path | None = None) -> ExpiryReport:
        """Expiry report for ``cert_path`` (defaults to the configured certificate).

        Raises:
            CertNotFound: If the certificate file does not exist
        """
        return check_certificate(cert_path or self.config.cert_file, engine=self.engine)
