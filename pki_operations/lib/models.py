"""Result models for PKI operations."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class ExpiryStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    EXPIRED = "EXPIRED"


class IntermediateState(str, Enum):
    UNINITIALIZED = "Uninitialized"
    ACTIVE = "Active"
    ROTATING = "Rotating"


@dataclass(frozen=True)
class CertificateRecord:
    """Subject, validity window and issuer, derived from a certificate encoding.

    Never persisted; rebuild it from the PEM whenever it is needed.
    """

    subject: str
    not_before: datetime
    not_after: datetime
    issuer: str
    serial_number: str


@dataclass(frozen=True)
class ExpiryReport:
    """Remaining validity of one certificate."""

    name: str
    path: Path
    days_remaining: int
    status: ExpiryStatus

    @property
    def needs_attention(self) -> bool:
        return self.status is not ExpiryStatus.OK


@dataclass
class BootstrapResult:
    """Result from a full PKI bootstrap.

    Contains file paths for the Root CA, each Intermediate CA and the bundles.
    """

    root_key_path: Path
    root_cert_path: Path
    root_serial: str
    intermediate_cert_paths: dict[str, Path] = field(default_factory=dict)
    intermediate_serials: dict[str, str] = field(default_factory=dict)
    bundle_path: Path | None = None
    api_cert_path: Path | None = None
    multiroot_config_path: Path | None = None


@dataclass
class IntermediateResult:
    """Artifacts written for one Intermediate CA."""

    name: str
    key_path: Path
    cert_path: Path
    csr_path: Path
    bundle_path: Path
    serial_number: str
    path_length: int | None


@dataclass
class RotationResult:
    """Result from rotating one Intermediate CA."""

    name: str
    backup_dir: Path
    old_serial: str
    new_serial: str
    bundle_path: Path
    auth_secret_rotated: bool = False


@dataclass
class LeafCertResult:
    """Result from leaf certificate issuance.

    The private key stays on the requesting host; only its path is reported.
    """

    key_path: Path
    csr_path: Path
    cert_path: Path
    chain_path: Path
    bundle_path: Path
    serial_number: str
    backup_dir: Path | None = None
