"""PKI configuration dataclasses."""

from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.x509 import oid
from dotenv import dotenv_values

from .errors import EnvFileNotFound, InvalidConfiguration, InvalidKeySize

CA_KEY_SIZES = (2048, 3072, 4096, 8192)
LEAF_RSA_KEY_SIZES = (2048, 3072, 4096)
LEAF_ECDSA_CURVES = (256, 384, 521)
LEAF_PROFILES = ("server", "client", "peer")

DEFAULT_PKI_PORT = 8888
DEFAULT_LOG_FILE = Path("/var/log/pki-cert-manager.log")


@dataclass(frozen=True)
class DistinguishedName:
    """X.509 Subject Distinguished Name. Only CN is mandatory."""

    common_name: str
    country: str = ""
    state: str = ""
    locality: str = ""
    organization: str = ""
    organizational_unit: str = ""

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name, skipping empty attributes."""
        attributes = [
            (oid.NameOID.COUNTRY_NAME, self.country),
            (oid.NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (oid.NameOID.LOCALITY_NAME, self.locality),
            (oid.NameOID.ORGANIZATION_NAME, self.organization),
            (oid.NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (oid.NameOID.COMMON_NAME, self.common_name),
        ]
        return x509.Name([x509.NameAttribute(o, v) for o, v in attributes if v])

    def to_names_entry(self) -> dict[str, str]:
        """Subject fields in CSR-document form (C, L, O, OU, ST)."""
        entry = {
            "C": self.country,
            "L": self.locality,
            "O": self.organization,
            "OU": self.organizational_unit,
            "ST": self.state,
        }
        return {k: v for k, v in entry.items() if v}

    def with_common_name(self, common_name: str) -> "DistinguishedName":
        return DistinguishedName(
            common_name=common_name,
            country=self.country,
            state=self.state,
            locality=self.locality,
            organization=self.organization,
            organizational_unit=self.organizational_unit,
        )


@dataclass
class CAConfig:
    """CA hierarchy configuration."""

    base_dir: Path = Path("/opt/pki")
    country: str = "US"
    state: str = ""
    locality: str = ""
    organization: str = "PKI Manager"
    root_common_name: str = "PKI Root CA"
    intermediate_names: tuple[str, ...] = ("intermediate-1", "intermediate-2")
    root_validity_hours: int = 87600
    intermediate_validity_hours: int = 70080
    leaf_validity_hours: int = 8760
    root_path_length: int = 2
    intermediate_path_length: int = 1
    key_size: int = 4096

    @property
    def certs_dir(self) -> Path:
        return self.base_dir / "certs"

    @property
    def config_dir(self) -> Path:
        return self.base_dir / "config"

    @property
    def root_dir(self) -> Path:
        return self.certs_dir / "root"

    @property
    def intermediate_dir(self) -> Path:
        return self.certs_dir / "intermediate"

    @property
    def bundle_dir(self) -> Path:
        return self.certs_dir / "bundle"

    @property
    def api_dir(self) -> Path:
        return self.certs_dir / "api"

    def subject_template(self, common_name: str) -> DistinguishedName:
        """Build DN from CAConfig fields + common_name."""
        return DistinguishedName(
            common_name=common_name,
            country=self.country,
            state=self.state,
            locality=self.locality,
            organization=self.organization,
        )


def validate_ca_key_size(key_size: int) -> int:
    """Reject any CA key size outside the supported set."""
    if key_size not in CA_KEY_SIZES:
        raise InvalidKeySize(
            f"invalid RSA key size {key_size}: must be one of "
            f"{', '.join(str(s) for s in CA_KEY_SIZES)}"
        )
    return key_size


@dataclass(frozen=True)
class ProvisioningSession:
    """Values carried through one root-then-intermediates generation run.

    The key size chosen for the Root is reused for every intermediate
    generated in the same session.
    """

    key_size: int
    root_subject: DistinguishedName
    intermediate_subjects: dict[str, DistinguishedName] = field(default_factory=dict)

    def __post_init__(self) -> None:
        validate_ca_key_size(self.key_size)

    def subject_for(self, name: str) -> DistinguishedName:
        """Subject for an intermediate, defaulting to the root template."""
        subject = self.intermediate_subjects.get(name)
        if subject is not None:
            return subject
        display = name.replace("-", " ").title()
        return self.root_subject.with_common_name(f"{display} CA")


@dataclass
class ClientConfig:
    """Leaf-certificate client configuration, read from a KEY=VALUE env file."""

    ca_bundle_path: Path
    auth_key_path: Path
    pki_host: str
    cert_cn: str
    cert_dir: Path
    pki_port: int = DEFAULT_PKI_PORT
    ca_num: str = "1"
    cert_hosts: list[str] = field(default_factory=list)
    cert_o: str = ""
    cert_ou: str = ""
    cert_c: str = ""
    cert_st: str = ""
    cert_l: str = ""
    key_algo: str = "rsa"
    key_size: int = 2048
    profile: str = "server"
    output_prefix: str = ""
    log_file: Path = DEFAULT_LOG_FILE

    def __post_init__(self) -> None:
        if not self.output_prefix:
            self.output_prefix = self.cert_cn

    @property
    def ca_label(self) -> str:
        """Engine label of the target intermediate (underscore form)."""
        return f"intermediate_{self.ca_num}"

    @property
    def subject(self) -> DistinguishedName:
        return DistinguishedName(
            common_name=self.cert_cn,
            country=self.cert_c,
            state=self.cert_st,
            locality=self.cert_l,
            organization=self.cert_o,
            organizational_unit=self.cert_ou,
        )

    @property
    def key_file(self) -> Path:
        return self.cert_dir / f"{self.output_prefix}.key"

    @property
    def csr_file(self) -> Path:
        return self.cert_dir / f"{self.output_prefix}.csr"

    @property
    def cert_file(self) -> Path:
        return self.cert_dir / f"{self.output_prefix}.crt"

    @property
    def chain_file(self) -> Path:
        return self.cert_dir / f"{self.output_prefix}-chain.crt"

    def read_auth_secret(self) -> str:
        return self.auth_key_path.read_text().strip()

    def validate(self) -> None:
        """Collect every configuration problem and raise them together.

        Raises:
            InvalidConfiguration: If any field is missing or out of range
        """
        errors: list[str] = []

        if not self.pki_host:
            errors.append("PKI_HOST is required")
        if not self.cert_cn:
            errors.append("CERT_CN is required")
        if not self.ca_bundle_path.is_file():
            errors.append(f"CA bundle not found: {self.ca_bundle_path}")
        if not self.auth_key_path.is_file():
            errors.append(f"Auth key not found: {self.auth_key_path}")
        if self.ca_num not in ("1", "2"):
            errors.append("CA_NUM must be '1' or '2'")
        if self.profile not in LEAF_PROFILES:
            errors.append(f"PROFILE must be one of {', '.join(LEAF_PROFILES)}")
        if self.key_algo == "rsa":
            if self.key_size not in LEAF_RSA_KEY_SIZES:
                errors.append(f"KEY_SIZE for rsa must be one of {LEAF_RSA_KEY_SIZES}")
        elif self.key_algo == "ecdsa":
            if self.key_size not in LEAF_ECDSA_CURVES:
                errors.append(f"KEY_SIZE for ecdsa must be one of {LEAF_ECDSA_CURVES}")
        else:
            errors.append("KEY_ALGO must be 'rsa' or 'ecdsa'")
        if not 0 < self.pki_port < 65536:
            errors.append("PKI_PORT must be between 1 and 65535")

        if errors:
            raise InvalidConfiguration("configuration errors: " + "; ".join(errors), errors)


def _split_hosts(raw: str) -> list[str]:
    return [host.strip() for host in raw.split(",") if host.strip()]


def load_client_config(env_file: Path) -> ClientConfig:
    """Load client configuration from an env file.

    Raises:
        EnvFileNotFound: If the env file does not exist
        InvalidConfiguration: If required keys are missing or not numeric
    """
    if not env_file.is_file():
        raise EnvFileNotFound(f"environment file not found: {env_file}")

    values = {k: (v or "") for k, v in dotenv_values(env_file).items()}

    missing = [
        key
        for key in ("CA_BUNDLE_PATH", "AUTH_KEY_PATH", "PKI_HOST", "CERT_CN", "CERT_DIR")
        if not values.get(key)
    ]
    if missing:
        problems = [f"{key} is required" for key in missing]
        raise InvalidConfiguration("configuration errors: " + "; ".join(problems), problems)

    try:
        pki_port = int(values.get("PKI_PORT") or DEFAULT_PKI_PORT)
        key_size = int(values.get("KEY_SIZE") or 2048)
    except ValueError as e:
        raise InvalidConfiguration(f"PKI_PORT and KEY_SIZE must be integers: {e}") from e

    return ClientConfig(
        ca_bundle_path=Path(values["CA_BUNDLE_PATH"]),
        auth_key_path=Path(values["AUTH_KEY_PATH"]),
        pki_host=values["PKI_HOST"],
        cert_cn=values["CERT_CN"],
        cert_dir=Path(values["CERT_DIR"]),
        pki_port=pki_port,
        ca_num=values.get("CA_NUM") or "1",
        cert_hosts=_split_hosts(values.get("CERT_HOSTS", "")),
        cert_o=values.get("CERT_O", ""),
        cert_ou=values.get("CERT_OU", ""),
        cert_c=values.get("CERT_C", ""),
        cert_st=values.get("CERT_ST", ""),
        cert_l=values.get("CERT_L", ""),
        key_algo=values.get("KEY_ALGO") or "rsa",
        key_size=key_size,
        profile=values.get("PROFILE") or "server",
        output_prefix=values.get("OUTPUT_PREFIX", ""),
        log_file=Path(values.get("LOG_FILE") or DEFAULT_LOG_FILE),
    )
