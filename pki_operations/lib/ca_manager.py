"""CA manager: root/intermediate generation, rotation and bundle assembly."""

import json
import shutil
import threading
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from .authsign import generate_auth_secret
from .cert_utils import (
    build_bundle,
    deserialize_certificate,
    deserialize_private_key,
    extract_certificate_record,
    get_certificate_serial_hex,
    get_path_length,
    write_atomic,
    write_private_file,
)
from .config import CAConfig, DistinguishedName, ProvisioningSession
from .engine import CAEngine, CryptographyEngine
from .errors import (
    CertAlreadyExists,
    CertNotFound,
    EngineRejected,
    PolicyViolation,
    RootKeyUnavailable,
)
from .expiry import check_certificate
from .logging_config import LOGGER
from .models import (
    BootstrapResult,
    CertificateRecord,
    ExpiryReport,
    IntermediateResult,
    IntermediateState,
    RotationResult,
)
from .policy import CAKind, CertificateAuthority, CSRSpec, PolicyStore

KEY_MODE = 0o400
SECRET_MODE = 0o640
PUBLIC_MODE = 0o644


def _subject_from_csr_document(document: dict) -> DistinguishedName:
    names = (document.get("names") or [{}])[0]
    return DistinguishedName(
        common_name=document["CN"],
        country=names.get("C", ""),
        state=names.get("ST", ""),
        locality=names.get("L", ""),
        organization=names.get("O", ""),
        organizational_unit=names.get("OU", ""),
    )


def verify_key_matches_cert(key_pem: bytes, cert_pem: bytes) -> None:
    """Check a freshly generated key and certificate belong together.

    Raises:
        EngineRejected: If the public keys differ
    """
    cert_public = deserialize_certificate(cert_pem).public_key()
    key_public = deserialize_private_key(key_pem).public_key()
    encoding = serialization.Encoding.DER
    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    if cert_public.public_bytes(encoding, fmt) != key_public.public_bytes(encoding, fmt):
        raise EngineRejected("key-cert mismatch in signed result")


class CAManager:
    """Certificate Authority manager for the Root and Intermediate CAs.

    Owns CA key material only while generating or rotating it. Rotations are
    serialized per intermediate label.
    """

    def __init__(
        self,
        config: CAConfig,
        engine: CAEngine | None = None,
        policy: PolicyStore | None = None,
    ) -> None:
        """Initialize CA manager.

        Args:
            config: CA configuration with validity periods and directory layout
            engine: Signing backend (defaults to CryptographyEngine)
            policy: Policy store (defaults to one built from config)
        """
        self.config = config
        self.engine = engine or CryptographyEngine()
        self.policy = policy or PolicyStore.from_config(config)
        self._locks_guard = threading.Lock()
        self._rotation_locks: dict[str, threading.Lock] = {}
        self._rotating: set[str] = set()

    # -- layout ---------------------------------------------------------------

    @property
    def root_cert_path(self) -> Path:
        return self.config.root_dir / "root-ca.pem"

    @property
    def root_key_path(self) -> Path:
        return self.config.root_dir / "root-ca-key.pem"

    @property
    def bundle_path(self) -> Path:
        return self.config.bundle_dir / "ca-bundle.crt"

    def intermediate_dir(self, name: str) -> Path:
        return self.config.intermediate_dir / name

    def intermediate_cert_path(self, name: str) -> Path:
        return self.intermediate_dir(name) / f"{name}.pem"

    def intermediate_key_path(self, name: str) -> Path:
        return self.intermediate_dir(name) / f"{name}-key.pem"

    def intermediate_csr_path(self, name: str) -> Path:
        return self.intermediate_dir(name) / f"{name}.csr"

    def intermediate_bundle_path(self, name: str) -> Path:
        return self.config.bundle_dir / f"{name}-bundle.pem"

    def auth_secret_path(self, name: str) -> Path:
        return self.config.config_dir / f"{name}-auth-key.txt"

    def signing_config_path(self, name: str) -> Path:
        return self.config.config_dir / f"{name}-config.json"

    def csr_config_path(self, name: str) -> Path:
        return self.config.config_dir / f"{name}-csr.json"

    # -- policy documents ----------------------------------------------------

    def _write_document(self, path: Path, document: dict, mode: int = PUBLIC_MODE) -> None:
        data = (json.dumps(document, indent=4) + "\n").encode("utf-8")
        if mode == PUBLIC_MODE:
            write_atomic(path, data, mode)
        else:
            write_private_file(path, data, mode)

    def _intermediate(self, name: str) -> CertificateAuthority:
        ca = self.policy.get(name)
        if ca.kind is not CAKind.INTERMEDIATE:
            raise PolicyViolation(f"'{name}' is not an intermediate CA")
        return ca

    def read_auth_secret(self, name: str) -> str:
        """Return the persisted AuthSecret of an intermediate.

        Raises:
            CertNotFound: If no secret has been generated yet
        """
        ca = self._intermediate(name)
        path = self.auth_secret_path(ca.label)
        if not path.is_file():
            raise CertNotFound(f"auth secret not found for '{ca.label}': {path}")
        return path.read_text().strip()

    def ensure_auth_secret(self, name: str, regenerate: bool = False) -> str:
        """Return the intermediate's AuthSecret, creating it only if absent.

        The signing policy document is (re)written with the secret embedded.
        """
        ca = self._intermediate(name)
        path = self.auth_secret_path(ca.label)

        if path.is_file() and not regenerate:
            secret = path.read_text().strip()
        else:
            secret = generate_auth_secret()
            write_private_file(path, (secret + "\n").encode("utf-8"), SECRET_MODE)
            LOGGER.info("Auth secret %s for %s", "regenerated" if regenerate else "created", ca.label)

        self._write_document(
            self.signing_config_path(ca.label), ca.signing_document(secret), SECRET_MODE
        )
        return secret

    def load_auth_secrets(self) -> dict[str, str]:
        """AuthSecrets keyed by engine label, for every intermediate that has one."""
        result = {}
        for ca in self.policy.intermediates:
            path = self.auth_secret_path(ca.label)
            if path.is_file():
                result[ca.engine_label] = path.read_text().strip()
        return result

    # -- generation ----------------------------------------------------------

    def _load_root(self, root_key_pem: bytes | None = None) -> tuple[bytes, bytes]:
        if not self.root_cert_path.is_file():
            raise CertNotFound(f"root CA certificate not found: {self.root_cert_path}")
        if root_key_pem is None:
            if not self.root_key_path.is_file():
                raise RootKeyUnavailable(
                    f"root CA private key not found: {self.root_key_path}; "
                    "restore it from offline storage to sign intermediates"
                )
            root_key_pem = self.root_key_path.read_bytes()
        return self.root_cert_path.read_bytes(), root_key_pem

    def generate_root_ca(self, session: ProvisioningSession) -> tuple[Path, Path]:
        """Generate the self-signed Root CA.

        Returns:
            Tuple of (cert_path, key_path)

        Raises:
            CertAlreadyExists: If a Root CA certificate is already present
        """
        root = self.policy.root
        if self.root_cert_path.exists():
            raise CertAlreadyExists(f"root CA already exists: {self.root_cert_path}")

        spec = root.csr_spec(session.root_subject, session.key_size)
        self._write_document(self.csr_config_path(root.label), spec.to_document())
        self._write_document(self.signing_config_path(root.label), root.signing_document())

        LOGGER.info("Generating Root CA (RSA %d)", session.key_size)
        cert_pem, key_pem = self.engine.generate_self_signed(spec)

        write_private_file(self.root_key_path, key_pem, KEY_MODE)
        write_atomic(self.root_cert_path, cert_pem, PUBLIC_MODE)

        LOGGER.info("Root CA generated: %s", self.root_cert_path)
        return self.root_cert_path, self.root_key_path

    def _issue_intermediate(
        self, ca: CertificateAuthority, spec: CSRSpec, root_cert_pem: bytes, root_key_pem: bytes
    ) -> tuple[bytes, bytes, bytes]:
        csr_pem, key_pem = self.engine.generate_csr(spec)
        cert_pem = self.engine.sign(
            csr_pem, root_cert_pem, root_key_pem, self.policy.root, "intermediate"
        )
        verify_key_matches_cert(key_pem, cert_pem)
        return csr_pem, key_pem, cert_pem

    def generate_intermediate_ca(
        self,
        session: ProvisioningSession,
        name: str,
        root_key_pem: bytes | None = None,
    ) -> IntermediateResult:
        """Generate an Intermediate CA and sign it with the Root.

        Raises:
            RootKeyUnavailable: If the Root private key is not present
            CertAlreadyExists: If the intermediate already has a certificate
        """
        ca = self._intermediate(name)
        root_cert_pem, root_key_pem = self._load_root(root_key_pem)

        if self.intermediate_cert_path(ca.label).exists():
            raise CertAlreadyExists(
                f"intermediate CA already exists: {self.intermediate_cert_path(ca.label)}"
            )

        spec = ca.csr_spec(session.subject_for(ca.label), session.key_size)
        self._write_document(self.csr_config_path(ca.label), spec.to_document())
        self.ensure_auth_secret(ca.label)

        LOGGER.info("Generating %s (RSA %d, same as Root CA)", ca.label, session.key_size)
        csr_pem, key_pem, cert_pem = self._issue_intermediate(ca, spec, root_cert_pem, root_key_pem)

        write_private_file(self.intermediate_key_path(ca.label), key_pem, KEY_MODE)
        write_atomic(self.intermediate_csr_path(ca.label), csr_pem, PUBLIC_MODE)
        write_atomic(self.intermediate_cert_path(ca.label), cert_pem, PUBLIC_MODE)

        bundle_path = self.write_intermediate_bundle(ca.label)
        cert = deserialize_certificate(cert_pem)
        LOGGER.info("%s signed by Root CA", ca.label)

        return IntermediateResult(
            name=ca.label,
            key_path=self.intermediate_key_path(ca.label),
            cert_path=self.intermediate_cert_path(ca.label),
            csr_path=self.intermediate_csr_path(ca.label),
            bundle_path=bundle_path,
            serial_number=get_certificate_serial_hex(cert),
            path_length=get_path_length(cert),
        )

    def bootstrap(
        self,
        session: ProvisioningSession,
        api_hostname: str | None = None,
        api_ip: str | None = None,
    ) -> BootstrapResult:
        """Generate Root, every configured Intermediate, bundles and engine mapping."""
        root_cert_path, root_key_path = self.generate_root_ca(session)

        result = BootstrapResult(
            root_key_path=root_key_path,
            root_cert_path=root_cert_path,
            root_serial=get_certificate_serial_hex(
                deserialize_certificate(root_cert_path.read_bytes())
            ),
        )

        for ca in self.policy.intermediates:
            issued = self.generate_intermediate_ca(session, ca.label)
            result.intermediate_cert_paths[ca.label] = issued.cert_path
            result.intermediate_serials[ca.label] = issued.serial_number

        result.bundle_path = self.build_bundles()
        if api_hostname:
            result.api_cert_path = self.generate_api_server_cert(api_hostname, api_ip)
        result.multiroot_config_path = self.write_multiroot_config()
        return result

    # -- rotation ------------------------------------------------------------

    def _lock_for(self, label: str) -> threading.Lock:
        with self._locks_guard:
            return self._rotation_locks.setdefault(label, threading.Lock())

    def intermediate_state(self, name: str) -> IntermediateState:
        ca = self._intermediate(name)
        if ca.label in self._rotating:
            return IntermediateState.ROTATING
        if not self.intermediate_cert_path(ca.label).is_file():
            return IntermediateState.UNINITIALIZED
        return IntermediateState.ACTIVE

    def _backup_intermediate(self, label: str, now: datetime) -> Path:
        base = self.intermediate_dir(label) / f"backup-{now:%Y%m%d-%H%M%S}"
        backup_dir = base
        suffix = 1
        while backup_dir.exists():
            backup_dir = base.with_name(f"{base.name}-{suffix}")
            suffix += 1
        backup_dir.mkdir(parents=True)

        for path in (
            self.intermediate_cert_path(label),
            self.intermediate_key_path(label),
            self.intermediate_csr_path(label),
        ):
            if path.is_file():
                shutil.copy2(path, backup_dir / path.name)
        return backup_dir

    def _restore_intermediate(self, label: str, backup_dir: Path) -> None:
        for target in (
            self.intermediate_cert_path(label),
            self.intermediate_key_path(label),
            self.intermediate_csr_path(label),
        ):
            saved = backup_dir / target.name
            if saved.is_file():
                mode = KEY_MODE if target == self.intermediate_key_path(label) else PUBLIC_MODE
                write_atomic(target, saved.read_bytes(), mode)

    def _rotation_spec(self, ca: CertificateAuthority) -> CSRSpec:
        csr_config = self.csr_config_path(ca.label)
        if csr_config.is_file():
            document = json.loads(csr_config.read_text())
            subject = _subject_from_csr_document(document)
            key_size = int(document.get("key", {}).get("size", self.config.key_size))
        else:
            cert = deserialize_certificate(self.intermediate_cert_path(ca.label).read_bytes())
            common_name = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
            subject = self.config.subject_template(str(common_name))
            key_size = self.config.key_size
        return ca.csr_spec(subject, key_size)

    def rotate_intermediate_ca(
        self,
        name: str,
        rotate_auth_secret: bool = False,
        root_key_pem: bytes | None = None,
        now: datetime | None = None,
    ) -> RotationResult:
        """Replace an Intermediate CA's key and certificate.

        1. Back up the current cert/key/CSR into a timestamped directory
        2. Require the Root private key
        3. Generate a new key + CSR and sign it with the Root
        4. Swap the new files in and rebuild the bundles

        Any failure before step 4 leaves the previous cert/key active. The
        AuthSecret is kept unless ``rotate_auth_secret`` is set.

        Raises:
            CertNotFound: If the intermediate has never been generated
            RootKeyUnavailable: If the Root private key is not present
        """
        ca = self._intermediate(name)
        label = ca.label

        with self._lock_for(label):
            if self.intermediate_state(label) is IntermediateState.UNINITIALIZED:
                raise CertNotFound(f"intermediate CA '{label}' not found")

            old_cert_pem = self.intermediate_cert_path(label).read_bytes()
            backup_dir = self._backup_intermediate(label, now or datetime.now(UTC))
            LOGGER.info("Existing %s backed up to %s", label, backup_dir)

            root_cert_pem, root_key_pem = self._load_root(root_key_pem)

            self._rotating.add(label)
            try:
                spec = self._rotation_spec(ca)
                LOGGER.info("Generating new %s certificate", label)
                csr_pem, key_pem, cert_pem = self._issue_intermediate(
                    ca, spec, root_cert_pem, root_key_pem
                )

                try:
                    write_atomic(self.intermediate_csr_path(label), csr_pem, PUBLIC_MODE)
                    write_atomic(self.intermediate_key_path(label), key_pem, KEY_MODE)
                    write_atomic(self.intermediate_cert_path(label), cert_pem, PUBLIC_MODE)
                except OSError:
                    LOGGER.error("Replacing %s failed, restoring from %s", label, backup_dir)
                    self._restore_intermediate(label, backup_dir)
                    raise
            finally:
                self._rotating.discard(label)

            if rotate_auth_secret:
                self.ensure_auth_secret(label, regenerate=True)

            bundle_path = self.write_intermediate_bundle(label)
            self.build_bundles()

        LOGGER.info("Intermediate CA '%s' rotated successfully", label)
        return RotationResult(
            name=label,
            backup_dir=backup_dir,
            old_serial=get_certificate_serial_hex(deserialize_certificate(old_cert_pem)),
            new_serial=get_certificate_serial_hex(deserialize_certificate(cert_pem)),
            bundle_path=bundle_path,
            auth_secret_rotated=rotate_auth_secret,
        )

    # -- bundles -------------------------------------------------------------

    def assemble_intermediate_bundle(self, name: str) -> bytes:
        """[Intermediate, Root] in leaf-to-root order."""
        ca = self._intermediate(name)
        cert_path = self.intermediate_cert_path(ca.label)
        if not cert_path.is_file():
            raise CertNotFound(f"intermediate CA cert not found: {cert_path}")
        if not self.root_cert_path.is_file():
            raise CertNotFound(f"root CA cert not found: {self.root_cert_path}")
        return build_bundle(cert_path.read_bytes(), self.root_cert_path.read_bytes())

    def assemble_full_bundle(self) -> bytes:
        """Root first, then every initialized intermediate in configuration order."""
        if not self.root_cert_path.is_file():
            raise CertNotFound(f"root CA cert not found: {self.root_cert_path}")
        pems = [self.root_cert_path.read_bytes()]
        for ca in self.policy.intermediates:
            cert_path = self.intermediate_cert_path(ca.label)
            if cert_path.is_file():
                pems.append(cert_path.read_bytes())
            else:
                LOGGER.warning("Skipping uninitialized %s in CA bundle", ca.label)
        return build_bundle(*pems)

    def write_intermediate_bundle(self, name: str) -> Path:
        ca = self._intermediate(name)
        path = self.intermediate_bundle_path(ca.label)
        write_atomic(path, self.assemble_intermediate_bundle(ca.label), PUBLIC_MODE)
        return path

    def build_bundles(self) -> Path:
        """Write every per-intermediate bundle and the full CA bundle.

        Returns:
            Path to the full CA bundle
        """
        for ca in self.policy.intermediates:
            if self.intermediate_cert_path(ca.label).is_file():
                self.write_intermediate_bundle(ca.label)

        write_atomic(self.bundle_path, self.assemble_full_bundle(), PUBLIC_MODE)
        api_bundle = self.config.api_dir / "ca-bundle.crt"
        if api_bundle.parent.is_dir():
            shutil.copyfile(self.bundle_path, api_bundle)
        LOGGER.info("CA bundle written: %s", self.bundle_path)
        return self.bundle_path

    def write_multiroot_config(self) -> Path:
        """Write the label -> key/cert/policy mapping for the multi-root engine."""
        path = self.config.config_dir / "multiroot-config.ini"
        write_atomic(path, self.policy.multiroot_config(self.config).encode("utf-8"), PUBLIC_MODE)
        LOGGER.info("Multiroot config created at %s", path)
        return path

    # -- signing endpoint identity --------------------------------------------

    def generate_api_server_cert(
        self,
        hostname: str,
        ip: str | None = None,
        signer: str | None = None,
    ) -> Path:
        """Issue the signing endpoint's TLS certificate from an intermediate.

        The CA bundle is copied next to it for clients to download.
        """
        ca = self._intermediate(signer or self.policy.intermediates[0].label)
        cert_path = self.intermediate_cert_path(ca.label)
        key_path = self.intermediate_key_path(ca.label)
        if not cert_path.is_file() or not key_path.is_file():
            raise CertNotFound(f"signer '{ca.label}' has no certificate/key")

        hosts = [h for h in (hostname, ip, "localhost", "127.0.0.1") if h]
        spec = CSRSpec(
            subject=self.config.subject_template(hostname),
            key_size=self.config.key_size,
            hosts=tuple(dict.fromkeys(hosts)),
        )
        csr_pem, key_pem = self.engine.generate_csr(spec)
        api_cert_pem = self.engine.sign(
            csr_pem, cert_path.read_bytes(), key_path.read_bytes(), ca, "server"
        )

        api_dir = self.config.api_dir
        write_private_file(api_dir / "api-server-key.pem", key_pem, KEY_MODE)
        write_atomic(api_dir / "api-server.pem", api_cert_pem, PUBLIC_MODE)
        if self.bundle_path.is_file():
            shutil.copyfile(self.bundle_path, api_dir / "ca-bundle.crt")
            (api_dir / "ca-bundle.crt").chmod(PUBLIC_MODE)

        LOGGER.info("API server certificate generated for %s", hostname)
        return api_dir / "api-server.pem"

    # -- reporting -----------------------------------------------------------

    def _existing_ca_certs(self) -> list[tuple[str, Path]]:
        certs = [(self.policy.root.label, self.root_cert_path)]
        certs += [(ca.label, self.intermediate_cert_path(ca.label)) for ca in self.policy.intermediates]
        return [(label, path) for label, path in certs if path.is_file()]

    def check_all_ca_expiry(self, now: datetime | None = None) -> list[ExpiryReport]:
        """Expiry report for the Root and every initialized intermediate.

        Raises:
            CertNotFound: If no CA certificate exists yet
        """
        existing = self._existing_ca_certs()
        if not existing:
            raise CertNotFound("no CA certificates found; install the PKI first")
        return [
            check_certificate(path, engine=self.engine, now=now, name=label)
            for label, path in existing
        ]

    def certificate_summary(self) -> dict[str, CertificateRecord]:
        return {
            label: extract_certificate_record(deserialize_certificate(path.read_bytes()))
            for label, path in self._existing_ca_certs()
        }
