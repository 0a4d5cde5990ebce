"""Test fixtures for pki_operations tests."""

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from pki_operations.lib.authsign import build_envelope, parse_sign_response
from pki_operations.lib.ca_manager import CAManager
from pki_operations.lib.cert_utils import (
    generate_private_key,
    generate_serial_number,
    serialize_certificate,
)
from pki_operations.lib.config import CAConfig, ClientConfig, DistinguishedName, ProvisioningSession
from pki_operations.lib.engine import CryptographyEngine
from pki_operations.lib.sign_handler import handle_authsign


@pytest.fixture
def ca_config(tmp_path: Path) -> CAConfig:
    """Return test CA configuration rooted in a temporary directory."""
    return CAConfig(
        base_dir=tmp_path / "pki",
        country="GB",
        state="London",
        locality="London",
        organization="Test Org",
        root_common_name="Test Root CA",
        key_size=2048,  # Faster for tests
    )


@pytest.fixture
def session(ca_config: CAConfig) -> ProvisioningSession:
    """Return a provisioning session using 2048-bit CA keys."""
    return ProvisioningSession(
        key_size=2048,
        root_subject=ca_config.subject_template("Test Root CA"),
    )


@pytest.fixture
def engine() -> CryptographyEngine:
    return CryptographyEngine()


@pytest.fixture
def ca_manager(ca_config: CAConfig) -> CAManager:
    return CAManager(ca_config)


@pytest.fixture
def bootstrapped(ca_manager: CAManager, session: ProvisioningSession) -> CAManager:
    """CA manager after a full bootstrap (root, both intermediates, API cert)."""
    ca_manager.bootstrap(session, api_hostname="pki.test", api_ip="10.0.0.5")
    return ca_manager


@pytest.fixture(scope="session")
def test_key() -> RSAPrivateKey:
    """Shared RSA key for certificates whose key material does not matter."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def make_cert_pem(test_key: RSAPrivateKey) -> Callable[..., bytes]:
    """Factory for self-signed certificates with an arbitrary validity window."""

    def _make(
        not_after: datetime,
        not_before: datetime | None = None,
        common_name: str = "test.example.com",
    ) -> bytes:
        name = DistinguishedName(common_name=common_name).to_x509_name()
        not_before = not_before or min(not_after, datetime.now(UTC)) - timedelta(days=1)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(test_key.public_key())
            .serial_number(generate_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .sign(test_key, hashes.SHA256())
        )
        return serialize_certificate(cert)

    return _make


class LoopbackSigningClient:
    """SigningClient stand-in that drives the server-side handler in-process."""

    def __init__(self, ca_manager: CAManager) -> None:
        self.ca_manager = ca_manager
        self.calls: list[tuple[str, str]] = []

    def sign(self, csr_pem: str | bytes, label: str, profile: str, auth_secret: str) -> str:
        self.calls.append((label, profile))
        envelope = build_envelope(csr_pem, label, profile, auth_secret)
        status, response = handle_authsign(envelope.to_json(), self.ca_manager)
        return parse_sign_response(status, json.dumps(response))


@pytest.fixture
def loopback_client(bootstrapped: CAManager) -> LoopbackSigningClient:
    return LoopbackSigningClient(bootstrapped)


@pytest.fixture
def client_config(tmp_path: Path, bootstrapped: CAManager) -> ClientConfig:
    """Client configuration pointing at the bootstrapped intermediate-1."""
    return ClientConfig(
        ca_bundle_path=bootstrapped.bundle_path,
        auth_key_path=bootstrapped.auth_secret_path("intermediate-1"),
        pki_host="pki.test",
        cert_cn="web01.example.com",
        cert_dir=tmp_path / "client-certs",
        cert_hosts=["www.example.com", "10.1.2.3"],
        cert_o="Test Org",
        cert_c="GB",
        log_file=tmp_path / "client.log",
    )


@pytest.fixture
def env_file(tmp_path: Path) -> Path:
    """Write a complete client env file and return its path."""
    bundle = tmp_path / "ca-bundle.crt"
    bundle.write_text("bundle")
    auth_key = tmp_path / "auth-key.txt"
    auth_key.write_text("00" * 32)

    path = tmp_path / "client.env"
    path.write_text(
        "\n".join(
            [
                f"CA_BUNDLE_PATH={bundle}",
                f"AUTH_KEY_PATH={auth_key}",
                "PKI_HOST=pki.example.com",
                "PKI_PORT=9443",
                "CA_NUM=2",
                "CERT_CN=web01.example.com",
                'CERT_HOSTS="www.example.com, 10.0.0.1"',
                "CERT_O=Example Org",
                "KEY_ALGO=ecdsa",
                "KEY_SIZE=384",
                "PROFILE=peer",
                f"CERT_DIR={tmp_path / 'certs'}",
                f"LOG_FILE={tmp_path / 'pki.log'}",
            ]
        )
        + "\n"
    )
    return path
