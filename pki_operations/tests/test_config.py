"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
from cryptography import x509

from pki_operations.lib.config import (
    CAConfig,
    ClientConfig,
    DistinguishedName,
    ProvisioningSession,
    load_client_config,
    validate_ca_key_size,
)
from pki_operations.lib.errors import EnvFileNotFound, InvalidConfiguration, InvalidKeySize


class TestDistinguishedName:
    def test_skips_empty_attributes(self) -> None:
        name = DistinguishedName(common_name="host", organization="Org").to_x509_name()

        assert name.rfc4514_string() == "CN=host,O=Org"

    def test_names_entry(self) -> None:
        dn = DistinguishedName(common_name="x", country="GB", organizational_unit="Ops")

        assert dn.to_names_entry() == {"C": "GB", "OU": "Ops"}

    def test_with_common_name(self) -> None:
        dn = DistinguishedName(common_name="a", country="GB").with_common_name("b")

        assert dn == DistinguishedName(common_name="b", country="GB")
        assert dn.to_x509_name().get_attributes_for_oid(x509.NameOID.COMMON_NAME)[0].value == "b"


class TestCAConfig:
    def test_layout(self, tmp_path: Path) -> None:
        config = CAConfig(base_dir=tmp_path)

        assert config.root_dir == tmp_path / "certs" / "root"
        assert config.intermediate_dir == tmp_path / "certs" / "intermediate"
        assert config.bundle_dir == tmp_path / "certs" / "bundle"
        assert config.api_dir == tmp_path / "certs" / "api"
        assert config.config_dir == tmp_path / "config"

    def test_defaults(self) -> None:
        config = CAConfig()

        assert config.root_validity_hours == 87600
        assert config.intermediate_validity_hours == 70080
        assert config.leaf_validity_hours == 8760
        assert config.key_size == 4096


class TestProvisioningSession:
    @pytest.mark.parametrize("size", [2048, 3072, 4096, 8192])
    def test_accepts_supported_sizes(self, size: int) -> None:
        assert validate_ca_key_size(size) == size

    @pytest.mark.parametrize("size", [1024, 4000, 16384])
    def test_rejects_other_sizes(self, size: int) -> None:
        with pytest.raises(InvalidKeySize) as excinfo:
            ProvisioningSession(key_size=size, root_subject=DistinguishedName(common_name="r"))

        assert excinfo.value.exit_code == 4

    def test_subject_for_defaults_to_root_template(self) -> None:
        root = DistinguishedName(common_name="Root", country="GB", organization="Org")
        session = ProvisioningSession(key_size=2048, root_subject=root)

        subject = session.subject_for("intermediate-2")

        assert subject == DistinguishedName(
            common_name="Intermediate 2 CA", country="GB", organization="Org"
        )

    def test_subject_for_override(self) -> None:
        custom = DistinguishedName(common_name="Issuing CA")
        session = ProvisioningSession(
            key_size=2048,
            root_subject=DistinguishedName(common_name="Root"),
            intermediate_subjects={"intermediate-1": custom},
        )

        assert session.subject_for("intermediate-1") is custom


class TestLoadClientConfig:
    """Tests for load_client_config()."""

    def test_reads_all_keys(self, env_file: Path, tmp_path: Path) -> None:
        config = load_client_config(env_file)

        assert config.pki_host == "pki.example.com"
        assert config.pki_port == 9443
        assert config.ca_label == "intermediate_2"
        assert config.cert_hosts == ["www.example.com", "10.0.0.1"]
        assert config.key_algo == "ecdsa"
        assert config.key_size == 384
        assert config.profile == "peer"
        assert config.subject == DistinguishedName(
            common_name="web01.example.com", organization="Example Org"
        )
        assert config.log_file == tmp_path / "pki.log"
        config.validate()

    def test_output_prefix_defaults_to_cn(self, env_file: Path, tmp_path: Path) -> None:
        config = load_client_config(env_file)

        assert config.output_prefix == "web01.example.com"
        assert config.cert_file == tmp_path / "certs" / "web01.example.com.crt"
        assert config.chain_file == tmp_path / "certs" / "web01.example.com-chain.crt"

    def test_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "minimal.env"
        path.write_text(
            "CA_BUNDLE_PATH=/b\nAUTH_KEY_PATH=/k\nPKI_HOST=h\nCERT_CN=cn\nCERT_DIR=/c\n"
        )

        config = load_client_config(path)

        assert config.pki_port == 8888
        assert config.ca_num == "1"
        assert config.key_algo == "rsa"
        assert config.key_size == 2048
        assert config.profile == "server"
        assert config.cert_hosts == []

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(EnvFileNotFound) as excinfo:
            load_client_config(tmp_path / "absent.env")

        assert excinfo.value.exit_code == 3

    def test_missing_required_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "partial.env"
        path.write_text("PKI_HOST=h\n")

        with pytest.raises(InvalidConfiguration) as excinfo:
            load_client_config(path)

        assert "CERT_CN is required" in excinfo.value.problems
        assert len(excinfo.value.problems) == 4

    def test_non_numeric_port(self, env_file: Path) -> None:
        env_file.write_text(env_file.read_text().replace("PKI_PORT=9443", "PKI_PORT=http"))

        with pytest.raises(InvalidConfiguration, match="integers"):
            load_client_config(env_file)


class TestClientConfigValidate:
    def test_collects_every_problem(self, tmp_path: Path) -> None:
        config = ClientConfig(
            ca_bundle_path=tmp_path / "missing-bundle",
            auth_key_path=tmp_path / "missing-key",
            pki_host="h",
            cert_cn="cn",
            cert_dir=tmp_path,
            ca_num="3",
            key_algo="ecdsa",
            key_size=2048,
            profile="codesign",
            pki_port=70000,
        )

        with pytest.raises(InvalidConfiguration) as excinfo:
            config.validate()

        assert len(excinfo.value.problems) == 6
        assert excinfo.value.exit_code == 4

    def test_rsa_size_checked(self, env_file: Path) -> None:
        config = load_client_config(env_file)
        config.key_algo = "rsa"
        config.key_size = 8192

        with pytest.raises(InvalidConfiguration, match="KEY_SIZE for rsa"):
            config.validate()
