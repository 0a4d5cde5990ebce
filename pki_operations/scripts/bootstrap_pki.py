#!/usr/bin/env python3
"""Bootstrap the PKI: Root CA, Intermediate CAs, bundles and signing endpoint identity."""

import argparse
import socket
import sys
from pathlib import Path

from pki_operations.lib.ca_manager import CAManager
from pki_operations.lib.config import CA_KEY_SIZES, CAConfig, ProvisioningSession
from pki_operations.lib.errors import PKIError
from pki_operations.lib.logging_config import LOGGER


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bootstrap PKI (generate Root + Intermediates + bundles)"
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path("/opt/pki"),
        help="PKI base directory (default: /opt/pki)",
    )
    parser.add_argument(
        "--key-size",
        type=int,
        choices=CA_KEY_SIZES,
        default=4096,
        help="RSA key size for Root and Intermediate CAs (default: 4096)",
    )
    parser.add_argument("--country", default="US")
    parser.add_argument("--state", default="")
    parser.add_argument("--locality", default="")
    parser.add_argument("--organization", default="PKI Manager")
    parser.add_argument("--root-cn", default="PKI Root CA", help="Root CA common name")
    parser.add_argument(
        "--api-hostname",
        help="Hostname for the signing endpoint certificate (default: this host's FQDN)",
    )
    parser.add_argument("--api-ip", help="IP address for the signing endpoint certificate")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Generate the complete CA hierarchy.

    Returns:
        Exit code (0 for success, error-specific code on failure)
    """
    args = build_parser().parse_args(argv)

    try:
        config = CAConfig(
            base_dir=args.base_dir,
            country=args.country,
            state=args.state,
            locality=args.locality,
            organization=args.organization,
            root_common_name=args.root_cn,
            key_size=args.key_size,
        )
        session = ProvisioningSession(
            key_size=args.key_size,
            root_subject=config.subject_template(args.root_cn),
        )
        ca_manager = CAManager(config)

        LOGGER.info("Bootstrapping PKI in %s...", config.base_dir)
        result = ca_manager.bootstrap(
            session,
            api_hostname=args.api_hostname or socket.getfqdn(),
            api_ip=args.api_ip,
        )

        LOGGER.info("Root CA created:")
        LOGGER.info("  Key: %s", result.root_key_path)
        LOGGER.info("  Cert: %s", result.root_cert_path)
        LOGGER.info("  Serial: %s", result.root_serial)
        for name, cert_path in result.intermediate_cert_paths.items():
            LOGGER.info("%s created: %s (serial %s)", name, cert_path, result.intermediate_serials[name])
        LOGGER.info("CA bundle: %s", result.bundle_path)
        LOGGER.info("Multiroot config: %s", result.multiroot_config_path)

        LOGGER.warning(
            "Move %s to offline storage; it is only needed to rotate intermediates",
            result.root_key_path,
        )
        return 0

    except PKIError as e:
        LOGGER.error("Bootstrap failed: %s", e)
        return e.exit_code
    except Exception as e:
        LOGGER.error("Bootstrap failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
