#!/usr/bin/env python3
"""Rotate an Intermediate CA - back up, re-sign with the Root, rebuild bundles."""

import argparse
import sys
from pathlib import Path

from pki_operations.lib.ca_manager import CAManager
from pki_operations.lib.config import CAConfig
from pki_operations.lib.errors import PKIError
from pki_operations.lib.logging_config import LOGGER
from pki_operations.lib.ssm_client import SSMClient

PROJECT_NAME = "pki"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rotate an Intermediate CA")
    parser.add_argument(
        "--name",
        required=True,
        help="Intermediate CA to rotate (e.g. intermediate-1)",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path("/opt/pki"),
        help="PKI base directory (default: /opt/pki)",
    )
    parser.add_argument(
        "--rotate-auth-secret",
        action="store_true",
        help="Also generate a new AuthSecret (clients must be redistributed the new key)",
    )
    parser.add_argument(
        "--root-key-from-ssm",
        metavar="ACCOUNT",
        help="Fetch the offline Root CA key from SSM for this account",
    )
    parser.add_argument(
        "--project-name",
        default=PROJECT_NAME,
        help=f"Project name for SSM paths (default: {PROJECT_NAME})",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run intermediate CA rotation.

    Returns:
        Exit code (0 for success, error-specific code on failure)
    """
    args = build_parser().parse_args(argv)

    try:
        ca_manager = CAManager(CAConfig(base_dir=args.base_dir))

        root_key_pem = None
        if args.root_key_from_ssm:
            root_key_pem, _ = SSMClient().get_root_ca(args.project_name, args.root_key_from_ssm)
            LOGGER.info("Fetched Root CA key from SSM")

        result = ca_manager.rotate_intermediate_ca(
            args.name,
            rotate_auth_secret=args.rotate_auth_secret,
            root_key_pem=root_key_pem,
        )

        LOGGER.info("Rotation complete:")
        LOGGER.info("  Old serial: %s", result.old_serial)
        LOGGER.info("  New serial: %s", result.new_serial)
        LOGGER.info("  Backup: %s", result.backup_dir)
        LOGGER.info("  Bundle: %s", result.bundle_path)
        if result.auth_secret_rotated:
            LOGGER.warning("Auth secret rotated; distribute the new key to %s clients", result.name)
        LOGGER.info("Restart the signing service to load the new certificate")
        return 0

    except PKIError as e:
        LOGGER.error("Rotation failed: %s", e)
        return e.exit_code
    except Exception as e:
        LOGGER.error("Rotation failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
