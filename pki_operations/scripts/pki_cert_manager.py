#!/usr/bin/env python3
"""Request, renew or check a leaf certificate from the PKI signing endpoint.

Suitable for cron: every outcome maps to a distinct exit code.
"""

import argparse
import sys
from pathlib import Path

from pki_operations.lib.cert_manager import LeafCertificateManager
from pki_operations.lib.config import load_client_config
from pki_operations.lib.engine import CryptographyEngine
from pki_operations.lib.errors import EXIT_ERROR, EXIT_SUCCESS, CertValid, PKIError
from pki_operations.lib.expiry import check_certificate
from pki_operations.lib.logging_config import LOGGER, add_file_handler
from pki_operations.lib.models import ExpiryStatus


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage a leaf certificate issued by the PKI signing endpoint"
    )
    parser.add_argument(
        "-e",
        "--env-file",
        type=Path,
        help="Environment file with certificate configuration (required for -n and -r)",
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument(
        "-c",
        "--check",
        type=Path,
        metavar="CERT_FILE",
        help="Check certificate expiry",
    )
    action.add_argument("-n", "--new", action="store_true", help="Request new certificate")
    action.add_argument(
        "-r",
        "--renew",
        action="store_true",
        help="Renew certificate (only inside the renewal window)",
    )
    parser.add_argument(
        "-f", "--force", action="store_true", help="Force new/renew even if not needed"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return parser


def run_check(cert_file: Path, verbose: bool) -> int:
    """Report days to expiry; days go to stdout unless verbose.

    Returns:
        1 for EXPIRED/CRITICAL, 0 otherwise
    """
    report = check_certificate(cert_file, engine=CryptographyEngine())

    LOGGER.info("Certificate: %s", cert_file)
    LOGGER.info("Days until expiry: %d", report.days_remaining)
    LOGGER.info("Status: %s", report.status.value)

    if not verbose:
        print(report.days_remaining)

    if report.status in (ExpiryStatus.EXPIRED, ExpiryStatus.CRITICAL):
        return EXIT_ERROR
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.check:
            return run_check(args.check, args.verbose)

        if args.env_file is None:
            LOGGER.error("Environment file required for -n or -r. Use -e <file>")
            return EXIT_ERROR

        config = load_client_config(args.env_file)
        add_file_handler(config.log_file, verbose=args.verbose)
        config.validate()

        action = "new" if args.new else "renew"
        LOGGER.info("Starting pki-cert-manager (action: %s, force: %s)", action, args.force)

        manager = LeafCertificateManager(config)
        if args.new:
            result = manager.new_certificate(force=args.force)
        else:
            result = manager.renew_certificate(force=args.force)

        LOGGER.info("Certificate: %s", result.cert_path)
        LOGGER.info("Chain: %s", result.chain_path)
        LOGGER.info("Serial: %s", result.serial_number)
        return EXIT_SUCCESS

    except CertValid as e:
        LOGGER.info("%s", e)
        return e.exit_code
    except PKIError as e:
        LOGGER.error("%s", e)
        return e.exit_code
    except Exception as e:
        LOGGER.error("Unexpected failure: %s", e)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
