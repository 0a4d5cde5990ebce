#!/usr/bin/env python3
"""Report remaining validity of the Root and Intermediate CAs."""

import argparse
import sys
from pathlib import Path

from pki_operations.lib.ca_manager import CAManager
from pki_operations.lib.config import CAConfig
from pki_operations.lib.errors import PKIError
from pki_operations.lib.logging_config import LOGGER


def main(argv: list[str] | None = None) -> int:
    """Log an expiry report for every CA.

    Returns:
        0 if every CA is OK, 1 if any needs attention, error code on failure
    """
    parser = argparse.ArgumentParser(description="Check CA certificate expiry")
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path("/opt/pki"),
        help="PKI base directory (default: /opt/pki)",
    )
    args = parser.parse_args(argv)

    try:
        reports = CAManager(CAConfig(base_dir=args.base_dir)).check_all_ca_expiry()
    except PKIError as e:
        LOGGER.error("Expiry check failed: %s", e)
        return e.exit_code

    for report in reports:
        log = LOGGER.warning if report.needs_attention else LOGGER.info
        log("%s: %s (%d days remaining)", report.name, report.status.value, report.days_remaining)

    return 1 if any(r.needs_attention for r in reports) else 0


if __name__ == "__main__":
    sys.exit(main())
