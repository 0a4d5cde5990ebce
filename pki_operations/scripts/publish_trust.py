#!/usr/bin/env python3
"""Publish the CA bundle to S3 and the intermediates' AuthSecrets to SSM."""

import argparse
import sys
from pathlib import Path

from pki_operations.lib.ca_manager import CAManager
from pki_operations.lib.config import CAConfig
from pki_operations.lib.errors import PKIError
from pki_operations.lib.logging_config import LOGGER
from pki_operations.lib.models import IntermediateState
from pki_operations.lib.s3_client import S3Client
from pki_operations.lib.ssm_client import SSMClient

PROJECT_NAME = "pki"


def publish_trust(
    ca_manager: CAManager,
    s3_client: S3Client,
    ssm_client: SSMClient,
    s3_bucket: str,
    project_name: str,
    account: str,
    dry_run: bool = False,
) -> dict[str, str | None]:
    """Upload the full and per-intermediate CA bundles and every AuthSecret.

    Returns:
        S3 version ID per object key; None where the published copy was already current
    """
    bundles = {S3Client.bundle_key(project_name): ca_manager.assemble_full_bundle()}
    secrets_by_name = {}
    for ca in ca_manager.policy.intermediates:
        if ca_manager.intermediate_state(ca.label) is IntermediateState.UNINITIALIZED:
            continue
        key = S3Client.bundle_key(project_name, ca_manager.intermediate_bundle_path(ca.label).name)
        bundles[key] = ca_manager.assemble_intermediate_bundle(ca.label)
        if ca_manager.auth_secret_path(ca.label).is_file():
            secrets_by_name[ca.label] = ca_manager.read_auth_secret(ca.label)

    if dry_run:
        for key in bundles:
            LOGGER.info("Dry run: would upload s3://%s/%s", s3_bucket, key)
        LOGGER.info("Dry run: would store %d auth secrets", len(secrets_by_name))
        return {}

    versions = {}
    for key, content in bundles.items():
        versions[key] = s3_client.upload_bundle(s3_bucket, key, content)
        if versions[key] is None:
            LOGGER.info("s3://%s/%s already current", s3_bucket, key)
        else:
            LOGGER.info("Uploaded s3://%s/%s (version: %s)", s3_bucket, key, versions[key])

    for name, secret in secrets_by_name.items():
        ssm_client.put_auth_secret(project_name, account, name, secret)
        LOGGER.info("Stored auth secret for %s in SSM", name)

    return versions


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Publish CA bundle and auth secrets")
    parser.add_argument("--account", required=True, help="Account/environment name")
    parser.add_argument("--s3-bucket", required=True, help="S3 bucket for the CA bundle")
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path("/opt/pki"),
        help="PKI base directory (default: /opt/pki)",
    )
    parser.add_argument(
        "--project-name",
        default=PROJECT_NAME,
        help=f"Project name for SSM paths (default: {PROJECT_NAME})",
    )
    parser.add_argument("--region", default="eu-west-2", help="AWS region (default: eu-west-2)")
    parser.add_argument("--dry-run", action="store_true", help="Preview without AWS changes")
    args = parser.parse_args(argv)

    try:
        publish_trust(
            ca_manager=CAManager(CAConfig(base_dir=args.base_dir)),
            s3_client=S3Client(region=args.region),
            ssm_client=SSMClient(region=args.region),
            s3_bucket=args.s3_bucket,
            project_name=args.project_name,
            account=args.account,
            dry_run=args.dry_run,
        )
        return 0
    except PKIError as e:
        LOGGER.error("Publish failed: %s", e)
        return e.exit_code
    except Exception as e:
        LOGGER.error("Publish failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
