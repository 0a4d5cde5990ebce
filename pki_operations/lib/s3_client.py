"""S3 publication of CA bundles for client download."""

import hashlib

import boto3
from botocore.exceptions import ClientError

DIGEST_METADATA_KEY = "sha256"


def bundle_digest(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class S3Client:
    """Publishes PEM bundles under ``<project>/`` in a versioned bucket.

    Each object carries the SHA-256 of its body in metadata so an unchanged
    bundle is never re-uploaded as a new version.
    """

    def __init__(self, region: str = "eu-west-2") -> None:
        """Initialize S3 client.

        Args:
            region: AWS region for S3 client
        """
        self.client = boto3.client("s3", region_name=region)

    @staticmethod
    def bundle_key(project_name: str, filename: str = "ca-bundle.crt") -> str:
        return f"{project_name}/{filename}"

    def published_digest(self, bucket_name: str, key: str) -> str | None:
        """SHA-256 recorded on the current object, None when it does not exist.

        Raises:
            ClientError: On any failure other than a missing object
        """
        try:
            response = self.client.head_object(Bucket=bucket_name, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                return None
            raise
        return response.get("Metadata", {}).get(DIGEST_METADATA_KEY)

    def upload_bundle(self, bucket_name: str, key: str, bundle_content: bytes) -> str | None:
        """Upload a PEM bundle unless the published copy is identical.

        Returns:
            S3 version ID ("" without versioning), or None when the upload was skipped

        Raises:
            ClientError: If upload fails
        """
        digest = bundle_digest(bundle_content)
        if self.published_digest(bucket_name, key) == digest:
            return None

        response = self.client.put_object(
            Bucket=bucket_name,
            Key=key,
            Body=bundle_content,
            ContentType="application/x-pem-file",
            Metadata={DIGEST_METADATA_KEY: digest},
        )
        return response.get("VersionId", "")
