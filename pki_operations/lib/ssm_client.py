"""SSM client for CA key material and AuthSecrets in AWS Parameter Store."""

import boto3
from botocore.exceptions import ClientError

from .errors import CertNotFound, RootKeyUnavailable


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code", "") == "ParameterNotFound"


class SSMClient:
    """SSM client for the offline Root CA and per-intermediate AuthSecrets."""

    def __init__(self, region: str = "eu-west-2") -> None:
        """Initialize SSM client.

        Args:
            region: AWS region for SSM client
        """
        self.client = boto3.client("ssm", region_name=region)

    @staticmethod
    def auth_secret_path(project_name: str, account: str, name: str) -> str:
        return f"/{project_name}/{account}/ca/{name}/auth-key"

    def get_root_ca(self, project_name: str, account: str) -> tuple[bytes, bytes]:
        """Fetch the offline Root CA key and certificate.

        Args:
            project_name: Project name prefix (e.g., 'pki')
            account: Account/environment name (e.g., 'sandbox')

        Returns:
            Tuple of (private_key_pem, certificate_pem) as bytes

        Raises:
            RootKeyUnavailable: If the parameters do not exist
        """
        key_path = f"/{project_name}/{account}/ca/root/private-key"
        cert_path = f"/{project_name}/{account}/ca/root/certificate"

        try:
            key_response = self.client.get_parameter(Name=key_path, WithDecryption=True)
            cert_response = self.client.get_parameter(Name=cert_path, WithDecryption=False)
        except ClientError as e:
            if _is_not_found(e):
                raise RootKeyUnavailable(
                    f"Root CA not found in SSM. Paths checked: {key_path}, {cert_path}"
                ) from e
            raise

        return (
            key_response["Parameter"]["Value"].encode("utf-8"),
            cert_response["Parameter"]["Value"].encode("utf-8"),
        )

    def put_auth_secret(
        self, project_name: str, account: str, name: str, secret: str, overwrite: bool = True
    ) -> int:
        """Store an intermediate's AuthSecret as a SecureString.

        Returns:
            SSM parameter version
        """
        response = self.client.put_parameter(
            Name=self.auth_secret_path(project_name, account, name),
            Value=secret,
            Type="SecureString",
            Overwrite=overwrite,
        )
        return response.get("Version", 0)

    def get_auth_secret(self, project_name: str, account: str, name: str) -> str:
        """Fetch an intermediate's AuthSecret.

        Raises:
            CertNotFound: If no secret is stored for ``name``
        """
        path = self.auth_secret_path(project_name, account, name)
        try:
            response = self.client.get_parameter(Name=path, WithDecryption=True)
        except ClientError as e:
            if _is_not_found(e):
                raise CertNotFound(f"auth secret not found in SSM: {path}") from e
            raise
        return response["Parameter"]["Value"].strip()
