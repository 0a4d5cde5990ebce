"""Error taxonomy for PKI operations.

Every terminal failure carries a stable ``exit_code`` so cron jobs and
orchestration can branch on the outcome without parsing messages.
"""

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_MISSING_ENV = 3
EXIT_INVALID_CONFIG = 4
EXIT_CONNECTION_ERROR = 5
EXIT_AUTH_ERROR = 6
EXIT_CERT_EXISTS = 7
EXIT_CERT_NOT_FOUND = 8
EXIT_CERT_VALID = 9


class PKIError(Exception):
    """Base class for all PKI operation failures."""

    exit_code = EXIT_ERROR


class InvalidConfiguration(PKIError):
    """Configuration input failed validation."""

    exit_code = EXIT_INVALID_CONFIG

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


class EnvFileNotFound(PKIError):
    """Environment file for the client CLI is missing."""

    exit_code = EXIT_MISSING_ENV


class PolicyViolation(InvalidConfiguration):
    """CA hierarchy or profile policy is inconsistent. Never auto-corrected."""


class InvalidKeySize(InvalidConfiguration):
    """Requested key size is not one of the supported sizes."""


class UnknownCA(InvalidConfiguration):
    """Label does not name a configured CA."""


class RootKeyUnavailable(PKIError):
    """Root CA private key is not present (expected once moved offline)."""


class EngineUnavailable(PKIError):
    """CA engine backend failed to run."""


class EngineRejected(PKIError):
    """CA engine refused the request (policy/profile/CSR mismatch)."""


class PKIConnectionError(PKIError):
    """Transport failure talking to the signing endpoint.

    ``reason`` names the transport failure class (dns, connect, timeout, tls).
    """

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(self, message: str, reason: str = "connect") -> None:
        super().__init__(message)
        self.reason = reason


class AuthenticationFailed(PKIError):
    """Signing request was not authenticated (HMAC mismatch, 401/403)."""

    exit_code = EXIT_AUTH_ERROR

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class RequestRejected(PKIError):
    """Signing endpoint answered but refused to issue."""

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class MalformedResponse(PKIError):
    """Signing endpoint returned 200 with a body that does not match the schema."""


class CertNotFound(PKIError):
    exit_code = EXIT_CERT_NOT_FOUND


class CertAlreadyExists(PKIError):
    exit_code = EXIT_CERT_EXISTS


class CertValid(PKIError):
    """Renewal skipped because the certificate is outside the renewal window."""

    exit_code = EXIT_CERT_VALID

    def __init__(self, message: str, days_remaining: int) -> None:
        super().__init__(message)
        self.days_remaining = days_remaining
