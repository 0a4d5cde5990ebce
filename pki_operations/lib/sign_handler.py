"""Server side of the authenticated signing endpoint."""

from typing import NotRequired, TypedDict

from .authsign import verify_envelope
from .ca_manager import CAManager
from .errors import (
    AuthenticationFailed,
    CertNotFound,
    EngineRejected,
    EngineUnavailable,
    PolicyViolation,
    UnknownCA,
)
from .logging_config import LOGGER
from .policy import CAKind


class ResponseError(TypedDict):
    code: int
    message: str


class SignResult(TypedDict):
    certificate: str


class SignResponse(TypedDict):
    success: bool
    result: NotRequired[SignResult]
    errors: list[ResponseError]
    messages: list[str]


def error_response(code: int, message: str) -> SignResponse:
    return {"success": False, "errors": [{"code": code, "message": message}], "messages": []}


def success_response(certificate: str) -> SignResponse:
    return {
        "success": True,
        "result": {"certificate": certificate},
        "errors": [],
        "messages": [],
    }


def handle_authsign(body: bytes | str, ca_manager: CAManager) -> tuple[int, SignResponse]:
    """Verify an authenticated request and sign its CSR with the labelled intermediate.

    Returns:
        Tuple of (http_status, response document)
    """
    try:
        request = verify_envelope(body, ca_manager.load_auth_secrets())
    except AuthenticationFailed as e:
        LOGGER.warning("Rejected signing request: %s", e)
        return 401, error_response(1000, "invalid token")

    try:
        ca = ca_manager.policy.get(request.label)
        if ca.kind is not CAKind.INTERMEDIATE:
            raise UnknownCA(f"'{request.label}' does not accept signing requests")
        profile = ca.profile(request.profile)
        if not profile.requires_auth or profile.is_ca:
            raise PolicyViolation(f"profile '{request.profile}' is not signable by request")

        certificate = ca_manager.engine.sign(
            request.certificate_request.encode("ascii"),
            ca_manager.intermediate_cert_path(ca.label).read_bytes(),
            ca_manager.intermediate_key_path(ca.label).read_bytes(),
            ca,
            request.profile,
        )
    except (UnknownCA, PolicyViolation, EngineRejected, UnicodeEncodeError) as e:
        LOGGER.warning("Signing request refused: %s", e)
        return 400, error_response(1200, str(e))
    except (CertNotFound, EngineUnavailable, FileNotFoundError) as e:
        LOGGER.error("Signing CA unavailable: %s", e)
        return 500, error_response(1300, "signing CA unavailable")

    LOGGER.info("Signed %s certificate with %s", request.profile, ca.label)
    return 200, success_response(certificate.decode("ascii"))
