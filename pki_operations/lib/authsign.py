"""HMAC-authenticated signing requests.

The token is computed over the exact raw bytes of the inner request; the
transport-encoded (base64) form is only ever produced from those bytes and
decoded back to them before verification.
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from typing import NewType

from .errors import AuthenticationFailed, MalformedResponse, RequestRejected

AUTH_SECRET_BYTES = 32

RawInnerRequest = NewType("RawInnerRequest", bytes)
TransportEncodedInnerRequest = NewType("TransportEncodedInnerRequest", str)


@dataclass(frozen=True)
class InnerRequest:
    certificate_request: str
    label: str
    profile: str


@dataclass(frozen=True)
class AuthenticatedRequest:
    """The ``{token, request}`` envelope POSTed to the signing endpoint."""

    token: str
    request: TransportEncodedInnerRequest

    def to_json(self) -> bytes:
        return json.dumps({"token": self.token, "request": self.request}).encode("utf-8")


def generate_auth_secret() -> str:
    """Fresh 256-bit HMAC key, hex encoded."""
    return secrets.token_hex(AUTH_SECRET_BYTES)


def normalize_csr_pem(csr_pem: str | bytes) -> str:
    """Strip CRs and blank lines; every remaining line ends with ``\\n``."""
    if isinstance(csr_pem, bytes):
        csr_pem = csr_pem.decode("ascii")
    lines = [line.replace("\r", "") for line in csr_pem.split("\n")]
    return "".join(f"{line}\n" for line in lines if line.strip())


def build_inner_request(csr_pem: str | bytes, label: str, profile: str) -> RawInnerRequest:
    document = {
        "certificate_request": normalize_csr_pem(csr_pem),
        "label": label,
        "profile": profile,
    }
    return RawInnerRequest(json.dumps(document, separators=(",", ":")).encode("utf-8"))


def _hmac_key(auth_secret: str) -> bytes:
    try:
        return bytes.fromhex(auth_secret.strip())
    except ValueError as e:
        raise AuthenticationFailed(f"auth secret is not valid hex: {e}") from e


def compute_token(auth_secret: str, raw: RawInnerRequest) -> str:
    """Base64 HMAC-SHA256 over the raw inner request, keyed by the decoded secret."""
    digest = hmac.new(_hmac_key(auth_secret), raw, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def encode_inner_request(raw: RawInnerRequest) -> TransportEncodedInnerRequest:
    return TransportEncodedInnerRequest(base64.b64encode(raw).decode("ascii"))


def decode_inner_request(encoded: TransportEncodedInnerRequest) -> RawInnerRequest:
    return RawInnerRequest(base64.b64decode(encoded, validate=True))


def build_envelope(
    csr_pem: str | bytes, label: str, profile: str, auth_secret: str
) -> AuthenticatedRequest:
    """Build the signed envelope for one CSR."""
    raw = build_inner_request(csr_pem, label, profile)
    return AuthenticatedRequest(
        token=compute_token(auth_secret, raw),
        request=encode_inner_request(raw),
    )


def verify_envelope(body: bytes | str, secrets_by_label: dict[str, str]) -> InnerRequest:
    """Server-side check of an envelope.

    The secret is chosen by the ``label`` inside the inner request and the
    HMAC is recomputed over the decoded raw bytes.

    Raises:
        AuthenticationFailed: On any undecodable part, unknown label or token mismatch
    """
    try:
        envelope = json.loads(body)
        token = base64.b64decode(envelope["token"], validate=True)
        raw = decode_inner_request(envelope["request"])
        inner = json.loads(raw)
        request = InnerRequest(
            certificate_request=inner["certificate_request"],
            label=inner["label"],
            profile=inner["profile"],
        )
    except (ValueError, TypeError, KeyError, binascii.Error) as e:
        raise AuthenticationFailed(f"malformed authenticated request: {e}") from e
    if not all(isinstance(v, str) for v in (request.certificate_request, request.label, request.profile)):
        raise AuthenticationFailed("malformed authenticated request: fields must be strings")

    secret = secrets_by_label.get(request.label)
    if secret is None:
        raise AuthenticationFailed(f"no auth key for label '{request.label}'")

    expected = hmac.new(_hmac_key(secret), raw, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, token):
        raise AuthenticationFailed("invalid token")
    return request


def parse_sign_response(status: int, body: bytes | str) -> str:
    """Extract the issued certificate PEM from a signing endpoint response.

    Raises:
        AuthenticationFailed: On HTTP 401/403
        RequestRejected: On other non-200 codes or ``success`` not true
        MalformedResponse: On an unparseable 200 body
    """
    if status in (401, 403):
        raise AuthenticationFailed(
            f"authentication failed (HTTP {status}); check the auth key", http_status=status
        )
    if status != 200:
        raise RequestRejected(f"API request failed with HTTP {status}", http_status=status)

    try:
        payload = json.loads(body)
    except ValueError as e:
        raise MalformedResponse(f"signing endpoint returned invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedResponse("signing endpoint returned a non-object response")

    if payload.get("success") is not True:
        errors = payload.get("errors")
        message = "Unknown error"
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message") or message
        raise RequestRejected(f"certificate signing failed: {message}", http_status=status)

    result = payload.get("result")
    if not isinstance(result, dict):
        raise MalformedResponse("signing response has no result object")
    certificate = result.get("certificate")
    if not isinstance(certificate, str) or not certificate:
        raise MalformedResponse("no certificate in signing response")
    return certificate
