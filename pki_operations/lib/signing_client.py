"""HTTPS client for the authenticated signing endpoint."""

import http.client
import socket
import ssl
import threading
from pathlib import Path

from .authsign import build_envelope, parse_sign_response
from .errors import PKIConnectionError
from .logging_config import LOGGER

AUTHSIGN_PATH = "/api/v1/cfssl/authsign"
CONNECT_TIMEOUT = 10
TOTAL_TIMEOUT = 30


def _transport_reason(error: BaseException) -> str:
    if isinstance(error, socket.gaierror):
        return "dns"
    if isinstance(error, ssl.SSLError):
        return "tls"
    if isinstance(error, TimeoutError):
        return "timeout"
    return "connect"


class _Deadline:
    """Shuts the connection's socket down once the total budget is spent.

    Any read or write blocked on the socket then fails immediately, so the
    whole exchange (connect, request, headers, body) is bounded.
    """

    def __init__(self, connection: http.client.HTTPConnection, seconds: float) -> None:
        self.connection = connection
        self.expired = threading.Event()
        self._timer = threading.Timer(seconds, self._expire)
        self._timer.daemon = True

    def _expire(self) -> None:
        self.expired.set()
        sock = self.connection.sock
        if sock is not None:
            try:
                # Plain socket shutdown so a concurrent TLS read sees EOF
                socket.socket.shutdown(sock, socket.SHUT_RDWR)
            except OSError as e:
                LOGGER.debug("Socket already closed at deadline: %s", e)

    def __enter__(self) -> "_Deadline":
        self._timer.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._timer.cancel()


class SigningClient:
    """Submits CSRs to the signing endpoint over TLS.

    The endpoint certificate is verified against the CA bundle only. Requests
    are never retried.
    """

    def __init__(
        self,
        host: str,
        port: int,
        ca_bundle_path: Path,
        connect_timeout: float = CONNECT_TIMEOUT,
        total_timeout: float = TOTAL_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.ca_bundle_path = ca_bundle_path
        self.connect_timeout = connect_timeout
        self.total_timeout = total_timeout

    @property
    def url(self) -> str:
        return f"https://{self.host}:{self.port}{AUTHSIGN_PATH}"

    def _ssl_context(self) -> ssl.SSLContext:
        try:
            return ssl.create_default_context(cafile=str(self.ca_bundle_path))
        except (OSError, ssl.SSLError) as e:
            raise PKIConnectionError(
                f"cannot load CA bundle {self.ca_bundle_path}: {e}", reason="tls"
            ) from e

    def _timed_out(self) -> PKIConnectionError:
        return PKIConnectionError(
            f"signing request to {self.host}:{self.port} exceeded {self.total_timeout}s",
            reason="timeout",
        )

    def sign(self, csr_pem: str | bytes, label: str, profile: str, auth_secret: str) -> str:
        """Request a certificate for ``csr_pem`` from CA ``label``.

        Returns:
            Issued certificate PEM

        Raises:
            PKIConnectionError: DNS, connect, TLS or timeout failure
            AuthenticationFailed: HTTP 401/403
            RequestRejected: Other HTTP errors or an unsuccessful response
            MalformedResponse: Unparseable 200 response
        """
        envelope = build_envelope(csr_pem, label, profile, auth_secret)
        connection = http.client.HTTPSConnection(
            self.host, self.port, timeout=self.connect_timeout, context=self._ssl_context()
        )

        LOGGER.debug("POST %s label=%s profile=%s", self.url, label, profile)
        try:
            with _Deadline(connection, self.total_timeout) as deadline:
                try:
                    connection.request(
                        "POST",
                        AUTHSIGN_PATH,
                        body=envelope.to_json(),
                        headers={"Content-Type": "application/json"},
                    )
                    response = connection.getresponse()
                    status = response.status
                    body = response.read()
                except (OSError, http.client.HTTPException) as e:
                    if deadline.expired.is_set():
                        raise self._timed_out() from e
                    raise PKIConnectionError(
                        f"failed to connect to {self.host}:{self.port}: {e}",
                        reason=_transport_reason(e),
                    ) from e
                if deadline.expired.is_set():
                    raise self._timed_out()
        finally:
            connection.close()

        LOGGER.debug("Signing endpoint answered HTTP %d", status)
        return parse_sign_response(status, body)
