"""Tests for the signing endpoint HTTPS client."""

import http.client
import json
import socket
import ssl
import threading
import time
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from pki_operations.lib.authsign import verify_envelope
from pki_operations.lib.ca_manager import CAManager
from pki_operations.lib.errors import (
    AuthenticationFailed,
    MalformedResponse,
    PKIConnectionError,
    RequestRejected,
)
from pki_operations.lib.signing_client import AUTHSIGN_PATH, SigningClient

SECRET = "ab" * 32
CSR = "-----BEGIN CERTIFICATE REQUEST-----\nMIIB\n-----END CERTIFICATE REQUEST-----\n"
SUCCESS = json.dumps({"success": True, "result": {"certificate": "CERT"}}).encode()


class TestSigningClient:
    """Tests for SigningClient.sign()."""

    @pytest.fixture
    def mock_ssl(self) -> Generator[MagicMock]:
        with patch("pki_operations.lib.signing_client.ssl.create_default_context") as mock:
            yield mock

    @pytest.fixture
    def mock_connection(self, mock_ssl: MagicMock) -> Generator[MagicMock]:
        with patch("pki_operations.lib.signing_client.http.client.HTTPSConnection") as mock:
            mock.return_value.sock = None
            yield mock

    @pytest.fixture
    def client(self, tmp_path: Path) -> SigningClient:
        return SigningClient("pki.example.com", 8888, tmp_path / "ca-bundle.crt")

    def _respond(self, mock_connection: MagicMock, status: int, body: bytes) -> None:
        response = mock_connection.return_value.getresponse.return_value
        response.status = status
        response.read.return_value = body

    def test_returns_certificate(self, client: SigningClient, mock_connection: MagicMock) -> None:
        self._respond(mock_connection, 200, SUCCESS)

        assert client.sign(CSR, "intermediate_1", "server", SECRET) == "CERT"
        mock_connection.return_value.close.assert_called_once()

    def test_posts_authenticated_envelope(
        self, client: SigningClient, mock_connection: MagicMock
    ) -> None:
        self._respond(mock_connection, 200, SUCCESS)

        client.sign(CSR, "intermediate_1", "client", SECRET)

        assert client.url == "https://pki.example.com:8888/api/v1/cfssl/authsign"
        assert mock_connection.call_args.args == ("pki.example.com", 8888)
        assert mock_connection.call_args.kwargs["timeout"] == 10
        call = mock_connection.return_value.request.call_args
        assert call.args == ("POST", AUTHSIGN_PATH)
        assert call.kwargs["headers"] == {"Content-Type": "application/json"}
        inner = verify_envelope(call.kwargs["body"], {"intermediate_1": SECRET})
        assert inner.profile == "client"

    def test_trusts_only_ca_bundle(
        self, client: SigningClient, mock_connection: MagicMock, mock_ssl: MagicMock
    ) -> None:
        self._respond(mock_connection, 200, SUCCESS)

        client.sign(CSR, "intermediate_1", "server", SECRET)

        mock_ssl.assert_called_once_with(cafile=str(client.ca_bundle_path))
        assert mock_connection.call_args.kwargs["context"] is mock_ssl.return_value

    @pytest.mark.parametrize("code", [401, 403])
    def test_auth_failure(
        self, client: SigningClient, mock_connection: MagicMock, code: int
    ) -> None:
        self._respond(mock_connection, code, b"")

        with pytest.raises(AuthenticationFailed):
            client.sign(CSR, "intermediate_1", "server", SECRET)

    def test_http_error_carries_code(
        self, client: SigningClient, mock_connection: MagicMock
    ) -> None:
        self._respond(mock_connection, 502, b"bad gateway")

        with pytest.raises(RequestRejected) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.http_status == 502

    def test_unsuccessful_response(
        self, client: SigningClient, mock_connection: MagicMock
    ) -> None:
        body = json.dumps({"success": False, "errors": [{"message": "policy"}]}).encode()
        self._respond(mock_connection, 200, body)

        with pytest.raises(RequestRejected, match="policy"):
            client.sign(CSR, "intermediate_1", "server", SECRET)

    def test_malformed_response(self, client: SigningClient, mock_connection: MagicMock) -> None:
        self._respond(mock_connection, 200, b"<html>")

        with pytest.raises(MalformedResponse):
            client.sign(CSR, "intermediate_1", "server", SECRET)

    @pytest.mark.parametrize(
        ("error", "reason"),
        [
            (socket.gaierror(-2, "Name or service not known"), "dns"),
            (ConnectionRefusedError(111, "Connection refused"), "connect"),
            (TimeoutError("timed out"), "timeout"),
            (ssl.SSLCertVerificationError(1, "verify failed"), "tls"),
            (ConnectionResetError(104, "reset"), "connect"),
            (http.client.RemoteDisconnected("closed"), "connect"),
        ],
    )
    def test_transport_failures(
        self,
        client: SigningClient,
        mock_connection: MagicMock,
        error: BaseException,
        reason: str,
    ) -> None:
        mock_connection.return_value.request.side_effect = error

        with pytest.raises(PKIConnectionError) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.reason == reason
        assert excinfo.value.exit_code == 5
        mock_connection.return_value.close.assert_called_once()

    def test_truncated_body(self, client: SigningClient, mock_connection: MagicMock) -> None:
        self._respond(mock_connection, 200, b"")
        mock_connection.return_value.getresponse.return_value.read.side_effect = (
            http.client.IncompleteRead(b"{", 10)
        )

        with pytest.raises(PKIConnectionError) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.reason == "connect"

    def test_never_retries(self, client: SigningClient, mock_connection: MagicMock) -> None:
        mock_connection.return_value.request.side_effect = ConnectionRefusedError(111, "refused")

        with pytest.raises(PKIConnectionError):
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert mock_connection.return_value.request.call_count == 1

    def test_unreadable_bundle(self, client: SigningClient) -> None:
        """Real context creation fails for a missing bundle file."""
        with pytest.raises(PKIConnectionError) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.reason == "tls"


def _read_request(conn: ssl.SSLSocket) -> None:
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = conn.recv(4096)
        if not chunk:
            return
        data += chunk
    headers, body = data.split(b"\r\n\r\n", 1)
    length = next(
        int(line.split(b":", 1)[1])
        for line in headers.split(b"\r\n")
        if line.lower().startswith(b"content-length")
    )
    while len(body) < length:
        chunk = conn.recv(4096)
        if not chunk:
            return
        body += chunk


@pytest.fixture
def tls_server(bootstrapped: CAManager) -> Generator[Callable[[Callable], int]]:
    """Loopback TLS endpoint serving the bootstrapped API server certificate.

    Calling the fixture with a handler ``(ssl_socket) -> None`` starts the
    server and returns its port.
    """
    api_dir = bootstrapped.config.api_dir
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(api_dir / "api-server.pem", api_dir / "api-server-key.pem")
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    threads = []

    def _serve(handler: Callable) -> None:
        raw, _ = listener.accept()
        try:
            with context.wrap_socket(raw, server_side=True) as conn:
                _read_request(conn)
                handler(conn)
        except OSError:
            pass

    def _start(handler: Callable) -> int:
        thread = threading.Thread(target=_serve, args=(handler,), daemon=True)
        thread.start()
        threads.append(thread)
        return listener.getsockname()[1]

    yield _start
    listener.close()
    for thread in threads:
        thread.join(timeout=5)


class TestSigningClientOverTls:
    """Real TLS exchanges against a loopback endpoint."""

    def test_success(self, tls_server: Callable, bootstrapped: CAManager) -> None:
        def handler(conn: ssl.SSLSocket) -> None:
            conn.sendall(
                b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
                + f"Content-Length: {len(SUCCESS)}\r\n\r\n".encode()
                + SUCCESS
            )

        port = tls_server(handler)
        client = SigningClient("127.0.0.1", port, bootstrapped.bundle_path)

        assert client.sign(CSR, "intermediate_1", "server", SECRET) == "CERT"

    def test_slow_body_hits_total_timeout(
        self, tls_server: Callable, bootstrapped: CAManager
    ) -> None:
        """A body trickled one byte at a time cannot outlast the total budget."""

        def handler(conn: ssl.SSLSocket) -> None:
            conn.sendall(b"HTTP/1.1 200 OK\r\nContent-Length: 100\r\n\r\n")
            for _ in range(100):
                conn.sendall(b" ")
                time.sleep(0.2)

        port = tls_server(handler)
        client = SigningClient(
            "127.0.0.1", port, bootstrapped.bundle_path, connect_timeout=1, total_timeout=1
        )

        started = time.monotonic()
        with pytest.raises(PKIConnectionError) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.reason == "timeout"
        assert time.monotonic() - started < 2

    def test_silent_server_hits_total_timeout(
        self, tls_server: Callable, bootstrapped: CAManager
    ) -> None:
        def handler(conn: ssl.SSLSocket) -> None:
            time.sleep(3)

        port = tls_server(handler)
        client = SigningClient(
            "127.0.0.1", port, bootstrapped.bundle_path, connect_timeout=5, total_timeout=1
        )

        started = time.monotonic()
        with pytest.raises(PKIConnectionError) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.reason == "timeout"
        assert time.monotonic() - started < 2

    def test_untrusted_endpoint(
        self, tls_server: Callable, tmp_path: Path, make_cert_pem: Callable
    ) -> None:
        other_ca = tmp_path / "other.crt"
        other_ca.write_bytes(make_cert_pem(datetime.now(UTC) + timedelta(days=30)))
        port = tls_server(lambda conn: None)
        client = SigningClient("127.0.0.1", port, other_ca)

        with pytest.raises(PKIConnectionError) as excinfo:
            client.sign(CSR, "intermediate_1", "server", SECRET)

        assert excinfo.value.reason == "tls"
