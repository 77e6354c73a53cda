"""Single-request loopback listener for the OAuth redirect.

:class:`CallbackListener` binds ``localhost:<port>``, optionally over TLS,
and waits for the provider to redirect the browser to the callback path.
The first request on that path is validated and turned into exactly one
:data:`~tokenlink.models.CallbackOutcome`; the browser always gets a static
confirmation page, whatever the outcome.

The HTTP server runs on a daemon thread and serves each connection, TLS
handshake included, on a thread of its own, so a browser preconnect or an
idle socket cannot hold up the provider's redirect. The outcome travels
to the waiting thread through a :class:`concurrent.futures.Future`, which can
be assigned only once (under a lock), so the request handler never blocks on
the consumer and a second callback cannot overwrite the first.

Example::

    with CallbackListener(8888, expected_state=state) as listener:
        webbrowser.open(url)
        outcome = listener.wait(timeout=300)
"""

from __future__ import annotations

import hmac
import html
import logging
import socketserver
import ssl
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Literal, Optional
from urllib.parse import parse_qs, urlparse

from tokenlink.certs.authority import LeafCertificate
from tokenlink.exceptions import (
    AuthCancelledError,
    AuthTimeoutError,
    BindError,
    CertificateError,
    TokenlinkError,
)
from tokenlink.models import (
    CallbackOutcome,
    CodeReceived,
    MissingCode,
    ProviderErrorReceived,
    StateMismatch,
)

logger = logging.getLogger(__name__)

_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>tokenlink - {title}</title>
<style>
body {{ font-family: -apple-system, BlinkMacSystemFont, sans-serif; display: flex;
       justify-content: center; align-items: center; height: 100vh; margin: 0;
       background: #f5f5f5; }}
.box {{ text-align: center; padding: 40px; background: white; border-radius: 8px;
        box-shadow: 0 2px 10px rgba(0,0,0,0.1); max-width: 480px; }}
h1 {{ color: {color}; }}
p {{ color: #666; }}
</style>
</head>
<body>
<div class="box">
<h1>{title}</h1>
{body}
</div>
</body>
</html>
"""

SUCCESS_PAGE = _PAGE.format(
    title="Authentication successful",
    color="#2e7d32",
    body="<p>You can close this window and return to the terminal.</p>",
)


def failure_page(message: str, detail: str = "") -> str:
    """Render the failure page. *message* and *detail* are HTML-escaped."""
    body = f"<p>{html.escape(message)}</p>"
    if detail:
        body += f"<p><code>{html.escape(detail)}</code></p>"
    body += "<p>Return to the terminal and try again.</p>"
    return _PAGE.format(title="Authentication failed", color="#c62828", body=body)


def _first(params: dict[str, list[str]], name: str) -> Optional[str]:
    values = params.get(name)
    return values[0] if values else None


def _states_match(received: Optional[str], expected: str) -> bool:
    if received is None:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def evaluate_callback(query: str, expected_state: str) -> CallbackOutcome:
    """Classify a callback query string.

    The checks run in a fixed order: a provider ``error`` wins over
    everything, then the ``state`` must match *expected_state* exactly, then
    a ``code`` must be present.
    """
    params = parse_qs(query)

    error = _first(params, "error")
    if error is not None:
        return ProviderErrorReceived(
            error=error, description=_first(params, "error_description") or ""
        )

    received_state = _first(params, "state")
    if not _states_match(received_state, expected_state):
        return StateMismatch(received_state=received_state)

    code = _first(params, "code")
    if not code:
        return MissingCode()
    return CodeReceived(code=code)


def _render(outcome: CallbackOutcome) -> tuple[int, str]:
    if isinstance(outcome, CodeReceived):
        return 200, SUCCESS_PAGE
    if isinstance(outcome, ProviderErrorReceived):
        return 400, failure_page(
            f"The provider returned an error: {outcome.error}", outcome.description
        )
    if isinstance(outcome, StateMismatch):
        return 400, failure_page(
            "The state parameter did not match. This callback may have been forged."
        )
    return 400, failure_page("No authorization code was received.")


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    # Bounds the TLS handshake and every read, so an idle connection only
    # ever holds its own thread.
    timeout = 10

    def setup(self) -> None:
        if isinstance(self.request, ssl.SSLSocket):
            self.request.settimeout(self.timeout)
            self.request.do_handshake()
        super().setup()

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        listener = self.server.listener
        if parsed.path != listener.path:
            self._send(404, "<html><body><h1>Not found</h1></body></html>")
            return

        outcome = evaluate_callback(parsed.query, listener.expected_state)
        status, page = _render(outcome)
        try:
            self._send(status, page)
        finally:
            listener._deliver(outcome)

    def _send(self, status: int, page: str) -> None:
        data = page.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Cache-Control", "no-store")
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class _CallbackServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False

    def __init__(self, address: tuple[str, int], listener: CallbackListener) -> None:
        self.listener = listener
        super().__init__(address, _CallbackHandler)

    def server_bind(self) -> None:
        # HTTPServer.server_bind does a reverse DNS lookup we don't need.
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = port

    def handle_error(self, request: Any, client_address: Any) -> None:
        # Failed handshakes and dropped connections are routine on a loopback port.
        logger.debug("Connection from %s failed", client_address, exc_info=True)


class CallbackListener:
    """Loopback HTTP(S) endpoint that resolves exactly once.

    Args:
        port: TCP port to bind. ``0`` picks a free port (see :attr:`port`).
        expected_state: The flow's anti-forgery ``state``.
        scheme: ``"http"`` or ``"https"``.
        certificate: Server certificate, required when *scheme* is ``"https"``.
        path: URL path the provider redirects to.
        host: Interface to bind.
    """

    def __init__(
        self,
        port: int,
        expected_state: str,
        scheme: Literal["http", "https"] = "http",
        certificate: Optional[LeafCertificate] = None,
        path: str = "/callback",
        host: str = "localhost",
    ) -> None:
        if scheme == "https" and certificate is None:
            raise ValueError("an https listener needs a certificate")
        self.expected_state = expected_state
        self.scheme = scheme
        self.path = path
        self.host = host
        self._requested_port = port
        self._certificate = certificate
        self._server: Optional[_CallbackServer] = None
        self._thread: Optional[threading.Thread] = None
        self._result: Future[CallbackOutcome] = Future()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def port(self) -> int:
        """The bound port, or the requested one before :meth:`start`."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._requested_port

    @property
    def running(self) -> bool:
        """Whether the server thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Bind the port and begin serving in a background thread.

        A bind or TLS failure does not raise here. It resolves the listener
        with :class:`~tokenlink.exceptions.BindError` so that the next
        :meth:`wait` raises it immediately.
        """
        if self._server is not None or self._result.done():
            return
        try:
            server = _CallbackServer((self.host, self._requested_port), self)
        except OSError as exc:
            self._fail(
                BindError(
                    f"Cannot listen on {self.host}:{self._requested_port}: {exc.strerror or exc}. "
                    "Is another login already running? Use --port to pick another port."
                )
            )
            return

        if self._certificate is not None and self.scheme == "https":
            try:
                context = self._certificate.create_ssl_context()
                # Handshakes run per connection in _CallbackHandler.setup.
                server.socket = context.wrap_socket(
                    server.socket, server_side=True, do_handshake_on_connect=False
                )
            except (CertificateError, OSError) as exc:
                server.server_close()
                self._fail(BindError(f"Cannot start HTTPS listener: {exc}"))
                return

        self._server = server
        self._thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name="tokenlink-callback",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Listening for callback on %s://%s:%d%s", self.scheme, self.host, self.port, self.path)

    def done(self) -> bool:
        """Return ``True`` once an outcome or error has been delivered."""
        return self._result.done()

    def wait(self, timeout: Optional[float] = None) -> CallbackOutcome:
        """Block until the callback arrives.

        Returns:
            The first :data:`~tokenlink.models.CallbackOutcome`.

        Raises:
            BindError: If the listener could not start.
            AuthCancelledError: If :meth:`cancel` was called.
            AuthTimeoutError: If nothing arrived within *timeout* seconds.
        """
        try:
            return self._result.result(timeout=timeout)
        except FutureTimeoutError:
            raise AuthTimeoutError(
                f"Timed out after {timeout:g} seconds waiting for the authorization callback"
            ) from None

    def cancel(self, reason: str = "Authorization cancelled") -> None:
        """Abort a pending :meth:`wait` from another thread."""
        self._fail(AuthCancelledError(reason))

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop serving and release the port. Safe to call more than once.

        The graceful stop is bounded by *timeout* seconds; the socket is
        closed either way.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        server = self._server
        if server is None:
            return

        stopper = threading.Thread(target=server.shutdown, daemon=True)
        stopper.start()
        stopper.join(timeout)
        if stopper.is_alive():
            logger.warning("Callback listener did not stop within %.1f seconds", timeout)
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.debug("Callback listener on port %d stopped", self.port)

    def _deliver(self, outcome: CallbackOutcome) -> None:
        with self._lock:
            if self._result.done():
                logger.debug("Ignoring extra callback (%s)", outcome.kind)
                return
            self._result.set_result(outcome)

    def _fail(self, error: TokenlinkError) -> None:
        with self._lock:
            if self._result.done():
                return
            self._result.set_exception(error)

    def __enter__(self) -> CallbackListener:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()
