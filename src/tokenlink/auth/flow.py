"""Drive one OAuth2 authorization-code round-trip.

:class:`OAuthFlow` ties the pieces together::

    prepare()    state + redirect URI + authorization URL
    authorize()  listener up, browser open, wait, listener down -> code
    run()        authorize() + code exchange -> Token

Its :attr:`OAuthFlow.state` follows ``IDLE -> AWAITING_CALLBACK`` and ends
in ``SUCCEEDED``, ``FAILED``, or ``TIMED_OUT``. Every failure is raised as a
subclass of :class:`~tokenlink.exceptions.AuthError`; nothing is retried.
"""

from __future__ import annotations

import enum
import logging
import secrets
import threading
import webbrowser
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tokenlink import output
from tokenlink.auth.adapters import ProviderAdapter, exchange_code, get_adapter
from tokenlink.auth.callback import CallbackListener
from tokenlink.certs.authority import CertificateAuthorityManager, LeafCertificate
from tokenlink.exceptions import (
    AuthError,
    AuthTimeoutError,
    CSRFMismatchError,
    InvalidUsageError,
    MissingCodeError,
    ProviderDeniedError,
)
from tokenlink.models import (
    AuthorizationRequest,
    ClientCredentials,
    CodeReceived,
    FlowSettings,
    ProviderErrorReceived,
    ServiceDefinition,
    StateMismatch,
    Token,
)

logger = logging.getLogger(__name__)


def generate_state() -> str:
    """Return a fresh anti-forgery token (32 random bytes, URL-safe base64)."""
    return secrets.token_urlsafe(32)


def build_redirect_uri(scheme: str, host: str, port: int, path: str) -> str:
    return f"{scheme}://{host}:{port}{path}"


def build_authorization_url(
    service: ServiceDefinition,
    client_id: str,
    redirect_uri: str,
    state: str,
    adapter: Optional[ProviderAdapter] = None,
) -> str:
    """Build the URL the user's browser is sent to.

    Query parameters already on the provider's URL are kept. The scope
    parameter is named and joined as the provider's adapter says, and left
    out entirely when the service requests no scopes.

    Raises:
        InvalidUsageError: If the service has no authorization URL.
    """
    if not service.auth_url:
        raise InvalidUsageError(f"{service.name} does not use OAuth")
    adapter = adapter or get_adapter(service.id)

    parts = urlsplit(service.auth_url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params.update(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
    )
    if service.scopes:
        params[adapter.scope_param] = adapter.format_scopes(service.scopes)
    return urlunsplit(parts._replace(query=urlencode(params)))


class FlowState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class OAuthFlow:
    """One authorization attempt against one provider.

    A flow is single-use: create a new instance to try again, so that every
    attempt gets a new ``state``.

    Args:
        service: The provider's registry entry.
        credentials: The OAuth client registered with the provider.
        settings: Port, timeouts, and version for this flow.
        authority: Issues the TLS certificate when the provider requires
            ``https``. Without a usable authority a self-signed certificate
            is used and the browser will warn.
        adapter: Provider strategy; looked up from *service* when omitted.
        open_browser: Called with the authorization URL.
    """

    def __init__(
        self,
        service: ServiceDefinition,
        credentials: ClientCredentials,
        settings: FlowSettings,
        authority: Optional[CertificateAuthorityManager] = None,
        adapter: Optional[ProviderAdapter] = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        self.service = service
        self.credentials = credentials
        self.settings = settings
        self.authority = authority
        self.adapter = adapter or get_adapter(service.id)
        self.state = FlowState.IDLE
        self.request: Optional[AuthorizationRequest] = None
        self._open_browser = open_browser
        self._listener: Optional[CallbackListener] = None

    @property
    def listener(self) -> Optional[CallbackListener]:
        """The callback listener of the current or last attempt."""
        return self._listener

    def prepare(self) -> AuthorizationRequest:
        """Create the :class:`AuthorizationRequest` for this attempt."""
        if self.request is not None:
            return self.request
        scheme = self.adapter.redirect_scheme(self.service)
        redirect_uri = build_redirect_uri(
            scheme,
            self.settings.callback_host,
            self.settings.callback_port,
            self.settings.callback_path,
        )
        state = generate_state()
        self.request = AuthorizationRequest(
            state=state,
            authorization_url=build_authorization_url(
                self.service, self.credentials.client_id, redirect_uri, state, self.adapter
            ),
            redirect_uri=redirect_uri,
            expected_scheme=scheme,
        )
        return self.request

    def authorize(self) -> str:
        """Run the browser round-trip and return the authorization code.

        The listener is shut down before this method returns, whatever the
        result.

        Raises:
            BindError: The callback port is unavailable.
            ProviderDeniedError: The provider redirected back with ``error``.
            CSRFMismatchError: The callback's ``state`` did not match.
            MissingCodeError: The callback carried no ``code``.
            AuthTimeoutError: No callback within ``settings.timeout_seconds``.
            AuthCancelledError: :meth:`cancel` was called.
        """
        if self.state != FlowState.IDLE:
            raise AuthError("This flow has already been used; start a new one")
        request = self.prepare()

        certificate = self._certificate() if request.expected_scheme == "https" else None
        listener = CallbackListener(
            self.settings.callback_port,
            request.state,
            scheme=request.expected_scheme,
            certificate=certificate,
            path=self.settings.callback_path,
            host=self.settings.callback_host,
        )
        self._listener = listener
        self.state = FlowState.AWAITING_CALLBACK
        try:
            listener.start()
            if not listener.done():
                self._trace(
                    f"Waiting up to {self.settings.timeout_seconds:g}s for a callback on "
                    f"{request.redirect_uri}"
                )
                self._launch_browser(request.authorization_url)
            outcome = listener.wait(timeout=self.settings.timeout_seconds)
        except AuthTimeoutError:
            self.state = FlowState.TIMED_OUT
            raise
        except AuthError:
            self.state = FlowState.FAILED
            raise
        finally:
            listener.shutdown(timeout=self.settings.shutdown_timeout)

        if isinstance(outcome, CodeReceived):
            logger.debug("Received authorization code for %s", self.service.id)
            return outcome.code

        self.state = FlowState.FAILED
        if isinstance(outcome, ProviderErrorReceived):
            raise ProviderDeniedError(outcome.error, outcome.description)
        if isinstance(outcome, StateMismatch):
            raise CSRFMismatchError(
                "State mismatch in OAuth callback; the request may have been forged. "
                "No token was requested."
            )
        raise MissingCodeError("The OAuth callback did not include an authorization code")

    def run(self) -> Token:
        """Authorize, then exchange the code for a :class:`Token`."""
        code = self.authorize()
        request = self.prepare()
        self._trace(f"Exchanging the authorization code at {self.service.token_url}")
        try:
            token = exchange_code(
                self.service,
                self.credentials,
                code,
                request.redirect_uri,
                adapter=self.adapter,
                timeout=self.settings.exchange_timeout,
                user_agent=self.settings.user_agent,
            )
        except AuthError:
            self.state = FlowState.FAILED
            raise
        self.state = FlowState.SUCCEEDED
        return token

    def cancel(self, reason: str = "Authorization cancelled") -> None:
        """Abort a flow that is waiting for its callback. Safe from any thread."""
        if self._listener is not None:
            self._listener.cancel(reason)

    def _trace(self, message: str) -> None:
        if self.settings.debug:
            output.debug(message)

    def _certificate(self) -> LeafCertificate:
        if self.authority is not None and self.authority.authority_exists():
            return self.authority.issue_leaf_certificate()
        output.warning(
            f"{self.service.name} requires HTTPS, but no trusted local certificate authority "
            "exists. Your browser will show a certificate warning; accept it to continue."
        )
        output.suggest("Run 'tokenlink init' to avoid this warning.")
        manager = self.authority or CertificateAuthorityManager()
        return manager.self_signed_certificate()

    def _launch_browser(self, url: str) -> None:
        output.info(f"Opening browser to authorize {self.service.name}...")
        output.info(f"If the browser does not open, visit:\n\n  {url}\n")

        def _open() -> None:
            try:
                if not self._open_browser(url):
                    logger.warning("Could not open a browser; use the URL above")
            except Exception as exc:
                logger.warning("Could not open a browser: %s", exc)

        threading.Thread(target=_open, name="tokenlink-browser", daemon=True).start()
