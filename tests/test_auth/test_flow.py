"""Tests for the authorization flow orchestrator.

The browser is replaced by a function that plays the provider's part: it
reads the authorization URL and requests the redirect URI on the listener,
exactly as a browser following the provider's redirect would.
"""

from __future__ import annotations

import http.client
import socket
from typing import Callable
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlencode, urlsplit

import pytest

from tokenlink.auth.flow import (
    FlowState,
    OAuthFlow,
    build_authorization_url,
    build_redirect_uri,
    generate_state,
)
from tokenlink.certs.authority import CertificateAuthorityManager
from tokenlink.exceptions import (
    AuthError,
    AuthTimeoutError,
    BindError,
    CSRFMismatchError,
    ExchangeError,
    InvalidUsageError,
    MissingCodeError,
    ProviderDeniedError,
)
from tokenlink.models import ClientCredentials, FlowSettings, ServiceDefinition, Token
from tokenlink.output import OutputFormat, OutputManager, set_output
from tokenlink.registry import get_service


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def provider_redirect(params: Callable[[str], dict[str, str]]) -> Callable[[str], bool]:
    """Build an ``open_browser`` stand-in that redirects back with *params(state)*."""

    def _open(url: str) -> bool:
        query = _query(url)
        redirect = urlsplit(query["redirect_uri"])
        conn = http.client.HTTPConnection(redirect.hostname, redirect.port, timeout=5)
        try:
            conn.request("GET", f"{redirect.path}?{urlencode(params(query['state']))}")
            conn.getresponse().read()
        finally:
            conn.close()
        return True

    return _open


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


class TestGenerateState:
    def test_unique(self) -> None:
        states = {generate_state() for _ in range(100)}
        assert len(states) == 100

    def test_url_safe_and_long(self) -> None:
        state = generate_state()
        assert len(state) >= 43
        assert all(c.isalnum() or c in "-_" for c in state)


class TestBuildAuthorizationUrl:
    def test_standard_params(self, example_service: ServiceDefinition) -> None:
        redirect = build_redirect_uri("http", "localhost", 8888, "/callback")
        url = build_authorization_url(example_service, "client-123", redirect, "S")

        assert url.startswith("https://auth.example.com/oauth/authorize?")
        assert _query(url) == {
            "client_id": "client-123",
            "redirect_uri": "http://localhost:8888/callback",
            "response_type": "code",
            "state": "S",
            "scope": "read write",
        }

    def test_slack_user_scope(self) -> None:
        url = build_authorization_url(
            get_service("slack"), "cid", "https://localhost:8888/callback", "S"
        )
        query = _query(url)
        assert "scope" not in query
        assert query["user_scope"].split(",")[0] == "channels:read"

    def test_existing_query_is_preserved(self) -> None:
        url = build_authorization_url(
            get_service("notion"), "cid", "http://localhost:8888/callback", "S"
        )
        query = _query(url)
        assert query["owner"] == "user"
        assert "scope" not in query

    def test_service_without_auth_url(self) -> None:
        service = ServiceDefinition(id="k", name="Key Only")
        with pytest.raises(InvalidUsageError):
            build_authorization_url(service, "cid", "http://localhost/callback", "S")


# ---------------------------------------------------------------------------
# End-to-end against a real loopback listener
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_flow(
    example_service: ServiceDefinition,
    client_credentials: ClientCredentials,
    flow_settings: FlowSettings,
    quiet_output,
):
    def _make(open_browser: Callable[[str], bool], **overrides) -> OAuthFlow:
        settings = flow_settings.model_copy(update=overrides) if overrides else flow_settings
        return OAuthFlow(example_service, client_credentials, settings, open_browser=open_browser)

    return _make


class TestOAuthFlow:
    def test_prepare_is_stable(self, make_flow) -> None:
        flow = make_flow(MagicMock())
        request = flow.prepare()
        assert flow.prepare() is request
        assert request.expected_scheme == "http"
        assert _query(request.authorization_url)["state"] == request.state

    def test_code_received(self, make_flow) -> None:
        flow = make_flow(provider_redirect(lambda state: {"code": "abc123", "state": state}))

        assert flow.authorize() == "abc123"
        assert not flow.listener.running

    def test_provider_denied(self, make_flow) -> None:
        flow = make_flow(
            provider_redirect(
                lambda state: {"error": "access_denied", "error_description": "user cancelled"}
            )
        )

        with pytest.raises(ProviderDeniedError) as exc_info:
            flow.authorize()
        assert exc_info.value.error == "access_denied"
        assert exc_info.value.description == "user cancelled"
        assert flow.state == FlowState.FAILED

    def test_forged_state(self, make_flow) -> None:
        flow = make_flow(provider_redirect(lambda state: {"code": "abc123", "state": state + "x"}))

        with pytest.raises(CSRFMismatchError):
            flow.authorize()
        assert flow.state == FlowState.FAILED

    def test_missing_code(self, make_flow) -> None:
        flow = make_flow(provider_redirect(lambda state: {"state": state}))

        with pytest.raises(MissingCodeError):
            flow.authorize()

    def test_timeout_stops_listener(self, make_flow) -> None:
        flow = make_flow(MagicMock(return_value=True), timeout_seconds=0.3)

        with pytest.raises(AuthTimeoutError):
            flow.authorize()
        assert flow.state == FlowState.TIMED_OUT
        assert flow.listener is not None
        assert not flow.listener.running

    def test_flow_is_single_use(self, make_flow) -> None:
        flow = make_flow(MagicMock(return_value=True), timeout_seconds=0.1)
        with pytest.raises(AuthTimeoutError):
            flow.authorize()
        with pytest.raises(AuthError, match="already been used"):
            flow.authorize()

    def test_busy_port_skips_browser(self, make_flow, flow_settings: FlowSettings) -> None:
        browser = MagicMock(return_value=True)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind((flow_settings.callback_host, flow_settings.callback_port))
            blocker.listen(1)
            flow = make_flow(browser)
            with pytest.raises(BindError):
                flow.authorize()

        browser.assert_not_called()
        assert flow.state == FlowState.FAILED

    def test_browser_failure_is_not_fatal(self, make_flow) -> None:
        flow = make_flow(MagicMock(side_effect=RuntimeError("no display")), timeout_seconds=0.3)
        with pytest.raises(AuthTimeoutError):
            flow.authorize()

    def test_run_exchanges_code(self, make_flow, flow_settings: FlowSettings) -> None:
        flow = make_flow(provider_redirect(lambda state: {"code": "abc123", "state": state}))

        with patch("tokenlink.auth.flow.exchange_code", return_value=Token(access_token="at")) as ex:
            token = flow.run()

        assert token.access_token == "at"
        assert flow.state == FlowState.SUCCEEDED
        args, kwargs = ex.call_args
        assert args[2] == "abc123"
        assert args[3] == flow.request.redirect_uri
        assert kwargs["user_agent"] == "tokenlink/test"
        assert kwargs["timeout"] == flow_settings.exchange_timeout

    def test_run_exchange_failure(self, make_flow) -> None:
        flow = make_flow(provider_redirect(lambda state: {"code": "abc123", "state": state}))

        with patch(
            "tokenlink.auth.flow.exchange_code",
            side_effect=ExchangeError('Token exchange failed with status 400: {"error":"invalid_grant"}'),
        ):
            with pytest.raises(ExchangeError, match="invalid_grant"):
                flow.run()
        assert flow.state == FlowState.FAILED


class TestDebugTrace:
    @pytest.fixture()
    def verbose_output(self, make_flow) -> None:
        set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True))

    def test_debug_setting_traces_steps(self, make_flow, verbose_output, capfd) -> None:
        flow = make_flow(provider_redirect(lambda state: {"code": "abc123", "state": state}), debug=True)

        with patch("tokenlink.auth.flow.exchange_code", return_value=Token(access_token="at")):
            flow.run()

        err = capfd.readouterr().err
        assert f"[debug] Waiting up to 5s for a callback on {flow.request.redirect_uri}" in err
        assert "[debug] Exchanging the authorization code at" in err

    def test_no_trace_without_debug_setting(self, make_flow, verbose_output, capfd) -> None:
        flow = make_flow(provider_redirect(lambda state: {"code": "abc123", "state": state}))

        with patch("tokenlink.auth.flow.exchange_code", return_value=Token(access_token="at")):
            flow.run()

        assert "Waiting up to" not in capfd.readouterr().err


class TestHTTPSFlow:
    def test_self_signed_without_authority(
        self, client_credentials: ClientCredentials, flow_settings: FlowSettings, tmp_path, quiet_output
    ) -> None:
        service = get_service("slack")
        authority = CertificateAuthorityManager(certs_dir=tmp_path / "certs")
        flow = OAuthFlow(service, client_credentials, flow_settings, authority=authority)

        leaf = flow._certificate()
        assert leaf.trusted is False
        assert flow.prepare().redirect_uri.startswith("https://")

    def test_leaf_from_authority(
        self, client_credentials: ClientCredentials, flow_settings: FlowSettings, tmp_path
    ) -> None:
        authority = CertificateAuthorityManager(certs_dir=tmp_path / "certs")
        authority.generate_authority()
        flow = OAuthFlow(get_service("slack"), client_credentials, flow_settings, authority=authority)

        assert flow._certificate().trusted is True
