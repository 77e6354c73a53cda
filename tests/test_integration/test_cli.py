"""Integration tests for the tokenlink command line.

Each test invokes the real Typer app through :class:`typer.testing.CliRunner`
with configuration isolated to a temporary directory. Anything that would
reach outside the process (the browser round-trip, the OS trust store) is
patched at its seam.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from tokenlink import __version__
from tokenlink.app import app
from tokenlink.auth.credential_store import ClientCredentialStore, TokenStore
from tokenlink.auth.flow import OAuthFlow
from tokenlink.certs.trust import TrustStore
from tokenlink.config import load_global_config
from tokenlink.exceptions import InvalidUsageError
from tokenlink.models import ClientCredentials, Token


@pytest.fixture
def invoke(cli_runner, isolated_config: Path):
    """Run the CLI with uncoloured output."""

    def _invoke(*args: str, input: str | None = None):
        return cli_runner.invoke(app, ["--no-color", *args], input=input)

    return _invoke


@pytest.fixture
def trust_store() -> MagicMock:
    store = MagicMock(spec=TrustStore)
    store.name = "test trust store"
    store.needs_sudo = False
    store.is_trusted.return_value = False
    store.manual_instructions.return_value = ["run this by hand"]
    return store


class TestVersion:
    def test_version(self, invoke) -> None:
        result = invoke("--version")
        assert result.exit_code == 0
        assert result.stdout.strip() == f"tokenlink {__version__}"


class TestUnknownService:
    def test_unknown_service(self, invoke) -> None:
        result = invoke("token", "nope")
        assert isinstance(result.exception, InvalidUsageError)


class TestStatus:
    def test_nothing_logged_in(self, invoke) -> None:
        result = invoke("status")
        assert result.exit_code == 0
        assert "slack\tnot logged in\t-\t-" in result.stdout

    def test_json(self, invoke) -> None:
        TokenStore().save("linear", Token(access_token="lin", user="ada"))
        result = invoke("--json", "status")
        rows = {row["Service"]: row for row in json.loads(result.stdout)}
        assert rows["linear"]["Status"] == "logged in"
        assert rows["linear"]["User"] == "ada"
        assert rows["linear"]["Expires"] == "never"

    def test_expired_and_env(self, invoke, monkeypatch: pytest.MonkeyPatch) -> None:
        TokenStore().save(
            "notion",
            Token(access_token="n", expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc)),
        )
        monkeypatch.setenv("TOKENLINK_SLACK_TOKEN", "xoxp-env")
        result = invoke("status")
        assert "notion\texpired\t-\t2020-01-01 00:00 UTC" in result.stdout
        assert "slack\tenv\t-\t-" in result.stdout

    def test_expiring_soon(self, invoke) -> None:
        soon = datetime.now(timezone.utc) + timedelta(minutes=2)
        TokenStore().save("linear", Token(access_token="lin", user="ada", expires_at=soon))
        result = invoke("status")
        assert "linear\texpiring soon\tada\t" in result.stdout


class TestToken:
    def test_prints_stored_token(self, invoke) -> None:
        TokenStore().save("linear", Token(access_token="lin_oauth_123"))
        result = invoke("token", "linear")
        assert result.exit_code == 0
        assert result.stdout == "lin_oauth_123\n"

    def test_env_token_wins(self, invoke, monkeypatch: pytest.MonkeyPatch) -> None:
        TokenStore().save("linear", Token(access_token="stored"))
        monkeypatch.setenv("TOKENLINK_LINEAR_TOKEN", "from-env")
        result = invoke("token", "linear")
        assert result.stdout == "from-env\n"

    def test_not_logged_in(self, invoke) -> None:
        result = invoke("token", "linear")
        assert result.exit_code == 3
        assert "Not logged in to Linear" in result.output

    def test_expired_token_warns(self, invoke) -> None:
        expired = datetime.now(timezone.utc) - timedelta(hours=1)
        TokenStore().save("linear", Token(access_token="old", expires_at=expired))
        result = invoke("token", "linear")
        assert result.exit_code == 0
        assert "expired" in result.output


class TestLogout:
    def test_logout(self, invoke) -> None:
        TokenStore().save("linear", Token(access_token="lin"))
        result = invoke("logout", "linear")
        assert result.exit_code == 0
        assert "Logged out of Linear" in result.output
        assert TokenStore().get("linear") is None

    def test_logout_when_not_logged_in(self, invoke) -> None:
        result = invoke("logout", "linear")
        assert result.exit_code == 0
        assert "Not logged in to Linear" in result.output


class TestSetup:
    def test_saves_client_credentials(self, invoke) -> None:
        result = invoke("setup", "linear", "--client-id", "cid", "--client-secret", "csecret")
        assert result.exit_code == 0
        assert ClientCredentialStore().get("linear") == ClientCredentials(
            client_id="cid", client_secret="csecret"
        )

    def test_prompts_for_missing_values(self, invoke) -> None:
        result = invoke("setup", "linear", input="cid\ncsecret\n")
        assert result.exit_code == 0
        assert ClientCredentialStore().get("linear").client_secret == "csecret"

    def test_api_key_service_stores_nothing(self, invoke) -> None:
        result = invoke("setup", "honeycomb")
        assert result.exit_code == 0
        assert "tokenlink login honeycomb" in result.output
        assert ClientCredentialStore().get("honeycomb") is None


class TestLogin:
    def test_api_key(self, invoke) -> None:
        result = invoke("login", "honeycomb", input="hc-key\n")
        assert result.exit_code == 0
        assert TokenStore().get("honeycomb").access_token == "hc-key"

    def test_oauth_without_client(self, invoke) -> None:
        result = invoke("login", "linear")
        assert result.exit_code == 2
        assert "tokenlink setup linear" in result.output
        assert "TOKENLINK_LINEAR_CLIENT_ID" in result.output

    def test_oauth_stores_token(self, invoke, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOKENLINK_LINEAR_CLIENT_ID", "cid")
        monkeypatch.setenv("TOKENLINK_LINEAR_CLIENT_SECRET", "csecret")

        with patch.object(
            OAuthFlow, "run", return_value=Token(access_token="lin_oauth", user="ada")
        ) as run, patch("tokenlink.certs.get_trust_store") as get_store:
            result = invoke("login", "linear", "--port", "9123", "--timeout", "60")

        assert result.exit_code == 0
        assert "Logged in to Linear as ada" in result.output
        assert TokenStore().get("linear").access_token == "lin_oauth"
        run.assert_called_once()
        get_store.assert_not_called()

    def test_https_provider_sets_up_authority(
        self, invoke, trust_store: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TOKENLINK_SLACK_CLIENT_ID", "cid")
        monkeypatch.setenv("TOKENLINK_SLACK_CLIENT_SECRET", "csecret")

        with patch.object(OAuthFlow, "run", return_value=Token(access_token="xoxp")), patch(
            "tokenlink.certs.get_trust_store", return_value=trust_store
        ):
            result = invoke("--yes", "login", "slack")

        assert result.exit_code == 0
        trust_store.install.assert_called_once()

    def test_auth_failure_propagates(self, invoke, monkeypatch: pytest.MonkeyPatch) -> None:
        from tokenlink.exceptions import ProviderDeniedError

        monkeypatch.setenv("TOKENLINK_LINEAR_CLIENT_ID", "cid")
        monkeypatch.setenv("TOKENLINK_LINEAR_CLIENT_SECRET", "csecret")
        with patch.object(OAuthFlow, "run", side_effect=ProviderDeniedError("access_denied")):
            result = invoke("login", "linear")

        assert isinstance(result.exception, ProviderDeniedError)
        assert result.exception.exit_code == 3
        assert TokenStore().get("linear") is None


class TestInit:
    def test_creates_and_trusts(self, invoke, trust_store: MagicMock, isolated_config: Path) -> None:
        with patch("tokenlink.certs.get_trust_store", return_value=trust_store):
            result = invoke("--yes", "init")

        assert result.exit_code == 0
        assert "HTTPS callbacks are ready" in result.output
        trust_store.install.assert_called_once()
        assert (isolated_config / "data" / "tokenlink" / "certs" / "tokenlink-ca.pem").is_file()

    def test_declined(self, invoke, trust_store: MagicMock) -> None:
        with patch("tokenlink.certs.get_trust_store", return_value=trust_store):
            result = invoke("--no-input", "init")

        assert result.exit_code == 0
        assert "Cancelled." in result.output
        trust_store.install.assert_not_called()

    def test_install_failure_exits_7(self, invoke, trust_store: MagicMock) -> None:
        from tokenlink.exceptions import TrustInstallError

        trust_store.install.side_effect = TrustInstallError("sudo failed")
        with patch("tokenlink.certs.get_trust_store", return_value=trust_store):
            result = invoke("--yes", "init")

        assert result.exit_code == 7
        assert "run this by hand" in result.output

    def test_uninstall(self, invoke, trust_store: MagicMock) -> None:
        trust_store.is_trusted.return_value = True
        with patch("tokenlink.certs.get_trust_store", return_value=trust_store):
            result = invoke("init", "--uninstall")

        assert result.exit_code == 0
        trust_store.uninstall.assert_called_once()


class TestConfig:
    def test_show(self, invoke) -> None:
        result = invoke("--json", "--quiet", "config", "show")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"callback_port": 8888, "timeout_seconds": 300.0}

    def test_set(self, invoke) -> None:
        result = invoke("config", "set", "callback_port", "9000")
        assert result.exit_code == 0
        assert load_global_config().callback_port == 9000

    def test_set_unknown_key(self, invoke) -> None:
        result = invoke("config", "set", "colour", "blue")
        assert result.exit_code == 2

    def test_set_invalid_value(self, invoke) -> None:
        result = invoke("config", "set", "callback_port", "70000")
        assert result.exit_code == 2
        assert load_global_config().callback_port == 8888

    def test_reset(self, invoke) -> None:
        invoke("config", "set", "timeout_seconds", "10")
        result = invoke("--yes", "config", "reset")
        assert result.exit_code == 0
        assert load_global_config().timeout_seconds == 300.0
