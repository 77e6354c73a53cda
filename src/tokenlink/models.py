"""Canonical Pydantic models shared across all tokenlink modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Registry and configuration models** -- static provider definitions and the
settings that drive a flow:
    :class:`AuthType`, :class:`ServiceDefinition`, :class:`ClientCredentials`,
    :class:`FlowSettings`, and :class:`GlobalConfig`.

**Per-flow values** -- created once per authorization attempt and discarded
when it ends:
    :class:`AuthorizationRequest` and the :data:`CallbackOutcome` variants
    (:class:`CodeReceived`, :class:`ProviderErrorReceived`,
    :class:`StateMismatch`, :class:`MissingCode`).

**Results** -- handed back to the caller:
    :class:`Token`.

Per-flow values are frozen so that nothing downstream of the listener can
rewrite what the provider sent.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# --- Registry ---


class AuthType(str, enum.Enum):
    """How a service hands out credentials."""

    OAUTH = "oauth"
    APIKEY = "apikey"


class ServiceDefinition(BaseModel):
    """A third-party service tokenlink knows how to authenticate with.

    Entries are static and live in :mod:`tokenlink.registry`. OAuth entries
    carry the provider's authorization and token endpoints; API-key entries
    only carry setup instructions.

    Example::

        ServiceDefinition(
            id="linear",
            name="Linear",
            auth_type=AuthType.OAUTH,
            auth_url="https://linear.app/oauth/authorize",
            token_url="https://api.linear.app/oauth/token",
            scopes=["read", "write"],
        )
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique service identifier, e.g. 'slack'")
    name: str = Field(description="Display name, e.g. 'Slack'")
    auth_type: AuthType = AuthType.OAUTH
    auth_url: Optional[str] = Field(default=None, description="OAuth authorization URL")
    token_url: Optional[str] = Field(default=None, description="OAuth token exchange URL")
    scopes: list[str] = Field(default_factory=list)
    api_url: Optional[str] = Field(default=None, description="Base URL for API requests")
    requires_https: bool = Field(
        default=False,
        description="Provider rejects http:// redirect URIs, even for localhost",
    )
    setup_url: Optional[str] = Field(default=None, description="Where to create an OAuth app")
    setup_instructions: str = ""


class ClientCredentials(BaseModel):
    """OAuth client credentials registered with a provider."""

    client_id: str
    client_secret: str


# --- Settings ---


DEFAULT_CALLBACK_PORT = 8888
DEFAULT_TIMEOUT_SECONDS = 300.0


class FlowSettings(BaseModel):
    """Explicit settings for one authorization flow.

    Built by :func:`~tokenlink.config.resolve_settings` from CLI flags,
    environment variables, and :class:`GlobalConfig`, then passed to
    :class:`~tokenlink.auth.flow.OAuthFlow`. Nothing here is read from
    module-level globals.
    """

    callback_host: str = "localhost"
    callback_port: int = Field(default=DEFAULT_CALLBACK_PORT, ge=0, le=65535)
    callback_path: str = "/callback"
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS, gt=0, description="Wait for the callback at most this long"
    )
    shutdown_timeout: float = Field(default=5.0, gt=0)
    exchange_timeout: float = Field(default=30.0, gt=0)
    debug: bool = Field(default=False, description="Trace flow steps through output.debug")
    version: str = "dev"

    @property
    def user_agent(self) -> str:
        """``User-Agent`` sent with the token exchange request."""
        return f"tokenlink/{self.version}"


class GlobalConfig(BaseModel):
    """User-wide defaults persisted at ``~/.config/tokenlink/config.json``.

    Loaded and saved by :func:`~tokenlink.config.load_global_config` and
    :func:`~tokenlink.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by environment variables or CLI
    flags. See :func:`~tokenlink.config.resolve_settings`.
    """

    callback_port: int = Field(default=DEFAULT_CALLBACK_PORT, ge=0, le=65535)
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)


# --- Per-flow values ---


class AuthorizationRequest(BaseModel):
    """The immutable description of one authorization attempt.

    ``state`` is the anti-forgery token that the provider must echo back
    unchanged; ``expected_scheme`` records whether the listener serves
    ``http`` or ``https``.
    """

    model_config = ConfigDict(frozen=True)

    state: str
    authorization_url: str
    redirect_uri: str
    expected_scheme: Literal["http", "https"] = "http"


class CodeReceived(BaseModel):
    """The provider redirected back with an authorization code."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["code"] = "code"
    code: str


class ProviderErrorReceived(BaseModel):
    """The provider redirected back with ``error`` (and maybe a description)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["provider_error"] = "provider_error"
    error: str
    description: str = ""


class StateMismatch(BaseModel):
    """The callback's ``state`` did not exactly match the active flow."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["state_mismatch"] = "state_mismatch"
    received_state: Optional[str] = None


class MissingCode(BaseModel):
    """The callback had a valid ``state`` but no ``code``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["missing_code"] = "missing_code"


CallbackOutcome = Union[CodeReceived, ProviderErrorReceived, StateMismatch, MissingCode]
"""The single result a :class:`~tokenlink.auth.callback.CallbackListener` delivers."""


# --- Results ---


class Token(BaseModel):
    """A token obtained from a provider.

    ``expires_at`` is ``None`` for tokens that do not expire. Provider
    specific identifiers that have no dedicated field (Notion's workspace,
    for instance) are kept in ``extra``.
    """

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    team_id: Optional[str] = Field(default=None, description="Slack workspace id")
    user: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def _expiry(self) -> Optional[datetime]:
        if self.expires_at is None:
            return None
        if self.expires_at.tzinfo is None:
            return self.expires_at.replace(tzinfo=timezone.utc)
        return self.expires_at

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once ``expires_at`` has passed. Never for non-expiring tokens."""
        expiry = self._expiry()
        if expiry is None:
            return False
        return (now or datetime.now(timezone.utc)) >= expiry

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if the token expires within the next five minutes."""
        expiry = self._expiry()
        if expiry is None:
            return False
        return (now or datetime.now(timezone.utc)) + timedelta(minutes=5) >= expiry
