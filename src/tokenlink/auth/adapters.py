"""Per-provider deviations from standard OAuth2.

Providers disagree on three things: whether the redirect must be ``https``,
how client credentials are presented to the token endpoint, and what the
token response looks like. Each difference is a field on
:class:`ProviderAdapter`; :data:`ADAPTERS` maps a service id to its entry and
:data:`DEFAULT_ADAPTER` covers everyone who follows the standard.

Adding a provider means adding one table entry, never a new ``if`` branch.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from tokenlink.exceptions import ExchangeError
from tokenlink.models import ClientCredentials, ServiceDefinition, Token

logger = logging.getLogger(__name__)


class TokenAuthMethod(str, enum.Enum):
    """How client credentials are sent to the token endpoint."""

    BODY = "body"
    BASIC = "basic"


@dataclass(frozen=True)
class ProviderAdapter:
    """One row of the provider strategy table.

    Attributes:
        requires_https: The provider rejects ``http://`` loopback redirects.
        token_auth: Where the client id and secret go in the exchange.
        scope_param: Query parameter that carries the scopes.
        scope_separator: Separator used to join the scopes.
        token_container: Key of the sub-object holding the token fields,
            or ``None`` when they sit at the top level.
        success_flag: Boolean field that must be ``true`` before anything
            else in the response is read.
        extra_fields: Top-level fields copied into :attr:`Token.extra`.
    """

    requires_https: bool = False
    token_auth: TokenAuthMethod = TokenAuthMethod.BODY
    scope_param: str = "scope"
    scope_separator: str = " "
    token_container: Optional[str] = None
    success_flag: Optional[str] = None
    extra_fields: tuple[str, ...] = ()

    def requires_tls(self, service: ServiceDefinition) -> bool:
        """Return ``True`` if the redirect for *service* must use ``https``."""
        return self.requires_https or service.requires_https

    def redirect_scheme(self, service: ServiceDefinition) -> str:
        return "https" if self.requires_tls(service) else "http"

    def format_scopes(self, scopes: list[str]) -> str:
        return self.scope_separator.join(scopes)


DEFAULT_ADAPTER = ProviderAdapter()

ADAPTERS: dict[str, ProviderAdapter] = {
    "slack": ProviderAdapter(
        requires_https=True,
        scope_param="user_scope",
        scope_separator=",",
        token_container="authed_user",
        success_flag="ok",
    ),
    "notion": ProviderAdapter(
        token_auth=TokenAuthMethod.BASIC,
        extra_fields=("workspace_id", "workspace_name", "bot_id"),
    ),
}


def get_adapter(service_id: str) -> ProviderAdapter:
    """Return the adapter for *service_id*, or :data:`DEFAULT_ADAPTER`."""
    return ADAPTERS.get(service_id, DEFAULT_ADAPTER)


def exchange_code(
    service: ServiceDefinition,
    credentials: ClientCredentials,
    code: str,
    redirect_uri: str,
    adapter: Optional[ProviderAdapter] = None,
    timeout: float = 30.0,
    user_agent: Optional[str] = None,
) -> Token:
    """Exchange an authorization code for a token.

    Args:
        service: The provider. Its ``token_url`` is the endpoint.
        credentials: The registered OAuth client.
        code: The code from the callback.
        redirect_uri: Exactly the redirect URI used in the authorization
            request.
        adapter: Strategy entry; looked up from *service* when omitted.
        timeout: Request timeout in seconds.
        user_agent: ``User-Agent`` header value.

    Raises:
        ExchangeError: On a transport error, a non-200 status (the body is
            included verbatim), or a malformed token response.
    """
    if not service.token_url:
        raise ExchangeError(f"{service.name} has no token URL configured")
    adapter = adapter or get_adapter(service.id)

    data: dict[str, str] = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
    }
    auth: Optional[httpx.BasicAuth] = None
    if adapter.token_auth == TokenAuthMethod.BASIC:
        auth = httpx.BasicAuth(credentials.client_id, credentials.client_secret)
    else:
        data["client_id"] = credentials.client_id
        data["client_secret"] = credentials.client_secret

    headers = {"Accept": "application/json"}
    if user_agent:
        headers["User-Agent"] = user_agent

    logger.debug("Exchanging authorization code at %s", service.token_url)
    try:
        response = httpx.post(
            service.token_url,
            data=data,
            headers=headers,
            auth=auth,
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise ExchangeError(f"Token exchange request failed: {exc}") from exc

    body = response.text
    if response.status_code != 200:
        raise ExchangeError(
            f"Token exchange failed with status {response.status_code}: {body}",
            status_code=response.status_code,
            body=body,
        )
    return parse_token_response(adapter, body)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_token_response(
    adapter: ProviderAdapter,
    body: str,
    issued_at: Optional[datetime] = None,
) -> Token:
    """Turn a token endpoint response body into a :class:`Token`.

    ``expires_at`` is ``issued_at + expires_in`` when ``expires_in`` is a
    positive number, otherwise the token does not expire.

    Raises:
        ExchangeError: If the body is not a JSON object, the success flag is
            false, or there is no non-empty access token. The raw body is
            part of the message.
    """
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ExchangeError(f"Invalid token response: {exc}\nBody: {body}", body=body) from exc
    if not isinstance(payload, dict):
        raise ExchangeError(f"Invalid token response: expected a JSON object\nBody: {body}", body=body)

    if adapter.success_flag is not None and payload.get(adapter.success_flag) is not True:
        reason = payload.get("error") or "request was not successful"
        raise ExchangeError(f"Token exchange failed: {reason}\nBody: {body}", body=body)

    fields: dict[str, Any] = payload
    if adapter.token_container is not None:
        container = payload.get(adapter.token_container)
        fields = container if isinstance(container, dict) else {}

    access_token = fields.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ExchangeError(f"Token response has no access token\nBody: {body}", body=body)

    expires_at: Optional[datetime] = None
    expires_in = fields.get("expires_in")
    if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
        expires_at = (issued_at or datetime.now(timezone.utc)) + timedelta(seconds=expires_in)

    team = payload.get("team")
    user = fields.get("id") if adapter.token_container is not None else None

    return Token(
        access_token=access_token,
        refresh_token=_optional_str(fields.get("refresh_token")),
        token_type=_optional_str(fields.get("token_type")),
        scope=_optional_str(fields.get("scope")),
        expires_at=expires_at,
        team_id=_optional_str(team.get("id")) if isinstance(team, dict) else None,
        user=_optional_str(user),
        extra={key: payload[key] for key in adapter.extra_fields if key in payload},
    )
