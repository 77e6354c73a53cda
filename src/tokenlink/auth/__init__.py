"""The local authorization callback engine.

- :class:`OAuthFlow` -- one authorization-code round-trip, start to token.
- :class:`CallbackListener` -- the single-request loopback HTTP(S) endpoint.
- :func:`exchange_code` / :func:`get_adapter` -- per-provider token exchange.
- :class:`TokenStore` / :class:`ClientCredentialStore` -- persisted secrets.

Typical usage::

    from tokenlink.auth import OAuthFlow

    flow = OAuthFlow(service, credentials, settings, authority=manager)
    token = flow.run()
"""

from tokenlink.auth.adapters import (
    ADAPTERS,
    DEFAULT_ADAPTER,
    ProviderAdapter,
    exchange_code,
    get_adapter,
    parse_token_response,
)
from tokenlink.auth.callback import CallbackListener
from tokenlink.auth.credential_store import (
    ClientCredentialStore,
    SecretStore,
    TokenStore,
    resolve_client_credentials,
    resolve_token,
)
from tokenlink.auth.flow import FlowState, OAuthFlow, generate_state

__all__ = [
    "ADAPTERS",
    "CallbackListener",
    "ClientCredentialStore",
    "DEFAULT_ADAPTER",
    "FlowState",
    "OAuthFlow",
    "ProviderAdapter",
    "SecretStore",
    "TokenStore",
    "exchange_code",
    "generate_state",
    "get_adapter",
    "parse_token_response",
    "resolve_client_credentials",
    "resolve_token",
]
