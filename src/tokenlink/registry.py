"""Static registry of the services tokenlink can authenticate with.

Each entry is a frozen :class:`~tokenlink.models.ServiceDefinition`. The
registry is pure configuration: it says *where* a provider's endpoints are
and which scopes to request. *How* a provider deviates from standard OAuth2
lives in :mod:`tokenlink.auth.adapters`.

Redirect URIs registered with the providers must match the callback listener
exactly, so the setup instructions below name ``localhost:8888/callback``.
"""

from __future__ import annotations

from tokenlink.exceptions import InvalidUsageError
from tokenlink.models import AuthType, ServiceDefinition


_SERVICES: dict[str, ServiceDefinition] = {
    "slack": ServiceDefinition(
        id="slack",
        name="Slack",
        auth_type=AuthType.OAUTH,
        auth_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        scopes=[
            "channels:read",
            "channels:history",
            "groups:read",
            "groups:history",
            "chat:write",
            "users:read",
        ],
        api_url="https://slack.com",
        requires_https=True,
        setup_url="https://api.slack.com/apps",
        setup_instructions="""\
1. Go to https://api.slack.com/apps
2. Click "Create New App" -> "From scratch"
3. Name your app (e.g., "tokenlink") and select your workspace
4. Go to "OAuth & Permissions" in the sidebar
5. Under "Redirect URLs", add: https://localhost:8888/callback
6. Under "User Token Scopes", add these scopes:
   - channels:read, channels:history
   - groups:read, groups:history
   - chat:write, users:read
7. Go to "Basic Information" to find your Client ID and Client Secret""",
    ),
    "notion": ServiceDefinition(
        id="notion",
        name="Notion",
        auth_type=AuthType.OAUTH,
        auth_url="https://api.notion.com/v1/oauth/authorize?owner=user",
        token_url="https://api.notion.com/v1/oauth/token",
        scopes=[],
        api_url="https://api.notion.com",
        setup_url="https://www.notion.so/my-integrations",
        setup_instructions="""\
1. Go to https://www.notion.so/my-integrations
2. Click "New integration" and choose "Public" as the integration type
3. Name your integration (e.g., "tokenlink")
4. Under "Capabilities", ensure it has the access you need
5. Set the redirect URI to: http://localhost:8888/callback
6. Copy the "OAuth client ID" and "OAuth client secret"

Note: After authenticating, you must share specific pages with the integration.""",
    ),
    "linear": ServiceDefinition(
        id="linear",
        name="Linear",
        auth_type=AuthType.OAUTH,
        auth_url="https://linear.app/oauth/authorize",
        token_url="https://api.linear.app/oauth/token",
        scopes=["read", "write", "issues:create", "comments:create"],
        api_url="https://api.linear.app",
        setup_url="https://linear.app/settings/api",
        setup_instructions="""\
1. Go to https://linear.app/settings/api
2. Under "OAuth applications", click "Create new"
3. Name your application (e.g., "tokenlink")
4. Set the redirect URI to: http://localhost:8888/callback
5. Select the scopes: read, write, issues:create, comments:create
6. Copy the "Client ID" and "Client Secret\"""",
    ),
    "honeycomb": ServiceDefinition(
        id="honeycomb",
        name="Honeycomb",
        auth_type=AuthType.APIKEY,
        api_url="https://api.honeycomb.io",
        setup_url="https://ui.honeycomb.io/account",
        setup_instructions="""\
1. Go to https://ui.honeycomb.io/account
2. Navigate to "Team settings" -> "API Keys"
3. Create a new API key with the permissions you need
4. Copy the API key""",
    ),
}


def get_service(service_id: str) -> ServiceDefinition:
    """Return the definition for *service_id*.

    Raises:
        InvalidUsageError: If the service is not in the registry. The message
            lists every supported identifier.
    """
    service = _SERVICES.get(service_id)
    if service is None:
        supported = ", ".join(service_names())
        raise InvalidUsageError(
            f"Unknown service: {service_id}\n\nSupported services: {supported}"
        )
    return service


def all_services() -> list[ServiceDefinition]:
    """Return every registered service, ordered by identifier."""
    return [_SERVICES[name] for name in service_names()]


def service_names() -> list[str]:
    """Return the sorted list of registered service identifiers."""
    return sorted(_SERVICES)
