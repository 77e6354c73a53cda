"""Auth commands -- obtain, inspect, and remove service tokens.

Provides the top-level ``setup``, ``login``, ``logout``, ``token``, and
``status`` commands. OAuth services go through
:class:`~tokenlink.auth.flow.OAuthFlow`; API-key services prompt for the key.
Tokens are persisted in the :class:`~tokenlink.auth.credential_store.TokenStore`.

Typical workflow::

    tokenlink setup linear       # register an OAuth app, store its client
    tokenlink login linear       # browser round-trip, token stored
    tokenlink token linear       # print the token for scripts
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

import typer

from tokenlink.exit_codes import EXIT_AUTH_FAILURE
from tokenlink.output import error, get_output, info, print_data, success, suggest, warning


def setup_command(
    service_id: str = typer.Argument(help="Service to configure (e.g. slack, notion)."),
    open_browser: bool = typer.Option(
        False, "--open", help="Open the provider's app settings page in a browser."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth client id (prompted if omitted)."
    ),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="OAuth client secret (prompted if omitted)."
    ),
) -> None:
    """Show how to register an OAuth app and store its client credentials.

    Args:
        service_id: Registry id of the service.
        open_browser: Open ``setup_url`` with :func:`webbrowser.open`.
        client_id: Client id; prompted for when omitted.
        client_secret: Client secret; prompted for (hidden) when omitted.

    Example::

        tokenlink setup slack --open
        tokenlink setup linear --client-id abc --client-secret s3cret
    """
    import webbrowser

    from tokenlink.auth.credential_store import ClientCredentialStore
    from tokenlink.models import AuthType, ClientCredentials
    from tokenlink.output import rule
    from tokenlink.registry import get_service

    service = get_service(service_id)

    rule(f"{service.name} setup")
    if service.setup_instructions:
        info(service.setup_instructions)
    if open_browser and service.setup_url:
        webbrowser.open(service.setup_url)

    if service.auth_type == AuthType.APIKEY:
        suggest(f"Then store your key: tokenlink login {service.id}")
        return

    if client_id is None:
        client_id = typer.prompt("Client ID", err=True).strip()
    if client_secret is None:
        client_secret = typer.prompt("Client Secret", hide_input=True, err=True).strip()
    if not client_id or not client_secret:
        error("Both a client id and a client secret are required.")
        raise typer.Exit(code=2)

    ClientCredentialStore().save(
        service.id, ClientCredentials(client_id=client_id, client_secret=client_secret)
    )
    success(f"Client credentials saved for {service.name}.")
    suggest(f"Log in: tokenlink login {service.id}")


def login_command(
    ctx: typer.Context,
    service_id: str = typer.Argument(help="Service to log in to."),
    port: Optional[int] = typer.Option(
        None, "--port", help="Callback port (default 8888; must match the registered redirect URI)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser callback (default 300)."
    ),
) -> None:
    """Authenticate with a service and store the token.

    For OAuth services this runs the browser flow; providers that require
    an ``https`` redirect first get the local certificate authority set up
    (see ``tokenlink init``). For API-key services the key is prompted for
    without echo.

    Args:
        ctx: Typer context carrying global flags.
        service_id: Registry id of the service.
        port: Override the callback port.
        timeout: Override the callback timeout in seconds.

    Raises:
        typer.Exit: With code 2 if no OAuth client is configured.

    Example::

        tokenlink login slack
        tokenlink login linear --port 9000 --timeout 120
    """
    from tokenlink.auth.adapters import get_adapter
    from tokenlink.auth.credential_store import TokenStore, env_var_name, resolve_client_credentials
    from tokenlink.auth.flow import OAuthFlow
    from tokenlink.certs import CertificateAuthorityManager, ensure_trusted_authority, get_trust_store
    from tokenlink.commands import confirm_from_context
    from tokenlink.config import resolve_settings
    from tokenlink.models import AuthType, Token
    from tokenlink.registry import get_service

    service = get_service(service_id)
    store = TokenStore()

    if service.auth_type == AuthType.APIKEY:
        key = typer.prompt(f"{service.name} API key", hide_input=True, err=True).strip()
        if not key:
            error("No API key entered.")
            raise typer.Exit(code=2)
        store.save(service.id, Token(access_token=key))
        success(f"API key saved for {service.name}.")
        return

    credentials = resolve_client_credentials(service.id)
    if credentials is None:
        error(f"No OAuth client configured for {service.name}.")
        suggest(f"Run: tokenlink setup {service.id}")
        suggest(
            f"Or set {env_var_name(service.id, 'CLIENT_ID')} and "
            f"{env_var_name(service.id, 'CLIENT_SECRET')}."
        )
        raise typer.Exit(code=2)

    verbose = bool(ctx.obj.get("verbose")) if isinstance(ctx.obj, dict) else False
    settings = resolve_settings(cli_port=port, cli_timeout=timeout, verbose=verbose)

    manager = CertificateAuthorityManager()
    if get_adapter(service.id).requires_tls(service):
        ensure_trusted_authority(manager, get_trust_store(), confirm_from_context(ctx))

    flow = OAuthFlow(service, credentials, settings, authority=manager)
    token = flow.run()
    store.save(service.id, token)

    who = f" as {token.user}" if token.user else ""
    success(f"Logged in to {service.name}{who}.")
    suggest(f"Print the token: tokenlink token {service.id}")


def logout_command(
    service_id: str = typer.Argument(help="Service to log out of."),
) -> None:
    """Delete the stored token for a service.

    Example::

        tokenlink logout slack
    """
    from tokenlink.auth.credential_store import TokenStore
    from tokenlink.registry import get_service

    service = get_service(service_id)
    if TokenStore().delete(service.id):
        success(f"Logged out of {service.name}.")
    else:
        info(f"Not logged in to {service.name}.")


def token_command(
    service_id: str = typer.Argument(help="Service whose token to print."),
) -> None:
    """Print the access token for a service to stdout.

    ``TOKENLINK_<SERVICE>_TOKEN`` takes precedence over the stored token.
    Nothing but the token is written to stdout, so the output can be used
    directly in shell substitutions.

    Raises:
        typer.Exit: With code 3 if no token is available.

    Example::

        curl -H "Authorization: Bearer $(tokenlink token linear)" ...
    """
    from tokenlink.auth.credential_store import resolve_token
    from tokenlink.registry import get_service

    service = get_service(service_id)
    token = resolve_token(service.id)
    if token is None:
        error(f"Not logged in to {service.name}.")
        suggest(f"Run: tokenlink login {service.id}")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    if token.is_expired():
        warning(f"The {service.name} token expired at {_format_expiry(token.expires_at)}.")
        suggest(f"Run: tokenlink login {service.id}")
    print_data(token.access_token)


def status_command() -> None:
    """Show which services have a token.

    Example::

        tokenlink status
        tokenlink --json status
    """
    from tokenlink.auth.credential_store import TokenStore, env_var_name
    from tokenlink.registry import all_services

    store = TokenStore()
    rows: list[list[str]] = []
    for service in all_services():
        if os.environ.get(env_var_name(service.id, "TOKEN")):
            rows.append([service.id, "env", "-", "-"])
            continue
        token = store.get(service.id)
        if token is None:
            rows.append([service.id, "not logged in", "-", "-"])
            continue
        if token.is_expired():
            state = "expired"
        elif token.needs_refresh():
            state = "expiring soon"
        else:
            state = "logged in"
        rows.append(
            [service.id, state, token.user or "-", _format_expiry(token.expires_at)]
        )

    get_output().print_table(["Service", "Status", "User", "Expires"], rows, title="Services")


def _format_expiry(expires_at: Optional[datetime]) -> str:
    if expires_at is None:
        return "never"
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
