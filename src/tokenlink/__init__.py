"""tokenlink -- Obtain OAuth tokens for third-party services from the command line.

This package runs the OAuth 2.0 authorization-code flow against providers such
as Slack, Notion, and Linear without a public redirect endpoint. A short-lived
loopback listener (optionally serving HTTPS with a locally-trusted certificate
authority) receives the provider's redirect, and the resulting code is
exchanged for a token using each provider's quirks.

Typical workflow::

    tokenlink init                 # create and trust the local CA
    tokenlink setup slack          # store OAuth client credentials
    tokenlink login slack          # browser round-trip, token stored
    tokenlink token slack          # print the access token

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and flow settings.
    registry: Static provider definitions.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    auth: Callback listener, flow orchestrator, provider adapters, and
        secret storage.
    certs: Local certificate authority and trust-store management.
"""

__version__ = "0.3.0"
