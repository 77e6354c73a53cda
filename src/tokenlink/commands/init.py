"""Init command -- set up the local certificate authority.

Implements the ``tokenlink init`` top-level command. Providers that insist
on ``https`` redirects (Slack) need the callback listener to serve TLS with
a certificate the browser trusts. ``init`` creates the local CA and adds it
to the OS trust store; ``login`` runs the same step automatically the first
time it is needed, so ``init`` is mostly useful for ``--force`` and
``--uninstall``.
"""

from __future__ import annotations

import typer

from tokenlink.exit_codes import EXIT_CERTIFICATE_ERROR
from tokenlink.output import error, info, success, suggest


def init_command(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        help="Regenerate the certificate authority even if one is trusted.",
    ),
    uninstall: bool = typer.Option(
        False,
        "--uninstall",
        help="Remove the certificate authority from the system trust store.",
    ),
) -> None:
    """Create and trust the local HTTPS certificate authority.

    Runs :func:`~tokenlink.certs.setup.ensure_trusted_authority`. When the
    CA already exists and is trusted, nothing happens unless ``--force`` is
    given.

    Args:
        ctx: Typer context carrying the ``yes`` and ``no_input`` flags.
        force: Regenerate and reinstall the CA.
        uninstall: Remove the CA from the trust store instead.

    Raises:
        typer.Exit: With code 7 if the CA cannot be created or installed.

    Example::

        tokenlink init
        tokenlink init --force
        tokenlink init --uninstall
    """
    from tokenlink.certs import (
        CertificateAuthorityManager,
        TrustStatus,
        ensure_trusted_authority,
        get_trust_store,
    )
    from tokenlink.commands import confirm_from_context

    manager = CertificateAuthorityManager()
    trust_store = get_trust_store()

    if uninstall:
        if not trust_store.is_trusted():
            info("The tokenlink certificate authority is not installed.")
            return
        trust_store.uninstall()
        success(f"Certificate authority removed from your {trust_store.name}.")
        info(f"The CA files remain in {manager.certs_dir}.")
        return

    status = ensure_trusted_authority(
        manager, trust_store, confirm_from_context(ctx), force=force
    )
    if status == TrustStatus.TRUSTED:
        info(f"Certificate authority: {manager.cert_path}")
        success("HTTPS callbacks are ready.")
        suggest("Log in: tokenlink login slack")
    elif status == TrustStatus.DECLINED:
        info("Cancelled.")
    else:
        error("The certificate authority is not trusted.")
        raise typer.Exit(code=EXIT_CERTIFICATE_ERROR)
